from pathlib import Path

from celery import shared_task
from celery.signals import worker_process_init, worker_process_shutdown
from celery.utils.log import get_task_logger
from django.conf import settings

from .models import ConversionRequest, JobStatus, OutputFormat, PublishedResult
from .services import close_services, get_services
from .utils import job_workdir, output_stem, remove_path, utc_now

logger = get_task_logger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 5  # 5s, then 10s

RETRY_POLICY = dict(
    bind=True,
    autoretry_for=(Exception,),
    max_retries=MAX_ATTEMPTS - 1,
    retry_backoff=BACKOFF_SECONDS,
    retry_backoff_max=600,
    retry_jitter=False,
)


def _update(ledger, request: ConversionRequest, **fields) -> dict:
    patch = {
        "jobId": request.job_id,
        "batchId": request.batch_id,
        "originalName": request.original_name,
        "format": request.format,
        **fields,
    }
    return ledger.record_status(request.job_id, {k: v for k, v in patch.items() if v is not None})


def _fetch_source(store, request: ConversionRequest, workdir: Path) -> Path:
    """Pull the staged upload into this worker's scratch directory."""
    local = workdir / f"source{Path(request.original_name).suffix.lower()}"
    return store.download_to(request.source_key, local)


def _discard_source(store, request: ConversionRequest) -> None:
    try:
        store.delete(request.source_key)
    except Exception as e:
        logger.error("Error deleting staged upload %s: %s", request.source_key, e)


def _publish_pdf(services, request: ConversionRequest, pdf_bytes: bytes, workdir: Path) -> PublishedResult:
    filename = f"{output_stem(request.original_name)}.pdf"
    pdf_path = workdir / filename
    pdf_path.write_bytes(pdf_bytes)
    _update(services.ledger, request, progress=60)

    key = services.store.upload(pdf_path, f"{request.job_id}/{filename}", content_type="application/pdf")
    return PublishedResult(key=key, content_type="application/pdf", filename=filename)


def _publish_png(services, request: ConversionRequest, pdf_bytes: bytes, workdir: Path) -> PublishedResult:
    """One page uploads as-is; several pages go out as a ZIP in page order."""
    stem = output_stem(request.original_name)
    pdf_path = workdir / f"{stem}.pdf"
    pdf_path.write_bytes(pdf_bytes)

    dpi = request.dpi or settings.PNG_DPI
    pages = services.gateway.rasterize(pdf_path, workdir / stem, dpi)
    logger.info("Generated %d PNG files for job %s", len(pages), request.job_id)
    _update(services.ledger, request, progress=60)

    if len(pages) == 1:
        page = pages[0]
        key = services.store.upload(page, f"{request.job_id}/{page.name}", content_type="image/png")
        return PublishedResult(key=key, content_type="image/png", filename=page.name, file_count=1)

    zip_name = f"{stem}.zip"
    key = services.store.upload_as_zip(pages, f"{request.job_id}/{zip_name}")
    return PublishedResult(key=key, content_type="application/zip", filename=zip_name, file_count=len(pages))


def process_job(services, request: ConversionRequest, *, attempt: int = 1, final_attempt: bool = True) -> dict:
    """
    Convert one document and publish the result.

    Only the final attempt marks the job failed; earlier failures leave it in
    `processing` and re-raise so Celery schedules the retry.
    """
    ledger, store = services.ledger, services.store
    workdir = job_workdir(request.job_id)
    finished = False
    logger.info(
        "Processing %s job %s: %s (attempt %d/%d)",
        request.format, request.job_id, request.original_name, attempt, MAX_ATTEMPTS,
    )
    try:
        _update(ledger, request, status=JobStatus.PROCESSING, progress=10, attempts=attempt,
                dpi=request.dpi if request.format == OutputFormat.PNG else None)

        source = _fetch_source(store, request, workdir)
        _update(ledger, request, progress=30)
        pdf_bytes = services.gateway.to_pdf(source, request.original_name)

        if request.format == OutputFormat.PNG:
            result = _publish_png(services, request, pdf_bytes, workdir)
        else:
            result = _publish_pdf(services, request, pdf_bytes, workdir)
        _update(ledger, request, progress=90)

        download_url = store.presigned_url(result.key, settings.JOB_TTL_SECONDS)
        _update(
            ledger, request,
            status=JobStatus.COMPLETED,
            progress=100,
            resultPath=result.key,
            downloadUrl=download_url,
            contentType=result.content_type,
            filename=result.filename,
            fileCount=result.file_count if request.format == OutputFormat.PNG else None,
            completedAt=utc_now(),
        )
        finished = True
        logger.info("Completed %s job %s", request.format, request.job_id)
        return {
            "jobId": request.job_id,
            "status": JobStatus.COMPLETED.value,
            "resultPath": result.key,
            "fileCount": result.file_count,
        }
    except Exception as exc:
        logger.exception("Error processing %s job %s", request.format, request.job_id)
        if final_attempt:
            try:
                _update(ledger, request, status=JobStatus.FAILED, error=str(exc), failedAt=utc_now())
            except Exception as e:
                logger.error("Could not record failure for job %s: %s", request.job_id, e)
        else:
            logger.warning("Job %s attempt %d failed, retrying: %s", request.job_id, attempt, exc)
        raise
    finally:
        remove_path(workdir)
        if finished or final_attempt:
            _discard_source(store, request)


def _run(task, payload: dict) -> dict:
    request = ConversionRequest.from_payload(payload)
    retries = task.request.retries or 0
    return process_job(
        get_services(),
        request,
        attempt=retries + 1,
        final_attempt=retries >= task.max_retries,
    )


@shared_task(name="api.tasks.convert_png", **RETRY_POLICY)
def convert_png(self, payload: dict):
    return _run(self, payload)


@shared_task(name="api.tasks.convert_pdf", **RETRY_POLICY)
def convert_pdf(self, payload: dict):
    return _run(self, payload)


@worker_process_init.connect
def _init_worker_services(**kwargs):
    get_services()


@worker_process_shutdown.connect
def _close_worker_services(**kwargs):
    close_services()
