import logging

from celery.result import AsyncResult

from .models import ConversionRequest, JobStatus, OutputFormat
from .tasks import convert_pdf, convert_png
from .utils import utc_now

logger = logging.getLogger(__name__)

TASKS = {
    OutputFormat.PNG.value: convert_png,
    OutputFormat.PDF.value: convert_pdf,
}


def enqueue(services, request: ConversionRequest) -> AsyncResult:
    """
    Record the job as queued and hand it to the queue for its format.

    The job id doubles as the Celery task id. A second enqueue of the same id
    is ignored and returns a handle to the task already submitted. If
    submission fails the job is marked failed and the error re-raised.
    """
    task = TASKS[str(request.format)]
    if not services.ledger.reserve(request.job_id):
        logger.info("Job %s already enqueued; ignoring duplicate submission", request.job_id)
        return AsyncResult(request.job_id, app=task.app)

    initial = {
        "jobId": request.job_id,
        "batchId": request.batch_id,
        "status": JobStatus.QUEUED,
        "originalName": request.original_name,
        "format": str(request.format),
        "dpi": request.dpi if request.format == OutputFormat.PNG else None,
        "createdAt": utc_now(),
        "progress": 0,
    }
    services.ledger.record_status(request.job_id, {k: v for k, v in initial.items() if v is not None})

    try:
        handle = task.apply_async(
            kwargs={"payload": request.to_payload()},
            task_id=request.job_id,
            queue=str(request.format),
        )
    except Exception as e:
        logger.error("Failed to submit job %s: %s", request.job_id, e)
        services.ledger.record_status(request.job_id, {
            "status": JobStatus.FAILED,
            "error": f"Failed to queue job: {e}",
            "failedAt": utc_now(),
        })
        raise
    logger.info("%s conversion job %s queued", str(request.format).upper(), request.job_id)
    return handle
