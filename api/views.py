import logging
import os
from uuid import uuid4

from django.conf import settings
from django.http import HttpResponse, StreamingHttpResponse
from django.utils.http import content_disposition_header
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .dispatch import enqueue
from .exceptions import error_response
from .models import ConversionRequest, JobStatus, OutputFormat
from .serializers import (
    BatchConversionSerializer,
    PdfConversionSerializer,
    PngConversionSerializer,
)
from .services import get_services
from .utils import output_stem, remove_path, save_uploaded_file, utc_now

logger = logging.getLogger(__name__)


class ConversionAPIView(views.APIView):
    """
    Base view. `services` is injected through `as_view(services=...)`;
    without it the process-wide services are used.
    """
    permission_classes = [AllowAny]
    authentication_classes = []
    services = None

    def get_services(self):
        return self.services or get_services()


def _stage_upload(store, upload, job_id: str) -> str:
    """
    Park an upload in the object store so any worker can fetch it.
    Returns the object key; the local copy is always removed.
    """
    local = save_uploaded_file(upload)
    try:
        return store.upload(local, f"uploads/{job_id}/{os.path.basename(upload.name)}")
    finally:
        remove_path(local)


def _discard_staged(store, key) -> None:
    if not key:
        return
    try:
        store.delete(key)
    except Exception as e:
        logger.error("Error deleting staged upload %s: %s", key, e)


def _attachment(filename: str) -> str:
    return content_disposition_header(True, filename)


class HealthView(ConversionAPIView):
    throttle_classes = []

    def get(self, request):
        services = self.get_services()
        checks = {
            "gateway": services.gateway.health_check(),
            "queueStore": services.ledger.ping(),
            "objectStore": services.store.health_check(),
        }
        healthy = all(checks.values())
        body = {
            "status": "ok" if healthy else "degraded",
            "timestamp": utc_now(),
            "services": {name: "up" if ok else "down" for name, ok in checks.items()},
        }
        return Response(body, status=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE)


class LivenessView(ConversionAPIView):
    throttle_classes = []

    def get(self, request):
        return Response({"status": "ok"})


class ConvertPdfView(ConversionAPIView):
    """Synchronous conversion: blocks until the engine answers, returns the PDF."""

    def post(self, request):
        ser = PdfConversionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        upload = ser.validated_data["file"]

        logger.info("Converting %s to PDF...", upload.name)
        try:
            pdf = self.get_services().gateway.to_pdf(upload, upload.name)
        except Exception as e:
            logger.exception("PDF conversion error for %s", upload.name)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Conversion failed", str(e))

        response = HttpResponse(pdf, content_type="application/pdf")
        response["Content-Disposition"] = _attachment(f"{output_stem(upload.name)}.pdf")
        response["Content-Length"] = str(len(pdf))
        logger.info("Successfully converted %s to PDF", upload.name)
        return response


class ConvertPngView(ConversionAPIView):
    def post(self, request):
        ser = PngConversionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        upload = ser.validated_data["file"]
        dpi = ser.validated_data.get("dpi") or settings.PNG_DPI

        services = self.get_services()
        job_id = str(uuid4())
        logger.info("Queuing PNG conversion job %s for %s", job_id, upload.name)
        source_key = None
        try:
            source_key = _stage_upload(services.store, upload, job_id)
            enqueue(services, ConversionRequest(
                job_id=job_id,
                source_key=source_key,
                original_name=upload.name,
                format=OutputFormat.PNG.value,
                dpi=dpi,
            ))
        except Exception as e:
            logger.exception("Error queuing PNG conversion for %s", upload.name)
            _discard_staged(services.store, source_key)
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to queue conversion job", str(e)
            )

        return Response({
            "jobId": job_id,
            "status": JobStatus.QUEUED.value,
            "message": "Conversion job queued successfully",
            "statusUrl": f"/jobs/{job_id}",
        }, status=status.HTTP_202_ACCEPTED)


class ConvertBatchView(ConversionAPIView):
    """
    Fans a multi-file upload out into one job per file under a shared batch id.
    Enqueueing is not atomic: if a file fails, jobs already queued stay queued
    and the response lists them alongside the error.
    """

    def post(self, request):
        ser = BatchConversionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        uploads = ser.validated_data["files"]
        fmt = ser.validated_data["format"]
        dpi = ser.validated_data.get("dpi") or settings.PNG_DPI

        services = self.get_services()
        batch_id = str(uuid4())
        logger.info("Queuing batch conversion %s with %d files", batch_id, len(uploads))

        jobs = []
        for upload in uploads:
            job_id = str(uuid4())
            source_key = None
            try:
                source_key = _stage_upload(services.store, upload, job_id)
                enqueue(services, ConversionRequest(
                    job_id=job_id,
                    source_key=source_key,
                    original_name=upload.name,
                    format=fmt,
                    batch_id=batch_id,
                    dpi=dpi if fmt == OutputFormat.PNG else None,
                ))
            except Exception as e:
                logger.exception("Error queuing %s in batch %s", upload.name, batch_id)
                _discard_staged(services.store, source_key)
                return error_response(
                    status.HTTP_500_INTERNAL_SERVER_ERROR,
                    "Failed to queue batch conversion",
                    str(e),
                    batchId=batch_id,
                    jobs=jobs,
                )
            jobs.append({"jobId": job_id, "filename": upload.name, "status": JobStatus.QUEUED.value})

        return Response({
            "batchId": batch_id,
            "status": JobStatus.QUEUED.value,
            "jobs": jobs,
            "message": f"{len(jobs)} conversion jobs queued successfully",
            "statusUrl": f"/jobs/batch/{batch_id}",
        }, status=status.HTTP_202_ACCEPTED)


class JobDetailView(ConversionAPIView):
    def get(self, request, job_id):
        try:
            record = self.get_services().ledger.get_status(job_id)
        except Exception as e:
            logger.exception("Error getting job status for %s", job_id)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get job status", str(e))

        if not record:
            return error_response(status.HTTP_404_NOT_FOUND, "Job not found")
        return Response(record)


class BatchDetailView(ConversionAPIView):
    def get(self, request, batch_id):
        try:
            batch = self.get_services().ledger.get_batch(batch_id)
        except Exception as e:
            logger.exception("Error getting batch status for %s", batch_id)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get batch status", str(e))

        if batch["totalJobs"] == 0:
            return error_response(status.HTTP_404_NOT_FOUND, "Batch not found")
        return Response(batch)


class JobDownloadView(ConversionAPIView):
    """Streams a finished result from the object store through the API."""

    def get(self, request, job_id):
        services = self.get_services()
        try:
            record = services.ledger.get_status(job_id)
        except Exception as e:
            logger.exception("Error getting job status for %s", job_id)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to download result", str(e))

        if not record:
            return error_response(status.HTTP_404_NOT_FOUND, "Job not found")
        if record.get("status") != JobStatus.COMPLETED:
            return error_response(status.HTTP_400_BAD_REQUEST, "Job not completed", status=record.get("status"))
        if not record.get("resultPath"):
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Result path not found")

        try:
            chunks = services.store.iter_download(record["resultPath"])
        except Exception as e:
            logger.exception("Error downloading result for job %s", job_id)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to download result", str(e))

        response = StreamingHttpResponse(chunks, content_type=record.get("contentType") or "application/octet-stream")
        response["Content-Disposition"] = _attachment(record.get("filename") or os.path.basename(record["resultPath"]))
        return response
