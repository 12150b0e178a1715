from django.urls import path
from .views import (
    BatchDetailView,
    ConvertBatchView,
    ConvertPdfView,
    ConvertPngView,
    HealthView,
    JobDetailView,
    JobDownloadView,
    LivenessView,
)

urlpatterns = [
    path("health", HealthView.as_view(), name="health"),
    path("healthz", LivenessView.as_view(), name="healthz"),
    path("convert/pdf", ConvertPdfView.as_view(), name="convert_pdf"),  # synchronous
    path("convert/png", ConvertPngView.as_view(), name="convert_png"),
    path("convert/batch", ConvertBatchView.as_view(), name="convert_batch"),
    path("jobs/batch/<str:batch_id>", BatchDetailView.as_view(), name="batch_detail"),
    path("jobs/<str:job_id>", JobDetailView.as_view(), name="job_detail"),
    path("jobs/<str:job_id>/download", JobDownloadView.as_view(), name="job_download"),
]
