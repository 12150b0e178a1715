from dataclasses import dataclass, asdict
from django.db import models


class JobStatus(models.TextChoices):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchStatus(models.TextChoices):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"


class OutputFormat(models.TextChoices):
    PDF = "pdf"
    PNG = "png"


# queued -> processing -> completed | failed; a record never moves to a lower rank.
STATUS_RANK = {
    JobStatus.QUEUED.value: 0,
    JobStatus.PROCESSING.value: 1,
    JobStatus.COMPLETED.value: 2,
    JobStatus.FAILED.value: 2,
}

TERMINAL_STATUSES = {JobStatus.COMPLETED.value, JobStatus.FAILED.value}


@dataclass(frozen=True)
class ConversionRequest:
    """What a worker needs to convert one uploaded document."""

    job_id: str
    source_key: str          # object-store key of the staged upload
    original_name: str
    format: str              # OutputFormat value
    batch_id: str | None = None
    dpi: int | None = None

    def to_payload(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "ConversionRequest":
        return cls(
            job_id=payload["job_id"],
            source_key=payload["source_key"],
            original_name=payload["original_name"],
            format=payload["format"],
            batch_id=payload.get("batch_id"),
            dpi=payload.get("dpi"),
        )


@dataclass(frozen=True)
class PublishedResult:
    key: str
    content_type: str
    filename: str
    file_count: int | None = None
