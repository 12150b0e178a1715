import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4
from django.conf import settings

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """ISO-8601 UTC timestamp with a trailing Z."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def save_uploaded_file(djangofile) -> Path:
    """Save to CONVERSION_TMP_DIR/<uuid><ext> and return the absolute path."""
    uploads_dir = Path(settings.CONVERSION_TMP_DIR)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    ext = Path(os.path.basename(djangofile.name)).suffix.lower()
    dest = uploads_dir / f"{uuid4().hex}{ext}"
    with open(dest, "wb") as f:
        for chunk in djangofile.chunks():
            f.write(chunk)
    return dest


def job_workdir(job_id: str) -> Path:
    """Per-job scratch directory; names never collide across jobs."""
    workdir = Path(settings.CONVERSION_TMP_DIR) / job_id
    workdir.mkdir(parents=True, exist_ok=True)
    return workdir


def output_stem(original_name: str) -> str:
    """'reports/Q3 Plan.pptx' -> 'Q3 Plan'"""
    stem = Path(os.path.basename(original_name)).stem
    return stem or "document"


def remove_path(path) -> None:
    """Best-effort removal of a temp file or directory; failures are logged only."""
    if not path:
        return
    p = Path(path)
    try:
        if p.is_dir():
            shutil.rmtree(p)
        else:
            p.unlink(missing_ok=True)
        logger.debug("Deleted temp path %s", p)
    except OSError as e:
        logger.error("Error deleting temp path %s: %s", p, e)
