from pathlib import Path
import os
import tempfile
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ImproperlyConfigured(f"Environment variable {name} must be an integer, got {raw!r}")

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# In production (DEBUG=False) you must set a strong secret in .env
SECRET_KEY = env("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me", required=not DEBUG)

ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "*").split(",") if h.strip()]

PORT = env_int("PORT", 8080)

# -----------------------------------------------------
# Applications
# -----------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",

    # Third-party
    "rest_framework",

    # Local
    "api",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "docconvert.urls"

WSGI_APPLICATION = "docconvert.wsgi.application"

# No relational state; job records live in Redis.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
    }
}

# -----------------------------------------------------
# Internationalization
# -----------------------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

# -----------------------------------------------------
# Uploads
# -----------------------------------------------------
MAX_FILE_SIZE = env_int("MAX_FILE_SIZE", 50 * 1024 * 1024)  # bytes
MAX_BATCH_FILES = 10
ALLOWED_EXTENSIONS = [".docx", ".pptx", ".doc", ".ppt", ".xlsx", ".xls"]
CONVERSION_TMP_DIR = Path(env("CONVERSION_TMP_DIR", str(Path(tempfile.gettempdir()) / "conversions")))

# Large uploads spill to disk instead of memory.
FILE_UPLOAD_MAX_MEMORY_SIZE = 2 * 1024 * 1024
FILE_UPLOAD_TEMP_DIR = None

# -----------------------------------------------------
# Django REST Framework
# -----------------------------------------------------
RATE_LIMIT_WINDOW_SECONDS = env_int("RATE_LIMIT_WINDOW_SECONDS", 60)
RATE_LIMIT_MAX_REQUESTS = env_int("RATE_LIMIT_MAX_REQUESTS", 100)

REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
        "rest_framework.parsers.MultiPartParser",
    ],
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_THROTTLE_CLASSES": ["api.throttling.ClientRateThrottle"],
    "UNAUTHENTICATED_USER": None,
    "EXCEPTION_HANDLER": "api.exceptions.api_exception_handler",
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

# -----------------------------------------------------
# Conversion engine (Gotenberg) & rasterizer (pdftoppm)
# -----------------------------------------------------
GOTENBERG_URL = env("GOTENBERG_URL", "http://gotenberg:3000").rstrip("/")
CONVERSION_TIMEOUT_SEC = env_int("CONVERSION_TIMEOUT_SEC", 300)
HEALTH_TIMEOUT_SEC = env_int("HEALTH_TIMEOUT_SEC", 5)
RASTERIZE_TIMEOUT_SEC = env_int("RASTERIZE_TIMEOUT_SEC", 300)
PDFTOPPM_BIN = env("PDFTOPPM_BIN", "pdftoppm")
PNG_DPI = env_int("PNG_DPI", 150)

# -----------------------------------------------------
# Redis (job ledger) & Celery
# -----------------------------------------------------
REDIS_HOST = env("REDIS_HOST", "redis")
REDIS_PORT = env_int("REDIS_PORT", 6379)
REDIS_URL = env("REDIS_URL", f"redis://{REDIS_HOST}:{REDIS_PORT}/0")

JOB_TTL_SECONDS = 24 * 60 * 60  # ledger records and presigned result URLs

CELERY_BROKER_URL = env("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", REDIS_URL)
CELERY_RESULT_EXPIRES = JOB_TTL_SECONDS
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_SOFT_TIME_LIMIT = env_int("CELERY_TASK_SOFT_TIME_LIMIT", 60 * 15)  # seconds; raises inside the task
CELERY_TASK_ACKS_LATE = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_WORKER_CONCURRENCY = env_int("CELERY_WORKER_CONCURRENCY", 1)
CELERY_TASK_ROUTES = {
    "api.tasks.convert_png": {"queue": "png"},
    "api.tasks.convert_pdf": {"queue": "pdf"},
}
CELERY_WORKER_HIJACK_ROOT_LOGGER = False

# -----------------------------------------------------
# Default PK type
# -----------------------------------------------------
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------------------
# S3 / MinIO (env-driven; no hardcoded secrets in production)
# -----------------------------------------------------
S3_USE_SSL = env_bool("S3_USE_SSL", False)
S3_HOST = env("S3_HOST", "minio")
S3_PORT = env_int("S3_PORT", 9000)
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or f"{'https' if S3_USE_SSL else 'http'}://{S3_HOST}:{S3_PORT}"
S3_PUBLIC_ENDPOINT = os.getenv("S3_PUBLIC_ENDPOINT", S3_ENDPOINT_URL)
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_BUCKET = os.getenv("S3_BUCKET", "conversions")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY", "minioadmin")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY", "minioadmin")
S3_PRESIGN_EXPIRE_SECONDS = JOB_TTL_SECONDS

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "api": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "django.request": {"handlers": ["console"], "level": "ERROR", "propagate": False},
    },
}
