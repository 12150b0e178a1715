"""Shared fixtures: in-memory stand-ins for Redis, S3 and the conversion engine."""

import io
from pathlib import Path
from unittest import mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.response import StreamingBody

from api.gateway import ConversionError
from api.ledger import JobLedger
from api.s3 import ObjectStore
from api.services import ConversionServices


class FakeRedis:
    """Dict-backed double for the redis-py calls the ledger makes."""

    def __init__(self):
        self.values = {}
        self.sets = {}
        self.ttls = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def sadd(self, key, *members):
        members_set = self.sets.setdefault(key, set())
        before = len(members_set)
        members_set.update(members)
        return len(members_set) - before

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    def ttl(self, key):
        return self.ttls.get(key, -2)

    def ping(self):
        return True

    def close(self):
        pass

    def expire_now(self, key):
        """Simulate the TTL running out."""
        self.values.pop(key, None)
        self.sets.pop(key, None)
        self.ttls.pop(key, None)


def _client_error(code, operation):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client:
    """Records objects in memory; mirrors the boto3 S3 client signatures used by ObjectStore."""

    def __init__(self):
        self.objects = {}
        self.content_types = {}
        self.deleted = []
        self.buckets = {"conversions"}

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise _client_error("404", "HeadBucket")
        return {}

    def create_bucket(self, Bucket, **kwargs):
        self.buckets.add(Bucket)
        return {}

    def upload_file(self, Filename, Bucket, Key, ExtraArgs=None):
        self.objects[Key] = Path(Filename).read_bytes()
        self.content_types[Key] = (ExtraArgs or {}).get("ContentType")

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None):
        self.objects[Key] = Fileobj.read()
        self.content_types[Key] = (ExtraArgs or {}).get("ContentType")

    def download_file(self, Bucket, Key, Filename):
        if Key not in self.objects:
            raise _client_error("404", "HeadObject")
        Path(Filename).write_bytes(self.objects[Key])

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        data = self.objects[Key]
        return {"Body": StreamingBody(io.BytesIO(data), len(data))}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn, HttpMethod):
        return f"http://minio.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)
        self.deleted.append(Key)
        return {}


class FakeGateway:
    """Stands in for Gotenberg + pdftoppm; writes `pages` PNG files when rasterizing."""

    def __init__(self, pages=1, pdf=b"%PDF-1.7 fake", error=None, healthy=True):
        self.pages = pages
        self.pdf = pdf
        self.error = error
        self.healthy = healthy
        self.converted = []
        self.rasterized = []

    def to_pdf(self, source, original_name):
        self.converted.append(original_name)
        if self.error is not None:
            raise self.error
        return self.pdf

    def rasterize(self, pdf_path, output_prefix, dpi):
        prefix = Path(output_prefix)
        self.rasterized.append((Path(pdf_path).name, dpi))
        if self.pages == 0:
            raise ConversionError("empty", "no output produced", stage="PNG")
        width = len(str(self.pages))
        for i in range(1, self.pages + 1):
            (prefix.parent / f"{prefix.name}-{i:0{width}d}.png").write_bytes(f"png page {i}".encode())
        return sorted(prefix.parent.glob(f"{prefix.name}-*.png"))

    def health_check(self):
        return self.healthy

    def close(self):
        pass


@pytest.fixture(autouse=True)
def conversion_tmp_dir(settings, tmp_path):
    settings.CONVERSION_TMP_DIR = tmp_path / "conversions"
    return settings.CONVERSION_TMP_DIR


@pytest.fixture(autouse=True)
def clear_throttle_cache():
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def ledger(redis_client):
    return JobLedger(redis_client)


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def store(s3_client):
    return ObjectStore(s3_client, "conversions")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(gateway, ledger, store):
    return ConversionServices(gateway=gateway, ledger=ledger, store=store)


@pytest.fixture
def queued_tasks():
    """Patch Celery submission so nothing reaches a broker."""
    tasks = {"png": mock.MagicMock(name="convert_png"), "pdf": mock.MagicMock(name="convert_pdf")}
    with mock.patch.dict("api.dispatch.TASKS", tasks):
        yield tasks


class UnreachableS3Client(FakeS3Client):
    """Every bucket call fails the way boto3 does when the endpoint is down."""

    def head_bucket(self, Bucket):
        raise EndpointConnectionError(endpoint_url="http://minio:9000")

    def create_bucket(self, Bucket, **kwargs):
        raise EndpointConnectionError(endpoint_url="http://minio:9000")
