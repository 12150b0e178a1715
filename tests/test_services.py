from unittest import mock

from api import services as services_module
from api.ledger import JobLedger
from api.s3 import ObjectStore
from api.services import ConversionServices, get_services
from tests.conftest import FakeGateway, FakeRedis, FakeS3Client, UnreachableS3Client


def _services(s3_client):
    return ConversionServices(
        gateway=FakeGateway(), ledger=JobLedger(FakeRedis()), store=ObjectStore(s3_client, "conversions")
    )


def test_init_creates_missing_bucket():
    s3_client = FakeS3Client()
    s3_client.buckets = set()

    svc = _services(s3_client).init()

    assert "conversions" in s3_client.buckets
    assert svc._initialized


def test_init_tolerates_unreachable_store():
    svc = _services(UnreachableS3Client())

    assert svc.init() is svc
    assert not svc._initialized


def test_get_services_retries_bucket_setup():
    s3_client = UnreachableS3Client()
    svc = _services(s3_client)

    with mock.patch.object(services_module, "_process_services", None), \
            mock.patch.object(ConversionServices, "from_settings", return_value=svc):
        assert get_services() is svc
        assert not svc._initialized

        svc.store._client = FakeS3Client()
        assert get_services() is svc
        assert svc._initialized
