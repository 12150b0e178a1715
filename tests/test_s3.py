"""Tests for the S3/MinIO object store adapter."""

import io
import zipfile
from unittest import mock

from botocore.exceptions import EndpointConnectionError

from api.s3 import ObjectStore


def test_upload_uses_given_key_and_content_type(store, s3_client, tmp_path):
    f = tmp_path / "Report.pdf"
    f.write_bytes(b"%PDF")

    key = store.upload(f, "job-1/Report.pdf", content_type="application/pdf")

    assert key == "job-1/Report.pdf"
    assert s3_client.objects[key] == b"%PDF"
    assert s3_client.content_types[key] == "application/pdf"


def test_upload_generates_key_from_basename(store, s3_client, tmp_path):
    f = tmp_path / "page-1.png"
    f.write_bytes(b"png")

    key = store.upload(f)

    prefix, name = key.split("/")
    assert name == "page-1.png"
    assert len(prefix) == 36


def test_upload_as_zip_keeps_input_order_and_flattens_names(store, s3_client, tmp_path):
    paths = []
    for name in ("b-03.png", "a-01.png", "c-02.png"):
        sub = tmp_path / name[0]
        sub.mkdir()
        p = sub / name
        p.write_bytes(name.encode())
        paths.append(p)

    key = store.upload_as_zip(paths, "job-1/deck.zip")

    assert s3_client.content_types[key] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(s3_client.objects[key])) as zf:
        assert zf.namelist() == ["b-03.png", "a-01.png", "c-02.png"]
        assert zf.read("a-01.png") == b"a-01.png"


def test_upload_as_zip_default_key(store, tmp_path):
    p = tmp_path / "x.png"
    p.write_bytes(b"x")

    assert store.upload_as_zip([p]).endswith(".zip")


def test_iter_download_streams_object(store, s3_client):
    s3_client.objects["job-1/a.pdf"] = b"x" * 200_000

    chunks = list(store.iter_download("job-1/a.pdf", chunk_size=64 * 1024))

    assert b"".join(chunks) == b"x" * 200_000
    assert len(chunks) == 4


def test_download_to_writes_local_file(store, s3_client, tmp_path):
    s3_client.objects["uploads/j/a.docx"] = b"doc"

    out = store.download_to("uploads/j/a.docx", tmp_path / "source.docx")

    assert out.read_bytes() == b"doc"


def test_presigned_url_uses_presign_client():
    client, presigner = mock.Mock(), mock.Mock()
    presigner.generate_presigned_url.return_value = "http://public/conversions/k?sig"
    store = ObjectStore(client, "conversions", presign_client=presigner)

    assert store.presigned_url("k", 86400) == "http://public/conversions/k?sig"
    presigner.generate_presigned_url.assert_called_once_with(
        ClientMethod="get_object",
        Params={"Bucket": "conversions", "Key": "k"},
        ExpiresIn=86400,
        HttpMethod="GET",
    )
    client.generate_presigned_url.assert_not_called()


def test_list_objects_walks_pages():
    client = mock.Mock()
    client.get_paginator.return_value.paginate.return_value = [
        {"Contents": [{"Key": "job-1/a.pdf", "Size": 3}]},
        {"Contents": [{"Key": "job-1/b.pdf", "Size": 4}]},
        {},
    ]
    store = ObjectStore(client, "conversions")

    items = store.list_objects("job-1/")

    client.get_paginator.assert_called_once_with("list_objects_v2")
    assert [i["key"] for i in items] == ["job-1/a.pdf", "job-1/b.pdf"]
    assert items[1]["size"] == 4


def test_delete(store, s3_client):
    s3_client.objects["uploads/j/a.docx"] = b"doc"
    store.delete("uploads/j/a.docx")
    assert "uploads/j/a.docx" not in s3_client.objects


def test_ensure_bucket_creates_missing_bucket(s3_client):
    store = ObjectStore(s3_client, "fresh-bucket")
    store.ensure_bucket()
    assert "fresh-bucket" in s3_client.buckets


def test_health_check(store, s3_client):
    assert store.health_check() is True

    s3_client.head_bucket = mock.Mock(side_effect=EndpointConnectionError(endpoint_url="http://minio:9000"))
    assert store.health_check() is False


def test_health_check_missing_bucket(s3_client):
    assert ObjectStore(s3_client, "absent").health_check() is False
