import io
import logging
import os
import zipfile
from pathlib import Path
from uuid import uuid4
import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


def make_client(endpoint_url: str, *, access_key: str, secret_key: str, region: str, use_ssl: bool = False):
    session = boto3.session.Session(
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        region_name=region,
    )
    return session.client(
        "s3",
        endpoint_url=endpoint_url,  # e.g. http://minio:9000
        use_ssl=use_ssl,
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        ),
    )


class ObjectStore:
    """
    Conversion results and staged uploads in one S3/MinIO bucket.

    `client` does server-side transfers. `presign_client` only signs URLs and
    points at the public endpoint so the URL host matches what callers reach.
    """

    def __init__(self, client, bucket: str, *, presign_client=None, region: str = "us-east-1") -> None:
        self._client = client
        self._presign_client = presign_client or client
        self.bucket = bucket
        self.region = region

    @classmethod
    def from_settings(cls) -> "ObjectStore":
        from django.conf import settings

        creds = dict(
            access_key=settings.S3_ACCESS_KEY,
            secret_key=settings.S3_SECRET_KEY,
            region=settings.S3_REGION,
            use_ssl=settings.S3_USE_SSL,
        )
        return cls(
            make_client(settings.S3_ENDPOINT_URL, **creds),
            settings.S3_BUCKET,
            presign_client=make_client(settings.S3_PUBLIC_ENDPOINT, **creds),
            region=settings.S3_REGION,
        )

    def ensure_bucket(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
            logger.info("Bucket %s already exists", self.bucket)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in {"404", "NoSuchBucket", "NotFound"}:
                raise
            params = {"Bucket": self.bucket}
            if self.region != "us-east-1":
                params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
            self._client.create_bucket(**params)
            logger.info("Created bucket: %s", self.bucket)

    def health_check(self) -> bool:
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error("Object store health check failed: %s", e)
            return False

    def upload(self, local_path, key: str | None = None, content_type: str | None = None) -> str:
        """
        Upload a single file with an optional Content-Type.
        Without `key`, the object lands at <uuid>/<basename>.
        """
        local_path = Path(local_path)
        key = key or f"{uuid4()}/{local_path.name}"
        extra = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client.upload_file(str(local_path), self.bucket, key, ExtraArgs=extra or None)
        logger.info("Uploaded %s to %s/%s", local_path, self.bucket, key)
        return key

    def upload_as_zip(self, local_paths, key: str | None = None) -> str:
        """
        Bundle files into one ZIP object. Entries are flattened to basenames
        and keep the order of `local_paths`.
        """
        key = key or f"{uuid4()}.zip"
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
            for p in local_paths:
                zf.write(str(p), arcname=os.path.basename(str(p)))
        buf.seek(0)
        self._client.upload_fileobj(buf, self.bucket, key, ExtraArgs={"ContentType": "application/zip"})
        logger.info("Uploaded ZIP archive %s/%s (%d entries)", self.bucket, key, len(local_paths))
        return key

    def download(self, key: str):
        """Streaming body of the object; caller reads or iterates it."""
        obj = self._client.get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]

    def iter_download(self, key: str, chunk_size: int = 64 * 1024):
        """Fetch eagerly (so a missing key fails here), then stream in chunks."""
        body = self.download(key)
        return self._iter_body(body, chunk_size)

    @staticmethod
    def _iter_body(body, chunk_size: int):
        try:
            yield from body.iter_chunks(chunk_size=chunk_size)
        finally:
            body.close()

    def download_to(self, key: str, local_path) -> Path:
        local_path = Path(local_path)
        self._client.download_file(self.bucket, key, str(local_path))
        return local_path

    def presigned_url(self, key: str, ttl_seconds: int = 86400) -> str:
        """Presigned GET URL, valid for `ttl_seconds`."""
        return self._presign_client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds,
            HttpMethod="GET",
        )

    def list_objects(self, prefix: str = "") -> list[dict]:
        paginator = self._client.get_paginator("list_objects_v2")
        items = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                items.append({
                    "key": obj["Key"],
                    "size": obj.get("Size", 0),
                    "lastModified": obj.get("LastModified"),
                })
        return items

    def delete(self, key: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=key)
        logger.info("Deleted %s from %s", key, self.bucket)
