from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import Settings
from .imageuploader import ImageUploader, ImageUploadError

logger = logging.getLogger(__name__)


class S3ImageUploader(ImageUploader):
    """Uploads to an S3-compatible bucket (AWS S3, Cloudflare R2, MinIO, GCS interop)."""

    def __init__(self, settings: Settings, client: Optional[Any] = None) -> None:
        if not settings.s3_bucket:
            raise ValueError("s3_bucket must be configured for the s3 upload provider")
        self.bucket = settings.s3_bucket
        self.public_base_url = (
            settings.upload_public_base_url or f"https://{self.bucket}.s3.amazonaws.com"
        ).rstrip("/")

        if client is None:
            secret = settings.s3_secret_access_key
            timeout = settings.http_timeout_seconds
            client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                region_name=settings.s3_region,
                aws_access_key_id=settings.s3_access_key_id,
                aws_secret_access_key=secret.get_secret_value() if secret else None,
                config=Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1}),
            )
        self._client = client

    def upload(self, data: bytes, name: str) -> str:
        try:
            self._client.put_object(Bucket=self.bucket, Key=name, Body=data, ContentType="image/jpeg")
        except (BotoCoreError, ClientError) as e:
            raise ImageUploadError(f"S3 upload of {name} failed: {e}") from e
        logger.debug("Uploaded %s bytes to s3://%s/%s", len(data), self.bucket, name)
        return f"{self.public_base_url}/{name}"

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
