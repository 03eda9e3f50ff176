"""Object storage for rendered report artifacts.

boto3 is synchronous, so every call runs in a worker thread.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from io import BytesIO

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from visibility_report.core.config import Settings
from visibility_report.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class ObjectStorage(ABC):
    @abstractmethod
    async def upload(self, key: str, content: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def get_url(self, key: str) -> str:
        """A URL the report owner can open in a browser."""


class S3ObjectStorage(ObjectStorage):
    """S3 (or any S3-compatible service) behind ``ObjectStorage``.

    URLs are built from ``public_base_url`` when one is configured, otherwise
    they are presigned GET URLs valid for ``presigned_expiry`` seconds.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str = "",
        secret_key: str = "",
        region: str = "us-east-1",
        public_base_url: str = "",
        presigned_expiry: int = 60 * 60 * 24 * 7,
        timeout: float = 30.0,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.public_base_url = public_base_url.rstrip("/")
        self.presigned_expiry = presigned_expiry
        self.timeout = timeout
        self._client = None

    @classmethod
    def from_settings(cls, s: Settings) -> "S3ObjectStorage":
        return cls(
            bucket=s.s3_bucket,
            endpoint_url=s.s3_endpoint_url,
            access_key=s.s3_access_key,
            secret_key=s.s3_secret_key,
            region=s.s3_region,
            public_base_url=s.s3_public_base_url,
            presigned_expiry=s.s3_presigned_expiry_seconds,
        )

    def _get_client(self):
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.region,
                "config": BotoConfig(
                    connect_timeout=self.timeout,
                    read_timeout=self.timeout,
                    retries={"max_attempts": 0},  # the pipeline retries uploads itself
                ),
            }
            if self.access_key and self.secret_key:
                client_kwargs["aws_access_key_id"] = self.access_key
                client_kwargs["aws_secret_access_key"] = self.secret_key
            if self.endpoint_url:
                client_kwargs["endpoint_url"] = self.endpoint_url
            self._client = boto3.client(**client_kwargs)
        return self._client

    def _upload_sync(self, key: str, content: bytes, content_type: str) -> None:
        self._get_client().upload_fileobj(
            BytesIO(content),
            self.bucket,
            key,
            ExtraArgs={"ContentType": content_type, "CacheControl": "max-age=31536000"},
        )

    async def upload(self, key: str, content: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(self._upload_sync, key, content, content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 upload failed for key=%s: %s", key, e)
            raise StorageError(f"Failed to upload report: {e}", key=key) from e
        logger.info("Uploaded %d bytes to s3://%s/%s", len(content), self.bucket, key)

    async def get_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        try:
            return await asyncio.to_thread(
                self._get_client().generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.presigned_expiry,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to create report URL: {e}", key=key) from e
