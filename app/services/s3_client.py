"""
S3 client service - blob store for rendered shorts and thumbnails.

Works against AWS S3 or any S3-compatible store (Cloudflare R2, MinIO) when an
endpoint URL is configured.
"""

import asyncio
import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import get_settings

logger = logging.getLogger(__name__)


class S3Client:
    """
    Service for interacting with S3-compatible object storage.

    All blocking boto3 calls are pushed to the default thread pool so the
    event loop stays responsive while clips upload.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ):
        """
        Initialize S3 client.

        Args:
            bucket: S3 bucket name (defaults to settings)
            region: AWS region (defaults to settings)
            endpoint_url: Custom endpoint for S3-compatible stores (defaults to settings)
            access_key_id: AWS access key (defaults to settings/env)
            secret_access_key: AWS secret key (defaults to settings/env)
        """
        self.settings = get_settings()

        self.bucket = bucket or self.settings.s3_bucket
        self.region = region or self.settings.aws_region
        self.endpoint_url = endpoint_url or self.settings.s3_endpoint_url
        self._access_key_id = access_key_id or self.settings.aws_access_key_id
        self._secret_access_key = secret_access_key or self.settings.aws_secret_access_key
        self._client = None

    @property
    def client(self):
        """Lazy-initialize the boto3 client."""
        if self._client is None:
            client_kwargs = {"region_name": self.region}

            if self.endpoint_url:
                client_kwargs["endpoint_url"] = self.endpoint_url
                # R2 and MinIO need path-style addressing
                client_kwargs["config"] = Config(s3={"addressing_style": "path"}, signature_version="s3v4")

            if self._access_key_id and self._secret_access_key:
                client_kwargs["aws_access_key_id"] = self._access_key_id
                client_kwargs["aws_secret_access_key"] = self._secret_access_key

            self._client = boto3.client("s3", **client_kwargs)
            logger.info(f"S3 client initialized for bucket: {self.bucket}")

        return self._client

    async def put_bytes(self, s3_key: str, data: bytes, content_type: str) -> str:
        """
        Upload an in-memory payload.

        Args:
            s3_key: Destination key
            data: Object body
            content_type: MIME type stored with the object

        Returns:
            The key that was written

        Raises:
            StorageError: If the upload fails
        """
        logger.info(f"Uploading {len(data)} bytes to s3://{self.bucket}/{s3_key}")

        await self._call(
            "put",
            s3_key,
            lambda: self.client.put_object(
                Bucket=self.bucket,
                Key=s3_key,
                Body=data,
                ContentType=content_type,
            ),
        )
        return s3_key

    async def put_file(self, s3_key: str, local_path: str, content_type: str) -> str:
        """
        Upload a local file (multipart for large files).

        Raises:
            StorageError: If the upload fails
        """
        logger.info(f"Uploading {local_path} to s3://{self.bucket}/{s3_key}")

        await self._call(
            "put",
            s3_key,
            lambda: self.client.upload_file(
                local_path,
                self.bucket,
                s3_key,
                ExtraArgs={"ContentType": content_type},
            ),
        )
        return s3_key

    async def signed_url(self, s3_key: str, expires_in: int) -> str:
        """
        Generate a presigned GET URL for an object.

        Args:
            s3_key: Object key
            expires_in: URL validity in seconds

        Returns:
            Presigned URL

        Raises:
            StorageError: If signing fails
        """
        return await self._call(
            "sign",
            s3_key,
            lambda: self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": s3_key},
                ExpiresIn=expires_in,
            ),
        )

    async def delete(self, s3_key: str) -> None:
        """
        Delete an object.

        Raises:
            StorageError: If the delete fails
        """
        logger.info(f"Deleting s3://{self.bucket}/{s3_key}")
        await self._call(
            "delete",
            s3_key,
            lambda: self.client.delete_object(Bucket=self.bucket, Key=s3_key),
        )

    async def _call(self, operation: str, s3_key: str, fn):
        """Run a blocking boto3 call in the thread pool, mapping errors to StorageError."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 {operation} failed for {s3_key}: {e}")
            raise StorageError(f"S3 {operation} failed for {s3_key}: {e}") from e


class StorageError(Exception):
    """Exception raised when a blob store operation fails."""
    pass
