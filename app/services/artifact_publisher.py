"""
Artifact Publisher - Uploads shorts and thumbnails under owner/job scoped keys
and issues time-limited read URLs for them.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Union

from app.config import get_settings
from app.services.s3_client import S3Client, StorageError

logger = logging.getLogger(__name__)


def clip_name(index: int) -> str:
    return f"short_{index}.mp4"


def thumbnail_name(index: int) -> str:
    return f"thumb_{index}.jpg"


@dataclass
class UploadResult:
    """Result of a publish operation."""

    key: str
    file_size_bytes: int
    content_type: str


class ArtifactPublisher:
    """
    Publishes job artifacts to the blob store.

    Key scheme: {prefix}/{owner_id}/{job_id}/{artifact_name}. Owner and job ids
    are both part of the key so artifacts never collide across jobs or owners.

    Read URLs are issued on demand and never cached; access lapses when the
    TTL runs out.
    """

    def __init__(self, blob_store: Optional[S3Client] = None):
        self.settings = get_settings()
        self.blob_store = blob_store or S3Client()

    @property
    def download_url_ttl(self) -> int:
        """Short tier, for direct download links."""
        return self.settings.download_url_ttl_seconds

    @property
    def preview_url_ttl(self) -> int:
        """Long tier, for preview and share links."""
        return self.settings.preview_url_ttl_seconds

    def build_key(self, owner_id: str, job_id: str, artifact_name: str) -> str:
        """Build the storage key for an artifact."""
        for label, part in (("owner_id", owner_id), ("job_id", job_id), ("artifact_name", artifact_name)):
            if not part or "/" in part or part in (".", ".."):
                raise ValueError(f"Invalid {label} for storage key: {part!r}")

        key = f"{owner_id}/{job_id}/{artifact_name}"
        prefix = self.settings.s3_key_prefix.strip("/")
        return f"{prefix}/{key}" if prefix else key

    def job_keys(self, owner_id: str, job_id: str, segment_count: int) -> list[str]:
        """Every key a job with `segment_count` shorts can have published."""
        keys = []
        for index in range(1, segment_count + 1):
            keys.append(self.build_key(owner_id, job_id, clip_name(index)))
            keys.append(self.build_key(owner_id, job_id, thumbnail_name(index)))
        return keys

    async def publish(
        self,
        owner_id: str,
        job_id: str,
        artifact_name: str,
        data: Union[bytes, str],
        content_type: str,
    ) -> UploadResult:
        """
        Upload an artifact.

        Args:
            owner_id: Job owner
            job_id: Job identifier
            artifact_name: File name within the job namespace (e.g. short_1.mp4)
            data: Raw bytes, or a path to a local file
            content_type: MIME type

        Returns:
            UploadResult with the storage key

        Raises:
            StorageError: If the upload fails
        """
        key = self.build_key(owner_id, job_id, artifact_name)

        if isinstance(data, bytes):
            await self.blob_store.put_bytes(key, data, content_type)
            size = len(data)
        else:
            if not os.path.isfile(data):
                raise StorageError(f"File not found: {data}")
            size = os.path.getsize(data)
            await self.blob_store.put_file(key, data, content_type)

        logger.info(f"Published {artifact_name} for job {job_id} ({size / 1024 / 1024:.1f} MB)")

        return UploadResult(key=key, file_size_bytes=size, content_type=content_type)

    async def issue_read_url(self, key: str, ttl_seconds: int) -> str:
        """Issue a fresh signed read URL for a stored artifact."""
        return await self.blob_store.signed_url(key, ttl_seconds)

    async def delete(self, key: str) -> None:
        """
        Delete a stored artifact.

        Raises:
            StorageError: If the delete fails
        """
        await self.blob_store.delete(key)
