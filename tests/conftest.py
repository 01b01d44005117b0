"""
Pytest configuration and fixtures.
"""

import asyncio
import os
import sys
from datetime import timedelta
from typing import Optional

import pytest

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.config import get_settings  # noqa: E402
from app.services.artifact_publisher import ArtifactPublisher  # noqa: E402
from app.services.credit_ledger import CreditLedger  # noqa: E402
from app.services.job_registry import JobRecord, JobRegistry, UserRecord, utcnow  # noqa: E402
from app.services.job_runner import JobRunner  # noqa: E402
from app.services.job_state import JobStatus  # noqa: E402
from app.services.s3_client import StorageError  # noqa: E402
from app.services.shorts_pipeline import ShortsPipeline  # noqa: E402
from app.services.shorts_service import ShortsService  # noqa: E402
from app.services.transcode_service import TranscodeError, TranscodeResult  # noqa: E402
from app.services.video_downloader import SourceInfo, TransientFetchError  # noqa: E402


class FakeBlobStore:
    """In-memory stand-in for S3Client."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_deletes: set[str] = set()
        self.fail_puts = False

    async def put_bytes(self, s3_key: str, data: bytes, content_type: str) -> str:
        if self.fail_puts:
            raise StorageError(f"S3 upload failed for {s3_key}")
        self.objects[s3_key] = data
        self.content_types[s3_key] = content_type
        return s3_key

    async def put_file(self, s3_key: str, local_path: str, content_type: str) -> str:
        with open(local_path, "rb") as f:
            return await self.put_bytes(s3_key, f.read(), content_type)

    async def signed_url(self, s3_key: str, expires_in: int) -> str:
        return f"https://blobs.test/{s3_key}?expires={expires_in}"

    async def delete(self, s3_key: str) -> None:
        if s3_key in self.fail_deletes:
            raise StorageError(f"S3 delete failed for {s3_key}")
        self.objects.pop(s3_key, None)


class FakeDownloader:
    """Stand-in for VideoDownloaderService; writes a placeholder file."""

    def __init__(self, duration: Optional[float] = 300.0, title: str = "Test Video"):
        self.duration = duration
        self.title = title
        self.probe_error: Optional[Exception] = None
        self.download_error: Optional[Exception] = None
        self.download_delay = 0.0
        self.active_downloads = 0
        self.max_active_downloads = 0

    async def probe(self, url: str) -> SourceInfo:
        if self.probe_error:
            raise self.probe_error
        return SourceInfo(title=self.title, duration_seconds=self.duration or 0.0)

    async def materialize(self, url: str, output_path: str) -> str:
        self.active_downloads += 1
        self.max_active_downloads = max(self.max_active_downloads, self.active_downloads)
        try:
            if self.download_delay:
                await asyncio.sleep(self.download_delay)
            if self.download_error:
                raise self.download_error
            with open(output_path, "wb") as f:
                f.write(b"source-video")
            return output_path
        finally:
            self.active_downloads -= 1

    async def get_duration(self, video_path: str) -> Optional[float]:
        return self.duration


class FakeTranscoder:
    """Stand-in for TranscodeService; can be told to fail on one segment."""

    def __init__(self, fail_at_index: Optional[int] = None):
        self.fail_at_index = fail_at_index
        self.calls: list[dict] = []

    def is_available(self) -> bool:
        return True

    async def transcode_segment(self, source_path, output_dir, index, start_time, duration, overlay_text=None):
        self.calls.append({
            "index": index,
            "start_time": start_time,
            "duration": duration,
            "overlay_text": overlay_text,
        })
        if index == self.fail_at_index:
            raise TranscodeError(f"ffmpeg failed on segment {index}")

        clip_path = os.path.join(output_dir, f"short_{index}.mp4")
        thumbnail_path = os.path.join(output_dir, f"thumb_{index}.jpg")
        with open(clip_path, "wb") as f:
            f.write(b"clip-" + str(index).encode())
        with open(thumbnail_path, "wb") as f:
            f.write(b"thumb-" + str(index).encode())

        return TranscodeResult(
            clip_path=clip_path,
            thumbnail_path=thumbnail_path,
            file_size_bytes=os.path.getsize(clip_path),
        )


@pytest.fixture(autouse=True)
def settings(tmp_path, monkeypatch):
    """Point every directory at a per-test temp dir."""
    monkeypatch.setenv("DATA_DIRECTORY", str(tmp_path / "data"))
    monkeypatch.setenv("TEMP_DIRECTORY", str(tmp_path / "work"))
    monkeypatch.setenv("LOGS_DIRECTORY", str(tmp_path / "logs"))
    monkeypatch.setenv("JWT_SECRET", "test-secret-key-that-is-at-least-32-bytes")
    monkeypatch.setenv("S3_BUCKET", "test-bucket")
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)

    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def registry(settings):
    registry = JobRegistry(settings.data_directory)
    registry.load()
    return registry


@pytest.fixture
def ledger(registry):
    return CreditLedger(registry)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def publisher(blob_store):
    return ArtifactPublisher(blob_store)


@pytest.fixture
def downloader():
    return FakeDownloader()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def webhook_service(mocker):
    """Mock webhook service; nothing is sent."""
    return mocker.MagicMock()


@pytest.fixture
def pipeline(registry, ledger, downloader, transcoder, publisher, webhook_service):
    return ShortsPipeline(
        registry=registry,
        ledger=ledger,
        downloader=downloader,
        transcoder=transcoder,
        publisher=publisher,
        webhook_service=webhook_service,
    )


@pytest.fixture
def runner(pipeline):
    return JobRunner(pipeline, max_workers=2, job_timeout_seconds=30)


@pytest.fixture
def service(registry, ledger, runner, publisher, downloader):
    return ShortsService(registry, ledger, runner, publisher, downloader)


@pytest.fixture
def create_user(registry):
    """Factory storing a user with a given balance."""

    async def _create(user_id: str = "user_1", credits: int = 100, email: Optional[str] = None) -> UserRecord:
        user = UserRecord(
            id=user_id,
            email=email or f"{user_id}@example.com",
            password_hash="not-a-real-hash",
            credits=credits,
            created_at=utcnow(),
        )
        await registry.apply(users=[user])
        return user

    return _create


@pytest.fixture
def create_job(registry):
    """Factory storing a job record directly, bypassing the ledger."""

    async def _create(
        job_id: str = "job_1",
        owner_id: str = "user_1",
        status: JobStatus = JobStatus.PENDING,
        credits_reserved: int = 25,
        age: timedelta = timedelta(0),
        **overrides,
    ) -> JobRecord:
        created_at = utcnow() - age
        fields = dict(
            id=job_id,
            owner_id=owner_id,
            source_url="https://www.youtube.com/watch?v=abc123",
            title="Test Video",
            source_duration_seconds=300.0,
            status=status,
            segment_count=5,
            segment_duration_seconds=30.0,
            credits_reserved=credits_reserved,
            created_at=created_at,
            expires_at=created_at + timedelta(days=7),
        )
        fields.update(overrides)
        job = JobRecord(**fields)
        await registry.apply(jobs=[job])
        return job

    return _create
