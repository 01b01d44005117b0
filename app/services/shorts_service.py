"""
Shorts Service - Entry points behind the HTTP API.

Accounts (register/login), pricing previews, job submission and job views
with freshly signed URLs.
"""

import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import quote

from app.auth import AuthError, hash_password, issue_token, verify_password
from app.config import get_duration_tier, get_settings
from app.services.artifact_publisher import ArtifactPublisher
from app.services.credit_ledger import CreditLedger
from app.services.job_registry import JobRecord, JobRegistry, SegmentRecord, UserRecord, utcnow
from app.services.job_runner import JobRunner
from app.services.job_state import JobStatus
from app.services.s3_client import StorageError
from app.services.video_downloader import (
    SourceInfo,
    TransientFetchError,
    VideoDownloaderService,
    is_youtube_url,
)

logger = logging.getLogger(__name__)


@dataclass
class SegmentConfig:
    """How many shorts to cut and how long each one is."""

    count: int
    duration_seconds: float


@dataclass
class PreviewResult:
    """Cost estimate for a source video. Nothing is reserved."""

    title: str
    duration_seconds: float
    segment_count: int
    segment_duration_seconds: float
    unit_price: int
    total_cost: int
    user_credits: int
    affordable: bool


@dataclass
class SegmentView:
    """A published short with read URLs issued for this request."""

    index: int
    start_time: float
    duration: float
    size_bytes: int
    overlay_text: Optional[str] = None
    preview_url: Optional[str] = None
    download_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    share_urls: dict[str, str] = field(default_factory=dict)


@dataclass
class JobView:
    """A job as its owner sees it."""

    job: JobRecord
    segments: list[SegmentView]
    expires_in_days: int


def share_links(download_url: str) -> dict[str, str]:
    """App deep links that hand a download URL to TikTok and Instagram."""
    encoded = quote(download_url, safe="")
    return {
        "tiktok": f"tiktok://upload?video_url={encoded}",
        "instagram": f"instagram://library?AssetPath={encoded}",
    }


def days_remaining(expires_at: datetime, now: datetime) -> int:
    """Whole days until expiry, rounded up; never negative."""
    remaining = (expires_at - now).total_seconds() / 86400
    return max(0, math.ceil(remaining))


class ShortsService:
    """Coordinates accounts, credits and jobs for the API layer."""

    def __init__(
        self,
        registry: JobRegistry,
        ledger: CreditLedger,
        runner: JobRunner,
        publisher: ArtifactPublisher,
        downloader: Optional[VideoDownloaderService] = None,
    ):
        self.settings = get_settings()
        self.registry = registry
        self.ledger = ledger
        self.runner = runner
        self.publisher = publisher
        self.downloader = downloader or VideoDownloaderService()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str) -> tuple[UserRecord, str]:
        """
        Create an account with the signup credit grant.

        Returns:
            The new user and a bearer token

        Raises:
            ValidationError: If the email or password is unusable
            UserExistsError: If the email is already registered
        """
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email is required")
        if not password:
            raise ValidationError("Password is required")

        async with self.registry.owner_lock(f"email:{email}"):
            if self.registry.find_user_by_email(email) is not None:
                raise UserExistsError("Email already registered")

            user = UserRecord(
                id=f"user_{uuid.uuid4().hex[:16]}",
                email=email,
                password_hash=hash_password(password),
                credits=self.settings.signup_credits,
                created_at=utcnow(),
            )
            await self.registry.apply(users=[user])

        logger.info(f"Registered user {user.id} with {user.credits} credits")
        return user, issue_token(user.id)

    def login(self, email: str, password: str) -> tuple[UserRecord, str]:
        """
        Check credentials.

        Raises:
            AuthError: If the email is unknown or the password is wrong
        """
        user = self.registry.find_user_by_email(email or "")
        if user is None or not verify_password(user.password_hash, password or ""):
            raise AuthError("Invalid credentials")
        return user, issue_token(user.id)

    def get_user(self, owner_id: str) -> UserRecord:
        user = self.registry.get_user(owner_id)
        if user is None:
            raise AuthError("User not found")
        return user

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def resolve_config(
        self,
        segment_count: Optional[int] = None,
        segment_duration_seconds: Optional[float] = None,
    ) -> SegmentConfig:
        """
        Fill in defaults and validate a segment configuration.

        Raises:
            ValidationError: If the count or duration is out of range
        """
        count = self.settings.default_segment_count if segment_count is None else segment_count
        duration = (
            self.settings.default_segment_duration_seconds
            if segment_duration_seconds is None
            else segment_duration_seconds
        )

        if not 1 <= count <= self.settings.max_segment_count:
            raise ValidationError(
                f"Segment count must be between 1 and {self.settings.max_segment_count}, got {count}"
            )
        try:
            get_duration_tier(duration)
        except ValueError as e:
            raise ValidationError(str(e))

        return SegmentConfig(count=count, duration_seconds=float(duration))

    def quote_cost(self, config: SegmentConfig) -> tuple[int, int]:
        """Return (unit price, total cost) for a configuration."""
        unit_price = self.settings.get_credits_per_segment(config.duration_seconds)
        return unit_price, unit_price * config.count

    async def _probe_with_fallback(self, source_url: str) -> SourceInfo:
        try:
            info = await self.downloader.probe(source_url)
        except TransientFetchError as e:
            logger.warning(f"Probe failed for {source_url}, using fallback metadata: {e}")
            info = SourceInfo(
                title=self.settings.fallback_video_title,
                duration_seconds=self.settings.fallback_video_duration_seconds,
            )

        if not info.duration_seconds or info.duration_seconds <= 0:
            info.duration_seconds = self.settings.fallback_video_duration_seconds
        if info.duration_seconds > self.settings.max_download_duration_seconds:
            raise ValidationError(
                f"Video is too long ({info.duration_seconds:.0f}s, "
                f"max {self.settings.max_download_duration_seconds}s)"
            )
        return info

    def _validate_url(self, source_url: str) -> str:
        source_url = (source_url or "").strip()
        if not is_youtube_url(source_url):
            raise ValidationError("Invalid YouTube URL")
        return source_url

    async def preview(self, owner_id: str, source_url: str, config: SegmentConfig) -> PreviewResult:
        """Estimate the cost of a job without reserving anything."""
        source_url = self._validate_url(source_url)
        user = self.get_user(owner_id)
        info = await self._probe_with_fallback(source_url)
        unit_price, total_cost = self.quote_cost(config)

        return PreviewResult(
            title=info.title,
            duration_seconds=info.duration_seconds,
            segment_count=config.count,
            segment_duration_seconds=config.duration_seconds,
            unit_price=unit_price,
            total_cost=total_cost,
            user_credits=user.credits,
            affordable=user.credits >= total_cost,
        )

    async def submit(
        self,
        owner_id: str,
        source_url: str,
        config: SegmentConfig,
        callback_url: Optional[str] = None,
    ) -> JobRecord:
        """
        Reserve credits, create a pending job and queue it.

        Raises:
            ValidationError: If the URL is not a YouTube URL
            InsufficientCreditError: If the user cannot afford the job
        """
        source_url = self._validate_url(source_url)
        self.get_user(owner_id)
        info = await self._probe_with_fallback(source_url)
        _, total_cost = self.quote_cost(config)

        now = utcnow()
        job = JobRecord(
            id=f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}",
            owner_id=owner_id,
            source_url=source_url,
            title=info.title,
            source_duration_seconds=info.duration_seconds,
            status=JobStatus.PENDING,
            segment_count=config.count,
            segment_duration_seconds=config.duration_seconds,
            credits_reserved=total_cost,
            created_at=now,
            expires_at=now + timedelta(days=self.settings.retention_days),
            callback_url=callback_url,
        )

        job = await self.ledger.debit_and_create(owner_id, job)
        self.runner.submit(job.id)

        logger.info(f"Job {job.id} submitted by {owner_id}: {config.count} x {config.duration_seconds}s")
        return job

    async def get_job(self, job_id: str, owner_id: str) -> JobView:
        """
        Get a job with read URLs for its shorts.

        Raises:
            JobNotFoundError: If the job does not exist or belongs to someone else
        """
        job = self.registry.get_job(job_id)
        if job is None or job.owner_id != owner_id:
            raise JobNotFoundError(f"Job not found: {job_id}")

        segments = []
        for segment in job.segments:
            view = SegmentView(
                index=segment.index,
                start_time=segment.start_time,
                duration=segment.duration,
                size_bytes=segment.size_bytes,
                overlay_text=segment.overlay_text,
            )
            if job.status == JobStatus.COMPLETED:
                await self._attach_urls(view, segment)
            segments.append(view)

        return JobView(job=job, segments=segments, expires_in_days=days_remaining(job.expires_at, utcnow()))

    async def _attach_urls(self, view: SegmentView, segment: SegmentRecord) -> None:
        try:
            view.preview_url = await self.publisher.issue_read_url(
                segment.storage_key, self.publisher.preview_url_ttl
            )
            view.download_url = await self.publisher.issue_read_url(
                segment.storage_key, self.publisher.download_url_ttl
            )
            view.thumbnail_url = await self.publisher.issue_read_url(
                segment.thumbnail_key, self.publisher.preview_url_ttl
            )
        except StorageError as e:
            logger.warning(f"Could not sign URLs for {segment.storage_key}: {e}")
            return

        view.share_urls = share_links(view.download_url)

    def list_jobs(self, owner_id: str, limit: Optional[int] = None) -> list[JobRecord]:
        """The owner's most recent jobs, newest first."""
        limit = limit or self.settings.list_jobs_limit
        return self.registry.list_jobs(owner_id=owner_id)[:limit]


class ValidationError(Exception):
    """Exception raised when a request is malformed."""
    pass


class JobNotFoundError(Exception):
    """Exception raised when a job does not exist for the caller."""
    pass


class UserExistsError(Exception):
    """Exception raised when registering an email that is already taken."""
    pass
