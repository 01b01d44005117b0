"""
Services for the shorts generator.

Includes:
- Source fetching and rendering (yt-dlp, FFmpeg)
- Blob storage and artifact publishing (S3-compatible)
- Job records, credits and the job lifecycle
- Background job runner and retention sweeper
"""

from app.services.artifact_publisher import ArtifactPublisher
from app.services.credit_ledger import CreditLedger
from app.services.job_registry import JobRegistry
from app.services.job_runner import JobRunner
from app.services.retention_sweeper import RetentionSweeper
from app.services.s3_client import S3Client
from app.services.shorts_pipeline import ShortsPipeline
from app.services.shorts_service import ShortsService
from app.services.transcode_service import TranscodeService
from app.services.video_downloader import VideoDownloaderService
from app.services.webhook_service import WebhookService

__all__ = [
    # Storage
    "S3Client",
    "ArtifactPublisher",
    # Records and credits
    "JobRegistry",
    "CreditLedger",
    # Processing
    "VideoDownloaderService",
    "TranscodeService",
    "ShortsPipeline",
    "JobRunner",
    "RetentionSweeper",
    "WebhookService",
    # API facade
    "ShortsService",
]
