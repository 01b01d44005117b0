"""
FastAPI application entry point for the Shorts Generator.

Turns a YouTube video into a set of vertical shorts:
1. Accounts with prepaid credits (bearer token auth)
2. Cost previews and job submission
3. Background download, rendering and upload of the shorts
4. Signed preview/download links, deleted again after 7 days
"""

import asyncio
import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_available_tiers, get_settings
from app.routers import accounts, health, shorts
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
from app.services.webhook_service import get_webhook_service

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_services() -> dict:
    """Create the service graph. Nothing is started here."""
    settings = get_settings()

    registry = JobRegistry(settings.data_directory)
    registry.load()

    publisher = ArtifactPublisher(S3Client())
    downloader = VideoDownloaderService()
    transcoder = TranscodeService()
    ledger = CreditLedger(registry)

    pipeline = ShortsPipeline(
        registry=registry,
        ledger=ledger,
        downloader=downloader,
        transcoder=transcoder,
        publisher=publisher,
        webhook_service=get_webhook_service(),
    )
    runner = JobRunner(pipeline, settings.max_workers, settings.job_timeout_seconds)

    return {
        "registry": registry,
        "publisher": publisher,
        "transcoder": transcoder,
        "job_runner": runner,
        "retention_sweeper": RetentionSweeper(registry, publisher),
        "shorts_service": ShortsService(registry, ledger, runner, publisher, downloader),
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Recovers interrupted jobs, starts the workers and the retention sweeper.
    """
    settings = get_settings()
    logger.info("Starting Shorts Generator...")

    os.makedirs(settings.temp_directory, exist_ok=True)
    logger.info(f"Temp directory: {settings.temp_directory}")

    services = build_services()
    for name, service in services.items():
        setattr(app.state, name, service)

    _verify_external_tools()

    runner: JobRunner = services["job_runner"]
    await runner.recover_incomplete_jobs()
    await runner.start()
    logger.info(f"Max concurrent jobs: {runner.max_workers}")

    sweeper: RetentionSweeper = services["retention_sweeper"]
    sweeper_task = asyncio.create_task(sweeper.run_forever(), name="retention-sweeper")

    logger.info("Shorts Generator ready to accept requests.")

    yield

    logger.info("Shutting down Shorts Generator...")
    sweeper_task.cancel()
    await asyncio.gather(sweeper_task, return_exceptions=True)
    await runner.stop()

    # Clean up temp directory
    if os.path.isdir(settings.temp_directory):
        try:
            shutil.rmtree(settings.temp_directory)
        except OSError as e:
            logger.warning(f"Failed to clean up temp directory: {e}")

    logger.info("Shutdown complete")


def _verify_external_tools():
    """Verify that required external tools are available."""
    tools = {
        "ffmpeg": "FFmpeg for video rendering",
        "ffprobe": "FFprobe for video analysis",
    }

    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - jobs will fail")


# Create FastAPI application
app = FastAPI(
    title="Shorts Generator",
    description="""
Turn a YouTube video into vertical shorts ready for TikTok, Reels and Shorts.

## Usage

1. Create an account: `POST /api/register` (100 free credits)
2. Check the price: `POST /api/preview`
3. Submit a job: `POST /api/jobs`
4. Poll status: `GET /api/jobs/{job_id}`
5. Download or share the shorts from the signed URLs in the response

Shorts are kept for 7 days.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(accounts.router)
app.include_router(shorts.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "service": get_settings().app_name,
        "version": "1.0.0",
        "status": "running",
        "pricing": get_available_tiers(),
        "docs": "/docs",
    }
