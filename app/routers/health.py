"""
Health check endpoints for the shorts service.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from app.config import get_settings
from app.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="ok",
        service=get_settings().app_name,
        version="1.0.0",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Returns whether the job runner is started and ffmpeg is installed.
    """
    runner = getattr(request.app.state, "job_runner", None)
    transcoder = getattr(request.app.state, "transcoder", None)

    workers_running = runner is not None and runner.is_running
    ffmpeg_ready = transcoder is not None and transcoder.is_available()

    return ReadinessResponse(
        ready=workers_running and ffmpeg_ready,
        workers_running=workers_running,
        backlog_size=runner.backlog_size if runner else 0,
        ffmpeg="available" if ffmpeg_ready else "missing",
    )
