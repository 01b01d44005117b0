"""
Shorts API Router - Pricing previews, job submission and job status.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.auth import AuthError, get_current_user_id
from app.schemas.requests import ShortsRequest
from app.schemas.responses import (
    JobDetailResponse,
    JobListResponse,
    JobSubmitResponse,
    JobSummaryResponse,
    PreviewResponse,
    SegmentResponse,
)
from app.services.credit_ledger import InsufficientCreditError
from app.services.job_registry import JobRecord
from app.services.shorts_service import (
    JobNotFoundError,
    SegmentConfig,
    ShortsService,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Shorts"])


def _get_service(request: Request) -> ShortsService:
    return request.app.state.shorts_service


def _resolve_config(service: ShortsService, body: ShortsRequest) -> SegmentConfig:
    try:
        return service.resolve_config(body.segment_count, body.segment_duration_seconds)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _job_summary(job: JobRecord) -> dict:
    return {
        "job_id": job.id,
        "status": job.status.value,
        "source_url": job.source_url,
        "video_title": job.title,
        "video_duration_seconds": job.source_duration_seconds,
        "segment_count": job.segment_count,
        "segment_duration_seconds": job.segment_duration_seconds,
        "segments_completed": len(job.segments),
        "credits_used": job.credits_reserved,
        "refunded": job.refunded,
        "error": job.error,
        "created_at": job.created_at,
        "completed_at": job.completed_at,
        "expires_at": job.expires_at,
    }


@router.post("/preview", response_model=PreviewResponse)
async def preview(
    body: ShortsRequest,
    request: Request,
    owner_id: str = Depends(get_current_user_id),
):
    """
    Estimate what a job would cost.

    Nothing is reserved. If the video metadata can't be read, a generic title
    and a 300s duration are assumed.
    """
    service = _get_service(request)
    config = _resolve_config(service, body)

    try:
        result = await service.preview(owner_id, body.youtube_url, config)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    return PreviewResponse(
        video_title=result.title,
        video_duration_seconds=result.duration_seconds,
        segment_count=result.segment_count,
        segment_duration_seconds=result.segment_duration_seconds,
        credits_per_segment=result.unit_price,
        total_cost=result.total_cost,
        user_credits=result.user_credits,
        can_afford=result.affordable,
    )


@router.post("/jobs", response_model=JobSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    body: ShortsRequest,
    request: Request,
    owner_id: str = Depends(get_current_user_id),
):
    """
    Submit a shorts job.

    Credits are reserved immediately and returned if the job fails. The job
    runs in the background; poll `GET /api/jobs/{job_id}` for results.
    """
    service = _get_service(request)
    config = _resolve_config(service, body)

    try:
        job = await service.submit(owner_id, body.youtube_url, config, callback_url=body.callback_url)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InsufficientCreditError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    remaining = service.ledger.balance(owner_id)
    return JobSubmitResponse(
        job_id=job.id,
        status=job.status.value,
        credits_used=job.credits_reserved,
        remaining_credits=remaining,
        message=f"Processing of {job.segment_count} shorts started",
    )


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    request: Request,
    owner_id: str = Depends(get_current_user_id),
):
    """List the caller's 20 most recent jobs, newest first."""
    service = _get_service(request)
    jobs = service.list_jobs(owner_id)
    return JobListResponse(jobs=[JobSummaryResponse(**_job_summary(job)) for job in jobs])


@router.get("/jobs/{job_id}", response_model=JobDetailResponse)
async def get_job(
    job_id: str,
    request: Request,
    owner_id: str = Depends(get_current_user_id),
):
    """
    Get a job and its shorts.

    For completed jobs every short gets a preview URL (valid 7 days), a
    download URL (valid 24 hours), a thumbnail URL and TikTok/Instagram share
    links. URLs are issued fresh on every call.
    """
    service = _get_service(request)
    try:
        view = await service.get_job(job_id, owner_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job not found: {job_id}")

    return JobDetailResponse(
        **_job_summary(view.job),
        segments=[
            SegmentResponse(
                index=s.index,
                start_time=s.start_time,
                duration=s.duration,
                size_bytes=s.size_bytes,
                overlay_text=s.overlay_text,
                preview_url=s.preview_url,
                download_url=s.download_url,
                thumbnail_url=s.thumbnail_url,
                share_urls=s.share_urls,
            )
            for s in view.segments
        ],
        expires_in_days=view.expires_in_days,
        run_state=service.runner.status(job_id),
    )
