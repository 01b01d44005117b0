"""
Response schemas for the shorts API.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(..., description="Server time (UTC)")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service can accept jobs")
    workers_running: bool = Field(..., description="Whether the job runner is started")
    backlog_size: int = Field(..., description="Jobs waiting for a free worker")
    ffmpeg: str = Field(..., description="ffmpeg availability: available or missing")


class UserResponse(BaseModel):
    id: str
    email: str
    credits: int


class AuthResponse(BaseModel):
    """Response for register and login."""

    token: str = Field(..., description="Bearer token, valid for 7 days")
    user: UserResponse


class PreviewResponse(BaseModel):
    """Cost estimate for a video. Nothing is reserved."""

    video_title: str
    video_duration_seconds: float
    segment_count: int
    segment_duration_seconds: float
    credits_per_segment: int
    total_cost: int
    user_credits: int
    can_afford: bool


class JobSubmitResponse(BaseModel):
    """Response after submitting a job."""

    job_id: str
    status: str
    credits_used: int
    remaining_credits: int
    message: str


class SegmentResponse(BaseModel):
    """A published short."""

    index: int
    start_time: float
    duration: float
    size_bytes: int
    overlay_text: Optional[str] = None
    preview_url: Optional[str] = None
    download_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    share_urls: Dict[str, str] = Field(default_factory=dict)


class JobSummaryResponse(BaseModel):
    """A job as listed for its owner."""

    job_id: str
    status: str
    source_url: str
    video_title: str
    video_duration_seconds: float
    segment_count: int
    segment_duration_seconds: float
    segments_completed: int
    credits_used: int
    refunded: bool
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    expires_at: datetime


class JobDetailResponse(JobSummaryResponse):
    """A job with its shorts and freshly issued URLs."""

    segments: List[SegmentResponse] = Field(default_factory=list)
    expires_in_days: int = Field(..., description="Whole days until the shorts are deleted")
    run_state: Optional[str] = Field(
        default=None, description="queued, running or done, for jobs this process has seen"
    )


class JobListResponse(BaseModel):
    jobs: List[JobSummaryResponse]
