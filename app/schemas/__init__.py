"""
Pydantic schemas for request/response models.
"""

from app.schemas.requests import CredentialsRequest, ShortsRequest
from app.schemas.responses import (
    AuthResponse,
    HealthResponse,
    JobDetailResponse,
    JobListResponse,
    JobSubmitResponse,
    JobSummaryResponse,
    PreviewResponse,
    ReadinessResponse,
    SegmentResponse,
    UserResponse,
)

__all__ = [
    "CredentialsRequest",
    "ShortsRequest",
    "AuthResponse",
    "HealthResponse",
    "JobDetailResponse",
    "JobListResponse",
    "JobSubmitResponse",
    "JobSummaryResponse",
    "PreviewResponse",
    "ReadinessResponse",
    "SegmentResponse",
    "UserResponse",
]
