"""
Request schemas for the shorts API.
"""

from typing import Optional

from pydantic import BaseModel, Field


class CredentialsRequest(BaseModel):
    """Request body for /api/register and /api/login."""

    email: str = Field(..., min_length=3, max_length=254, description="Account email")
    password: str = Field(..., min_length=1, max_length=256, description="Account password")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "creator@example.com",
                "password": "correct horse battery staple",
            }
        }


class ShortsRequest(BaseModel):
    """Request body for /api/preview and /api/jobs."""

    youtube_url: str = Field(..., description="YouTube video URL")
    segment_count: Optional[int] = Field(
        default=None,
        ge=1,
        description="Number of shorts to cut (defaults to 5)",
    )
    segment_duration_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        le=120,
        description="Duration of each short in seconds (defaults to 30). Pricing: up to 30s = 5 credits, "
        "up to 60s = 8 credits, up to 120s = 12 credits per short.",
    )
    callback_url: Optional[str] = Field(
        default=None,
        description="Optional URL that receives a webhook when the job completes or fails (ignored by /api/preview)",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "youtube_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                "segment_count": 5,
                "segment_duration_seconds": 30,
            }
        }
