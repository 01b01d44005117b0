"""
Webhook Service - Tells a job's callback URL when the job has finished.

Only terminal events are sent (job.completed, job.failed), so API clients that
pass a callback_url with their submission do not need to poll the job. Bodies
are signed with HMAC-SHA256 when WEBHOOK_SECRET is set, and delivery is
retried with exponential backoff. Delivery never affects the job itself.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.config import get_settings
from app.services.job_registry import JobRecord

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


@dataclass
class WebhookResult:
    """Result of a webhook delivery."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class WebhookPayload:
    """Body of a job webhook."""

    event: str  # job.completed, job.failed
    timestamp: str  # ISO 8601
    job_id: str
    status: str
    owner_user_id: str
    segments_completed: int
    total_segments: int
    error: Optional[str] = None

    @classmethod
    def for_job(cls, event: str, job: JobRecord) -> "WebhookPayload":
        return cls(
            event=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            job_id=job.id,
            status=job.status.value,
            owner_user_id=job.owner_id,
            segments_completed=len(job.segments),
            total_segments=job.segment_count,
            error=job.error,
        )

    def to_json(self) -> str:
        data: dict[str, Any] = {k: v for k, v in self.__dict__.items() if v is not None}
        return json.dumps(data, separators=(",", ":"), sort_keys=True)


class WebhookService:
    """Delivers job webhooks with retries."""

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
    ):
        self.timeout = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay = retry_delay_seconds
        # In-flight deliveries, referenced so they are not garbage collected
        self._pending: set[asyncio.Task] = set()
        self._secret = get_settings().webhook_secret

    def sign(self, body: str) -> Optional[str]:
        """Return "sha256=<hex>" for a body, or None without a secret."""
        if not self._secret:
            return None
        digest = hmac.new(self._secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    async def send(self, url: str, payload: WebhookPayload) -> WebhookResult:
        """
        POST a payload to a callback URL.

        Non-2xx responses and transport errors are retried up to max_retries
        attempts in total.
        """
        if not url:
            return WebhookResult(success=False, error="No callback URL provided")

        body = payload.to_json()
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Shorts-Generator/1.0",
            "X-Webhook-Event": payload.event,
            "X-Job-Id": payload.job_id,
        }
        signature = self.sign(body)
        if signature:
            headers[SIGNATURE_HEADER] = signature

        error: Optional[str] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, content=body, headers=headers)
                if response.is_success:
                    logger.info(f"Webhook {payload.event} for job {payload.job_id} delivered (attempt {attempt})")
                    return WebhookResult(success=True, status_code=response.status_code, attempts=attempt)
                error = f"HTTP {response.status_code}"
            except httpx.HTTPError as e:
                error = f"{type(e).__name__}: {e}"

            logger.warning(f"Webhook to {url} failed (attempt {attempt}/{self.max_retries}): {error}")
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))

        logger.error(f"Giving up on webhook {payload.event} for job {payload.job_id}: {error}")
        return WebhookResult(success=False, error=error, attempts=self.max_retries)

    def notify(self, url: str, payload: WebhookPayload) -> None:
        """Deliver a webhook in the background."""
        task = asyncio.create_task(self.send(url, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


_webhook_service: Optional[WebhookService] = None


def get_webhook_service() -> WebhookService:
    """Get or create the shared webhook service."""
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service
