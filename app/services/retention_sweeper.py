"""
Retention Sweeper - Deletes finished jobs and their artifacts once their
retention period has run out.

A job's expires_at is the single reference: it is set to completion (or
failure) time plus the retention period when the job reaches a terminal state.
Failed jobs are only swept once their credits have been refunded.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.config import get_settings
from app.services.artifact_publisher import ArtifactPublisher
from app.services.job_registry import JobRecord, JobRegistry, RegistryError, utcnow
from app.services.job_state import JobStatus
from app.services.s3_client import StorageError

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep."""

    jobs_deleted: list[str] = field(default_factory=list)
    blobs_deleted: int = 0
    orphaned_keys: list[str] = field(default_factory=list)
    jobs_kept: list[str] = field(default_factory=list)


class RetentionSweeper:
    """Removes expired terminal jobs from the blob store and the registry."""

    def __init__(self, registry: JobRegistry, publisher: ArtifactPublisher):
        self.settings = get_settings()
        self.registry = registry
        self.publisher = publisher

    def is_expired(self, job: JobRecord, now: datetime) -> bool:
        if job.status == JobStatus.COMPLETED:
            return now >= job.expires_at
        if job.status == JobStatus.FAILED:
            return job.refunded and now >= job.expires_at
        return False

    def keys_for(self, job: JobRecord) -> list[str]:
        """
        Blob keys to delete for a job.

        A failed job may have uploaded a clip without recording it, so every
        key its segment count allows is included.
        """
        keys = []
        for segment in job.segments:
            keys.extend((segment.storage_key, segment.thumbnail_key))
        if job.status == JobStatus.FAILED:
            keys.extend(self.publisher.job_keys(job.owner_id, job.id, job.segment_count))
        return list(dict.fromkeys(keys))

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Delete every terminal job whose retention period has passed.

        A blob that cannot be deleted is logged and reported as orphaned; the
        job record is deleted regardless. A record that cannot be deleted is
        logged and left for the next sweep.
        """
        now = now or utcnow()
        report = SweepReport()

        expired = [
            j for j in self.registry.list_jobs(statuses=[JobStatus.COMPLETED, JobStatus.FAILED])
            if self.is_expired(j, now)
        ]
        if not expired:
            logger.debug("Retention sweep: nothing to delete")
            return report

        for job in expired:
            for key in self.keys_for(job):
                try:
                    await self.publisher.delete(key)
                    report.blobs_deleted += 1
                except StorageError as e:
                    logger.error(f"Failed to delete {key} for job {job.id}: {e}")
                    report.orphaned_keys.append(key)

            try:
                await self.registry.delete_job(job.id)
            except RegistryError as e:
                logger.error(f"Failed to delete record of job {job.id}: {e}")
                report.jobs_kept.append(job.id)
                continue

            report.jobs_deleted.append(job.id)
            logger.info(f"Deleted expired {job.status.value} job {job.id} ({len(job.segments)} shorts)")

        logger.info(
            f"Retention sweep: {len(report.jobs_deleted)} jobs, {report.blobs_deleted} blobs deleted, "
            f"{len(report.orphaned_keys)} orphaned, {len(report.jobs_kept)} records kept"
        )
        return report

    async def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        """Sweep on a fixed interval until cancelled."""
        interval = interval_seconds or self.settings.retention_sweep_interval_seconds
        logger.info(f"Retention sweeper started (every {interval}s, retention {self.settings.retention_days} days)")

        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.exception(f"Retention sweep failed: {e}")
            await asyncio.sleep(interval)
