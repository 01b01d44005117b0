"""
Shorts Pipeline - Orchestrator for turning one source video into shorts.

This service drives a single job through its lifecycle:
1. Video download (yt-dlp)
2. Duration check (ffprobe, with the probed duration as fallback)
3. Segment planning (uniform spacing)
4. Rendering of each short and its thumbnail (FFmpeg)
5. Upload of both artifacts to the blob store

Segments are recorded on the job as soon as they are published. Any failure
moves the job to failed and returns the reserved credits.
"""

import logging
import os
import shutil
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from app.config import get_settings
from app.services.artifact_publisher import ArtifactPublisher, clip_name, thumbnail_name
from app.services.credit_ledger import CreditLedger
from app.services.job_registry import JobRecord, JobRegistry, SegmentRecord, utcnow
from app.services.job_state import JobStatus, is_terminal
from app.services.segment_planner import plan_segments
from app.services.transcode_service import TranscodeService
from app.services.video_downloader import VideoDownloaderService
from app.services.webhook_service import WebhookPayload, WebhookService, get_webhook_service

logger = logging.getLogger(__name__)

SOURCE_FILENAME = "source.mp4"


def overlay_text_for(index: int) -> str:
    """Text burned into short number `index`."""
    return f"Short #{index}"


class ShortsPipeline:
    """
    Runs shorts jobs end to end.

    The pipeline never lets an error escape process_job; failures are
    recorded on the job instead.
    """

    def __init__(
        self,
        registry: JobRegistry,
        ledger: CreditLedger,
        downloader: Optional[VideoDownloaderService] = None,
        transcoder: Optional[TranscodeService] = None,
        publisher: Optional[ArtifactPublisher] = None,
        webhook_service: Optional[WebhookService] = None,
    ):
        self.settings = get_settings()
        self.registry = registry
        self.ledger = ledger
        self.downloader = downloader or VideoDownloaderService()
        self.transcoder = transcoder or TranscodeService()
        self.publisher = publisher or ArtifactPublisher()
        self.webhook_service = webhook_service or get_webhook_service()

    def work_dir_for(self, job_id: str) -> str:
        return os.path.join(self.settings.temp_directory, job_id)

    def _setup_job_logging(self, job_id: str) -> Optional[logging.FileHandler]:
        """
        Set up job-specific file logging.

        Creates a log file in the logs folder for this job. Everything logged
        under the `app` logger while the job runs is written to it.

        Returns:
            The file handler (to be removed later) or None if setup fails
        """
        try:
            logs_dir = Path(self.settings.logs_directory)
            logs_dir.mkdir(parents=True, exist_ok=True)

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_filename = logs_dir / f"job_{job_id}_{timestamp}.log"

            file_handler = logging.FileHandler(log_filename, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))

            logging.getLogger("app").addHandler(file_handler)

            logger.info(f"Job logging initialized: {log_filename}")
            return file_handler

        except OSError as e:
            logger.warning(f"Failed to setup job logging: {e}")
            return None

    def _cleanup_job_logging(self, file_handler: Optional[logging.FileHandler]) -> None:
        """Remove the job-specific file handler."""
        if file_handler is None:
            return

        logging.getLogger("app").removeHandler(file_handler)
        file_handler.close()

    async def process_job(self, job_id: str) -> Optional[JobRecord]:
        """
        Process a pending job through download, render and upload.

        Args:
            job_id: Job to process; it must be pending

        Returns:
            The final job record, or None if the job no longer exists
        """
        job = self.registry.get_job(job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found, nothing to process")
            return None
        if job.status != JobStatus.PENDING:
            logger.warning(f"Job {job_id} is {job.status.value}, not pending; skipping")
            return job

        start_time = time.time()
        work_dir = self.work_dir_for(job_id)
        job_log_handler = self._setup_job_logging(job_id)

        try:
            logger.info(f"Starting shorts job: {job_id}")
            logger.info(f"Video URL: {job.source_url}")
            logger.info(
                f"Segments: {job.segment_count} x {job.segment_duration_seconds}s, "
                f"credits reserved: {job.credits_reserved}"
            )

            # Step 1: Download video
            job = await self._set_status(job_id, JobStatus.DOWNLOADING)

            os.makedirs(work_dir, exist_ok=True)
            source_path = await self.downloader.materialize(
                job.source_url, os.path.join(work_dir, SOURCE_FILENAME)
            )

            # Step 2: Measure the file we actually got
            duration = await self.downloader.get_duration(source_path)
            if not duration or duration <= 0:
                logger.warning(
                    f"Could not read duration from download, using probed "
                    f"{job.source_duration_seconds}s"
                )
                duration = job.source_duration_seconds

            def start_processing(record: JobRecord) -> None:
                record.status = JobStatus.PROCESSING
                record.source_duration_seconds = duration

            job = await self.registry.update_job(job_id, start_processing)

            # Step 3: Plan
            planned = plan_segments(duration, job.segment_count, job.segment_duration_seconds)
            logger.info(
                f"Planned {len(planned)} segments over {duration:.1f}s: "
                + ", ".join(f"{p.start_time:.1f}+{p.duration:.1f}" for p in planned)
            )

            # Step 4: Render and publish each short in order
            for segment in planned:
                overlay = overlay_text_for(segment.index)
                result = await self.transcoder.transcode_segment(
                    source_path=source_path,
                    output_dir=work_dir,
                    index=segment.index,
                    start_time=segment.start_time,
                    duration=segment.duration,
                    overlay_text=overlay,
                )

                clip_upload = await self.publisher.publish(
                    job.owner_id, job_id, clip_name(segment.index),
                    result.clip_path, "video/mp4",
                )
                thumb_upload = await self.publisher.publish(
                    job.owner_id, job_id, thumbnail_name(segment.index),
                    result.thumbnail_path, "image/jpeg",
                )

                record = SegmentRecord(
                    index=segment.index,
                    start_time=segment.start_time,
                    duration=segment.duration,
                    storage_key=clip_upload.key,
                    thumbnail_key=thumb_upload.key,
                    size_bytes=clip_upload.file_size_bytes,
                    overlay_text=overlay,
                )
                is_last = segment.index == len(planned)

                def append_segment(r: JobRecord, s: SegmentRecord = record, last: bool = is_last) -> None:
                    r.segments.append(s)
                    # The full segment list and the completed status are stored together
                    if last:
                        self._mark_completed(r)

                job = await self.registry.update_job(job_id, append_segment)
                logger.info(f"Short {segment.index}/{len(planned)} published: {clip_upload.key}")

            # Step 5: Done
            self._notify(job, "job.completed")

            logger.info(
                f"Job {job_id} completed in {time.time() - start_time:.1f}s "
                f"with {len(job.segments)} shorts"
            )
            return job

        except Exception as e:
            logger.exception(f"Job {job_id} failed: {e}")
            return await self.fail_job(job_id, str(e) or type(e).__name__)

        finally:
            if os.path.isdir(work_dir):
                try:
                    shutil.rmtree(work_dir)
                except OSError as e:
                    logger.warning(f"Failed to cleanup work dir: {e}")

            self._cleanup_job_logging(job_log_handler)

    async def fail_job(self, job_id: str, reason: str) -> Optional[JobRecord]:
        """
        Mark a job failed and return its credits.

        Safe to call more than once: a completed job is left alone, and the
        refund happens at most once.
        """
        job = self.registry.get_job(job_id)
        if job is None:
            logger.warning(f"Cannot fail job {job_id}: not found")
            return None

        try:
            if not is_terminal(job.status):
                def mark_failed(record: JobRecord) -> None:
                    record.status = JobStatus.FAILED
                    record.error = reason
                    record.expires_at = utcnow() + self.retention

                job = await self.registry.update_job(job_id, mark_failed)
                logger.info(f"Job {job_id} marked failed: {reason}")

            if job.status == JobStatus.FAILED and not job.refunded:
                await self.ledger.refund(job_id)
                job = self.registry.get_job(job_id)
                self._notify(job, "job.failed")

        except Exception as e:
            logger.exception(f"Could not record failure of job {job_id}: {e}")

        return job

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.settings.retention_days)

    def _mark_completed(self, record: JobRecord) -> None:
        record.status = JobStatus.COMPLETED
        record.completed_at = utcnow()
        record.expires_at = record.completed_at + self.retention

    def _notify(self, job: JobRecord, event: str) -> None:
        """Send a webhook for a job status change, if the job has a callback URL."""
        if not job.callback_url:
            return

        self.webhook_service.notify(job.callback_url, WebhookPayload.for_job(event, job))

    async def _set_status(self, job_id: str, status: JobStatus) -> JobRecord:
        def mutate(record: JobRecord) -> None:
            record.status = status

        return await self.registry.update_job(job_id, mutate)
