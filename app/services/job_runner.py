"""
Job Runner - Bounded pool of workers draining a backlog of shorts jobs.

Submitting never blocks: jobs wait in the backlog until a worker is free.
Each job runs under a deadline; a job that overruns it is failed and refunded.
"""

import asyncio
import logging
import os
import shutil
from collections import OrderedDict
from typing import Optional

from app.config import get_settings
from app.services.job_state import JobStatus
from app.services.shorts_pipeline import ShortsPipeline

logger = logging.getLogger(__name__)


class RunState:
    """Observable state of a submitted job within this process."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"


class JobRunner:
    """
    Runs pipeline jobs on at most `max_workers` concurrent worker tasks.
    """

    def __init__(
        self,
        pipeline: ShortsPipeline,
        max_workers: Optional[int] = None,
        job_timeout_seconds: Optional[float] = None,
        done_history_size: int = 1000,
    ):
        settings = get_settings()
        self.pipeline = pipeline
        self.max_workers = max(1, int(max_workers or settings.max_workers))
        self.job_timeout = float(job_timeout_seconds or settings.job_timeout_seconds)

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        # Queued and running jobs; finished ones move to a bounded history
        self._active: dict[str, str] = {}
        self._done: OrderedDict[str, None] = OrderedDict()
        self.done_history_size = done_history_size

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        """Start the worker tasks. Calling it twice is a no-op."""
        if self._workers:
            return

        for i in range(self.max_workers):
            self._workers.append(asyncio.create_task(self._worker(i), name=f"shorts-worker-{i}"))
        logger.info(f"JobRunner started (workers={self.max_workers}, timeout={self.job_timeout:.0f}s)")

    async def stop(self) -> None:
        """Cancel the workers. Jobs still in the backlog are not run."""
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info(f"JobRunner stopped ({self._queue.qsize()} jobs left in backlog)")

    def submit(self, job_id: str) -> None:
        """Add a job to the backlog."""
        self._active[job_id] = RunState.QUEUED
        self._queue.put_nowait(job_id)
        logger.info(f"Job {job_id} queued (backlog size {self._queue.qsize()})")

    def status(self, job_id: str) -> Optional[str]:
        """
        Return queued, running or done.

        None for jobs this runner never saw, or that finished long enough ago
        to drop out of the done history.
        """
        if job_id in self._active:
            return self._active[job_id]
        if job_id in self._done:
            return RunState.DONE
        return None

    @property
    def backlog_size(self) -> int:
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every submitted job has been processed."""
        await self._queue.join()

    def _mark_done(self, job_id: str) -> None:
        self._active.pop(job_id, None)
        self._done[job_id] = None
        self._done.move_to_end(job_id)
        while len(self._done) > self.done_history_size:
            self._done.popitem(last=False)

    async def _worker(self, worker_index: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._run_one(job_id)
            except Exception as e:
                # The pipeline handles its own failures; this only guards the loop
                logger.exception(f"Worker {worker_index} crashed on job {job_id}: {e}")
            finally:
                self._mark_done(job_id)
                self._queue.task_done()

    async def _run_one(self, job_id: str) -> None:
        self._active[job_id] = RunState.RUNNING
        try:
            await asyncio.wait_for(self.pipeline.process_job(job_id), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Job {job_id} exceeded {self.job_timeout:.0f}s deadline")
            await self.pipeline.fail_job(job_id, "timed out")

    async def recover_incomplete_jobs(self) -> int:
        """
        Fail and refund jobs left unfinished by a previous process, and remove
        stale work directories.

        Must run before start().

        Returns:
            Number of jobs recovered
        """
        registry = self.pipeline.registry
        unfinished = registry.list_jobs(
            statuses=[JobStatus.PENDING, JobStatus.DOWNLOADING, JobStatus.PROCESSING]
        )

        for job in unfinished:
            logger.warning(f"Recovering job {job.id} left in {job.status.value}")
            await self.pipeline.fail_job(job.id, "interrupted by restart")

        # Jobs that failed before their refund was stored
        for job in registry.list_jobs(statuses=[JobStatus.FAILED]):
            if not job.refunded:
                await self.pipeline.fail_job(job.id, job.error or "interrupted by restart")

        temp_dir = self.pipeline.settings.temp_directory
        if os.path.isdir(temp_dir):
            for name in os.listdir(temp_dir):
                path = os.path.join(temp_dir, name)
                if os.path.isdir(path):
                    shutil.rmtree(path, ignore_errors=True)
                    logger.info(f"Removed stale work dir: {path}")

        if unfinished:
            logger.info(f"Recovered {len(unfinished)} unfinished jobs")
        return len(unfinished)
