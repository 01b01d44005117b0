"""
Tests for the bounded job runner.
"""

import os

import pytest

from app.services.job_runner import JobRunner, RunState
from app.services.job_state import JobStatus
from app.services.shorts_service import SegmentConfig

VIDEO_URL = "https://youtu.be/abc123"


class TestJobRunner:
    """Tests for JobRunner."""

    @pytest.mark.asyncio
    async def test_runs_submitted_jobs(self, service, runner, registry, create_user):
        await create_user(credits=100)
        job = await service.submit("user_1", VIDEO_URL, SegmentConfig(count=2, duration_seconds=30))
        assert runner.status(job.id) == RunState.QUEUED

        await runner.start()
        try:
            await runner.join()
        finally:
            await runner.stop()

        assert runner.status(job.id) == RunState.DONE
        assert registry.get_job(job.id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, service, runner, registry, downloader, create_user):
        """With 2 workers at most 2 downloads run at once; the rest wait in the backlog."""
        await create_user(credits=1000)
        downloader.download_delay = 0.05

        jobs = [
            await service.submit("user_1", VIDEO_URL, SegmentConfig(count=1, duration_seconds=30))
            for _ in range(5)
        ]
        assert runner.backlog_size == 5

        await runner.start()
        try:
            await runner.join()
        finally:
            await runner.stop()

        assert downloader.max_active_downloads == 2
        assert all(registry.get_job(j.id).status == JobStatus.COMPLETED for j in jobs)

    @pytest.mark.asyncio
    async def test_timeout_fails_and_refunds(self, pipeline, service, registry, ledger, downloader, create_user, settings):
        await create_user(credits=100)
        downloader.download_delay = 5
        runner = JobRunner(pipeline, max_workers=1, job_timeout_seconds=0.1)
        service.runner = runner

        job = await service.submit("user_1", VIDEO_URL, SegmentConfig(count=5, duration_seconds=30))
        assert ledger.balance("user_1") == 75

        await runner.start()
        try:
            await runner.join()
        finally:
            await runner.stop()

        stored = registry.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "timed out"
        assert stored.refunded is True
        assert ledger.balance("user_1") == 100
        assert not os.path.exists(os.path.join(settings.temp_directory, job.id))

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, runner):
        await runner.start()
        await runner.start()
        try:
            assert len(runner._workers) == runner.max_workers
        finally:
            await runner.stop()
        assert not runner.is_running

    @pytest.mark.asyncio
    async def test_done_history_is_bounded(self, pipeline, service, create_user):
        await create_user(credits=1000)
        runner = JobRunner(pipeline, max_workers=1, job_timeout_seconds=30, done_history_size=2)
        service.runner = runner

        jobs = [
            await service.submit("user_1", VIDEO_URL, SegmentConfig(count=1, duration_seconds=30))
            for _ in range(3)
        ]

        await runner.start()
        try:
            await runner.join()
        finally:
            await runner.stop()

        assert runner.status(jobs[0].id) is None
        assert runner.status(jobs[1].id) == RunState.DONE
        assert runner.status(jobs[2].id) == RunState.DONE
        assert runner._active == {}

    def test_unknown_job_status(self, runner):
        assert runner.status("never-submitted") is None


class TestRecovery:
    """Tests for startup recovery."""

    @pytest.mark.asyncio
    async def test_unfinished_jobs_are_failed_and_refunded(self, runner, registry, ledger, create_user, create_job):
        await create_user(credits=25)
        await create_job(job_id="pending", status=JobStatus.PENDING, credits_reserved=25)
        await create_job(job_id="downloading", status=JobStatus.DOWNLOADING, credits_reserved=25)
        await create_job(job_id="processing", status=JobStatus.PROCESSING, credits_reserved=25)
        await create_job(job_id="completed", status=JobStatus.COMPLETED, credits_reserved=25)

        recovered = await runner.recover_incomplete_jobs()

        assert recovered == 3
        for job_id in ("pending", "downloading", "processing"):
            job = registry.get_job(job_id)
            assert job.status == JobStatus.FAILED
            assert job.refunded is True
            assert job.error == "interrupted by restart"
        assert registry.get_job("completed").status == JobStatus.COMPLETED
        assert ledger.balance("user_1") == 100

    @pytest.mark.asyncio
    async def test_failed_job_missing_refund_is_refunded(self, runner, registry, ledger, create_user, create_job):
        await create_user(credits=75)
        await create_job(status=JobStatus.FAILED, credits_reserved=25, error="ffmpeg crashed")

        await runner.recover_incomplete_jobs()

        assert registry.get_job("job_1").refunded is True
        assert registry.get_job("job_1").error == "ffmpeg crashed"
        assert ledger.balance("user_1") == 100

    @pytest.mark.asyncio
    async def test_stale_work_dirs_are_removed(self, runner, settings):
        stale = os.path.join(settings.temp_directory, "job_stale")
        os.makedirs(stale)
        with open(os.path.join(stale, "source.mp4"), "wb") as f:
            f.write(b"partial")

        await runner.recover_incomplete_jobs()

        assert not os.path.exists(stale)
