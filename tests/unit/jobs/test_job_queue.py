"""
Unit tests for the job queue.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from docingest.core.errors import JobError
from docingest.jobs.events import JOB_COMPLETED, JOB_PROGRESS, JOB_STARTED
from docingest.jobs.models import JobOptions, JobStatus
from docingest.jobs.queue import CANCELLED_MESSAGE, JobQueue


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_creates_queued_job(self, job_queue, event_bus):
        job_id = await job_queue.enqueue("https://example.com/docs", JobOptions(max_depth=2))

        job = await job_queue.get_status(job_id)
        assert job.status == JobStatus.QUEUED
        assert job.url == "https://example.com/docs"
        assert job.options.max_depth == 2
        assert job.started_at is None

        started = event_bus.events_named(JOB_STARTED)
        assert started == [{
            'job_id': job_id,
            'url': "https://example.com/docs",
            'options': {'max_depth': 2, 'follow_links': False, 'respect_robots': True}
        }]

    @pytest.mark.asyncio
    async def test_job_ids_are_unique(self, job_queue):
        ids = {await job_queue.enqueue("https://example.com") for _ in range(5)}
        assert len(ids) == 5

    @pytest.mark.asyncio
    async def test_unknown_job(self, job_queue):
        assert await job_queue.get_status("missing") is None

    @pytest.mark.asyncio
    async def test_event_bus_failure_does_not_fail_enqueue(self, job_store):
        bus = AsyncMock()
        bus.publish.side_effect = RuntimeError("bus down")
        queue = JobQueue(job_store, bus)

        job_id = await queue.enqueue("https://example.com")

        assert (await queue.get_status(job_id)).status == JobStatus.QUEUED


class TestStatusTransitions:
    @pytest.mark.asyncio
    async def test_processing_sets_started_at(self, job_queue):
        job_id = await job_queue.enqueue("https://example.com")

        job = await job_queue.update_status(job_id, JobStatus.PROCESSING)

        assert job.status == JobStatus.PROCESSING
        assert job.started_at is not None

    @pytest.mark.asyncio
    async def test_terminal_sets_completed_at(self, job_queue):
        job_id = await job_queue.enqueue("https://example.com")
        await job_queue.update_status(job_id, JobStatus.PROCESSING)

        job = await job_queue.update_status(job_id, JobStatus.COMPLETED)

        assert job.completed_at is not None
        assert job.processing_time is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [
        [JobStatus.COMPLETED],
        [JobStatus.PROCESSING, JobStatus.QUEUED],
        [JobStatus.FAILED, JobStatus.PROCESSING],
        [JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED],
    ])
    async def test_invalid_transitions_rejected(self, job_queue, path):
        job_id = await job_queue.enqueue("https://example.com")
        *allowed, forbidden = path
        for status in allowed:
            await job_queue.update_status(job_id, status)

        with pytest.raises(JobError, match="Invalid job status transition"):
            await job_queue.update_status(job_id, forbidden)

    @pytest.mark.asyncio
    async def test_unknown_job_rejected(self, job_queue):
        with pytest.raises(JobError, match="Job missing not found"):
            await job_queue.update_status("missing", JobStatus.PROCESSING)


class TestProgress:
    @pytest.mark.asyncio
    async def test_counters_are_monotonic(self, job_queue, event_bus):
        job_id = await job_queue.enqueue("https://example.com")
        await job_queue.update_status(job_id, JobStatus.PROCESSING)

        await job_queue.update_progress(job_id, chunks_created=10, chunks_embedded=4)
        job = await job_queue.update_progress(job_id, chunks_created=3, chunks_embedded=6)

        assert job.progress.chunks_created == 10
        assert job.progress.chunks_embedded == 6
        assert event_bus.events_named(JOB_PROGRESS)[-1]['chunks_embedded'] == 6

    @pytest.mark.asyncio
    async def test_errors_accumulate(self, job_queue):
        job_id = await job_queue.enqueue("https://example.com")

        await job_queue.update_progress(job_id, errors=["fetch attempt failed"])
        job = await job_queue.update_progress(job_id, errors=["second"])

        assert job.progress.errors == ["fetch attempt failed", "second"]

    @pytest.mark.asyncio
    async def test_updates_ignored_once_terminal(self, job_queue):
        job_id = await job_queue.enqueue("https://example.com")
        await job_queue.update_status(job_id, JobStatus.PROCESSING)
        await job_queue.complete_job(job_id, success=True, total_chunks=1)

        assert await job_queue.update_progress(job_id, chunks_created=99) is None
        assert (await job_queue.get_status(job_id)).progress.chunks_created == 0


class TestCompletion:
    @pytest.mark.asyncio
    async def test_successful_completion(self, job_queue, event_bus):
        job_id = await job_queue.enqueue("https://example.com")
        await job_queue.update_status(job_id, JobStatus.PROCESSING)

        job = await job_queue.complete_job(job_id, success=True, total_chunks=12)

        assert job.status == JobStatus.COMPLETED
        assert job.error_message is None
        assert event_bus.events_named(JOB_COMPLETED) == [{
            'job_id': job_id, 'success': True, 'total_chunks': 12, 'errors': []
        }]

    @pytest.mark.asyncio
    async def test_failure_records_errors(self, job_queue):
        job_id = await job_queue.enqueue("https://example.com")
        await job_queue.update_status(job_id, JobStatus.PROCESSING)

        job = await job_queue.complete_job(job_id, success=False, errors=["first", "second"])

        assert job.status == JobStatus.FAILED
        assert job.error_message == "first; second"
        assert job.progress.errors == ["first", "second"]

    @pytest.mark.asyncio
    async def test_cannot_complete_twice(self, job_queue):
        job_id = await job_queue.enqueue("https://example.com")
        await job_queue.update_status(job_id, JobStatus.PROCESSING)
        await job_queue.complete_job(job_id, success=True)

        with pytest.raises(JobError):
            await job_queue.complete_job(job_id, success=False)


class TestCancelAndRetry:
    @pytest.mark.asyncio
    async def test_cancel_queued_job(self, job_queue, event_bus):
        job_id = await job_queue.enqueue("https://example.com")

        assert await job_queue.cancel_job(job_id) is True

        job = await job_queue.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == CANCELLED_MESSAGE
        assert event_bus.events_named(JOB_COMPLETED)[-1]['errors'] == [CANCELLED_MESSAGE]

    @pytest.mark.asyncio
    async def test_cancel_only_queued(self, job_queue):
        job_id = await job_queue.enqueue("https://example.com")
        await job_queue.update_status(job_id, JobStatus.PROCESSING)

        assert await job_queue.cancel_job(job_id) is False
        assert await job_queue.cancel_job("missing") is False
        assert (await job_queue.get_status(job_id)).status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_retry_failed_job(self, job_queue):
        options = JobOptions(max_depth=4, follow_links=True)
        job_id = await job_queue.enqueue("https://example.com", options)
        await job_queue.cancel_job(job_id)

        new_id = await job_queue.retry_job(job_id)

        assert new_id != job_id
        retried = await job_queue.get_status(new_id)
        assert retried.status == JobStatus.QUEUED
        assert retried.url == "https://example.com"
        assert retried.options == options
        assert (await job_queue.get_status(job_id)).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_retry_requires_failed_job(self, job_queue):
        job_id = await job_queue.enqueue("https://example.com")

        with pytest.raises(JobError, match="Cannot retry"):
            await job_queue.retry_job(job_id)
        with pytest.raises(JobError, match="not found"):
            await job_queue.retry_job("missing")


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_cleanup_old_jobs(self, job_queue, job_store):
        old_id = await job_queue.enqueue("https://example.com/old")
        await job_queue.cancel_job(old_id)
        await job_store.update(old_id, {'completed_at': datetime.now() - timedelta(days=45)})
        recent_id = await job_queue.enqueue("https://example.com/recent")
        await job_queue.cancel_job(recent_id)
        queued_id = await job_queue.enqueue("https://example.com/queued")

        assert await job_queue.cleanup_old_jobs(30) == 1

        assert await job_queue.get_status(old_id) is None
        assert await job_queue.get_status(recent_id) is not None
        assert await job_queue.get_status(queued_id) is not None

    @pytest.mark.asyncio
    async def test_list_and_stats(self, job_queue):
        first = await job_queue.enqueue("https://example.com/1")
        await job_queue.enqueue("https://example.com/2")
        await job_queue.cancel_job(first)

        assert len(await job_queue.list_jobs()) == 2
        failed = await job_queue.list_jobs(status=JobStatus.FAILED)
        assert [j.id for j in failed] == [first]

        stats = await job_queue.get_queue_stats()
        assert (stats.queued, stats.failed, stats.total) == (1, 1, 2)
