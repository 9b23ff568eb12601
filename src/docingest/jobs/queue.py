"""
Job queue: the only owner of job lifecycle state.

Every mutation of a job goes through this class, which enforces the
QUEUED -> PROCESSING -> {COMPLETED, FAILED} state machine, keeps progress
counters monotonic and announces lifecycle events on the event bus.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..core.errors import ErrorSeverity, JobError
from .events import JOB_COMPLETED, JOB_PROGRESS, JOB_STARTED, EventBus, publish_safely
from .models import VALID_TRANSITIONS, Job, JobOptions, JobStatus, QueueStats
from .store import JobStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Job cancelled by user"


class JobQueue:
    """
    Job lifecycle operations backed by a ``JobStore``.

    Read-modify-write sequences are serialized with a lock so concurrent
    progress updates from one job cannot lose each other's counters.
    """

    def __init__(self, store: JobStore, event_bus: Optional[EventBus] = None):
        self.store = store
        self.event_bus = event_bus
        self.lock = asyncio.Lock()

    async def enqueue(self, url: str, options: Optional[JobOptions] = None) -> str:
        """
        Create a QUEUED job and announce it.

        Returns:
            Job ID for tracking
        """
        job = Job(id=str(uuid.uuid4()), url=url, options=options or JobOptions())
        await self.store.create(job)

        logger.info(f"Enqueued job {job.id} for {url}")
        await publish_safely(self.event_bus, JOB_STARTED, {
            'job_id': job.id,
            'url': url,
            'options': job.options.model_dump()
        })
        return job.id

    async def get_status(self, job_id: str) -> Optional[Job]:
        """Current job record, or None if no such job exists."""
        return await self.store.find_by_id(job_id)

    async def update_status(self, job_id: str, status: JobStatus) -> Job:
        """
        Move a job to ``status``.

        Raises:
            JobError: unknown job, or a transition the state machine forbids
        """
        async with self.lock:
            job = await self._require(job_id)
            self._check_transition(job, status)

            changes: Dict[str, object] = {'status': status}
            if status == JobStatus.PROCESSING:
                changes['started_at'] = datetime.now()
            elif status.is_terminal:
                changes['completed_at'] = datetime.now()

            updated = await self.store.update(job_id, changes)

        logger.debug(f"Job {job_id}: {job.status.value} -> {status.value}")
        return updated

    async def update_progress(
        self,
        job_id: str,
        pages_processed: Optional[int] = None,
        chunks_created: Optional[int] = None,
        chunks_embedded: Optional[int] = None,
        errors: Optional[List[str]] = None
    ) -> Optional[Job]:
        """
        Merge a partial progress update into the job.

        Counters never go down and errors are appended. Updates to a job that
        already finished are ignored and return None.
        """
        async with self.lock:
            job = await self._require(job_id)
            if job.is_terminal:
                logger.debug(f"Ignoring progress update for finished job {job_id}")
                return None

            progress = job.progress.merged(
                pages_processed=pages_processed,
                chunks_created=chunks_created,
                chunks_embedded=chunks_embedded,
                errors=errors
            )
            updated = await self.store.update(job_id, {'progress': progress})

        await publish_safely(self.event_bus, JOB_PROGRESS, {
            'job_id': job_id,
            **progress.model_dump()
        })
        return updated

    async def complete_job(
        self,
        job_id: str,
        success: bool,
        errors: Optional[List[str]] = None,
        total_chunks: int = 0
    ) -> Job:
        """Record the terminal outcome of a job and announce it."""
        errors = list(errors or [])
        status = JobStatus.COMPLETED if success else JobStatus.FAILED

        async with self.lock:
            job = await self._require(job_id)
            self._check_transition(job, status)

            updated = await self.store.update(job_id, {
                'status': status,
                'completed_at': datetime.now(),
                'error_message': None if success else "; ".join(errors) or None,
                'progress': job.progress.merged(errors=errors)
            })

        logger.info(
            f"Job {job_id} {status.value.lower()} with {total_chunks} chunks"
            + (f" and {len(errors)} errors" if errors else "")
        )
        await publish_safely(self.event_bus, JOB_COMPLETED, {
            'job_id': job_id,
            'success': success,
            'total_chunks': total_chunks,
            'errors': errors
        })
        return updated

    async def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a queued job by marking it FAILED.

        Returns:
            True if cancelled, False if not found or no longer queued
        """
        async with self.lock:
            job = await self.store.find_by_id(job_id)
            if not job:
                return False

            if job.status != JobStatus.QUEUED:
                logger.warning(f"Cannot cancel job {job_id} in {job.status.value} status")
                return False

            await self.store.update(job_id, {
                'status': JobStatus.FAILED,
                'completed_at': datetime.now(),
                'error_message': CANCELLED_MESSAGE
            })

        logger.info(f"Cancelled job {job_id}")
        await publish_safely(self.event_bus, JOB_COMPLETED, {
            'job_id': job_id,
            'success': False,
            'total_chunks': 0,
            'errors': [CANCELLED_MESSAGE]
        })
        return True

    async def retry_job(self, job_id: str) -> str:
        """
        Re-enqueue a failed job's URL and options as a new job.

        Raises:
            JobError: unknown job, or the job did not fail
        """
        job = await self._require(job_id)
        if job.status != JobStatus.FAILED:
            raise JobError(f"Cannot retry job {job_id} in {job.status.value} status")

        new_job_id = await self.enqueue(job.url, job.options)
        logger.info(f"Retrying job {job_id} as {new_job_id}")
        return new_job_id

    async def cleanup_old_jobs(self, older_than_days: int = 30) -> int:
        """
        Delete finished jobs completed before the cutoff.

        Returns:
            Number of jobs deleted
        """
        cutoff_time = datetime.now() - timedelta(days=older_than_days)
        async with self.lock:
            deleted = await self.store.delete_terminal_before(cutoff_time)

        if deleted > 0:
            logger.info(f"Cleaned up {deleted} jobs older than {older_than_days} days")
        return deleted

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Job]:
        """Jobs newest first, optionally filtered by status."""
        return await self.store.find_many(status=status, limit=limit, offset=offset)

    async def get_queue_stats(self) -> QueueStats:
        counts = await self.store.count_by_status()
        return QueueStats(
            queued=counts.get(JobStatus.QUEUED, 0),
            processing=counts.get(JobStatus.PROCESSING, 0),
            completed=counts.get(JobStatus.COMPLETED, 0),
            failed=counts.get(JobStatus.FAILED, 0)
        )

    async def _require(self, job_id: str) -> Job:
        job = await self.store.find_by_id(job_id)
        if job is None:
            raise JobError(f"Job {job_id} not found", severity=ErrorSeverity.HIGH)
        return job

    def _check_transition(self, job: Job, status: JobStatus) -> None:
        if status not in VALID_TRANSITIONS[job.status]:
            raise JobError(
                f"Invalid job status transition for {job.id}: "
                f"{job.status.value} -> {status.value}"
            )
