"""
Job lifecycle: models, persistence, queue and the pipeline processor.
"""

from .events import InMemoryEventBus, LoggingEventBus
from .models import Job, JobOptions, JobProgress, JobResult, JobStatus, QueueStats
from .processor import JobProcessor
from .queue import JobQueue
from .store import InMemoryJobStore, SqliteJobStore

__all__ = [
    "Job",
    "JobOptions",
    "JobProgress",
    "JobResult",
    "JobStatus",
    "QueueStats",
    "JobQueue",
    "JobProcessor",
    "InMemoryJobStore",
    "SqliteJobStore",
    "InMemoryEventBus",
    "LoggingEventBus",
]
