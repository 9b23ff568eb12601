"""
Job data model.

``JobOptions`` and ``JobProgress`` are pydantic models because they cross
the job store boundary as JSON; the job record itself is a plain dataclass.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobStatus(Enum):
    """Job lifecycle. COMPLETED and FAILED are terminal."""
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Allowed forward moves of the state machine
VALID_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class JobOptions(BaseModel):
    max_depth: int = Field(default=3, ge=1, le=10, description="Maximum crawl depth")
    follow_links: bool = Field(default=False, description="Follow links found on the page")
    respect_robots: bool = Field(default=True, description="Honour robots.txt")


class JobProgress(BaseModel):
    """Counters only ever grow; errors are append-only."""
    pages_processed: int = Field(default=0, ge=0)
    chunks_created: int = Field(default=0, ge=0)
    chunks_embedded: int = Field(default=0, ge=0)
    errors: List[str] = Field(default_factory=list)

    def merged(
        self,
        pages_processed: Optional[int] = None,
        chunks_created: Optional[int] = None,
        chunks_embedded: Optional[int] = None,
        errors: Optional[List[str]] = None
    ) -> "JobProgress":
        """New progress with counters raised to the given values and errors appended."""
        def keep_max(current: int, new: Optional[int]) -> int:
            return current if new is None else max(current, new)

        return JobProgress(
            pages_processed=keep_max(self.pages_processed, pages_processed),
            chunks_created=keep_max(self.chunks_created, chunks_created),
            chunks_embedded=keep_max(self.chunks_embedded, chunks_embedded),
            errors=[*self.errors, *(errors or [])]
        )


@dataclass
class Job:
    """One URL-ingestion request and its lifecycle state."""
    id: str
    url: str
    options: JobOptions = field(default_factory=JobOptions)
    status: JobStatus = JobStatus.QUEUED
    progress: JobProgress = field(default_factory=JobProgress)
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def processing_time(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary."""
        return {
            'id': self.id,
            'url': self.url,
            'status': self.status.value,
            'options': self.options.model_dump(),
            'progress': self.progress.model_dump(),
            'created_at': self.created_at.isoformat(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'error_message': self.error_message,
            'processing_time': self.processing_time
        }


@dataclass
class JobResult:
    """Outcome of processing one job. ``processing_time`` is in seconds."""
    success: bool
    total_chunks: int = 0
    errors: List[str] = field(default_factory=list)
    processing_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'total_chunks': self.total_chunks,
            'errors': list(self.errors),
            'processing_time': self.processing_time
        }


@dataclass
class QueueStats:
    queued: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.queued + self.processing + self.completed + self.failed

    def to_dict(self) -> Dict[str, int]:
        return {
            'queued': self.queued,
            'processing': self.processing,
            'completed': self.completed,
            'failed': self.failed,
            'total': self.total
        }
