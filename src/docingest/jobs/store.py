"""
Job persistence.

Job options and progress are encoded to JSON at this boundary and decoded on
the way out, so the rest of the system never sees the stored format.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import aiosqlite

from ..core.errors import StorageError
from .models import Job, JobOptions, JobProgress, JobStatus

logger = logging.getLogger(__name__)

COLUMNS = (
    "id", "url", "status", "options", "progress",
    "created_at", "started_at", "completed_at", "error_message",
)
UPDATABLE_COLUMNS = frozenset(COLUMNS) - {"id", "created_at"}


class JobStore(Protocol):
    async def create(self, job: Job) -> Job: ...

    async def find_by_id(self, job_id: str) -> Optional[Job]: ...

    async def update(self, job_id: str, changes: Dict[str, Any]) -> Optional[Job]:
        """Apply a partial update. Returns the updated job, or None if it does not exist."""
        ...

    async def find_many(
        self, status: Optional[JobStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Job]: ...

    async def count_by_status(self) -> Dict[JobStatus, int]: ...

    async def delete_terminal_before(self, cutoff: datetime) -> int: ...


def _encode_value(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in ("options", "progress"):
        return value.model_dump_json()
    if key == "status":
        return value.value
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    return value


def encode_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(changes) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update job fields: {sorted(unknown)}")
    return {key: _encode_value(key, value) for key, value in changes.items()}


def encode_job(job: Job) -> Dict[str, Any]:
    return {key: _encode_value(key, getattr(job, key)) for key in COLUMNS}


def decode_row(row: Any) -> Job:
    def parse_time(value: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(value) if value else None

    return Job(
        id=row["id"],
        url=row["url"],
        status=JobStatus(row["status"]),
        options=JobOptions.model_validate_json(row["options"]),
        progress=JobProgress.model_validate_json(row["progress"]),
        created_at=parse_time(row["created_at"]),
        started_at=parse_time(row["started_at"]),
        completed_at=parse_time(row["completed_at"]),
        error_message=row["error_message"],
    )


class InMemoryJobStore:
    """Dictionary-backed store holding encoded rows."""

    def __init__(self) -> None:
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> Job:
        async with self._lock:
            if job.id in self._rows:
                raise StorageError(f"Job {job.id} already exists", retryable=False)
            self._rows[job.id] = encode_job(job)
        return job

    async def find_by_id(self, job_id: str) -> Optional[Job]:
        row = self._rows.get(job_id)
        return decode_row(row) if row else None

    async def update(self, job_id: str, changes: Dict[str, Any]) -> Optional[Job]:
        encoded = encode_changes(changes)
        async with self._lock:
            row = self._rows.get(job_id)
            if row is None:
                return None
            row.update(encoded)
            return decode_row(row)

    async def find_many(
        self, status: Optional[JobStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Job]:
        rows = [
            row for row in self._rows.values()
            if status is None or row["status"] == status.value
        ]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [decode_row(row) for row in rows[offset:offset + limit]]

    async def count_by_status(self) -> Dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        for row in self._rows.values():
            counts[JobStatus(row["status"])] += 1
        return counts

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        terminal = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
        async with self._lock:
            doomed = [
                job_id for job_id, row in self._rows.items()
                if row["status"] in terminal
                and row["completed_at"]
                and datetime.fromisoformat(row["completed_at"]) < cutoff
            ]
            for job_id in doomed:
                del self._rows[job_id]
        return len(doomed)


class SqliteJobStore:
    """
    SQLite job store over a single aiosqlite connection.

    Use as an async context manager, or call ``initialize()`` and
    ``close()`` explicitly.
    """

    def __init__(self, database_path: str):
        self.database_path = database_path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._db is not None:
            return
        path = self.database_path
        if path != ":memory:":
            path = str(Path(path).expanduser())
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    status TEXT NOT NULL,
                    options TEXT NOT NULL,
                    progress TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    error_message TEXT
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at)"
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to initialize job database: {e}", cause=e) from e

        logger.info(f"Job store initialized at {self.database_path}")

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "SqliteJobStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Job store is not initialized", retryable=False)
        return self._db

    async def create(self, job: Job) -> Job:
        row = encode_job(job)
        placeholders = ", ".join("?" for _ in COLUMNS)
        try:
            async with self._lock:
                db = self._connection()
                await db.execute(
                    f"INSERT INTO jobs ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                    [row[column] for column in COLUMNS],
                )
                await db.commit()
        except aiosqlite.IntegrityError as e:
            raise StorageError(f"Job {job.id} already exists", retryable=False, cause=e) from e
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to create job: {e}", cause=e) from e
        return job

    async def find_by_id(self, job_id: str) -> Optional[Job]:
        try:
            async with self._connection().execute(
                "SELECT * FROM jobs WHERE id = ?", (job_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to load job {job_id}: {e}", cause=e) from e
        return decode_row(row) if row else None

    async def update(self, job_id: str, changes: Dict[str, Any]) -> Optional[Job]:
        encoded = encode_changes(changes)
        if not encoded:
            return await self.find_by_id(job_id)

        assignments = ", ".join(f"{column} = ?" for column in encoded)
        try:
            async with self._lock:
                db = self._connection()
                cursor = await db.execute(
                    f"UPDATE jobs SET {assignments} WHERE id = ?",
                    [*encoded.values(), job_id],
                )
                await db.commit()
                if cursor.rowcount == 0:
                    return None
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to update job {job_id}: {e}", cause=e) from e
        return await self.find_by_id(job_id)

    async def find_many(
        self, status: Optional[JobStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Job]:
        query = "SELECT * FROM jobs"
        params: List[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        try:
            async with self._connection().execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to list jobs: {e}", cause=e) from e
        return [decode_row(row) for row in rows]

    async def count_by_status(self) -> Dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        try:
            async with self._connection().execute(
                "SELECT status, COUNT(*) AS n FROM jobs GROUP BY status"
            ) as cursor:
                for row in await cursor.fetchall():
                    counts[JobStatus(row["status"])] = row["n"]
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to count jobs: {e}", cause=e) from e
        return counts

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        try:
            async with self._lock:
                db = self._connection()
                cursor = await db.execute(
                    "DELETE FROM jobs WHERE status IN (?, ?) AND completed_at < ?",
                    (
                        JobStatus.COMPLETED.value,
                        JobStatus.FAILED.value,
                        cutoff.isoformat(timespec="microseconds"),
                    ),
                )
                await db.commit()
                return cursor.rowcount
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to clean up jobs: {e}", cause=e) from e
