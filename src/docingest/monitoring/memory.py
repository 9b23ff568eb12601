"""
Memory-adaptive batch control.

Before each batch of work the controller reads current memory usage from an
injected ``MemorySource`` and picks a batch size: shrink hard (and pause)
when usage is critical, shrink moderately on warning, and grow back toward
the configured default once usage is normal again.
"""

import asyncio
import gc
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TypeVar

import psutil

from .metrics import MetricsSink, record_safely

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MB = 1024 * 1024

CRITICAL_SHRINK = 0.25
WARNING_SHRINK = 0.5
RECOVERY_GROWTH = 1.2


class MemoryStatus(Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class MemorySource(Protocol):
    def current_usage(self) -> int:
        """Bytes currently in use by the process."""
        ...


class PsutilMemorySource:
    """Resident set size of the current process, via psutil."""

    def __init__(self) -> None:
        self._process = psutil.Process()

    def current_usage(self) -> int:
        return self._process.memory_info().rss


@dataclass(frozen=True)
class MemoryStatusReport:
    status: MemoryStatus
    usage_bytes: int
    usage_percent: float
    recommendation: str


@dataclass(frozen=True)
class AdaptiveParams:
    """What the batch body gets to work with."""
    batch_size: int
    should_pause: bool
    memory_status: MemoryStatus


RECOMMENDATIONS = {
    MemoryStatus.CRITICAL: (
        "Critical memory usage detected. Reduce batch sizes and trigger garbage collection"
    ),
    MemoryStatus.WARNING: "High memory usage detected. Reduce batch sizes and monitor closely",
    MemoryStatus.NORMAL: "Memory usage is within normal parameters",
}


class MemoryController:
    """
    Derives batch sizes from ambient memory pressure.

    Thresholds are fractions of ``max_heap_bytes``.
    """

    def __init__(
        self,
        source: Optional[MemorySource] = None,
        max_heap_bytes: int = 2048 * MB,
        warning_threshold: float = 0.25,
        critical_threshold: float = 0.5,
        default_batch_size: int = 10,
        min_batch_size: int = 1,
        critical_pause: float = 5.0,
        batch_delay: float = 0.1,
        metrics: Optional[MetricsSink] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not 0 < warning_threshold <= critical_threshold:
            raise ValueError("Expected 0 < warning_threshold <= critical_threshold")
        if default_batch_size < min_batch_size or min_batch_size < 1:
            raise ValueError("Expected 1 <= min_batch_size <= default_batch_size")

        self.source = source or PsutilMemorySource()
        self.max_heap_bytes = max_heap_bytes
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.default_batch_size = default_batch_size
        self.min_batch_size = min_batch_size
        self.critical_pause = critical_pause
        self.batch_delay = batch_delay
        self.metrics = metrics
        self._sleep = sleep

    def check_status(self) -> MemoryStatusReport:
        usage = self.source.current_usage()
        fraction = usage / self.max_heap_bytes

        if fraction >= self.critical_threshold:
            status = MemoryStatus.CRITICAL
        elif fraction >= self.warning_threshold:
            status = MemoryStatus.WARNING
        else:
            status = MemoryStatus.NORMAL

        usage_percent = fraction * 100
        record_safely(
            self.metrics, "record", "memory_usage_percent", usage_percent, "percentage",
            {"status": status.value}
        )
        return MemoryStatusReport(status, usage, usage_percent, RECOMMENDATIONS[status])

    def next_batch_size(self, current: int, status: MemoryStatus) -> int:
        """Batch size to use given the previous size and the current status."""
        if status == MemoryStatus.CRITICAL:
            return max(self.min_batch_size, int(current * CRITICAL_SHRINK))
        if status == MemoryStatus.WARNING:
            return max(self.min_batch_size, int(current * WARNING_SHRINK))
        if current < self.default_batch_size:
            grown = max(current + 1, int(current * RECOVERY_GROWTH))
            return min(self.default_batch_size, grown)
        return current

    async def run_adaptive(
        self,
        operation: str,
        items: Sequence[T],
        body: Callable[[Sequence[T], AdaptiveParams], Awaitable[R]],
        initial_batch_size: Optional[int] = None,
    ) -> List[R]:
        """
        Feed ``items`` to ``body`` one batch at a time.

        Memory is re-checked right before every batch, so each reading
        reflects the batch that just finished. Bodies run sequentially and
        their results are collected without inspection. Exceptions from
        ``body`` propagate.
        """
        results: List[R] = []
        batch_size = initial_batch_size or self.default_batch_size
        position = 0
        pauses = 0

        logger.info(f"Starting memory-adaptive processing for {operation}: {len(items)} items")

        while position < len(items):
            report = self.check_status()
            previous = batch_size
            batch_size = self.next_batch_size(batch_size, report.status)

            if report.status == MemoryStatus.CRITICAL:
                await self._relieve_pressure()
                pauses += 1
                logger.warning(
                    f"Critical memory usage during {operation} "
                    f"({report.usage_percent:.1f}%): batch size {previous} -> {batch_size}, "
                    f"paused {self.critical_pause}s"
                )
            elif report.status == MemoryStatus.WARNING and batch_size != previous:
                logger.info(
                    f"High memory usage during {operation} "
                    f"({report.usage_percent:.1f}%): batch size {previous} -> {batch_size}"
                )
            elif batch_size != previous:
                logger.debug(f"Memory normalized during {operation}: batch size {previous} -> {batch_size}")

            batch = items[position:position + batch_size]
            params = AdaptiveParams(
                batch_size=batch_size,
                should_pause=report.status != MemoryStatus.NORMAL,
                memory_status=report.status,
            )
            results.append(await body(batch, params))
            position += len(batch)

            if position < len(items) and self.batch_delay > 0:
                delay = self.batch_delay * 2 if params.should_pause else self.batch_delay
                await self._sleep(delay)

        logger.info(
            f"Memory-adaptive processing for {operation} completed: "
            f"final batch size {batch_size}, {pauses} pauses"
        )
        return results

    async def _relieve_pressure(self) -> None:
        collected = gc.collect()
        logger.debug(f"Garbage collection freed {collected} objects")
        if self.critical_pause > 0:
            await self._sleep(self.critical_pause)

    def get_memory_stats(self) -> dict:
        report = self.check_status()
        return {
            "status": report.status.value,
            "usage_mb": round(report.usage_bytes / MB, 2),
            "usage_percent": round(report.usage_percent, 2),
            "max_heap_mb": round(self.max_heap_bytes / MB, 2),
            "warning_mb": round(self.max_heap_bytes * self.warning_threshold / MB, 2),
            "critical_mb": round(self.max_heap_bytes * self.critical_threshold / MB, 2),
            "recommendation": report.recommendation,
        }
