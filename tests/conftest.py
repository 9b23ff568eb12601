"""
Shared test fixtures.

Nothing here sleeps in real time: engines and memory controllers get an
AsyncMock ``sleep`` and memory readings come from ``FakeMemorySource``.
"""

from typing import List, Optional, Sequence
from unittest.mock import AsyncMock

import pytest

from docingest.core.resilience import CircuitBreakerConfig, CircuitBreakerRegistry, ResilienceEngine, RetryPolicy
from docingest.ingestion.chunking_engine import ChunkMetadata, DocumentChunk
from docingest.ingestion.collaborators import EmbeddedChunk
from docingest.jobs.events import InMemoryEventBus
from docingest.jobs.queue import JobQueue
from docingest.jobs.store import InMemoryJobStore
from docingest.monitoring.memory import MB, MemoryController
from docingest.monitoring.metrics import MetricsCollector


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMemorySource:
    """Memory source replaying scripted readings; the last one repeats."""

    def __init__(self, readings_mb: Sequence[float] = (100,)):
        self.readings = [int(mb * MB) for mb in readings_mb]
        self.calls = 0

    def current_usage(self) -> int:
        index = min(self.calls, len(self.readings) - 1)
        self.calls += 1
        return self.readings[index]


def make_chunk(index: int, url: str = "https://example.com/docs", content: Optional[str] = None) -> DocumentChunk:
    return DocumentChunk(
        id=f"chunk_{index:04d}",
        content=content or f"Chunk number {index}.",
        metadata=ChunkMetadata(source_url=url, title="Docs", chunk_index=index, section="Main Content"),
        token_count=4
    )


def embed_all(dimension: int = 3):
    """side_effect for an embedder mock: one vector per chunk."""
    async def embed(chunks: Sequence[DocumentChunk]) -> List[EmbeddedChunk]:
        return [EmbeddedChunk(chunk=c, vector=[0.1] * dimension) for c in chunks]
    return embed


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sleep_mock():
    return AsyncMock()


@pytest.fixture
def retry_policy():
    """Default policy without jitter so delays are exact."""
    return RetryPolicy(max_retries=3, base_delay=1.0, max_delay=30.0, backoff_multiplier=2.0, jitter=False)


@pytest.fixture
def breakers(fake_clock):
    return CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0), clock=fake_clock)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def engine(retry_policy, breakers, sleep_mock, metrics):
    return ResilienceEngine(retry_policy=retry_policy, breakers=breakers, metrics=metrics, sleep=sleep_mock)


@pytest.fixture
def memory_source():
    return FakeMemorySource()


@pytest.fixture
def memory_controller(memory_source, sleep_mock):
    return MemoryController(source=memory_source, sleep=sleep_mock)


@pytest.fixture
def event_bus():
    return InMemoryEventBus()


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def job_queue(job_store, event_bus):
    return JobQueue(job_store, event_bus)
