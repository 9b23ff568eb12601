"""
In-process vector index.

Upserts embedded chunks keyed by (source URL, chunk index) so re-ingesting a
page replaces its earlier chunks. Intended for tests and single-process use;
a persistent backend implements the same ``store_batch`` contract.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from ..ingestion.collaborators import EmbeddedChunk, StorageResult
from ..monitoring.metrics import MetricsSink, record_safely

logger = logging.getLogger(__name__)


class InMemoryVectorIndex:
    """Vector index with a fixed dimensionality enforced on every write."""

    def __init__(self, dimension: int, metrics: Optional[MetricsSink] = None):
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self.metrics = metrics
        self._entries: Dict[Tuple[str, int], EmbeddedChunk] = {}
        self._lock = asyncio.Lock()

    async def store_batch(self, chunks: Sequence[EmbeddedChunk]) -> StorageResult:
        result = StorageResult()
        start_time = time.time()

        async with self._lock:
            for embedded in chunks:
                if len(embedded.vector) != self.dimension:
                    result.failed += 1
                    result.errors.append(
                        f"Chunk {embedded.id}: expected vector dimension {self.dimension}, "
                        f"got {len(embedded.vector)}"
                    )
                    continue

                key = (embedded.chunk.metadata.source_url, embedded.chunk.metadata.chunk_index)
                if key in self._entries:
                    result.updated += 1
                else:
                    result.stored += 1
                self._entries[key] = embedded

        duration = time.time() - start_time
        record_safely(self.metrics, "record_processing_speed", "vector_storage", result.persisted, duration)
        logger.info(
            f"Vector batch storage completed: {result.stored} stored, {result.updated} updated, "
            f"{result.failed} failed"
        )
        return result

    async def get_chunks(self, source_url: str) -> List[EmbeddedChunk]:
        async with self._lock:
            entries = [e for (url, _), e in self._entries.items() if url == source_url]
        return sorted(entries, key=lambda e: e.chunk.metadata.chunk_index)

    def count(self) -> int:
        return len(self._entries)
