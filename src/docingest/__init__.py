"""
docingest - resilient URL ingestion pipeline

Turns submitted URLs into persisted, embedded document chunks: jobs are
queued, fetched, chunked semantically, embedded in memory-aware batches and
stored in a vector index, with retries, circuit breakers and graceful
degradation around every external call.
"""

__version__ = "1.0.0"

from .core.config import ConfigManager, IngestionConfig
from .core.errors import IngestionError
from .core.resilience import ResilienceEngine
from .ingestion.chunking_engine import ContentChunker
from .jobs.processor import JobProcessor
from .jobs.queue import JobQueue

__all__ = [
    "ConfigManager",
    "IngestionConfig",
    "IngestionError",
    "ResilienceEngine",
    "ContentChunker",
    "JobQueue",
    "JobProcessor",
]
