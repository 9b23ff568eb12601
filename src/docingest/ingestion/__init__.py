"""
Ingestion collaborators: URL validation, page fetching and semantic chunking.
"""

from .chunking_engine import ChunkMetadata, ContentChunker, DocumentChunk
from .collaborators import (
    EmbeddedChunk,
    FetchedPage,
    FetchOptions,
    PageMetadata,
    StorageResult,
    ValidationResult,
)
from .fetcher import HttpPageFetcher
from .validator import UrlValidator

__all__ = [
    "ContentChunker",
    "DocumentChunk",
    "ChunkMetadata",
    "PageMetadata",
    "FetchedPage",
    "FetchOptions",
    "EmbeddedChunk",
    "StorageResult",
    "ValidationResult",
    "HttpPageFetcher",
    "UrlValidator",
]
