"""
Interfaces of the collaborators the job processor drives, and the values
that flow between them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .chunking_engine import DocumentChunk


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    sanitized_url: Optional[str] = None


@dataclass
class PageMetadata:
    """Metadata extracted alongside a page's text."""
    url: str
    title: str = ""
    description: Optional[str] = None
    language: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FetchedPage:
    url: str
    title: str
    content: str
    metadata: PageMetadata
    links: List[str] = field(default_factory=list)


@dataclass
class FetchOptions:
    timeout: float = 30.0
    respect_robots: bool = True


@dataclass
class EmbeddedChunk:
    """A chunk together with its embedding vector."""
    chunk: DocumentChunk
    vector: List[float]
    embedded_at: datetime = field(default_factory=datetime.now)

    @property
    def id(self) -> str:
        return self.chunk.id


@dataclass
class StorageResult:
    stored: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def persisted(self) -> int:
        return self.stored + self.updated


class Validator(Protocol):
    async def validate(self, url: str) -> ValidationResult: ...


class Fetcher(Protocol):
    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        """Raise ``ScrapingError`` on failure."""
        ...


class Embedder(Protocol):
    async def embed(self, chunks: Sequence[DocumentChunk]) -> List[EmbeddedChunk]:
        """Raise ``EmbeddingError`` on failure."""
        ...


class VectorIndex(Protocol):
    async def store_batch(self, chunks: Sequence[EmbeddedChunk]) -> StorageResult: ...
