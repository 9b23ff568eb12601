"""
Content Chunking Engine - structure-aware splitting of page text.

Splits extracted page text into chunks bounded by an estimated token
budget. Section headers are detected first so chunks never straddle two
sections; oversized sections are split on sentence boundaries, and a
sentence that alone exceeds the budget is split word by word. Each chunk
after the first is prefixed with trailing sentences of its predecessor for
context, unless that would break the budget.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .text_utils import estimate_token_count, preprocess_text, split_into_sentences

if TYPE_CHECKING:
    from .collaborators import PageMetadata

logger = logging.getLogger(__name__)

MAIN_CONTENT_TITLE = "Main Content"

_MARKDOWN_HEADER = re.compile(r"^(#{1,6})\s+(.+)$")
_ALL_CAPS_HEADER = re.compile(r"^([A-Z][A-Z\s]{2,}):?\s*$")
_UNDERLINE = re.compile(r"^[=-]{3,}$")


@dataclass
class ChunkMetadata:
    source_url: str
    title: str
    chunk_index: int
    section: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_url': self.source_url,
            'title': self.title,
            'section': self.section,
            'chunk_index': self.chunk_index
        }


@dataclass
class DocumentChunk:
    """Bounded span of document text ready for embedding."""
    id: str
    content: str
    metadata: ChunkMetadata
    token_count: int
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert chunk to dictionary for storage/serialization."""
        return {
            'id': self.id,
            'content': self.content,
            'metadata': self.metadata.to_dict(),
            'token_count': self.token_count,
            'created_at': self.created_at.isoformat()
        }


@dataclass
class ContentSection:
    """A run of text under one detected header."""
    title: str
    level: int
    content: str
    start_line: int


class ContentChunker:
    """
    Structure-aware chunker with a deterministic token estimate.

    Chunk indices are contiguous across the whole document, not reset per
    section.
    """

    def __init__(self, max_tokens: int = 1000, overlap_tokens: int = 100):
        if max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        if overlap_tokens < 0:
            raise ValueError("overlap_tokens cannot be negative")

        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens

        self._stats = {
            'documents_chunked': 0,
            'chunks_created': 0,
            'oversized_sentences_split': 0,
            'overlaps_applied': 0,
            'overlaps_discarded': 0
        }

        logger.info(
            f"Initialized content chunker: max_tokens={max_tokens}, "
            f"overlap_tokens={overlap_tokens}"
        )

    def chunk(self, content: str, metadata: "PageMetadata") -> List[DocumentChunk]:
        """
        Split page text into ordered chunks.

        Args:
            content: Extracted page text
            metadata: Page metadata; ``url`` and ``title`` are copied onto each chunk

        Returns:
            Chunks in document order, indexed 0..n-1. Empty for blank input.
        """
        clean = preprocess_text(content or "")
        if not clean:
            return []

        sections = self.extract_sections(clean)

        chunks: List[DocumentChunk] = []
        for section in sections:
            for piece in self._split_section(section):
                chunks.append(self._create_chunk(piece, metadata, section.title, len(chunks)))

        chunks = self._apply_overlap(chunks)

        self._stats['documents_chunked'] += 1
        self._stats['chunks_created'] += len(chunks)
        logger.debug(
            f"Chunked {metadata.url}: {len(sections)} sections -> {len(chunks)} chunks"
        )
        return chunks

    def extract_sections(self, content: str) -> List[ContentSection]:
        """Partition normalized text into titled sections in document order."""
        lines = content.split("\n")
        sections: List[ContentSection] = []
        current = ContentSection(MAIN_CONTENT_TITLE, 0, "", 0)

        i = 0
        while i < len(lines):
            line = lines[i].strip()
            next_is_underline = i + 1 < len(lines) and bool(_UNDERLINE.match(lines[i + 1].strip()))

            title = None
            level = 1
            markdown = _MARKDOWN_HEADER.match(line)
            if markdown:
                title = markdown.group(2)
                level = len(markdown.group(1))
            elif _ALL_CAPS_HEADER.match(line):
                title = _ALL_CAPS_HEADER.match(line).group(1)
            elif line and len(line) < 100 and next_is_underline:
                title = line

            if title is not None:
                if current.content.strip():
                    sections.append(current)
                current = ContentSection(title.strip(), level, "", i)
                if next_is_underline:
                    i += 1
            elif line:
                current.content += ("\n" if current.content else "") + line
            else:
                current.content += "\n"
            i += 1

        if current.content.strip():
            sections.append(current)

        # Headers only: keep the text rather than dropping the document
        if not sections:
            sections.append(ContentSection(MAIN_CONTENT_TITLE, 0, content, 0))

        return sections

    def _split_section(self, section: ContentSection) -> List[str]:
        text = section.content.strip()
        if estimate_token_count(text) <= self.max_tokens:
            return [text]
        return self.split_by_sentences(text)

    def split_by_sentences(self, text: str) -> List[str]:
        """Greedy sentence packing; falls back to words for oversized sentences."""
        pieces: List[str] = []
        current = ""

        for sentence in split_into_sentences(text):
            candidate = f"{current} {sentence}" if current else sentence
            if estimate_token_count(candidate) <= self.max_tokens:
                current = candidate
                continue

            if current.strip():
                pieces.append(current.strip())

            if estimate_token_count(sentence) > self.max_tokens:
                self._stats['oversized_sentences_split'] += 1
                pieces.extend(p for p in self.split_by_words(sentence) if p.strip())
                current = ""
            else:
                current = sentence

        if current.strip():
            pieces.append(current.strip())

        return pieces

    def split_by_words(self, sentence: str) -> List[str]:
        pieces: List[str] = []
        current = ""
        for word in sentence.split():
            candidate = f"{current} {word}" if current else word
            if estimate_token_count(candidate) <= self.max_tokens:
                current = candidate
            else:
                if current:
                    pieces.append(current)
                current = word
        if current:
            pieces.append(current)
        return pieces

    def _apply_overlap(self, chunks: List[DocumentChunk]) -> List[DocumentChunk]:
        if len(chunks) <= 1 or self.overlap_tokens <= 0:
            return chunks

        result = [chunks[0]]
        for previous, chunk in zip(chunks, chunks[1:]):
            overlap = self._overlap_text(split_into_sentences(previous.content)[-2:])
            if not overlap:
                result.append(chunk)
                continue

            enhanced = f"{overlap}\n\n{chunk.content}"
            enhanced_tokens = estimate_token_count(enhanced)
            if enhanced_tokens > self.max_tokens:
                self._stats['overlaps_discarded'] += 1
                result.append(chunk)
                continue

            self._stats['overlaps_applied'] += 1
            result.append(replace(chunk, content=enhanced, token_count=enhanced_tokens))

        return result

    def _overlap_text(self, sentences: List[str]) -> str:
        overlap = ""
        tokens = 0
        for sentence in sentences:
            sentence_tokens = estimate_token_count(sentence)
            if tokens + sentence_tokens > self.overlap_tokens:
                break
            overlap = f"{overlap} {sentence}" if overlap else sentence
            tokens += sentence_tokens
        return overlap

    def _create_chunk(
        self,
        content: str,
        metadata: "PageMetadata",
        section: str,
        chunk_index: int
    ) -> DocumentChunk:
        content = content.strip()
        url_hash = hashlib.sha256(metadata.url.encode('utf-8')).hexdigest()[:16]
        return DocumentChunk(
            id=f"{url_hash}_{chunk_index:04d}",
            content=content,
            metadata=ChunkMetadata(
                source_url=metadata.url,
                title=metadata.title,
                chunk_index=chunk_index,
                section=section
            ),
            token_count=estimate_token_count(content)
        )

    def get_chunking_statistics(self) -> Dict[str, Any]:
        """Get chunker configuration and running counters."""
        return {
            'max_tokens': self.max_tokens,
            'overlap_tokens': self.overlap_tokens,
            **self._stats
        }
