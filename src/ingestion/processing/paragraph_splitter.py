"""Deterministic paragraph-based chunking.

Used when AI chunking fails or returns nothing. Paragraphs (separated by blank
lines) are packed into a buffer that is flushed once the next paragraph would
push it past `max_chunk_size` and it already holds `min_chunk_size`
characters. Paragraphs are never split, so oversized ones yield oversized chunks.
"""

from __future__ import annotations

import re

from ..domain.models import ContentChunk

DEFAULT_MIN_CHUNK_SIZE = 1000
DEFAULT_MAX_CHUNK_SIZE = 4000

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_LEADING_MARKERS_RE = re.compile(r"^[#\-*•]+\s*")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")

MAX_TITLE_LENGTH = 100


def extract_title(content: str) -> str:
    """Heuristic section title from the first line of a chunk."""
    first_line = content.split("\n", 1)[0]
    cleaned = _LEADING_MARKERS_RE.sub("", first_line)
    cleaned = _NON_WORD_RE.sub(" ", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    if len(cleaned) > MAX_TITLE_LENGTH:
        return cleaned[: MAX_TITLE_LENGTH - 3] + "..."
    return cleaned or "Section"


def split_paragraphs(text: str) -> list[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text) if p.strip()]


def chunk_by_paragraphs(
    text: str,
    *,
    min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
) -> list[ContentChunk]:
    chunks: list[ContentChunk] = []
    buffer = ""

    def flush() -> None:
        content = buffer.strip()
        chunks.append(ContentChunk(index=len(chunks), title=extract_title(content), content=content))

    for paragraph in split_paragraphs(text):
        if len(buffer) + len(paragraph) > max_chunk_size and len(buffer) >= min_chunk_size:
            flush()
            buffer = ""
        buffer = f"{buffer}\n\n{paragraph}" if buffer else paragraph

    if buffer.strip():
        flush()

    if not chunks and text:
        # Whitespace-only input still yields one (empty-bodied) chunk.
        chunks.append(ContentChunk(index=0, title="Section", content=text.strip()))
    return chunks
