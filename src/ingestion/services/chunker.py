"""Content chunking: AI sectioning with a deterministic paragraph fallback."""

from __future__ import annotations

import json
import re

from ..domain.errors import ContentProcessingError, IngestionDomainError
from ..domain.models import ContentChunk
from ..llm.parsing import strip_code_fences
from ..llm.runtime import LLMProfile, LLMRuntime
from ..observability.logger import get_logger
from ..processing.paragraph_splitter import (
    DEFAULT_MAX_CHUNK_SIZE,
    DEFAULT_MIN_CHUNK_SIZE,
    chunk_by_paragraphs,
)

logger = get_logger(__name__)

DEFAULT_WINDOW_CHARS = 50000

DEFAULT_CHUNK_PROMPT = """You are a content strategist preparing source material for social media post generation.

YOUR GOAL: Split the web page content into LARGE, COMPLETE chunks. Each chunk must contain enough context and substance to serve as the SOLE source for generating a full, engaging post.

CRITICAL RULES:
- Create FEWER, LARGER chunks - quality over quantity
- Each chunk should be 1000-4000 characters (aim for the higher end)
- A chunk must tell a COMPLETE story, idea, or concept - never fragment content
- If content is related, keep it together in ONE chunk
- Only split when topics are genuinely distinct and unrelated
- Short pages (under 3000 chars): often just 1-2 chunks is best
- Medium pages (3000-10000 chars): typically 2-5 chunks
- Long pages (10000+ chars): typically 5-15 chunks

EACH CHUNK MUST:
1. Be completely self-contained - a reader should understand it without any other context
2. Contain enough substance to generate a full, valuable post (not just a fragment)
3. Include relevant examples, details, or explanations that support the main point
4. Have a clear, descriptive title in the content's language

DO NOT create chunks that are:
- Just lists of words or bullet points without context
- Incomplete thoughts or fragments
- Too short to generate meaningful content from
- Missing necessary background information"""

CHUNK_OUTPUT_FORMAT = """MANDATORY OUTPUT FORMAT - You MUST return ONLY a valid JSON array:
[
  { "title": "Section Title", "content": "Section content here..." },
  { "title": "Another Section", "content": "Content..." }
]

IMPORTANT:
- Return ONLY the JSON array, no markdown code blocks, no explanations
- The "content" field should contain PLAIN TEXT, not JSON
- Every section must have both "title" and "content" fields
- Do NOT wrap in ```json``` code blocks"""

_MARKDOWN_SECTION_RE = re.compile(r"(?=^##\s)", re.MULTILINE)
_MARKDOWN_TITLE_RE = re.compile(r"^##\s*(.+?)(?:\n|$)")


def build_system_prompt(custom_prompt: str | None) -> str:
    """Custom (or default) instructions followed by the required output format."""
    base = (custom_prompt or "").strip() or DEFAULT_CHUNK_PROMPT
    return f"{base}\n\n{CHUNK_OUTPUT_FORMAT}"


def split_into_windows(text: str, window_chars: int = DEFAULT_WINDOW_CHARS) -> list[str]:
    """Split long text into windows of at most `window_chars`.

    A window ends at the last blank line before its limit when that blank line
    lies past the window's midpoint; otherwise it is cut at the limit.
    """
    if len(text) <= window_chars:
        return [text]

    windows: list[str] = []
    offset = 0
    while offset < len(text):
        end = offset + window_chars
        if end < len(text):
            brk = text.rfind("\n\n", offset, end + 2)
            if brk > offset + window_chars // 2:
                end = brk
        windows.append(text[offset:end])
        offset = end
    return windows


def parse_ai_chunks(response: str) -> list[ContentChunk]:
    """Parse a JSON array of {title, content}; `## ` markdown sections as a second chance.

    Raises ContentProcessingError when the response has neither shape.
    """
    cleaned = strip_code_fences(response)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, list):
        chunks: list[ContentChunk] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            content = entry.get("content")
            if not isinstance(content, str) or not content.strip():
                continue
            title = entry.get("title")
            if not isinstance(title, str) or not title.strip():
                title = f"Section {len(chunks) + 1}"
            chunks.append(ContentChunk(index=len(chunks), title=title.strip(), content=content.strip()))
        return chunks

    if data is not None:
        raise ContentProcessingError("chunk_response_not_array", detail=type(data).__name__)

    chunks = []
    for section in _MARKDOWN_SECTION_RE.split(response or ""):
        section = section.strip()
        if not section.startswith("##"):
            continue
        m = _MARKDOWN_TITLE_RE.match(section)
        title = m.group(1).strip() if m else ""
        content = section[m.end():].strip() if m else ""
        if content:
            chunks.append(ContentChunk(index=len(chunks), title=title or f"Section {len(chunks) + 1}", content=content))
    if not chunks:
        snippet = (response or "").strip().replace("\n", " ")[:200]
        raise ContentProcessingError("chunk_response_unparsable", detail=f"first={snippet}")
    return chunks


class ContentChunker:
    """Splits extracted text into titled, self-contained chunks.

    Chunking never fails: any AI error, or an answer with no usable sections,
    falls back to `chunk_by_paragraphs` over the whole text.
    """

    def __init__(
        self,
        *,
        llm: LLMRuntime,
        profile: LLMProfile,
        window_chars: int = DEFAULT_WINDOW_CHARS,
        fallback_min_chars: int = DEFAULT_MIN_CHUNK_SIZE,
        fallback_max_chars: int = DEFAULT_MAX_CHUNK_SIZE,
    ):
        self._llm = llm
        self._profile = profile
        self._window_chars = window_chars
        self._fallback_min = fallback_min_chars
        self._fallback_max = fallback_max_chars

    async def chunk(
        self,
        text: str,
        *,
        title: str | None = None,
        skip_chunking: bool = False,
        chunking_prompt: str | None = None,
    ) -> list[ContentChunk]:
        if skip_chunking:
            return [ContentChunk(index=0, title=title or "Content", content=text)]

        try:
            chunks = await self.chunk_with_ai(text, build_system_prompt(chunking_prompt))
        except Exception as e:
            # Any AI failure degrades to the paragraph splitter, never to a page failure.
            code = e.info.code if isinstance(e, IngestionDomainError) else type(e).__name__
            logger.warning("ai_chunking_failed", error=str(e), code=code, text_chars=len(text))
            chunks = []

        if not chunks:
            logger.info("chunking_fallback_to_paragraphs", text_chars=len(text))
            chunks = self.fallback(text)
        return chunks

    def fallback(self, text: str) -> list[ContentChunk]:
        return chunk_by_paragraphs(text, min_chunk_size=self._fallback_min, max_chunk_size=self._fallback_max)

    async def chunk_with_ai(self, text: str, system_prompt: str) -> list[ContentChunk]:
        windows = split_into_windows(text, self._window_chars)
        out: list[ContentChunk] = []
        for n, window in enumerate(windows):
            response = await self._llm.complete(
                self._profile.request(
                    f"Split this web page content into logical sections:\n\n{window}",
                    system_prompt=system_prompt,
                )
            )
            window_chunks = parse_ai_chunks(response)
            if not window_chunks:
                raise ContentProcessingError("chunk_window_empty", detail=f"window={n + 1}/{len(windows)}")
            base = len(out)
            out.extend(ContentChunk(index=base + i, title=c.title, content=c.content) for i, c in enumerate(window_chunks))
        if len(windows) > 1:
            logger.info("ai_chunking_windowed", windows=len(windows), chunks=len(out))
        return out
