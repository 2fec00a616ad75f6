"""Single-webpage source parse job."""

from __future__ import annotations

from ..domain.errors import ContentTooShortError, IngestionDomainError, InvalidInputError
from ..domain.models import SourceType
from ..observability.logger import get_logger
from ..queues.jobs import WebpageParseJobPayload
from ..scraping.http_fetcher import HttpFetcher
from ..storage.repositories import ChunkRepository, SourceRepository
from ..utils.time import current_time_ms, elapsed_ms, utcnow
from .chunker import ContentChunker
from .content_extractor import ContentExtractor

logger = get_logger(__name__)


class WebpageParser:
    """Turns one webpage source into a source-owned chunk set.

    Unlike website pages there is no page row: errors are recorded on the
    source and re-raised so the dispatcher's retry policy applies.
    """

    def __init__(
        self,
        *,
        sources: SourceRepository,
        chunks: ChunkRepository,
        fetcher: HttpFetcher,
        extractor: ContentExtractor,
        chunker: ContentChunker,
        fetch_timeout_ms: int = 30000,
        min_content_length: int = 100,
    ):
        self._sources = sources
        self._chunks = chunks
        self._fetcher = fetcher
        self._extractor = extractor
        self._chunker = chunker
        self._fetch_timeout_ms = fetch_timeout_ms
        self._min_content_length = min_content_length

    async def parse(self, payload: WebpageParseJobPayload) -> int:
        source = await self._sources.require(payload.source_id)
        if source.source_type != SourceType.WEBPAGE.value:
            raise InvalidInputError("source is not a webpage", detail=f"{source.id}:{source.source_type}")

        log = logger.bind(source_id=source.id, url=payload.webpage_url)
        start = current_time_ms()

        try:
            fetched = await self._fetcher.fetch_html(payload.webpage_url, timeout_ms=self._fetch_timeout_ms)
        except IngestionDomainError as e:
            log.warning("webpage_fetch_failed", error=e.info.message, detail=e.info.detail)
            await self._sources.update_fields(source.id, error=e.info.message)
            raise

        # Without AI sectioning, keep everything on the page rather than guessing the main block.
        extracted = self._extractor.extract(fetched.html, fetched.url, full_extraction=source.skip_chunking)
        if len(extracted.content) < self._min_content_length:
            message = f"Page content too short (less than {self._min_content_length} characters)"
            await self._sources.update_fields(source.id, error=message)
            raise ContentTooShortError(message, detail=f"chars={len(extracted.content)}")

        chunks = await self._chunker.chunk(
            extracted.content,
            title=extracted.title,
            skip_chunking=source.skip_chunking,
            chunking_prompt=source.chunking_prompt,
        )
        written = await self._chunks.replace_for_source(source.id, chunks)
        await self._sources.update_fields(
            source.id,
            title=extracted.title,
            domain=extracted.domain,
            error=None,
            last_scraped_at=utcnow(),
        )
        log.info("webpage_parsed", chunks=written, content_chars=len(extracted.content), duration_ms=elapsed_ms(start))
        return written
