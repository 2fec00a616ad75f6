"""Per-page parse job (business logic).

Fetch, extract, detect changes, chunk and persist a single website page, then
give the finalizer a chance to close the crawl. Page-level failures are
recorded on the page and never raised; persistence errors are raised so the
dispatcher retries the job.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from ..domain.errors import ContentTooShortError, IngestionDomainError
from ..domain.models import PageParseResult, PageStatus
from ..domain.state_machine import PAGE_PENDING_STATUSES
from ..observability.logger import get_logger
from ..queues.jobs import PageParseJobPayload
from ..scraping.http_fetcher import HttpFetcher
from ..storage.repositories import ChunkRepository, PageRepository, SourceRepository
from ..utils.content_hash import hash_content
from ..utils.time import current_time_ms, elapsed_ms, utcnow
from .chunker import ContentChunker
from .content_extractor import ContentExtractor
from .crawl_finalizer import CrawlFinalizer

logger = get_logger(__name__)


class PageParser:
    def __init__(
        self,
        *,
        sources: SourceRepository,
        pages: PageRepository,
        chunks: ChunkRepository,
        fetcher: HttpFetcher,
        extractor: ContentExtractor,
        chunker: ContentChunker,
        finalizer: CrawlFinalizer,
        fetch_timeout_ms: int = 15000,
        min_content_length: int = 100,
    ):
        self._sources = sources
        self._pages = pages
        self._chunks = chunks
        self._fetcher = fetcher
        self._extractor = extractor
        self._chunker = chunker
        self._finalizer = finalizer
        self._fetch_timeout_ms = fetch_timeout_ms
        self._min_content_length = min_content_length

    async def parse(self, payload: PageParseJobPayload) -> PageParseResult:
        log = logger.bind(source_id=payload.source_id, page_id=payload.page_id, url=payload.page_url)
        try:
            return await self._parse(payload, log)
        finally:
            await self._finalize(payload.source_id, log)

    async def _parse(self, payload: PageParseJobPayload, log) -> PageParseResult:
        page = await self._pages.require(payload.page_id)
        source = await self._sources.require(payload.source_id)

        if PageStatus(page.status) not in PAGE_PENDING_STATUSES:
            log.info("page_parse_stale_job_ignored", status=page.status)
            return PageParseResult(page_id=page.id, status=PageStatus(page.status))

        start = current_time_ms()
        await self._pages.transition(page.id, PageStatus.SCRAPING)

        try:
            fetched = await self._fetcher.fetch_html(payload.page_url, timeout_ms=self._fetch_timeout_ms)
            extracted = self._extractor.extract(fetched.html, fetched.url)
            if len(extracted.content) < self._min_content_length:
                raise ContentTooShortError("Content too short", detail=f"chars={len(extracted.content)}")

            content_hash = hash_content(extracted.content)
            if payload.previous_hash and payload.previous_hash == content_hash:
                await self._pages.transition(
                    page.id,
                    PageStatus.SCRAPED,
                    last_scraped_at=utcnow(),
                    error=None,
                )
                log.info("page_unchanged", duration_ms=elapsed_ms(start))
                return PageParseResult(page_id=page.id, status=PageStatus.SCRAPED, unchanged=True)

            chunks = await self._chunker.chunk(
                extracted.content,
                title=extracted.title,
                skip_chunking=source.skip_chunking,
                chunking_prompt=source.chunking_prompt,
            )
            written = await self._chunks.replace_for_page(source.id, page.id, chunks)
            await self._pages.transition(
                page.id,
                PageStatus.SCRAPED,
                title=extracted.title,
                content_hash=content_hash,
                last_scraped_at=utcnow(),
                error=None,
            )
            log.info("page_parsed", chunks=written, content_chars=len(extracted.content), duration_ms=elapsed_ms(start))
            return PageParseResult(page_id=page.id, status=PageStatus.SCRAPED, chunks_written=written)
        except SQLAlchemyError:
            log.error("page_parse_persistence_error", exc_info=True)
            raise
        except Exception as e:
            message = e.info.message if isinstance(e, IngestionDomainError) else str(e)
            message = message or type(e).__name__
            log.warning("page_parse_failed", error=message, duration_ms=elapsed_ms(start))
            await self._pages.mark_failed(page.id, message)
            return PageParseResult(page_id=page.id, status=PageStatus.FAILED, error=message)

    async def _finalize(self, source_id: str, log) -> None:
        try:
            finalized = await self._finalizer.check_and_finalize(source_id)
        except Exception as e:
            log.error("crawl_finalize_failed", error=str(e), exc_info=True)
            return
        if finalized:
            log.info("crawl_finalized_by_page_job")
