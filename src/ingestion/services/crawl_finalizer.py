"""Crawl completion check, run after every page job."""

from __future__ import annotations

from ..domain.models import CrawlStatus, PageStatus, RunStatus, SourceType
from ..domain.state_machine import PAGE_PENDING_STATUSES
from ..observability.logger import get_logger
from ..storage.repositories import CrawlRunRepository, PageRepository, SourceRepository
from ..utils.time import utcnow

logger = get_logger(__name__)


class CrawlFinalizer:
    """Moves a scraping source to its terminal status once no page is pending.

    Safe to call any number of times and from concurrent page jobs: the
    terminal write only succeeds while the source is still `scraping`, and only
    the caller that wins it closes the run record.
    """

    def __init__(self, *, sources: SourceRepository, pages: PageRepository, runs: CrawlRunRepository):
        self._sources = sources
        self._pages = pages
        self._runs = runs

    async def check_and_finalize(self, source_id: str) -> bool:
        """Return True if this call finalized the crawl."""
        source = await self._sources.get(source_id)
        if source is None or source.source_type != SourceType.WEBSITE.value:
            return False
        if source.crawl_status != CrawlStatus.SCRAPING.value:
            return False

        pending = await self._pages.count(source_id, PAGE_PENDING_STATUSES)
        if pending > 0:
            return False

        # The verdict covers the pages this run queued; pages an incremental run left
        # alone keep their earlier result and only count towards the source total.
        run = await self._runs.get_latest_running(source_id)
        counts = await self._pages.count_by_status(source_id, since=run.started_at if run else None)
        scraped = counts.get(PageStatus.SCRAPED.value, 0)
        failed = counts.get(PageStatus.FAILED.value, 0)

        if scraped == 0 and failed > 0:
            error = f"All {failed} pages failed to parse"
            won = await self._sources.try_transition(
                source_id,
                CrawlStatus.FAILED,
                expected=[CrawlStatus.SCRAPING],
                error=error,
                pages_scraped=0,
            )
            if won:
                await self._runs.close_latest_running(
                    source_id, RunStatus.FAILED, error=error, pages_scraped=0, pages_failed=failed
                )
                logger.warning("crawl_finalized", source_id=source_id, status="failed", pages_failed=failed)
            return won

        total_scraped = await self._pages.count(source_id, [PageStatus.SCRAPED])
        won = await self._sources.try_transition(
            source_id,
            CrawlStatus.COMPLETED,
            expected=[CrawlStatus.SCRAPING],
            error=None,
            pages_scraped=total_scraped,
            last_scraped_at=utcnow(),
        )
        if won:
            await self._runs.close_latest_running(
                source_id, RunStatus.COMPLETED, pages_scraped=scraped, pages_failed=failed
            )
            logger.info(
                "crawl_finalized",
                source_id=source_id,
                status="completed",
                pages_scraped=scraped,
                pages_failed=failed,
            )
        return won
