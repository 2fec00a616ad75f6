"""Crawl orchestration (business logic).

One crawl run for a website source:
- discover candidate pages and persist the new ones
- score unscored pages for relevance
- fan out one page-parse job per eligible page
- complete immediately when nothing is eligible, otherwise leave completion
  to the finalizer run by the last page job
"""

from __future__ import annotations

from datetime import timedelta

from ..domain.errors import CrawlInProgressError, IngestionDomainError, InvalidInputError
from ..domain.models import (
    ChannelContext,
    CrawlOutcome,
    CrawlStatus,
    PageInfo,
    PageStatus,
    RunStatus,
    SourceType,
)
from ..domain.state_machine import STALLED_CRAWL_RECOVERY
from ..observability.logger import get_logger
from ..queues.dispatcher import JobDispatcher
from ..queues.jobs import PAGE_PARSE_JOB, PAGE_PARSE_JOB_OPTIONS, PAGE_PARSE_QUEUE, CrawlJobPayload, PageParseJobPayload
from ..storage.repositories import CrawlRunRepository, PageRepository, SourceRepository
from ..utils.time import current_time_ms, days_ago, elapsed_ms, utcnow
from .discovery_service import PageDiscoverer
from .relevance_scorer import RelevanceScorer

logger = get_logger(__name__)

# A new run may start from these; discovering/scoring cover a retry of a crashed run.
RUN_START_STATUSES = frozenset(
    {CrawlStatus.IDLE, CrawlStatus.COMPLETED, CrawlStatus.FAILED, CrawlStatus.DISCOVERING, CrawlStatus.SCORING}
)


class CrawlOrchestrator:
    def __init__(
        self,
        *,
        sources: SourceRepository,
        pages: PageRepository,
        runs: CrawlRunRepository,
        discoverer: PageDiscoverer,
        scorer: RelevanceScorer,
        dispatcher: JobDispatcher,
        stall_timeout_s: int = 1800,
    ):
        self._sources = sources
        self._pages = pages
        self._runs = runs
        self._discoverer = discoverer
        self._scorer = scorer
        self._dispatcher = dispatcher
        self._stall_timeout = timedelta(seconds=stall_timeout_s)

    async def is_crawl_active(self, source) -> bool:
        """True while a `scraping` crawl still shows page activity within the stall timeout."""
        if source.crawl_status != CrawlStatus.SCRAPING.value:
            return False
        last_page = await self._pages.last_activity_at(source.id)
        last = max(t for t in (source.updated_at, last_page) if t is not None)
        return utcnow() - last <= self._stall_timeout

    async def run(self, payload: CrawlJobPayload) -> CrawlOutcome:
        source = await self._sources.require(payload.source_id)
        if source.source_type != SourceType.WEBSITE.value:
            raise InvalidInputError("source is not a website", detail=f"{source.id}:{source.source_type}")

        start_from = RUN_START_STATUSES
        if source.crawl_status == CrawlStatus.SCRAPING.value:
            if await self.is_crawl_active(source):
                raise CrawlInProgressError("crawl already in progress", detail=source.id)
            await self._take_over_stalled(source)
            start_from = RUN_START_STATUSES | {STALLED_CRAWL_RECOVERY[0]}

        start = current_time_ms()
        run = await self._runs.create_run(source.id)
        log = logger.bind(source_id=source.id, run_id=run.id, incremental=payload.is_incremental)
        log.info("crawl_started", website_url=payload.website_url)

        try:
            moved = await self._sources.try_transition(
                source.id, CrawlStatus.DISCOVERING, expected=start_from, error=None
            )
            if not moved:
                # Another run reached `scraping` between the read and the write.
                raise CrawlInProgressError("crawl already in progress", detail=source.id)

            # Step 1: discovery
            existing = await self._pages.list_urls(source.id)
            discovered = await self._discoverer.discover(
                payload.website_url or source.url,
                max_pages=source.max_pages,
                filter_patterns=list(source.filter_patterns or []),
                existing_urls=existing,
            )
            new_pages = [p for p in discovered if p.is_new]
            inserted = await self._pages.add_discovered(source.id, new_pages)
            pages_total = await self._pages.count(source.id)
            await self._sources.update_fields(source.id, pages_total=pages_total)
            await self._runs.record_discovery(run.id, pages_found=len(discovered), new_pages=inserted)
            log.info("crawl_discovery_completed", pages_found=len(discovered), new_pages=inserted, pages_total=pages_total)

            # Step 2: relevance scoring
            await self._sources.transition(source.id, CrawlStatus.SCORING)
            await self._score_discovered(source, log)

            # Step 3: fan out page jobs
            await self._sources.transition(source.id, CrawlStatus.SCRAPING)
            eligible = await self._pages.list_eligible(
                source.id,
                incremental=payload.is_incremental,
                stale_before=days_ago(source.staleness_days),
            )

            if not eligible:
                await self._sources.transition(
                    source.id,
                    CrawlStatus.COMPLETED,
                    last_scraped_at=utcnow(),
                    error=None,
                )
                await self._runs.close_run(run.id, RunStatus.COMPLETED, pages_scraped=0, pages_failed=0)
                log.info("crawl_completed_nothing_to_parse", duration_ms=elapsed_ms(start))
                return CrawlOutcome(
                    source_id=source.id,
                    run_id=run.id,
                    pages_total=pages_total,
                    new_pages=inserted,
                    pages_queued=0,
                    status=CrawlStatus.COMPLETED,
                )

            for page in eligible:
                if page.status != PageStatus.RELEVANT.value:
                    await self._pages.requeue(page.id)

            for page in eligible:
                await self._dispatcher.enqueue(
                    PAGE_PARSE_QUEUE,
                    PAGE_PARSE_JOB,
                    PageParseJobPayload(
                        source_id=source.id,
                        page_id=page.id,
                        page_url=page.url,
                        previous_hash=page.content_hash,
                    ),
                    PAGE_PARSE_JOB_OPTIONS,
                )

            log.info("crawl_pages_queued", pages_queued=len(eligible), duration_ms=elapsed_ms(start))
            return CrawlOutcome(
                source_id=source.id,
                run_id=run.id,
                pages_total=pages_total,
                new_pages=inserted,
                pages_queued=len(eligible),
                status=CrawlStatus.SCRAPING,
            )
        except CrawlInProgressError:
            await self._runs.close_run(run.id, RunStatus.FAILED, error="crawl already in progress")
            raise
        except Exception as e:
            message = e.info.message if isinstance(e, IngestionDomainError) else str(e)
            message = message or type(e).__name__
            log.error("crawl_failed", error=message, duration_ms=elapsed_ms(start), exc_info=True)
            await self._sources.mark_failed(source.id, message)
            await self._runs.close_run(run.id, RunStatus.FAILED, error=message)
            raise

    async def _take_over_stalled(self, source) -> None:
        """Close the stalled run and hand its unfinished pages back to the queue."""
        requeued = await self._pages.requeue_stalled(source.id)
        await self._runs.close_latest_running(
            source.id, RunStatus.FAILED, error="Crawl stalled; superseded by a new run"
        )
        logger.warning(
            "crawl_stalled_taken_over",
            source_id=source.id,
            pages_requeued=requeued,
            stall_timeout_s=int(self._stall_timeout.total_seconds()),
        )

    async def _score_discovered(self, source, log) -> None:
        pending = await self._pages.list_by_status(source.id, [PageStatus.DISCOVERED])
        if not pending:
            return
        scored = await self._scorer.score(
            [PageInfo(url=p.url, title=p.title) for p in pending],
            ChannelContext(niche=source.niche, description=source.description, language=source.language),
        )
        by_url = {p.url: p for p in pending}
        relevant = 0
        for result in scored:
            page = by_url.get(result.url)
            if page is None:
                continue
            status = await self._pages.apply_score(page.id, result.score)
            if status == PageStatus.RELEVANT:
                relevant += 1
        log.info("crawl_scoring_completed", scored=len(scored), relevant=relevant, skipped=len(scored) - relevant)
