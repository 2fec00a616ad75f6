"""Application lifespan management (startup/shutdown hooks)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .config.settings import IngestionSettings, get_settings
from .llm.runtime import LLMRuntime, build_llm_runtime, chunking_profile, scoring_profile
from .observability.logger import configure_logging, get_logger
from .queues.dispatcher import InProcessDispatcher
from .queues.jobs import (
    CRAWL_QUEUE,
    PAGE_PARSE_QUEUE,
    WEBPAGE_PARSE_QUEUE,
    CrawlJobPayload,
    PageParseJobPayload,
    WebpageParseJobPayload,
)
from .scraping.http_fetcher import HttpFetcher
from .services.chunker import ContentChunker
from .services.content_extractor import ContentExtractor
from .services.crawl_finalizer import CrawlFinalizer
from .services.crawl_orchestrator import CrawlOrchestrator
from .services.discovery_service import PageDiscoverer
from .services.page_parser import PageParser
from .services.relevance_scorer import RelevanceScorer
from .services.webpage_parser import WebpageParser
from .storage.database import Database
from .storage.repositories import ChunkRepository, CrawlRunRepository, PageRepository, SourceRepository
from .utils.rate_limiter import DomainRateLimiter

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: IngestionSettings
    database: Database
    sources: SourceRepository
    pages: PageRepository
    chunks: ChunkRepository
    runs: CrawlRunRepository
    dispatcher: InProcessDispatcher
    orchestrator: CrawlOrchestrator
    page_parser: PageParser
    webpage_parser: WebpageParser
    finalizer: CrawlFinalizer


def build_container(
    settings: IngestionSettings,
    database: Database,
    *,
    llm: Optional[LLMRuntime] = None,
    fetcher: Optional[HttpFetcher] = None,
    discoverer: Optional[PageDiscoverer] = None,
    dispatcher: Optional[InProcessDispatcher] = None,
) -> ServiceContainer:
    """Build layer dependencies (strict separation) and register job handlers.

    Collaborators can be injected; anything omitted is built from settings.
    """
    llm = llm or build_llm_runtime(settings)
    fetcher = fetcher or HttpFetcher(
        default_timeout_ms=settings.page_fetch_timeout_ms,
        user_agent=settings.fetch_user_agent,
    )

    rate_limiter = None
    if settings.discovery_rate_limit_rps > 0:
        rate_limiter = DomainRateLimiter(requests_per_second=settings.discovery_rate_limit_rps)
    discoverer = discoverer or PageDiscoverer(
        fetcher=fetcher,
        fetch_timeout_ms=settings.page_fetch_timeout_ms,
        sitemap_min_urls=settings.sitemap_min_urls,
        sitemap_max_nesting=settings.sitemap_max_nesting,
        max_depth=settings.discovery_max_depth,
        max_visited_pages=settings.discovery_max_visited_pages,
        rate_limiter=rate_limiter,
    )
    dispatcher = dispatcher or InProcessDispatcher()

    # Persistence repositories (long-lived session factory; sessions per operation)
    sources = SourceRepository(session_factory=database.session_factory)
    pages = PageRepository(session_factory=database.session_factory)
    chunks = ChunkRepository(session_factory=database.session_factory)
    runs = CrawlRunRepository(session_factory=database.session_factory)

    extractor = ContentExtractor()
    chunker = ContentChunker(
        llm=llm,
        profile=chunking_profile(settings),
        window_chars=settings.chunk_window_chars,
        fallback_min_chars=settings.fallback_min_chunk_chars,
        fallback_max_chars=settings.fallback_max_chunk_chars,
    )
    scorer = RelevanceScorer(llm=llm, profile=scoring_profile(settings), batch_size=settings.relevance_batch_size)
    finalizer = CrawlFinalizer(sources=sources, pages=pages, runs=runs)

    orchestrator = CrawlOrchestrator(
        sources=sources,
        pages=pages,
        runs=runs,
        discoverer=discoverer,
        scorer=scorer,
        dispatcher=dispatcher,
        stall_timeout_s=settings.crawl_stall_timeout_s,
    )
    page_parser = PageParser(
        sources=sources,
        pages=pages,
        chunks=chunks,
        fetcher=fetcher,
        extractor=extractor,
        chunker=chunker,
        finalizer=finalizer,
        fetch_timeout_ms=settings.page_fetch_timeout_ms,
        min_content_length=settings.min_content_length,
    )
    webpage_parser = WebpageParser(
        sources=sources,
        chunks=chunks,
        fetcher=fetcher,
        extractor=extractor,
        chunker=chunker,
        fetch_timeout_ms=settings.webpage_fetch_timeout_ms,
        min_content_length=settings.min_content_length,
    )

    dispatcher.register(
        CRAWL_QUEUE, orchestrator.run, CrawlJobPayload, concurrency=settings.crawl_worker_concurrency
    )
    dispatcher.register(
        PAGE_PARSE_QUEUE, page_parser.parse, PageParseJobPayload, concurrency=settings.page_parse_worker_concurrency
    )
    dispatcher.register(
        WEBPAGE_PARSE_QUEUE,
        webpage_parser.parse,
        WebpageParseJobPayload,
        concurrency=settings.webpage_parse_worker_concurrency,
    )

    return ServiceContainer(
        settings=settings,
        database=database,
        sources=sources,
        pages=pages,
        chunks=chunks,
        runs=runs,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        page_parser=page_parser,
        webpage_parser=webpage_parser,
        finalizer=finalizer,
    )


@asynccontextmanager
async def lifespan_manager() -> AsyncIterator[ServiceContainer]:
    """Manage application lifespan (startup and shutdown)."""
    settings = get_settings()

    configure_logging()
    logger.info("starting_application", service_name=settings.service_name, llm_provider=settings.llm_provider)

    database = Database(settings.database_url)
    # Initialize database (create tables for MVP)
    await database.init()
    logger.info("database_initialized")

    container = build_container(settings, database)
    container.dispatcher.start()

    logger.info("application_started")
    try:
        yield container
    finally:
        await container.dispatcher.close()
        await database.close()
        logger.info("application_shutdown_complete")
