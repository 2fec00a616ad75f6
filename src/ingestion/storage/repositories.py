"""Repository pattern for database access (sources, pages, chunks, crawl runs).

Status writes are conditional updates: the WHERE clause carries the set of
statuses the target may be reached from, so concurrent workers can never move
a row backwards and a lost race shows up as zero affected rows.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlparse

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import InvalidTransitionError, NotFoundError
from ..domain.models import (
    ContentChunk,
    CrawlStatus,
    DiscoveredPage,
    PageStatus,
    RunStatus,
    SourceType,
    is_relevant,
)
from ..domain.state_machine import (
    STALLED_PAGE_RECOVERY,
    crawl_sources_for,
    ensure_crawl_transition,
    ensure_page_transition,
    page_sources_for,
)
from ..models.database import ContentSource, CrawlRun, ScrapedContent, WebsitePage
from ..observability.logger import get_logger
from ..utils.time import utcnow

logger = get_logger(__name__)

# Pages whose relevance verdict was positive, whatever stage they reached.
RELEVANT_VERDICT_STATUSES = (
    PageStatus.RELEVANT,
    PageStatus.SCRAPING,
    PageStatus.SCRAPED,
    PageStatus.FAILED,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _values(statuses: Iterable[Any]) -> list[str]:
    return [s.value if hasattr(s, "value") else str(s) for s in statuses]


class SourceRepository:
    """Repository for content source operations."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def create_source(
        self,
        *,
        url: str,
        source_type: SourceType = SourceType.WEBSITE,
        max_pages: int = 50,
        staleness_days: int = 7,
        filter_patterns: list[str] | None = None,
        skip_chunking: bool = False,
        chunking_prompt: str | None = None,
        niche: str | None = None,
        description: str | None = None,
        language: str | None = None,
        source_id: str | None = None,
    ) -> ContentSource:
        host = (urlparse(url).hostname or "").lower()
        async with self._session_factory() as session:
            source = ContentSource(
                id=source_id or _new_id(),
                source_type=source_type.value,
                url=url,
                domain=host[4:] if host.startswith("www.") else host,
                max_pages=max_pages,
                staleness_days=staleness_days,
                filter_patterns=list(filter_patterns or []),
                skip_chunking=skip_chunking,
                chunking_prompt=chunking_prompt,
                niche=niche,
                description=description,
                language=language,
                crawl_status=CrawlStatus.IDLE.value,
                created_at=utcnow(),
                updated_at=utcnow(),
            )
            session.add(source)
            await session.commit()
            return source

    async def get(self, source_id: str) -> Optional[ContentSource]:
        async with self._session_factory() as session:
            result = await session.execute(select(ContentSource).where(ContentSource.id == source_id))
            return result.scalar_one_or_none()

    async def require(self, source_id: str) -> ContentSource:
        source = await self.get(source_id)
        if source is None:
            raise NotFoundError("content source not found", detail=source_id)
        return source

    async def update_fields(self, source_id: str, **values: Any) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ContentSource)
                .where(ContentSource.id == source_id)
                .values(**values, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def try_transition(
        self,
        source_id: str,
        target: CrawlStatus,
        *,
        expected: Iterable[CrawlStatus] | None = None,
        **values: Any,
    ) -> bool:
        """Conditionally move a source to `target`; False if another writer got there first."""
        allowed = set(expected) if expected is not None else set(crawl_sources_for(target))
        async with self._session_factory() as session:
            result = await session.execute(
                update(ContentSource)
                .where(ContentSource.id == source_id, ContentSource.crawl_status.in_(_values(allowed)))
                .values(crawl_status=target.value, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def transition(self, source_id: str, target: CrawlStatus, **values: Any) -> None:
        if await self.try_transition(source_id, target, **values):
            return
        source = await self.require(source_id)
        ensure_crawl_transition(CrawlStatus(source.crawl_status), target)
        # Status changed between the conditional update and the read; treat as a lost race.
        raise InvalidTransitionError(
            "crawl status changed concurrently",
            detail=f"{source.crawl_status} -> {target.value}",
        )

    async def mark_failed(self, source_id: str, error_message: str) -> None:
        moved = await self.try_transition(source_id, CrawlStatus.FAILED, error=error_message)
        if not moved:
            # Failure before the run left idle/completed: keep the status, record the error.
            await self.update_fields(source_id, error=error_message)


class PageRepository:
    """Repository for website page operations."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get(self, page_id: str) -> Optional[WebsitePage]:
        async with self._session_factory() as session:
            result = await session.execute(select(WebsitePage).where(WebsitePage.id == page_id))
            return result.scalar_one_or_none()

    async def require(self, page_id: str) -> WebsitePage:
        page = await self.get(page_id)
        if page is None:
            raise NotFoundError("website page not found", detail=page_id)
        return page

    async def list_urls(self, source_id: str) -> set[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(WebsitePage.url).where(WebsitePage.source_id == source_id))
            return set(result.scalars().all())

    async def add_discovered(self, source_id: str, pages: Iterable[DiscoveredPage]) -> int:
        """Insert pages in `discovered` status; URLs already known for the source are ignored."""
        async with self._session_factory() as session:
            known = set(
                (await session.execute(select(WebsitePage.url).where(WebsitePage.source_id == source_id)))
                .scalars()
                .all()
            )
            inserted = 0
            for page in pages:
                if page.url in known:
                    continue
                known.add(page.url)
                session.add(
                    WebsitePage(
                        id=_new_id(),
                        source_id=source_id,
                        url=page.url,
                        path=urlparse(page.url).path or "/",
                        title=page.title,
                        status=PageStatus.DISCOVERED.value,
                        discovered_at=utcnow(),
                        updated_at=utcnow(),
                    )
                )
                inserted += 1
            await session.commit()
            return inserted

    async def count(self, source_id: str, statuses: Iterable[PageStatus] | None = None) -> int:
        stmt = select(func.count()).select_from(WebsitePage).where(WebsitePage.source_id == source_id)
        if statuses is not None:
            stmt = stmt.where(WebsitePage.status.in_(_values(statuses)))
        async with self._session_factory() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def count_by_status(self, source_id: str, *, since: datetime | None = None) -> dict[str, int]:
        """Page counts per status; with `since`, only pages written at or after it."""
        stmt = select(WebsitePage.status, func.count()).where(WebsitePage.source_id == source_id)
        if since is not None:
            stmt = stmt.where(WebsitePage.updated_at >= since)
        async with self._session_factory() as session:
            result = await session.execute(stmt.group_by(WebsitePage.status))
            counts = {s.value: 0 for s in PageStatus}
            for status, n in result.all():
                counts[status] = int(n)
            return counts

    async def list_by_status(self, source_id: str, statuses: Iterable[PageStatus]) -> list[WebsitePage]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebsitePage)
                .where(WebsitePage.source_id == source_id, WebsitePage.status.in_(_values(statuses)))
                .order_by(WebsitePage.discovered_at, WebsitePage.url)
            )
            return list(result.scalars().all())

    async def list_eligible(
        self,
        source_id: str,
        *,
        incremental: bool,
        stale_before: datetime,
    ) -> list[WebsitePage]:
        """Relevant pages due for parsing in this run.

        Pages still sitting in `relevant` were queued by an interrupted run and are
        always due; otherwise an incremental run only picks pages never scraped or
        last scraped before `stale_before`.
        """
        terminal = [PageStatus.SCRAPED.value, PageStatus.FAILED.value]
        if incremental:
            due = and_(
                WebsitePage.status.in_(terminal),
                or_(WebsitePage.last_scraped_at.is_(None), WebsitePage.last_scraped_at < stale_before),
            )
        else:
            due = WebsitePage.status.in_(terminal)
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebsitePage)
                .where(
                    WebsitePage.source_id == source_id,
                    or_(WebsitePage.status == PageStatus.RELEVANT.value, due),
                )
                .order_by(WebsitePage.discovered_at, WebsitePage.url)
            )
            return list(result.scalars().all())

    async def try_transition(self, page_id: str, target: PageStatus, **values: Any) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(WebsitePage)
                .where(WebsitePage.id == page_id, WebsitePage.status.in_(_values(page_sources_for(target))))
                .values(status=target.value, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def transition(self, page_id: str, target: PageStatus, **values: Any) -> None:
        if await self.try_transition(page_id, target, **values):
            return
        page = await self.require(page_id)
        ensure_page_transition(PageStatus(page.status), target)
        raise InvalidTransitionError(
            "page status changed concurrently",
            detail=f"{page.status} -> {target.value}",
        )

    async def apply_score(self, page_id: str, score: float) -> PageStatus:
        status = PageStatus.RELEVANT if is_relevant(score) else PageStatus.SKIPPED
        await self.transition(page_id, status, relevance_score=score)
        return status

    async def requeue(self, page_id: str) -> None:
        await self.transition(page_id, PageStatus.RELEVANT)

    async def mark_failed(self, page_id: str, error_message: str) -> None:
        await self.transition(page_id, PageStatus.FAILED, error=error_message)

    async def last_activity_at(self, source_id: str) -> Optional[datetime]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.max(WebsitePage.updated_at)).where(WebsitePage.source_id == source_id)
            )
            return result.scalar_one_or_none()

    async def requeue_stalled(self, source_id: str) -> int:
        """Put pages stuck in `scraping` back to `relevant`; returns how many moved."""
        current, target = STALLED_PAGE_RECOVERY
        async with self._session_factory() as session:
            result = await session.execute(
                update(WebsitePage)
                .where(WebsitePage.source_id == source_id, WebsitePage.status == current.value)
                .values(status=target.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount or 0


class ChunkRepository:
    """Repository for extracted chunks (`scraped_contents`)."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def replace_for_page(self, source_id: str, page_id: str, chunks: list[ContentChunk]) -> int:
        """Delete every chunk of the page and insert the new set in one transaction."""
        async with self._session_factory() as session:
            await session.execute(delete(ScrapedContent).where(ScrapedContent.page_id == page_id))
            self._add_chunks(session, source_id, page_id, chunks)
            await session.commit()
        return len(chunks)

    async def replace_for_source(self, source_id: str, chunks: list[ContentChunk]) -> int:
        """Same as `replace_for_page` for sources without a page layer."""
        async with self._session_factory() as session:
            await session.execute(
                delete(ScrapedContent).where(
                    ScrapedContent.source_id == source_id,
                    ScrapedContent.page_id.is_(None),
                )
            )
            self._add_chunks(session, source_id, None, chunks)
            await session.commit()
        return len(chunks)

    def _add_chunks(
        self,
        session: AsyncSession,
        source_id: str,
        page_id: str | None,
        chunks: list[ContentChunk],
    ) -> None:
        now = utcnow()
        for position, chunk in enumerate(chunks):
            session.add(
                ScrapedContent(
                    id=_new_id(),
                    source_id=source_id,
                    page_id=page_id,
                    # Stored indices are always the contiguous insertion order.
                    chunk_index=position,
                    section_title=chunk.title,
                    text=chunk.content,
                    used_for_generation=False,
                    created_at=now,
                )
            )

    async def list_for_page(self, page_id: str) -> list[ScrapedContent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScrapedContent)
                .where(ScrapedContent.page_id == page_id)
                .order_by(ScrapedContent.chunk_index)
            )
            return list(result.scalars().all())

    async def list_for_source(self, source_id: str) -> list[ScrapedContent]:
        """Chunks owned directly by the source (webpage/document sources)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScrapedContent)
                .where(ScrapedContent.source_id == source_id, ScrapedContent.page_id.is_(None))
                .order_by(ScrapedContent.chunk_index)
            )
            return list(result.scalars().all())


class CrawlRunRepository:
    """Repository for crawl run audit records."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def create_run(self, source_id: str) -> CrawlRun:
        async with self._session_factory() as session:
            run = CrawlRun(
                id=_new_id(),
                source_id=source_id,
                status=RunStatus.RUNNING.value,
                started_at=utcnow(),
            )
            session.add(run)
            await session.commit()
            return run

    async def get(self, run_id: str) -> Optional[CrawlRun]:
        async with self._session_factory() as session:
            result = await session.execute(select(CrawlRun).where(CrawlRun.id == run_id))
            return result.scalar_one_or_none()

    async def get_latest(self, source_id: str) -> Optional[CrawlRun]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CrawlRun)
                .where(CrawlRun.source_id == source_id)
                .order_by(CrawlRun.started_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_latest_running(self, source_id: str) -> Optional[CrawlRun]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CrawlRun)
                .where(CrawlRun.source_id == source_id, CrawlRun.status == RunStatus.RUNNING.value)
                .order_by(CrawlRun.started_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def record_discovery(self, run_id: str, *, pages_found: int, new_pages: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(CrawlRun)
                .where(CrawlRun.id == run_id)
                .values(pages_found=pages_found, new_pages=new_pages)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def close_run(
        self,
        run_id: str,
        status: RunStatus,
        *,
        error: str | None = None,
        pages_scraped: int | None = None,
        pages_failed: int | None = None,
    ) -> bool:
        """Close a running run; False if it was already closed."""
        values: dict[str, Any] = {"status": status.value, "error": error, "completed_at": utcnow()}
        if pages_scraped is not None:
            values["pages_scraped"] = pages_scraped
        if pages_failed is not None:
            values["pages_failed"] = pages_failed
        async with self._session_factory() as session:
            result = await session.execute(
                update(CrawlRun)
                .where(CrawlRun.id == run_id, CrawlRun.status == RunStatus.RUNNING.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def close_latest_running(
        self,
        source_id: str,
        status: RunStatus,
        *,
        error: str | None = None,
        pages_scraped: int | None = None,
        pages_failed: int | None = None,
    ) -> bool:
        run = await self.get_latest_running(source_id)
        if run is None:
            logger.warning("crawl_run_not_found_for_close", source_id=source_id)
            return False
        return await self.close_run(
            run.id,
            status,
            error=error,
            pages_scraped=pages_scraped,
            pages_failed=pages_failed,
        )
