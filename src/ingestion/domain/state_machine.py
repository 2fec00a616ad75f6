"""Allowed status transitions for sources and pages.

Writing the status an entity already has is always accepted so that retried
jobs can repeat a step without tripping validation.
"""

from __future__ import annotations

from .errors import InvalidTransitionError
from .models import CrawlStatus, PageStatus

CRAWL_TRANSITIONS: dict[CrawlStatus, frozenset[CrawlStatus]] = {
    CrawlStatus.IDLE: frozenset({CrawlStatus.DISCOVERING}),
    # A crashed run that never fanned out may be restarted by the dispatcher's retry.
    CrawlStatus.DISCOVERING: frozenset({CrawlStatus.SCORING, CrawlStatus.FAILED}),
    CrawlStatus.SCORING: frozenset({CrawlStatus.SCRAPING, CrawlStatus.DISCOVERING, CrawlStatus.FAILED}),
    CrawlStatus.SCRAPING: frozenset({CrawlStatus.COMPLETED, CrawlStatus.FAILED}),
    CrawlStatus.COMPLETED: frozenset({CrawlStatus.DISCOVERING}),
    CrawlStatus.FAILED: frozenset({CrawlStatus.DISCOVERING}),
}

PAGE_TRANSITIONS: dict[PageStatus, frozenset[PageStatus]] = {
    PageStatus.DISCOVERED: frozenset({PageStatus.RELEVANT, PageStatus.SKIPPED}),
    PageStatus.RELEVANT: frozenset({PageStatus.SCRAPING}),
    PageStatus.SCRAPING: frozenset({PageStatus.SCRAPED, PageStatus.FAILED}),
    # Re-queued by a new crawl run.
    PageStatus.SCRAPED: frozenset({PageStatus.RELEVANT}),
    PageStatus.FAILED: frozenset({PageStatus.RELEVANT}),
    PageStatus.SKIPPED: frozenset(),
}

CRAWL_ACTIVE_STATUSES = frozenset({CrawlStatus.DISCOVERING, CrawlStatus.SCORING, CrawlStatus.SCRAPING})
PAGE_TERMINAL_STATUSES = frozenset({PageStatus.SCRAPED, PageStatus.FAILED})
PAGE_PENDING_STATUSES = frozenset({PageStatus.RELEVANT, PageStatus.SCRAPING})

# Recovery edges for a crawl whose page jobs were lost (retries exhausted or a
# restart dropped the queue). Outside the tables above: only a new crawl run
# taking over a stalled source writes them.
STALLED_CRAWL_RECOVERY = (CrawlStatus.SCRAPING, CrawlStatus.DISCOVERING)
STALLED_PAGE_RECOVERY = (PageStatus.SCRAPING, PageStatus.RELEVANT)


def can_transition_crawl(current: CrawlStatus, target: CrawlStatus) -> bool:
    return current == target or target in CRAWL_TRANSITIONS.get(current, frozenset())


def can_transition_page(current: PageStatus, target: PageStatus) -> bool:
    return current == target or target in PAGE_TRANSITIONS.get(current, frozenset())


def crawl_sources_for(target: CrawlStatus) -> frozenset[CrawlStatus]:
    """All crawl statuses from which `target` may be written."""
    return frozenset(s for s in CrawlStatus if can_transition_crawl(s, target))


def page_sources_for(target: PageStatus) -> frozenset[PageStatus]:
    """All page statuses from which `target` may be written."""
    return frozenset(s for s in PageStatus if can_transition_page(s, target))


def ensure_crawl_transition(current: CrawlStatus, target: CrawlStatus) -> None:
    if not can_transition_crawl(current, target):
        raise InvalidTransitionError(
            "illegal crawl status transition",
            detail=f"{current.value} -> {target.value}",
        )


def ensure_page_transition(current: PageStatus, target: PageStatus) -> None:
    if not can_transition_page(current, target):
        raise InvalidTransitionError(
            "illegal page status transition",
            detail=f"{current.value} -> {target.value}",
        )
