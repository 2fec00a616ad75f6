"""Framework-agnostic domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Pages scored at or above this value are scraped; the rest are skipped.
RELEVANCE_THRESHOLD = 0.3


class SourceType(str, Enum):
    WEBSITE = "website"
    WEBPAGE = "webpage"
    DOCUMENT = "document"


class CrawlStatus(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    SCORING = "scoring"
    SCRAPING = "scraping"
    COMPLETED = "completed"
    FAILED = "failed"


class PageStatus(str, Enum):
    DISCOVERED = "discovered"
    RELEVANT = "relevant"
    SKIPPED = "skipped"
    SCRAPING = "scraping"
    SCRAPED = "scraped"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def is_relevant(score: float) -> bool:
    return score >= RELEVANCE_THRESHOLD


@dataclass(frozen=True)
class DiscoveredPage:
    url: str
    is_new: bool
    title: Optional[str] = None


@dataclass(frozen=True)
class PageInfo:
    url: str
    title: Optional[str] = None


@dataclass(frozen=True)
class ChannelContext:
    niche: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None


@dataclass(frozen=True)
class ScoredPage:
    url: str
    score: float


@dataclass(frozen=True)
class ContentChunk:
    index: int
    title: str
    content: str


@dataclass(frozen=True)
class ExtractedContent:
    title: str
    domain: str
    content: str


@dataclass(frozen=True)
class CrawlOutcome:
    source_id: str
    run_id: str
    pages_total: int
    new_pages: int
    pages_queued: int
    status: CrawlStatus


@dataclass(frozen=True)
class PageParseResult:
    page_id: str
    status: PageStatus
    chunks_written: int = 0
    unchanged: bool = False
    error: Optional[str] = None
