"""In-memory stand-ins for the network-facing collaborators."""

from __future__ import annotations

import json
import re
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import update

from ingestion.domain.errors import ContentProcessingError, IngestionDomainError
from ingestion.domain.models import DiscoveredPage
from ingestion.llm.runtime import LLMRequest, LLMRuntime
from ingestion.models.database import ContentSource, WebsitePage
from ingestion.queues.dispatcher import InProcessDispatcher, QueuedJob
from ingestion.queues.jobs import JobOptions, JobPayload
from ingestion.scraping.http_fetcher import FetchedPage
from ingestion.utils.time import utcnow

_PAGE_LINE_RE = re.compile(r"^(\d+)\. URL: (\S+)", re.MULTILINE)
CHUNK_PREFIX = "Split this web page content into logical sections:\n\n"


def article_html(body: str, title: str = "Article") -> str:
    return f"<html><head><title>{title}</title></head><body><article><h1>{title}</h1><p>{body}</p></article></body></html>"


class FakeLLM(LLMRuntime):
    """Answers scoring and chunking prompts.

    score_fn(url) -> float and chunk_fn(text) -> raw response decide the answers;
    either may raise to simulate a provider error.
    """

    def __init__(
        self,
        *,
        score_fn: Optional[Callable[[str], float]] = None,
        chunk_fn: Optional[Callable[[str], str]] = None,
    ):
        self._score_fn = score_fn or (lambda url: 0.9)
        self._chunk_fn = chunk_fn or (lambda text: json.dumps([{"title": "Part", "content": text}]))
        self.requests: list[LLMRequest] = []

    async def complete(self, req: LLMRequest) -> str:
        self.requests.append(req)
        if req.prompt.startswith(CHUNK_PREFIX):
            return self._chunk_fn(req.prompt[len(CHUNK_PREFIX) :])
        entries = [
            {"index": int(idx), "score": self._score_fn(url)} for idx, url in _PAGE_LINE_RE.findall(req.prompt)
        ]
        return json.dumps(entries)

    @property
    def chunk_calls(self) -> int:
        return sum(1 for r in self.requests if r.prompt.startswith(CHUNK_PREFIX))


class FakeFetcher:
    """Serves canned HTML per URL; values may be exceptions to raise."""

    def __init__(self, pages: Optional[dict] = None, texts: Optional[dict] = None):
        self.pages = dict(pages or {})
        self.texts = dict(texts or {})
        self.fetched: list[str] = []

    async def fetch_html(self, url: str, timeout_ms: int | None = None) -> FetchedPage:
        self.fetched.append(url)
        value = self.pages.get(url)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise ContentProcessingError("HTTP 404: Not Found", detail=url)
        return FetchedPage(url=url, html=value)

    async def fetch_text(self, url: str, timeout_ms: int | None = None) -> str | None:
        self.fetched.append(url)
        value = self.texts.get(url)
        if isinstance(value, IngestionDomainError):
            raise value
        return value


class FakeDiscoverer:
    def __init__(self, urls: list[str], *, error: Optional[Exception] = None):
        self.urls = list(urls)
        self.error = error
        self.calls: list[dict] = []

    async def discover(self, root_url, *, max_pages, filter_patterns=None, existing_urls=None):
        self.calls.append({"root_url": root_url, "max_pages": max_pages, "existing_urls": set(existing_urls or ())})
        if self.error is not None:
            raise self.error
        known = existing_urls or set()
        return [DiscoveredPage(url=u, is_new=u not in known) for u in self.urls[:max_pages]]


class RecordingDispatcher(InProcessDispatcher):
    """Records enqueued jobs instead of running them."""

    def __init__(self):
        super().__init__(retry_delay_scale=0)
        self.jobs: list[QueuedJob] = []

    async def enqueue(self, queue_name: str, job_name: str, payload: JobPayload, options: Optional[JobOptions] = None) -> str:
        job = QueuedJob(
            id=f"job-{len(self.jobs) + 1}",
            queue_name=queue_name,
            job_name=job_name,
            data=payload.to_wire(),
            options=options or JobOptions(),
        )
        self.jobs.append(job)
        return job.id


async def backdate_activity(container, source_id: str, by: timedelta) -> None:
    """Set `updated_at` of the source and all its pages to `by` ago."""
    past = utcnow() - by
    async with container.database.session_factory() as session:
        await session.execute(
            update(ContentSource)
            .where(ContentSource.id == source_id)
            .values(updated_at=past)
        )
        await session.execute(
            update(WebsitePage)
            .where(WebsitePage.source_id == source_id)
            .values(updated_at=past)
        )
        await session.commit()
