from __future__ import annotations

import pytest

from fakes import FakeDiscoverer, FakeFetcher, FakeLLM, RecordingDispatcher
from ingestion.config.settings import IngestionSettings
from ingestion.lifespan import build_container
from ingestion.storage.database import Database


@pytest.fixture
def settings() -> IngestionSettings:
    s = IngestionSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        llm_provider="ollama",
        http_enable=False,
        discovery_rate_limit_rps=0,
        # Sessions share one in-memory SQLite connection; keep jobs sequential.
        crawl_worker_concurrency=1,
        page_parse_worker_concurrency=1,
        webpage_parse_worker_concurrency=1,
    )
    s.validate()
    return s


@pytest.fixture
def make_container(settings):
    """Async factory for a fully wired container over a fresh in-memory database.

    Call it inside the coroutine passed to asyncio.run and close
    `container.database` when done.
    """

    async def _make(*, llm=None, fetcher=None, discoverer=None, dispatcher=None):
        database = Database(settings.database_url)
        await database.init()
        return build_container(
            settings,
            database,
            llm=llm or FakeLLM(),
            fetcher=fetcher or FakeFetcher(),
            discoverer=discoverer or FakeDiscoverer([]),
            dispatcher=dispatcher or RecordingDispatcher(),
        )

    return _make
