from __future__ import annotations

import asyncio
from datetime import timedelta

from fakes import backdate_activity
from ingestion.domain.models import CrawlStatus, DiscoveredPage, PageStatus, RunStatus


async def _source_with_pages(c, n: int):
    source = await c.sources.create_source(url="https://x.com")
    await c.pages.add_discovered(
        source.id, [DiscoveredPage(url=f"https://x.com/blog/p-{i}", is_new=True) for i in range(n)]
    )
    pages = await c.pages.list_by_status(source.id, [PageStatus.DISCOVERED])
    for p in pages:
        await c.pages.apply_score(p.id, 0.9)
        await c.pages.transition(p.id, PageStatus.SCRAPING)
    await c.sources.update_fields(source.id, crawl_status=CrawlStatus.SCRAPING.value)
    await c.runs.create_run(source.id)
    return source, pages


def test_does_not_finalize_while_a_page_is_scraping(make_container) -> None:
    async def scenario() -> None:
        c = await make_container()
        try:
            source, pages = await _source_with_pages(c, 2)
            await c.pages.transition(pages[0].id, PageStatus.SCRAPED)

            assert await c.finalizer.check_and_finalize(source.id) is False
            assert (await c.sources.get(source.id)).crawl_status == CrawlStatus.SCRAPING.value
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_all_pages_failed_fails_the_crawl(make_container) -> None:
    async def scenario() -> None:
        c = await make_container()
        try:
            source, pages = await _source_with_pages(c, 3)
            for p in pages:
                await c.pages.mark_failed(p.id, "boom")

            assert await c.finalizer.check_and_finalize(source.id) is True
            done = await c.sources.get(source.id)
            assert done.crawl_status == CrawlStatus.FAILED.value
            assert done.error == "All 3 pages failed to parse"
            assert done.last_scraped_at is None
            run = await c.runs.get_latest(source.id)
            assert (run.status, run.pages_failed) == (RunStatus.FAILED.value, 3)
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_partial_failure_still_completes(make_container) -> None:
    async def scenario() -> None:
        c = await make_container()
        try:
            source, pages = await _source_with_pages(c, 2)
            await c.pages.transition(pages[0].id, PageStatus.SCRAPED)
            await c.pages.mark_failed(pages[1].id, "boom")

            assert await c.finalizer.check_and_finalize(source.id) is True
            done = await c.sources.get(source.id)
            assert done.crawl_status == CrawlStatus.COMPLETED.value
            assert done.pages_scraped == 1
            assert done.error is None
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_duplicate_finalization_is_harmless(make_container) -> None:
    async def scenario() -> None:
        c = await make_container()
        try:
            source, pages = await _source_with_pages(c, 2)
            for p in pages:
                await c.pages.transition(p.id, PageStatus.SCRAPED)

            assert await c.finalizer.check_and_finalize(source.id) is True
            run = await c.runs.get_latest(source.id)
            assert run.status == RunStatus.COMPLETED.value
            assert run.pages_scraped == 2
            first_completed_at = run.completed_at

            # Every page job calls the finalizer; only the first one wins.
            for _ in range(3):
                assert await c.finalizer.check_and_finalize(source.id) is False
            assert (await c.runs.get_latest(source.id)).completed_at == first_completed_at
            # The conditional write alone refuses a second terminal transition.
            assert not await c.sources.try_transition(
                source.id, CrawlStatus.FAILED, expected=[CrawlStatus.SCRAPING]
            )
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_ignores_sources_not_scraping(make_container) -> None:
    async def scenario() -> None:
        c = await make_container()
        try:
            source = await c.sources.create_source(url="https://x.com")
            assert await c.finalizer.check_and_finalize(source.id) is False
            assert await c.finalizer.check_and_finalize("missing") is False
            assert (await c.sources.get(source.id)).crawl_status == CrawlStatus.IDLE.value
        finally:
            await c.database.close()

    asyncio.run(scenario())


async def _incremental_run(c, n: int):
    """n pages scraped by an earlier run, then a new run that re-queues only the first."""
    source, pages = await _source_with_pages(c, n)
    for p in pages:
        await c.pages.transition(p.id, PageStatus.SCRAPED)
    await c.finalizer.check_and_finalize(source.id)
    await backdate_activity(c, source.id, timedelta(days=10))

    await c.sources.update_fields(source.id, crawl_status=CrawlStatus.SCRAPING.value)
    await c.runs.create_run(source.id)
    await c.pages.requeue(pages[0].id)
    await c.pages.transition(pages[0].id, PageStatus.SCRAPING)
    return source, pages


def test_incremental_run_fails_when_every_requeued_page_fails(make_container) -> None:
    async def scenario() -> None:
        c = await make_container()
        try:
            source, pages = await _incremental_run(c, 3)
            await c.pages.mark_failed(pages[0].id, "boom")

            assert await c.finalizer.check_and_finalize(source.id) is True
            done = await c.sources.get(source.id)
            assert done.crawl_status == CrawlStatus.FAILED.value
            assert done.error == "All 1 pages failed to parse"
            run = await c.runs.get_latest(source.id)
            assert (run.status, run.pages_scraped, run.pages_failed) == (RunStatus.FAILED.value, 0, 1)
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_incremental_run_counts_only_its_own_pages(make_container) -> None:
    async def scenario() -> None:
        c = await make_container()
        try:
            source, pages = await _incremental_run(c, 3)
            await c.pages.transition(pages[0].id, PageStatus.SCRAPED)

            assert await c.finalizer.check_and_finalize(source.id) is True
            done = await c.sources.get(source.id)
            assert done.crawl_status == CrawlStatus.COMPLETED.value
            # Source keeps the total; the run records what it did.
            assert done.pages_scraped == 3
            run = await c.runs.get_latest(source.id)
            assert (run.pages_scraped, run.pages_failed) == (1, 0)
        finally:
            await c.database.close()

    asyncio.run(scenario())
