from __future__ import annotations

import asyncio
import json

import pytest
from sqlalchemy.exc import OperationalError

from fakes import FakeFetcher, FakeLLM, article_html
from ingestion.domain.errors import NetworkTimeoutError
from ingestion.domain.models import ContentChunk, CrawlStatus, DiscoveredPage, PageStatus
from ingestion.queues.jobs import PageParseJobPayload
from ingestion.services.content_extractor import ContentExtractor
from ingestion.utils.content_hash import hash_content

ROOT = "https://x.com"
URL = "https://x.com/blog/fermentation-basics"
TEXT = "Fermentation turns sugars into acids, gases or alcohol with the help of microbes. " * 5


async def _queued_page(c, url: str = URL, *, skip_chunking: bool = False):
    """A website source in `scraping` with one relevant page."""
    source = await c.sources.create_source(url=ROOT, skip_chunking=skip_chunking)
    await c.pages.add_discovered(source.id, [DiscoveredPage(url=url, is_new=True)])
    page = (await c.pages.list_by_status(source.id, [PageStatus.DISCOVERED]))[0]
    await c.pages.apply_score(page.id, 0.9)
    await c.sources.update_fields(source.id, crawl_status=CrawlStatus.SCRAPING.value)
    return source, page


def test_parse_writes_chunks_and_finalizes(make_container) -> None:
    async def scenario() -> None:
        response = json.dumps([{"title": "One", "content": "first"}, {"title": "Two", "content": "second"}])
        llm = FakeLLM(chunk_fn=lambda text: response)
        c = await make_container(llm=llm, fetcher=FakeFetcher(pages={URL: article_html(TEXT, title="Fermentation")}))
        try:
            source, page = await _queued_page(c)
            result = await c.page_parser.parse(
                PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL)
            )

            assert result.status == PageStatus.SCRAPED
            assert result.chunks_written == 2
            stored = await c.pages.get(page.id)
            assert stored.status == PageStatus.SCRAPED.value
            assert stored.title == "Fermentation"
            assert stored.content_hash is not None
            assert stored.last_scraped_at is not None
            chunks = await c.chunks.list_for_page(page.id)
            assert [(ch.chunk_index, ch.section_title, ch.text) for ch in chunks] == [(0, "One", "first"), (1, "Two", "second")]
            assert (await c.sources.get(source.id)).crawl_status == CrawlStatus.COMPLETED.value
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_unchanged_content_skips_chunk_writes(make_container) -> None:
    async def scenario() -> None:
        html = article_html(TEXT, title="Fermentation")
        llm = FakeLLM()
        c = await make_container(llm=llm, fetcher=FakeFetcher(pages={URL: html}))
        try:
            source, page = await _queued_page(c)
            await c.chunks.replace_for_page(source.id, page.id, [ContentChunk(index=0, title="Old", content="kept")])
            before = [ch.id for ch in await c.chunks.list_for_page(page.id)]
            previous = hash_content(ContentExtractor().extract(html, URL).content)

            result = await c.page_parser.parse(
                PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL, previous_hash=previous)
            )

            assert result.unchanged is True
            assert llm.chunk_calls == 0
            assert [ch.id for ch in await c.chunks.list_for_page(page.id)] == before
            stored = await c.pages.get(page.id)
            assert stored.status == PageStatus.SCRAPED.value
            assert stored.last_scraped_at is not None
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_short_content_fails_page_without_chunks(make_container) -> None:
    async def scenario() -> None:
        html = "<html><body><p>" + "x" * 80 + "</p></body></html>"
        c = await make_container(fetcher=FakeFetcher(pages={URL: html}))
        try:
            source, page = await _queued_page(c)
            result = await c.page_parser.parse(
                PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL)
            )

            assert result.status == PageStatus.FAILED
            stored = await c.pages.get(page.id)
            assert stored.status == PageStatus.FAILED.value
            assert stored.error == "Content too short"
            assert await c.chunks.list_for_page(page.id) == []
            # The only page failed, so the crawl fails too.
            done = await c.sources.get(source.id)
            assert done.crawl_status == CrawlStatus.FAILED.value
            assert done.error == "All 1 pages failed to parse"
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_fetch_error_marks_page_failed_without_raising(make_container) -> None:
    async def scenario() -> None:
        fetcher = FakeFetcher(pages={URL: NetworkTimeoutError("Request timed out after 15000ms", detail=URL)})
        c = await make_container(fetcher=fetcher)
        try:
            source, page = await _queued_page(c)
            result = await c.page_parser.parse(
                PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL)
            )
            assert result.status == PageStatus.FAILED
            assert (await c.pages.get(page.id)).error == "Request timed out after 15000ms"
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_reparse_replaces_chunk_set(make_container) -> None:
    async def scenario() -> None:
        fetcher = FakeFetcher(pages={URL: article_html(TEXT)})
        c = await make_container(fetcher=fetcher)
        try:
            source, page = await _queued_page(c)
            payload = PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL)
            await c.page_parser.parse(payload)
            first_hash = (await c.pages.get(page.id)).content_hash

            # Next run: content changed, page re-queued.
            fetcher.pages[URL] = article_html(TEXT + " A new closing paragraph.")
            await c.sources.update_fields(source.id, crawl_status=CrawlStatus.SCRAPING.value)
            await c.pages.requeue(page.id)
            await c.page_parser.parse(payload.model_copy(update={"previous_hash": first_hash}))

            chunks = await c.chunks.list_for_page(page.id)
            assert [ch.chunk_index for ch in chunks] == [0]
            assert "A new closing paragraph." in chunks[0].text
            assert (await c.pages.get(page.id)).content_hash != first_hash
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_skip_chunking_stores_single_chunk(make_container) -> None:
    async def scenario() -> None:
        llm = FakeLLM()
        c = await make_container(llm=llm, fetcher=FakeFetcher(pages={URL: article_html(TEXT, title="Whole")}))
        try:
            source, page = await _queued_page(c, skip_chunking=True)
            await c.page_parser.parse(PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL))
            chunks = await c.chunks.list_for_page(page.id)
            assert [(ch.chunk_index, ch.section_title) for ch in chunks] == [(0, "Whole")]
            assert llm.chunk_calls == 0
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_duplicate_delivery_of_finished_page_is_a_noop(make_container) -> None:
    async def scenario() -> None:
        fetcher = FakeFetcher(pages={URL: article_html(TEXT)})
        c = await make_container(fetcher=fetcher)
        try:
            source, page = await _queued_page(c)
            payload = PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL)
            await c.page_parser.parse(payload)
            chunk_ids = [ch.id for ch in await c.chunks.list_for_page(page.id)]
            fetched = len(fetcher.fetched)

            again = await c.page_parser.parse(payload)

            assert again.status == PageStatus.SCRAPED
            assert len(fetcher.fetched) == fetched
            assert [ch.id for ch in await c.chunks.list_for_page(page.id)] == chunk_ids
            assert (await c.sources.get(source.id)).crawl_status == CrawlStatus.COMPLETED.value
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_crawl_waits_for_every_page(make_container) -> None:
    async def scenario() -> None:
        other = "https://x.com/blog/second-post"
        fetcher = FakeFetcher(pages={URL: article_html(TEXT), other: article_html(TEXT)})
        c = await make_container(fetcher=fetcher)
        try:
            source, page = await _queued_page(c)
            await c.pages.add_discovered(source.id, [DiscoveredPage(url=other, is_new=True)])
            second = (await c.pages.list_by_status(source.id, [PageStatus.DISCOVERED]))[0]
            await c.pages.apply_score(second.id, 0.3)

            await c.page_parser.parse(PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL))
            assert (await c.sources.get(source.id)).crawl_status == CrawlStatus.SCRAPING.value

            await c.page_parser.parse(PageParseJobPayload(source_id=source.id, page_id=second.id, page_url=other))
            done = await c.sources.get(source.id)
            assert done.crawl_status == CrawlStatus.COMPLETED.value
            assert done.pages_scraped == 2
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_database_error_propagates_and_keeps_previous_chunks(make_container) -> None:
    async def scenario() -> None:
        c = await make_container(fetcher=FakeFetcher(pages={URL: article_html(TEXT)}))
        try:
            source, page = await _queued_page(c)
            await c.chunks.replace_for_page(source.id, page.id, [ContentChunk(index=0, title="Old", content="kept")])
            before = [(ch.id, ch.text) for ch in await c.chunks.list_for_page(page.id)]

            async def db_down(*args, **kwargs):
                raise OperationalError("DELETE FROM scraped_contents", {}, Exception("database is locked"))

            finalize_calls: list[str] = []
            check_and_finalize = c.finalizer.check_and_finalize

            async def recording_finalize(source_id: str) -> bool:
                finalize_calls.append(source_id)
                return await check_and_finalize(source_id)

            c.chunks.replace_for_page = db_down
            c.finalizer.check_and_finalize = recording_finalize

            with pytest.raises(OperationalError):
                await c.page_parser.parse(PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL))

            del c.chunks.replace_for_page
            stored = await c.pages.get(page.id)
            assert stored.status == PageStatus.SCRAPING.value
            assert stored.error is None
            assert finalize_calls == [source.id]
            assert [(ch.id, ch.text) for ch in await c.chunks.list_for_page(page.id)] == before
            assert (await c.sources.get(source.id)).crawl_status == CrawlStatus.SCRAPING.value
        finally:
            await c.database.close()

    asyncio.run(scenario())


def test_unexpected_chunking_error_still_scrapes_the_page(make_container) -> None:
    async def scenario() -> None:
        def broken(text: str) -> str:
            raise json.JSONDecodeError("Expecting value", "<html>", 0)

        c = await make_container(
            llm=FakeLLM(chunk_fn=broken),
            fetcher=FakeFetcher(pages={URL: article_html(TEXT)}),
        )
        try:
            source, page = await _queued_page(c)
            result = await c.page_parser.parse(
                PageParseJobPayload(source_id=source.id, page_id=page.id, page_url=URL)
            )

            assert result.status == PageStatus.SCRAPED
            chunks = await c.chunks.list_for_page(page.id)
            assert len(chunks) == 1
            assert "Fermentation turns sugars" in chunks[0].text
            assert (await c.sources.get(source.id)).crawl_status == CrawlStatus.COMPLETED.value
        finally:
            await c.database.close()

    asyncio.run(scenario())
