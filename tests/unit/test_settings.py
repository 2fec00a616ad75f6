from __future__ import annotations

import pytest

from ingestion.config.settings import IngestionSettings, get_settings, reset_settings


def test_defaults_are_valid() -> None:
    s = IngestionSettings()
    s.validate()
    assert s.page_fetch_timeout_ms == 15000
    assert s.webpage_fetch_timeout_ms == 30000
    assert s.min_content_length == 100
    assert (s.discovery_max_depth, s.discovery_max_visited_pages) == (3, 150)
    assert s.crawl_stall_timeout_s == 1800


@pytest.mark.parametrize(
    "overrides",
    [
        {"llm_provider": "anthropic"},
        {"fallback_min_chunk_chars": 5000, "fallback_max_chunk_chars": 4000},
        {"page_parse_worker_concurrency": 0},
        {"relevance_batch_size": 0},
        {"crawl_stall_timeout_s": 0},
    ],
)
def test_validate_rejects_bad_values(overrides) -> None:
    with pytest.raises(ValueError):
        IngestionSettings(**overrides).validate()


def test_get_settings_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("PAGE_PARSE_WORKER_CONCURRENCY", "9")
    reset_settings()
    try:
        s = get_settings()
        assert s.llm_provider == "openai"
        assert s.page_parse_worker_concurrency == 9
        assert get_settings() is s
    finally:
        reset_settings()
