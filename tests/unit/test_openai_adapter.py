from __future__ import annotations

import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from ingestion.domain.errors import ContentProcessingError, NetworkTimeoutError
from ingestion.llm.openai_adapter import DEFAULT_SYSTEM_PROMPT, OpenAIAdapter
from ingestion.llm.runtime import LLMRequest

REQ = LLMRequest(
    prompt="Split this",
    provider="openai",
    model="gpt-4o",
    temperature=0.3,
    max_tokens=8000,
    timeout_seconds=30,
)


def _adapter(create) -> OpenAIAdapter:
    adapter = OpenAIAdapter(api_key="sk-test")
    adapter._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return adapter


def _response(*contents):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=c)) for c in contents])


def test_complete_sends_messages_and_returns_content() -> None:
    calls: list[dict] = []

    async def create(**kwargs):
        calls.append(kwargs)
        return _response('[{"title": "A", "content": "x"}]')

    text = asyncio.run(_adapter(create).complete(REQ))

    assert text == '[{"title": "A", "content": "x"}]'
    assert calls[0]["messages"][0] == {"role": "system", "content": DEFAULT_SYSTEM_PROMPT}
    assert (calls[0]["model"], calls[0]["max_tokens"], calls[0]["timeout"]) == ("gpt-4o", 8000, 30)


def test_timeout_maps_to_network_timeout() -> None:
    async def create(**kwargs):
        raise openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

    with pytest.raises(NetworkTimeoutError):
        asyncio.run(_adapter(create).complete(REQ))


def test_api_errors_and_empty_choices_map_to_content_errors() -> None:
    async def failing(**kwargs):
        raise openai.OpenAIError("rate limited")

    async def empty(**kwargs):
        return _response()

    with pytest.raises(ContentProcessingError) as failed:
        asyncio.run(_adapter(failing).complete(REQ))
    assert failed.value.info.message == "openai_request_failed"

    with pytest.raises(ContentProcessingError) as invalid:
        asyncio.run(_adapter(empty).complete(REQ))
    assert invalid.value.info.message == "openai_response_invalid"


def test_missing_api_key_is_rejected(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        OpenAIAdapter(api_key=None)
