"""LLM runtime interface.

Chunking and relevance scoring talk to LLMs through this interface only, so
providers can be swapped by configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class LLMRequest:
    prompt: str
    provider: str
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: int
    system_prompt: Optional[str] = None


class LLMRuntime:
    async def complete(self, req: LLMRequest) -> str:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass(frozen=True)
class LLMProfile:
    """Provider/model pair plus sampling defaults for one kind of call."""

    provider: str
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: int

    def request(self, prompt: str, system_prompt: str | None = None) -> LLMRequest:
        return LLMRequest(
            prompt=prompt,
            system_prompt=system_prompt,
            provider=self.provider,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout_seconds=self.timeout_seconds,
        )


def build_llm_runtime(settings) -> LLMRuntime:
    provider = settings.llm_provider.strip().lower()
    if provider == "openai":
        from .openai_adapter import OpenAIAdapter

        return OpenAIAdapter(api_key=settings.openai_api_key, base_url=settings.openai_base_url)

    from .ollama_adapter import OllamaAdapter

    return OllamaAdapter(host=settings.ollama_host, port=settings.ollama_port)


def default_model(settings) -> str:
    if settings.llm_provider.strip().lower() == "openai":
        return settings.openai_default_model
    return settings.ollama_default_model


def chunking_profile(settings) -> LLMProfile:
    return LLMProfile(
        provider=settings.llm_provider.strip().lower(),
        model=default_model(settings),
        temperature=settings.llm_chunking_temperature,
        max_tokens=settings.llm_chunking_max_tokens,
        timeout_seconds=settings.llm_timeout_seconds,
    )


def scoring_profile(settings) -> LLMProfile:
    return LLMProfile(
        provider=settings.llm_provider.strip().lower(),
        model=default_model(settings),
        temperature=settings.llm_scoring_temperature,
        max_tokens=settings.llm_scoring_max_tokens,
        timeout_seconds=settings.llm_timeout_seconds,
    )
