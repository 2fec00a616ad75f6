"""OpenAI adapter.

Also works against OpenAI-compatible APIs via `base_url`.
"""

from __future__ import annotations

import os

import openai
from openai import AsyncOpenAI

from ..domain.errors import ContentProcessingError, NetworkTimeoutError
from ..observability.logger import get_logger
from .runtime import LLMRequest, LLMRuntime

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant that responds in JSON format when requested."


class OpenAIAdapter(LLMRuntime):
    def __init__(self, *, api_key: str | None = None, base_url: str | None = None):
        """
        Args:
            api_key: OpenAI API key. If None, reads from OPENAI_API_KEY env var.
            base_url: Custom base URL (for OpenAI-compatible APIs). If None, uses OpenAI default.
        """
        self._api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        if not self._api_key:
            raise ValueError("OpenAI API key required. Set OPENAI_API_KEY env var or pass api_key parameter.")

        self._base_url = base_url or "https://api.openai.com/v1"
        self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)

    async def complete(self, req: LLMRequest) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=req.model,
                messages=[
                    {"role": "system", "content": req.system_prompt or DEFAULT_SYSTEM_PROMPT},
                    {"role": "user", "content": req.prompt},
                ],
                temperature=float(req.temperature),
                max_tokens=int(req.max_tokens),
                timeout=max(1, int(req.timeout_seconds)),
            )
        except openai.APITimeoutError as e:
            raise NetworkTimeoutError("openai_timeout", detail=str(e)) from e
        except openai.OpenAIError as e:
            raise ContentProcessingError("openai_request_failed", detail=str(e)) from e

        if not response.choices:
            raise ContentProcessingError("openai_response_invalid", detail="no choices in response")
        text = response.choices[0].message.content or ""
        logger.debug("openai_completion", model=req.model, response_chars=len(text))
        return text
