"""Ollama adapter (POST /api/generate, non-streaming)."""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

from ..domain.errors import ContentProcessingError, NetworkTimeoutError
from ..observability.logger import get_logger
from .runtime import LLMRequest, LLMRuntime

logger = get_logger(__name__)


def build_generate_payload(req: LLMRequest) -> dict[str, Any]:
    # No `format: "json"`: it forces a JSON object, and both chunking and
    # scoring ask for a top-level array.
    payload: dict[str, Any] = {
        "model": req.model,
        "prompt": req.prompt,
        "stream": False,
        "options": {
            "temperature": float(req.temperature),
            "num_predict": int(req.max_tokens),
        },
    }
    if req.system_prompt:
        payload["system"] = req.system_prompt
    return payload


class OllamaAdapter(LLMRuntime):
    def __init__(self, *, host: str, port: int):
        self._generate_url = f"http://{host}:{port}/api/generate"

    async def complete(self, req: LLMRequest) -> str:
        timeout = aiohttp.ClientTimeout(total=max(1, int(req.timeout_seconds)))
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self._generate_url, json=build_generate_payload(req)) as resp:
                    if resp.status == 404:
                        raise ContentProcessingError("ollama_model_not_found", detail=req.model)
                    if resp.status >= 400:
                        body = await resp.text()
                        raise ContentProcessingError(
                            "ollama_request_failed",
                            detail=f"status={resp.status} body={body[:500]}",
                        )
                    data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                f"LLM request timed out after {req.timeout_seconds}s", detail=req.model
            ) from e
        except aiohttp.ClientError as e:
            raise ContentProcessingError("ollama_unreachable", detail=str(e)) from e
        except ValueError as e:
            # Body was not JSON.
            raise ContentProcessingError("ollama_response_invalid", detail=str(e)) from e

        return self._response_text(data, req)

    @staticmethod
    def _response_text(data: Any, req: LLMRequest) -> str:
        if not isinstance(data, dict):
            raise ContentProcessingError("ollama_response_invalid")
        if data.get("error"):
            raise ContentProcessingError("ollama_error", detail=str(data["error"]))
        text = data.get("response")
        if not isinstance(text, str):
            raise ContentProcessingError("ollama_response_invalid")
        if data.get("done_reason") == "length":
            logger.warning("ollama_output_truncated", model=req.model, max_tokens=req.max_tokens)
        logger.debug("ollama_completion", model=req.model, response_chars=len(text))
        return text
