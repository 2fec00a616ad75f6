"""Helpers for reading JSON out of chatty LLM responses."""

from __future__ import annotations

import json
import re
from typing import Any

from ..domain.errors import ContentProcessingError

_LEADING_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a wrapping ```json ... ``` (or bare ```) block."""
    s = (text or "").strip()
    s = _LEADING_FENCE_RE.sub("", s)
    s = _TRAILING_FENCE_RE.sub("", s)
    return s.strip()


def parse_json_array(text: str) -> list[Any]:
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        snippet = cleaned.replace("\n", " ")[:200]
        raise ContentProcessingError("llm_response_invalid_json", detail=f"{e}; first={snippet}") from e
    if not isinstance(data, list):
        raise ContentProcessingError("llm_response_json_not_array", detail=type(data).__name__)
    return data
