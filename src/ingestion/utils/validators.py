"""Validation helpers."""

from __future__ import annotations

from urllib.parse import urlparse

from ..domain.errors import InvalidURLError


def is_valid_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except ValueError:
        return False


def require_http_url(url: str) -> str:
    u = (url or "").strip()
    if not is_valid_http_url(u):
        raise InvalidURLError(f"Invalid URL: {u}")
    return u
