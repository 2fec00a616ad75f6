"""aiohttp-based page fetcher."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import aiohttp

from ..domain.errors import ContentProcessingError, InvalidURLError, NetworkTimeoutError
from ..utils.rate_limiter import DomainRateLimiter
from ..utils.validators import is_valid_http_url

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
XML_ACCEPT = "application/xml, text/xml, */*"


@dataclass(frozen=True)
class FetchedPage:
    url: str  # final URL after redirects
    html: str


class HttpFetcher:
    """Scraping layer.

    Responsibilities:
    - Fetch raw HTML (or sitemap XML) with a hard timeout
    - Reject non-HTML responses and HTTP errors
    - Optional per-domain politeness
    """

    def __init__(
        self,
        default_timeout_ms: int,
        user_agent: str,
        *,
        rate_limiter: DomainRateLimiter | None = None,
    ):
        self._timeout_ms = default_timeout_ms
        self._user_agent = user_agent
        self._rate_limiter = rate_limiter

    async def fetch_html(self, url: str, timeout_ms: int | None = None) -> FetchedPage:
        final_url, content_type, body = await self._get(url, accept=HTML_ACCEPT, timeout_ms=timeout_ms)
        if "text/html" not in content_type and "application/xhtml" not in content_type:
            raise ContentProcessingError(f"Unsupported content type: {content_type}", detail=url)
        return FetchedPage(url=final_url, html=body)

    async def fetch_text(self, url: str, timeout_ms: int | None = None) -> str | None:
        """Fetch any text document (sitemaps); None on non-2xx responses."""
        try:
            _, _, body = await self._get(url, accept=XML_ACCEPT, timeout_ms=timeout_ms)
        except ContentProcessingError:
            return None
        return body

    async def _get(self, url: str, *, accept: str, timeout_ms: int | None) -> tuple[str, str, str]:
        if not is_valid_http_url(url):
            raise InvalidURLError(f"Invalid URL: {url}")

        if self._rate_limiter is not None:
            await self._rate_limiter.wait_for_slot(url)

        timeout_s = max(1, int(timeout_ms or self._timeout_ms)) / 1000.0
        headers = {
            "User-Agent": self._user_agent,
            "Accept": accept,
            "Accept-Language": "en-US,en;q=0.9",
        }
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout_s)) as session:
                async with session.get(url, headers=headers, allow_redirects=True) as resp:
                    if resp.status >= 400:
                        raise ContentProcessingError(f"HTTP {resp.status}: {resp.reason}", detail=url)
                    content_type = (resp.headers.get("content-type") or "").lower()
                    body = await resp.text(errors="replace")
                    return str(resp.url), content_type, body
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(f"Request timed out after {int(timeout_s * 1000)}ms", detail=url) from e
        except aiohttp.ClientError as e:
            raise ContentProcessingError(f"Failed to fetch {url}", detail=str(e)) from e
