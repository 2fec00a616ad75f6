"""Async per-domain rate limiting (politeness during discovery crawls)."""

from __future__ import annotations

import asyncio
import time
from urllib.parse import urlparse


def _domain_key(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


class DomainRateLimiter:
    """Spaces requests to one domain at least 1/rps seconds apart.

    `www.` and the bare host share a slot. Each caller reserves the next free
    slot up front and then sleeps outside any lock, so concurrent callers queue
    in arrival order. A non-positive rate disables limiting.
    """

    def __init__(self, requests_per_second: float, *, clock=time.monotonic):
        self._interval_s = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._clock = clock
        self._next_slot: dict[str, float] = {}

    @property
    def enabled(self) -> bool:
        return self._interval_s > 0

    def reserve(self, url: str) -> float:
        """Claim the next slot for the URL's domain; returns seconds to wait."""
        domain = _domain_key(url)
        if not self.enabled or not domain:
            return 0.0
        now = self._clock()
        slot = max(now, self._next_slot.get(domain, 0.0))
        self._next_slot[domain] = slot + self._interval_s
        return slot - now

    async def wait_for_slot(self, url: str) -> None:
        delay = self.reserve(url)
        if delay > 0:
            await asyncio.sleep(delay)
