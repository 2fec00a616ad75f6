from __future__ import annotations

from ingestion.utils.rate_limiter import DomainRateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_slots_are_spaced_per_domain() -> None:
    clock = _Clock()
    limiter = DomainRateLimiter(2.0, clock=clock)

    assert limiter.reserve("https://x.com/a") == 0.0
    assert limiter.reserve("https://www.x.com/b") == 0.5
    assert limiter.reserve("https://x.com/c") == 1.0
    # Other domains are independent.
    assert limiter.reserve("https://y.com/") == 0.0

    clock.now += 5
    assert limiter.reserve("https://x.com/d") == 0.0


def test_disabled_limiter_never_waits() -> None:
    limiter = DomainRateLimiter(0)
    assert not limiter.enabled
    assert [limiter.reserve("https://x.com/") for _ in range(3)] == [0.0, 0.0, 0.0]
