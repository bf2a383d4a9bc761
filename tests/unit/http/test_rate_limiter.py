"""Tests for vodspine.http.rate_limiter."""

from __future__ import annotations

import asyncio

import pytest

from vodspine.http.rate_limiter import DEFAULT_ENDPOINT, RateLimiter


class FakeClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.now += delay
        await asyncio.sleep(0)


class TestRateLimiter:
    """RateLimiter tests."""

    @pytest.fixture
    def clock(self) -> FakeClock:
        """Create a fake clock."""
        return FakeClock()

    async def test_first_request_immediate(self, clock: FakeClock) -> None:
        """The first request never waits."""
        limiter = RateLimiter({"api": 1.0}, clock=clock, sleep=clock.sleep)
        assert await limiter.acquire("api") == 0.0

    async def test_concurrent_callers_spaced(self, clock: FakeClock) -> None:
        """Concurrent callers are sent at least one interval apart."""
        waits: list[float] = []

        async def record(delay: float) -> None:
            waits.append(delay)
            await asyncio.sleep(0)

        limiter = RateLimiter({"api": 0.5}, clock=clock, sleep=record)
        await asyncio.gather(*(limiter.acquire("api") for _ in range(5)))
        sends = sorted([clock.now] + [clock.now + wait for wait in waits])
        gaps = [b - a for a, b in zip(sends, sends[1:])]
        assert len(sends) == 5
        assert all(gap >= 0.5 - 1e-9 for gap in gaps)

    def test_reservations_queue_up(self, clock: FakeClock) -> None:
        """Each reservation lands one interval after the previous one."""
        limiter = RateLimiter({"api": 0.59}, clock=clock)
        waits = [limiter.reserve("api") for _ in range(3)]
        assert waits == pytest.approx([0.0, 0.59, 1.18])

    def test_classes_independent(self, clock: FakeClock) -> None:
        """Different endpoint classes do not share a budget."""
        limiter = RateLimiter({"a": 1.0, "b": 1.0}, clock=clock)
        assert limiter.reserve("a") == 0.0
        assert limiter.reserve("b") == 0.0
        assert limiter.reserve("a") == pytest.approx(1.0)

    def test_idle_time_not_banked(self, clock: FakeClock) -> None:
        """Time spent idle does not allow a burst later."""
        limiter = RateLimiter({"api": 1.0}, clock=clock)
        limiter.reserve("api")
        clock.now += 10.0
        assert limiter.reserve("api") == 0.0
        assert limiter.reserve("api") == pytest.approx(1.0)

    def test_zero_interval(self, clock: FakeClock) -> None:
        """A zero interval never waits."""
        limiter = RateLimiter({"gql": 0.0}, default_interval=0.0, clock=clock)
        assert [limiter.reserve("gql") for _ in range(3)] == [0.0, 0.0, 0.0]

    def test_default_interval(self, clock: FakeClock) -> None:
        """Unknown classes use the default interval."""
        limiter = RateLimiter({}, default_interval=0.25, clock=clock)
        limiter.reserve("anything")
        assert limiter.reserve("anything") == pytest.approx(0.25)

    def test_classify(self) -> None:
        """URLs map to classes by first matching fragment."""
        limiter = RateLimiter(routes={"speedrun.com/api/v1": "speedrun-v1"})
        assert limiter.classify("https://www.speedrun.com/api/v1/runs") == "speedrun-v1"
        assert limiter.classify("https://other.test") == DEFAULT_ENDPOINT

    def test_reset(self, clock: FakeClock) -> None:
        """reset forgets reserved slots."""
        limiter = RateLimiter({"api": 5.0}, clock=clock)
        limiter.reserve("api")
        limiter.reset()
        assert limiter.reserve("api") == 0.0
