"""Shared fixtures for vodspine tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import httpx
import pytest

from vodspine.http.client import RetryingFetcher
from vodspine.http.rate_limiter import RateLimiter
from vodspine.utils.retry import RetryPolicy


class FakeSleep:
    """Records requested delays and yields to the loop instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    """A sleep that returns immediately."""
    return FakeSleep()


@pytest.fixture
def make_fetcher(fake_sleep: FakeSleep) -> Callable[..., RetryingFetcher]:
    """Build a fetcher whose requests are answered by ``handler``."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        policy: RetryPolicy | None = None,
        limiter: RateLimiter | None = None,
    ) -> RetryingFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RetryingFetcher(limiter, policy, client=client, sleep=fake_sleep)

    return factory
