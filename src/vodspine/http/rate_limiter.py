"""Rate limiter for controlling request frequency.

Each endpoint class (one API version, one third-party service) has a fixed
minimum interval between requests. Every request to a class reserves the
next free slot, so any number of concurrent callers are serialised to one
request per interval. There is no burst allowance.

Example:
    >>> from vodspine.http import RateLimiter
    >>>
    >>> limiter = RateLimiter({"speedrun-v1": 0.59, "twitch-helix": 0.075})
    >>>
    >>> # In async code
    >>> await limiter.acquire("speedrun-v1")  # Waits if needed
    >>> # ... make request ...
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping

DEFAULT_ENDPOINT = "default"


class RateLimiter:
    """Minimum-spacing rate limiter keyed by endpoint class.

    The only shared mutable state is ``next allowed time`` per class. A slot
    is reserved and the budget advanced with no suspension point in
    between, which keeps reservations atomic on a single event loop; the
    caller then sleeps until its slot.

    Example:
        >>> import asyncio
        >>> limiter = RateLimiter({"api": 0.1})
        >>>
        >>> async def make_requests():
        ...     for i in range(3):
        ...         await limiter.acquire("api")
        ...         # ... make request ...
        >>>
        >>> asyncio.run(make_requests())

    Attributes:
        intervals: Seconds between requests per endpoint class.
        default_interval: Interval for classes not listed in ``intervals``.
    """

    def __init__(
        self,
        intervals: Mapping[str, float] | None = None,
        default_interval: float = 0.0,
        *,
        routes: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize rate limiter.

        Args:
            intervals: Seconds between requests per endpoint class.
            default_interval: Interval for unknown endpoint classes.
            routes: URL fragment to endpoint class, used by :meth:`classify`.
            clock: Monotonic clock, injectable for tests.
            sleep: Sleep function, injectable for tests.
        """
        self.intervals = dict(intervals or {})
        self.default_interval = default_interval
        self._routes = dict(routes or {})
        self._clock = clock
        self._sleep = sleep
        self._next_allowed: dict[str, float] = {}

    def interval_for(self, endpoint: str) -> float:
        """Configured interval for an endpoint class."""
        return self.intervals.get(endpoint, self.default_interval)

    def classify(self, url: str) -> str:
        """Endpoint class for a URL, from the first matching route fragment.

        Example:
            >>> limiter = RateLimiter(routes={"api.twitch.tv": "twitch-helix"})
            >>> limiter.classify("https://api.twitch.tv/helix/videos")
            'twitch-helix'
            >>> limiter.classify("https://example.com")
            'default'
        """
        for fragment, endpoint in self._routes.items():
            if fragment in url:
                return endpoint
        return DEFAULT_ENDPOINT

    def reserve(self, endpoint: str) -> float:
        """Reserve the next slot for ``endpoint``.

        Returns:
            Seconds the caller must wait before sending.
        """
        interval = self.interval_for(endpoint)
        if interval <= 0:
            return 0.0

        now = self._clock()
        slot = max(now, self._next_allowed.get(endpoint, now))
        self._next_allowed[endpoint] = slot + interval
        return slot - now

    async def acquire(self, endpoint: str = DEFAULT_ENDPOINT) -> float:
        """Wait until a request to ``endpoint`` can be made.

        Returns:
            Time waited in seconds.
        """
        wait_time = self.reserve(endpoint)
        if wait_time > 0:
            await self._sleep(wait_time)
        return wait_time

    def reset(self) -> None:
        """Reset the rate limiter state.

        Useful for testing or after long pauses.
        """
        self._next_allowed.clear()


__all__ = [
    "DEFAULT_ENDPOINT",
    "RateLimiter",
]
