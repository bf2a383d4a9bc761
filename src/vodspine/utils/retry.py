"""Retry utilities for vodspine.

Two retry shapes live here:

- :class:`RetryPolicy` classifies HTTP failures for the fetcher: which ones
  end a stream, how long to sleep before the next attempt, and when to give
  up.
- :func:`with_retry` wraps an arbitrary coroutine with a fixed number of
  attempts and a growing delay, used for batch workers that call APIs
  outside the fetcher.

Example:
    >>> from vodspine.utils.retry import RetryPolicy
    >>> policy = RetryPolicy(transient_delay=10.0, rate_limited_delay=90.0)
    >>> policy.delay_for(503, {}, "upstream timeout")
    10.0
    >>> policy.delay_for(420, {}, "Rate limit exceeded")
    90.0
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from vodspine.core.config import Settings

logger = logging.getLogger("vodspine.retry")

T = TypeVar("T")

RATE_LIMIT_PATTERN = re.compile(r"rate ?limit|too many requests", re.IGNORECASE)


@dataclass
class RetryPolicy:
    """How the fetcher reacts to failed requests.

    Attributes:
        max_retries: Retries after the first attempt before giving up.
        transient_delay: Sleep after network errors and plain failures.
        rate_limited_delay: Sleep when the body says we are rate limited.
        reset_floor: Minimum sleep when honouring a reset header.
        terminal_statuses: Statuses that end the stream immediately.
        terminal_markers: Body substrings that end the stream immediately.
        reset_header: Header carrying the epoch second the limit resets.
    """

    max_retries: int = 15
    transient_delay: float = 10.0
    rate_limited_delay: float = 90.0
    reset_floor: float = 0.5
    terminal_statuses: frozenset[int] = frozenset({404})
    terminal_markers: tuple[str, ...] = ("Invalid pagination",)
    reset_header: str = "Ratelimit-Reset"
    rate_limit_pattern: re.Pattern[str] = field(default=RATE_LIMIT_PATTERN)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            transient_delay=settings.transient_delay,
            rate_limited_delay=settings.rate_limited_delay,
            reset_floor=settings.reset_floor,
        )

    def is_terminal(self, status: int, body: str) -> bool:
        """Whether a failed response means the stream cannot continue."""
        if status in self.terminal_statuses:
            return True
        return any(marker in body for marker in self.terminal_markers)

    def should_retry(self, retries_done: int) -> bool:
        """Whether another attempt is allowed after ``retries_done`` retries."""
        return retries_done < self.max_retries

    def delay_for(
        self,
        status: int | None,
        headers: Mapping[str, str],
        body: str,
        now: float | None = None,
    ) -> float:
        """Seconds to sleep before retrying a failed response.

        Args:
            status: HTTP status, or None for transport failures.
            headers: Response headers (case-insensitive mapping in practice).
            body: Response body text.
            now: Current epoch seconds (default: ``time.time()``).

        Returns:
            The reset hint (floored) on a 429 carrying one, the long
            rate-limit delay when the body mentions rate limiting, else the
            short transient delay.
        """
        if status == 429:
            reset = headers.get(self.reset_header)
            if reset is not None:
                try:
                    reset_at = float(reset)
                except ValueError:
                    logger.debug(f"Ignoring unparseable {self.reset_header}: {reset!r}")
                else:
                    now = time.time() if now is None else now
                    return max(self.reset_floor, reset_at - now)

        if body and self.rate_limit_pattern.search(body):
            return self.rate_limited_delay
        return self.transient_delay


@dataclass
class RetryConfig:
    """Attempts and backoff for :func:`with_retry`.

    Attributes:
        max_attempts: Maximum total attempts (including first try).
        base_delay: Delay after the first failure.
        max_delay: Cap on any single delay.
        linear: Grow delays as ``base * attempt`` instead of doubling.
        delay_for: Optional override mapping an exception to a base delay.
        on_retry: Callback called on each retry (exception, attempt, delay).
    """

    max_attempts: int = 10
    base_delay: float = 0.5
    max_delay: float = 60.0
    linear: bool = True
    delay_for: Callable[[Exception], float] | None = None
    on_retry: Callable[[Exception, int, float], None] | None = None

    def calculate_delay(self, attempt: int, exc: Exception | None = None) -> float:
        """Delay before the attempt after ``attempt`` (1-indexed).

        Example:
            >>> from vodspine.utils.retry import RetryConfig
            >>> RetryConfig(base_delay=0.5).calculate_delay(3)
            1.5
            >>> RetryConfig(base_delay=1.0, linear=False).calculate_delay(3)
            4.0
        """
        base = self.base_delay
        if exc is not None and self.delay_for is not None:
            base = self.delay_for(exc)
        if self.linear:
            delay = base * attempt
        else:
            delay = base * (2 ** (attempt - 1))
        return max(0.0, min(delay, self.max_delay))


async def with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Execute an async function with retry logic.

    Args:
        func: Async function to execute.
        config: Retry configuration (default: 10 attempts, linear backoff).
        sleep: Sleep function, injectable for tests.

    Returns:
        The result of the function.

    Raises:
        Exception: The last error once all attempts have failed.
    """
    config = config or RetryConfig()

    attempts = max(1, config.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except Exception as e:
            if attempt >= attempts:
                raise

            delay = config.calculate_delay(attempt, e)
            logger.warning(
                f"Attempt {attempt}/{attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            if config.on_retry:
                config.on_retry(e, attempt, delay)
            await sleep(delay)

    raise RuntimeError("with_retry made no attempts")


__all__ = [
    "RATE_LIMIT_PATTERN",
    "RetryPolicy",
    "RetryConfig",
    "with_retry",
]
