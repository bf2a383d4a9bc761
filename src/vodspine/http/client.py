"""HTTP fetcher with rate limiting and retry support.

Every crawl request goes through :class:`RetryingFetcher`, which:

- waits for the endpoint class's rate budget,
- sends a fixed identifying User-Agent,
- sorts failures into "stop this stream" and "sleep and retry",
- gives up after a fixed number of retries.

Example:
    >>> from vodspine.http import RetryingFetcher, RateLimiter
    >>> from vodspine.models.page import PageRequest
    >>>
    >>> limiter = RateLimiter({"speedrun-v1": 0.59})
    >>> async with RetryingFetcher(limiter) as fetcher:
    ...     response = await fetcher.fetch(
    ...         PageRequest("https://www.speedrun.com/api/v1/games", endpoint="speedrun-v1")
    ...     )
    ...     print(response.data["pagination"])
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from vodspine import __version__
from vodspine.core.exceptions import (
    MalformedResponseError,
    RetriesExhaustedError,
    TerminalFetchError,
)
from vodspine.http.rate_limiter import RateLimiter
from vodspine.models.page import PageRequest
from vodspine.utils.retry import RetryPolicy

if TYPE_CHECKING:
    from vodspine.core.config import Settings

logger = logging.getLogger("vodspine.http")

GQL_URL = "https://gql.twitch.tv/gql"

_WHITESPACE = re.compile(r"\s+")


class HeaderProvider(Protocol):
    """Supplies per-request headers, e.g. a bearer token."""

    async def headers(self) -> dict[str, str]:
        ...


@dataclass
class FetchResponse:
    """A successful response.

    Attributes:
        request: The request that was sent.
        status: HTTP status code.
        data: Parsed JSON body ({} when the body was empty).
        headers: Response headers.
        empty: True when the body was empty or parsed to a falsy value.
        attempts: Attempts it took, including the successful one.
    """

    request: PageRequest
    status: int
    data: Any
    headers: Mapping[str, str] = field(default_factory=dict)
    empty: bool = False
    attempts: int = 1


class RetryingFetcher:
    """Async HTTP fetcher with rate limiting and retries.

    Safe to call concurrently: each call keeps its own attempt counter, and
    only the rate limiter and logging are shared.

    Example:
        >>> async with RetryingFetcher(RateLimiter()) as fetcher:
        ...     response = await fetcher.get_json("https://example.com/api")

    Attributes:
        limiter: Shared rate limiter.
        policy: Retry classification and delays.
        user_agent: User-Agent header value.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        limiter: RateLimiter | None = None,
        policy: RetryPolicy | None = None,
        *,
        user_agent: str = f"vodspine/{__version__}",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the fetcher.

        Args:
            limiter: Shared rate limiter (default: no spacing).
            policy: Retry policy (default: 15 retries, 10s/90s sleeps).
            user_agent: User-Agent header.
            timeout: Request timeout.
            client: Existing httpx client; the fetcher won't close it.
            sleep: Sleep function used between retries.
        """
        self.limiter = limiter or RateLimiter()
        self.policy = policy or RetryPolicy()
        self.user_agent = user_agent
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._auth: dict[str, HeaderProvider] = {}

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> RetryingFetcher:
        """Build a fetcher and its rate limiter from settings."""
        limiter = RateLimiter(
            settings.endpoint_intervals,
            settings.default_interval,
            routes=settings.endpoint_routes,
        )
        return cls(
            limiter,
            RetryPolicy.from_settings(settings),
            user_agent=settings.user_agent,
            timeout=settings.request_timeout,
            **kwargs,
        )

    @property
    def headers(self) -> dict[str, str]:
        """Default headers for requests."""
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }

    def register_auth(self, endpoint: str, provider: HeaderProvider) -> None:
        """Attach ``provider``'s headers to every request for ``endpoint``."""
        self._auth[endpoint] = provider

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> RetryingFetcher:
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def endpoint_for(self, request: PageRequest) -> str:
        return request.endpoint or self.limiter.classify(request.url)

    async def fetch(self, request: PageRequest) -> FetchResponse:
        """Fetch one request, retrying transient failures.

        Args:
            request: What to fetch.

        Returns:
            The parsed successful response.

        Raises:
            TerminalFetchError: 404 or invalid pagination; stop this stream.
            RetriesExhaustedError: The retry cap was reached.
            MalformedResponseError: A 2xx body that is not JSON.
        """
        client = await self._ensure_client()
        endpoint = self.endpoint_for(request)
        retries = 0

        while True:
            await self.limiter.acquire(endpoint)
            headers = {**self.headers, **request.headers}
            provider = self._auth.get(endpoint)
            if provider is not None:
                headers.update(await provider.headers())

            status: int | None = None
            cause: BaseException | None = None
            try:
                response = await client.request(
                    request.method,
                    request.url,
                    params=request.params or None,
                    json=request.json,
                    data=request.data,
                    headers=headers,
                )
            except httpx.TransportError as e:
                logger.error(f"Failed to fetch {request.url} for unknown reason: {e!r}")
                cause = e
                delay = self.policy.transient_delay
            else:
                if response.is_success:
                    return self._parse(request, response, attempts=retries + 1)

                status = response.status_code
                body = response.text
                logger.error(
                    f"Failed to {request.method} {request.url}: {status} {body[:300]}"
                )
                if self.policy.is_terminal(status, body):
                    raise TerminalFetchError(
                        f"{request.method} {request.url} returned {status}",
                        url=request.url,
                        status=status,
                    )
                delay = self.policy.delay_for(status, response.headers, body)

            if not self.policy.should_retry(retries):
                raise RetriesExhaustedError(
                    request.url,
                    attempts=retries + 1,
                    status=status,
                    cause=cause,
                )
            retries += 1
            logger.debug(f"Retry {retries}/{self.policy.max_retries} for {request.url} in {delay:.1f}s")
            await self._sleep(delay)

    def _parse(
        self,
        request: PageRequest,
        response: httpx.Response,
        attempts: int,
    ) -> FetchResponse:
        if not response.content.strip():
            data: Any = None
        else:
            try:
                data = response.json()
            except ValueError as e:
                raise MalformedResponseError(
                    f"{request.url} returned a non-JSON body",
                    url=request.url,
                    status=response.status_code,
                ) from e

        empty = not data
        if empty:
            logger.warning(f"Suspicious empty body from {request.method} {request.url}: {data!r}")
            if data is None:
                data = {}

        return FetchResponse(
            request=request,
            status=response.status_code,
            data=data,
            headers=response.headers,
            empty=empty,
            attempts=attempts,
        )

    async def get_json(self, url: str, **params: Any) -> Any:
        """GET ``url`` with query ``params`` and return the parsed body."""
        response = await self.fetch(PageRequest(url, params=params))
        return response.data

    async def post_graphql(
        self,
        query: str,
        *,
        url: str = GQL_URL,
        headers: dict[str, str] | None = None,
        endpoint: str | None = None,
    ) -> dict[str, Any]:
        """POST a GraphQL query and return the whole response body.

        Whitespace in ``query`` is collapsed before sending. Partial
        results are accepted: errors only raise when no field of ``data``
        came back non-null.

        Raises:
            MalformedResponseError: Errors and no usable data.
        """
        request = PageRequest(
            url,
            method="POST",
            json={"query": _WHITESPACE.sub(" ", query.strip())},
            headers=headers or {},
            endpoint=endpoint,
        )
        body = (await self.fetch(request)).data
        if not isinstance(body, dict):
            raise MalformedResponseError(f"GraphQL response is not an object: {body!r}", url=url)

        errors = body.get("errors") or []
        data = body.get("data") or {}
        if errors and not any(value for value in data.values()):
            raise MalformedResponseError(f"GraphQL request failed: {errors}", url=url)
        return body


__all__ = [
    "GQL_URL",
    "FetchResponse",
    "HeaderProvider",
    "RetryingFetcher",
]
