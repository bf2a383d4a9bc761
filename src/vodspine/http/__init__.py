"""vodspine HTTP utilities.

Provides endpoint-class rate limiting, the retrying fetcher every crawl goes
through, and client-credentials auth.

Example:
    >>> from vodspine.http import RateLimiter, RetryingFetcher
    >>>
    >>> limiter = RateLimiter({"speedrun-v2": 0.8})
    >>> await limiter.acquire("speedrun-v2")
    >>>
    >>> async with RetryingFetcher(limiter) as fetcher:
    ...     body = await fetcher.get_json("https://www.speedrun.com/api/v2/GetSeriesList")
"""

from vodspine.http.auth import ClientCredentialsAuth
from vodspine.http.client import FetchResponse, HeaderProvider, RetryingFetcher
from vodspine.http.rate_limiter import RateLimiter

__all__ = [
    "ClientCredentialsAuth",
    "FetchResponse",
    "HeaderProvider",
    "RateLimiter",
    "RetryingFetcher",
]
