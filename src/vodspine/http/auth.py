"""OAuth2 client-credentials token provider.

Example:
    >>> from vodspine.http.auth import ClientCredentialsAuth
    >>> auth = ClientCredentialsAuth(fetcher, client_id="abc", client_secret="xyz")
    >>> fetcher.register_auth("twitch-helix", auth)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from vodspine.core.exceptions import ConfigurationError, MalformedResponseError
from vodspine.models.page import PageRequest

if TYPE_CHECKING:
    from vodspine.core.config import Settings
    from vodspine.http.client import RetryingFetcher

logger = logging.getLogger("vodspine.http.auth")

TOKEN_URL = "https://id.twitch.tv/oauth2/token"


class ClientCredentialsAuth:
    """Fetches and caches an app access token.

    The token is requested through the fetcher (so it is rate limited and
    retried like any other call) and reused until ``expires_in`` seconds
    have passed. Concurrent callers share one refresh.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        client_id: str,
        client_secret: str,
        *,
        token_url: str = TOKEN_URL,
        endpoint: str = "oauth",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self.client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self._endpoint = endpoint
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, fetcher: RetryingFetcher, settings: Settings) -> ClientCredentialsAuth:
        if not settings.client_id or not settings.client_secret:
            raise ConfigurationError(
                "VODSPINE_CLIENT_ID and VODSPINE_CLIENT_SECRET are required"
            )
        return cls(
            fetcher,
            settings.client_id,
            settings.client_secret,
            token_url=settings.token_url,
        )

    @property
    def valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def token(self) -> str:
        """Current access token, refreshing it if expired."""
        async with self._lock:
            if self._token is not None and self.valid:
                return self._token
            return await self._refresh()

    async def _refresh(self) -> str:
        self._token = None
        response = await self._fetcher.fetch(
            PageRequest(
                self.token_url,
                method="POST",
                data={
                    "client_id": self.client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
                endpoint=self._endpoint,
            )
        )
        body = response.data
        token = body.get("access_token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise MalformedResponseError("Token response has no access_token", url=self.token_url)

        self._token = token
        self._expires_at = self._clock() + float(body.get("expires_in", 0))
        logger.info(f"Refreshed access token, valid for {body.get('expires_in', 0)}s")
        return token

    async def headers(self) -> dict[str, str]:
        token = await self.token()
        return {
            "Authorization": f"Bearer {token}",
            "Client-Id": self.client_id,
        }


__all__ = [
    "TOKEN_URL",
    "ClientCredentialsAuth",
]
