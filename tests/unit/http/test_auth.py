"""Tests for vodspine.http.auth."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from vodspine.core.config import get_settings
from vodspine.core.exceptions import ConfigurationError, MalformedResponseError
from vodspine.http.auth import ClientCredentialsAuth


class TokenServer:
    """Hands out numbered tokens."""

    def __init__(self, expires_in: int = 3600) -> None:
        self.expires_in = expires_in
        self.issued = 0
        self.forms: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.issued += 1
        self.forms.append(request.content.decode("utf-8"))
        return httpx.Response(
            200,
            json={"access_token": f"tok-{self.issued}", "expires_in": self.expires_in},
        )


class TestClientCredentialsAuth:
    """ClientCredentialsAuth tests."""

    async def test_fetches_token(self, make_fetcher) -> None:
        """The first call requests a token with the client credentials."""
        server = TokenServer()
        auth = ClientCredentialsAuth(make_fetcher(server), "cid", "secret")
        assert await auth.headers() == {"Authorization": "Bearer tok-1", "Client-Id": "cid"}
        assert "grant_type=client_credentials" in server.forms[0]
        assert "client_secret=secret" in server.forms[0]

    async def test_token_cached(self, make_fetcher) -> None:
        """A valid token is reused."""
        server = TokenServer()
        auth = ClientCredentialsAuth(make_fetcher(server), "cid", "secret")
        await auth.token()
        await auth.token()
        assert server.issued == 1

    async def test_refresh_after_expiry(self, make_fetcher) -> None:
        """expires_in is seconds on the auth clock."""
        now = [0.0]
        server = TokenServer(expires_in=60)
        auth = ClientCredentialsAuth(make_fetcher(server), "cid", "secret", clock=lambda: now[0])
        assert await auth.token() == "tok-1"
        now[0] = 59.0
        assert await auth.token() == "tok-1"
        now[0] = 61.0
        assert await auth.token() == "tok-2"

    async def test_concurrent_callers_share_refresh(self, make_fetcher) -> None:
        """Concurrent callers trigger a single refresh."""
        server = TokenServer()
        auth = ClientCredentialsAuth(make_fetcher(server), "cid", "secret")
        tokens = await asyncio.gather(*(auth.token() for _ in range(5)))
        assert set(tokens) == {"tok-1"}
        assert server.issued == 1

    async def test_missing_access_token(self, make_fetcher) -> None:
        """A response without access_token is malformed."""
        fetcher = make_fetcher(lambda request: httpx.Response(200, json={"error": "invalid_client"}))
        auth = ClientCredentialsAuth(fetcher, "cid", "bad")
        with pytest.raises(MalformedResponseError):
            await auth.token()
        assert auth.valid is False

    @pytest.mark.parametrize("token", [None, "", 12345])
    async def test_unusable_access_token(self, make_fetcher, token) -> None:
        """A null, empty or non-string token is malformed."""
        fetcher = make_fetcher(
            lambda request: httpx.Response(200, json={"access_token": token, "expires_in": 60})
        )
        auth = ClientCredentialsAuth(fetcher, "cid", "secret")
        with pytest.raises(MalformedResponseError):
            await auth.headers()
        assert auth.valid is False

    def test_from_settings_requires_credentials(self, make_fetcher) -> None:
        """Missing credentials are a configuration error."""
        fetcher = make_fetcher(TokenServer())
        with pytest.raises(ConfigurationError):
            ClientCredentialsAuth.from_settings(fetcher, get_settings(client_id=None, client_secret=None))
        auth = ClientCredentialsAuth.from_settings(
            fetcher, get_settings(client_id="cid", client_secret="s")
        )
        assert auth.client_id == "cid"
