"""Tests for vodspine.core.config."""

from __future__ import annotations

import pytest

from vodspine.core.config import DEFAULT_ENDPOINT_INTERVALS, Settings, get_settings
from vodspine.http.client import RetryingFetcher
from vodspine.utils.retry import RetryPolicy


class TestSettings:
    """Settings tests."""

    def test_defaults(self) -> None:
        """Defaults match the documented crawl behaviour."""
        settings = Settings()
        assert settings.max_retries == 15
        assert settings.transient_delay == 10.0
        assert settings.rate_limited_delay == 90.0
        assert settings.endpoint_intervals == DEFAULT_ENDPOINT_INTERVALS

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """VODSPINE_ environment variables are read."""
        monkeypatch.setenv("VODSPINE_MAX_RETRIES", "3")
        monkeypatch.setenv("VODSPINE_CONCURRENCY", "12")
        settings = Settings()
        assert settings.max_retries == 3
        assert settings.concurrency == 12

    def test_overrides(self) -> None:
        """get_settings applies keyword overrides."""
        assert get_settings(log_level="DEBUG").log_level == "DEBUG"

    def test_policy_from_settings(self) -> None:
        """RetryPolicy picks up retry settings."""
        policy = RetryPolicy.from_settings(get_settings(max_retries=2, transient_delay=1.0))
        assert policy.max_retries == 2
        assert policy.transient_delay == 1.0

    def test_fetcher_from_settings(self) -> None:
        """The fetcher's limiter uses the configured intervals and routes."""
        fetcher = RetryingFetcher.from_settings(get_settings(user_agent="test/1.0"))
        assert fetcher.user_agent == "test/1.0"
        assert fetcher.limiter.interval_for("speedrun-v1") == 0.59
        assert fetcher.limiter.classify("https://api.twitch.tv/helix/videos") == "twitch-helix"
