"""vodspine configuration.

Application settings loaded from environment variables with VODSPINE_ prefix.

Example:
    >>> from vodspine.core.config import get_settings
    >>> settings = get_settings(log_level="DEBUG")
    >>> settings.log_level
    'DEBUG'
    >>> settings.max_retries
    15
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vodspine import __version__

# Seconds between requests per endpoint class.
DEFAULT_ENDPOINT_INTERVALS: dict[str, float] = {
    "speedrun-v1": 0.59,
    "speedrun-v2": 0.8,
    "twitch-helix": 0.075,
    "twitch-gql": 0.0,
}

# URL fragment -> endpoint class, first match wins.
DEFAULT_ENDPOINT_ROUTES: dict[str, str] = {
    "gql.twitch.tv": "twitch-gql",
    "api.twitch.tv": "twitch-helix",
    "speedrun.com/api/v2": "speedrun-v2",
    "speedrun.com/api/v1": "speedrun-v1",
}


class Settings(BaseSettings):
    """Application settings.

    Loads from environment variables with VODSPINE_ prefix.

    Example:
        >>> from vodspine.core.config import Settings
        >>> s = Settings(data_dir="/tmp/vods")
        >>> s.data_dir.name
        'vods'
        >>> s.endpoint_intervals["speedrun-v1"]
        0.59
    """

    model_config = SettingsConfigDict(
        env_prefix="VODSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: Path = Field(default=Path("./data"), description="Directory for checkpoint files")

    # HTTP
    user_agent: str = Field(default=f"vodspine/{__version__}", description="Identifying User-Agent")
    request_timeout: float = Field(default=30.0, ge=1.0)
    endpoint_intervals: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ENDPOINT_INTERVALS),
        description="Minimum seconds between requests per endpoint class",
    )
    endpoint_routes: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_ENDPOINT_ROUTES),
        description="URL fragment to endpoint class mapping",
    )
    default_interval: float = Field(default=0.59, ge=0.0)

    # Retry
    max_retries: int = Field(default=15, ge=0)
    transient_delay: float = Field(default=10.0, ge=0.0, description="Sleep after transient failures")
    rate_limited_delay: float = Field(default=90.0, ge=0.0, description="Sleep after rate-limit bodies")
    reset_floor: float = Field(default=0.5, ge=0.0, description="Minimum sleep for reset hints")

    # Crawl
    concurrency: int = Field(default=5, ge=0)
    checkpoint_interval: float = Field(default=5.0, gt=0.0, description="Seconds between periodic flushes")
    checkpoint_every: int = Field(default=1, ge=1, description="Flush after this many pages")

    # Credentials for client-credentials APIs
    client_id: str | None = Field(default=None)
    client_secret: str | None = Field(default=None)
    token_url: str = Field(default="https://id.twitch.tv/oauth2/token")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Log format: console or plain")


def get_settings(**overrides: Any) -> Settings:
    """Get settings with optional overrides.

    Example:
        >>> from vodspine.core.config import get_settings
        >>> s = get_settings(transient_delay=1.5)
        >>> s.transient_delay
        1.5
    """
    return Settings(**overrides)


__all__ = [
    "DEFAULT_ENDPOINT_INTERVALS",
    "DEFAULT_ENDPOINT_ROUTES",
    "Settings",
    "get_settings",
]
