"""Logging setup for scripts and the CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(
    level: str | int = "INFO",
    fmt: str = "console",
    console: Console | None = None,
) -> None:
    """Install a root handler for vodspine output.

    Args:
        level: Logging level name or number.
        fmt: "console" for a rich handler, anything else for plain text.
        console: Rich console to log through (default: stderr console).
    """
    if fmt == "console":
        handler: logging.Handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["configure_logging"]
