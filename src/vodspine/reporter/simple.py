"""Logging progress reporter for unattended runs.

Example:
    >>> from vodspine.reporter import SimpleProgressReporter
    >>> reporter = SimpleProgressReporter(every=50)

    # Output in logs:
    # [STARTED] Crawl
    # [FETCHING] 3/120 (2%), 50 pages, 4,812 new - channel/123
    # [FAILED] channel/77: RetriesExhaustedError: gave up after 16 attempts
    # [COMPLETE] Pages: 1,204, New: 98,345, Seen: 1,234, Failed: 2, Duration: 310.2s
"""

from __future__ import annotations

import logging

from vodspine.protocols.progress import ProgressEvent, ProgressStage, ProgressTally


class SimpleProgressReporter:
    """Logs unit outcomes always and page progress every ``every`` pages.

    Checkpoint events are not logged; the engine logs its own saves.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        log_level: int = logging.INFO,
        every: int = 25,
    ):
        self._logger = logger or logging.getLogger("vodspine.progress")
        self._log_level = log_level
        self._every = max(1, every)
        self._tally = ProgressTally()

    def _log(self, message: str) -> None:
        self._logger.log(self._log_level, message)

    def start(self) -> None:
        self._tally = ProgressTally()
        self._log("[STARTED] Crawl")

    def report(self, event: ProgressEvent) -> None:
        bucket = self._tally.pages // self._every
        self._tally.update(event)

        if event.stage is ProgressStage.CHECKPOINT:
            return
        if event.stage is ProgressStage.FETCHING and event.pages // self._every == bucket:
            return

        tag = f"[{event.stage.value.upper()}]"
        if event.stage.ends_unit or event.total <= 0:
            detail = event.message or f"{event.pages:,} pages"
            self._log(f"{tag} {event.stream}: {detail}")
            return
        line = (
            f"{tag} {event.current:,}/{event.total:,} ({event.progress_percent:.0f}%), "
            f"{event.pages:,} pages, {event.items_new:,} new"
        )
        if event.stream:
            line += f" - {event.stream}"
        self._log(line)

    def finish(self, success: bool) -> None:
        self._log(f"[{'COMPLETE' if success else 'CANCELLED'}] {self._tally.line()}")


__all__ = ["SimpleProgressReporter"]
