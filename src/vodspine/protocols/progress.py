"""Progress events for crawls and scans.

Engines emit a :class:`ProgressEvent` whenever a unit (a stream or an id
batch) starts, fetches a page, finishes, fails or is drained, and after
every checkpoint. Anything with ``start``, ``report`` and ``finish``
methods can listen.

Example:
    >>> from vodspine.protocols.progress import ProgressEvent, ProgressReporter
    >>>
    >>> class PrintReporter:
    ...     def start(self) -> None: ...
    ...     def report(self, event: ProgressEvent) -> None:
    ...         print(event.stage.value, event.stream, event.pages)
    ...     def finish(self, success: bool) -> None: ...
    ...
    >>> engine = CrawlEngine(state, store, progress=PrintReporter())
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class ProgressStage(Enum):
    """What happened to a unit."""

    STARTING = "starting"
    FETCHING = "fetching"
    CHECKPOINT = "checkpoint"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def ends_unit(self) -> bool:
        return self in (ProgressStage.COMPLETE, ProgressStage.FAILED, ProgressStage.CANCELLED)


@dataclass
class ProgressEvent:
    """Snapshot of a run's counters at one moment.

    Counts are run totals, not deltas, so a listener may drop events
    without drifting.

    Attributes:
        stage: What happened.
        stream: Stream key or batch label the event is about.
        current: Units finished so far.
        total: Units expected (0 when unknown).
        pages: Pages (or batches) fetched so far.
        items_new: Items not seen before.
        items_seen: Items that were already known.
        failed: Units abandoned after an error.
        message: Error text or other detail.
        started_at: When the run started.
        metadata: Extra data, e.g. the scan marker.
    """

    stage: ProgressStage
    stream: str = ""
    current: int = 0
    total: int = 0
    pages: int = 0
    items_new: int = 0
    items_seen: int = 0
    failed: int = 0
    message: str = ""
    started_at: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def progress_percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(100.0, self.current * 100 / self.total)

    @property
    def elapsed_seconds(self) -> float:
        return (datetime.now() - self.started_at).total_seconds()

    @property
    def pages_per_second(self) -> float:
        elapsed = self.elapsed_seconds
        return self.pages / elapsed if elapsed > 0 else 0.0

    @property
    def eta_seconds(self) -> float | None:
        """Seconds left at the current unit rate, None when unknown."""
        if self.total <= 0 or self.current <= 0:
            return None
        elapsed = self.elapsed_seconds
        if elapsed <= 0:
            return None
        return (self.total - self.current) * elapsed / self.current

    @property
    def marker(self) -> int | None:
        """Durable scan marker, for scan events."""
        return self.metadata.get("marker")


@dataclass
class ProgressTally:
    """Latest counters seen by a reporter."""

    pages: int = 0
    items_new: int = 0
    items_seen: int = 0
    failed: int = 0
    started_at: datetime = field(default_factory=datetime.now)

    def update(self, event: ProgressEvent) -> None:
        self.pages = event.pages
        self.items_new = event.items_new
        self.items_seen = event.items_seen
        self.failed = event.failed

    @property
    def elapsed(self) -> float:
        return (datetime.now() - self.started_at).total_seconds()

    @property
    def rate(self) -> float:
        elapsed = self.elapsed
        return self.pages / elapsed if elapsed > 0 else 0.0

    def line(self) -> str:
        return (
            f"Pages: {self.pages:,}, New: {self.items_new:,}, Seen: {self.items_seen:,}, "
            f"Failed: {self.failed:,}, Duration: {self.elapsed:.1f}s"
        )


@runtime_checkable
class ProgressReporter(Protocol):
    """Listener for progress events."""

    def start(self) -> None:
        """Called once before the first event."""
        ...

    def report(self, event: ProgressEvent) -> None:
        """Called for every event; must not block."""
        ...

    def finish(self, success: bool) -> None:
        """Called once at the end; ``success`` is False for a drained run."""
        ...


class NullProgressReporter:
    """Discards every event."""

    def start(self) -> None:
        pass

    def report(self, event: ProgressEvent) -> None:
        pass

    def finish(self, success: bool) -> None:
        pass


class CallbackProgressReporter:
    """Forwards events to plain callables.

    Example:
        >>> events = []
        >>> reporter = CallbackProgressReporter(events.append)
    """

    def __init__(
        self,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        on_start: Callable[[], None] | None = None,
        on_finish: Callable[[bool], None] | None = None,
    ):
        self._on_progress = on_progress
        self._on_start = on_start
        self._on_finish = on_finish

    def start(self) -> None:
        if self._on_start is not None:
            self._on_start()

    def report(self, event: ProgressEvent) -> None:
        if self._on_progress is not None:
            self._on_progress(event)

    def finish(self, success: bool) -> None:
        if self._on_finish is not None:
            self._on_finish(success)


__all__ = [
    "ProgressStage",
    "ProgressEvent",
    "ProgressTally",
    "ProgressReporter",
    "NullProgressReporter",
    "CallbackProgressReporter",
]
