"""Crawl phases for multi-stage discovery runs.

A discovery crawl moves through a fixed set of phases: a one-off site-wide
sweep, then one pass per game, then per-series forums. The current phase and
the last finished key within it are persisted so a restarted run picks up
after the last completed entity instead of starting over.

The tracker only records; a driver moves it. :meth:`CrawlEngine.run_phase
<vodspine.engine.crawl.CrawlEngine.run_phase>` runs one phase's entities
and advances the resume key as they finish.

Example:
    >>> from vodspine.core.phases import CrawlPhase, PhaseTracker
    >>> tracker = PhaseTracker()
    >>> tracker.phase
    <CrawlPhase.DISCOVERY: 'discovery'>
    >>> tracker.advance(CrawlPhase.RUNS)
    >>> tracker.advance(CrawlPhase.RUNS, key="game-b")
    >>> list(tracker.pending(["game-a", "game-b", "game-c"]))
    ['game-c']
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from enum import Enum
from typing import Any

from vodspine.core.exceptions import InvalidPhaseTransitionError


class CrawlPhase(str, Enum):
    """Phases of a discovery crawl."""

    DISCOVERY = "discovery"
    RUNS = "runs"
    SERIES = "series"
    DONE = "done"


TRANSITIONS: dict[CrawlPhase, frozenset[CrawlPhase]] = {
    CrawlPhase.DISCOVERY: frozenset({CrawlPhase.RUNS}),
    CrawlPhase.RUNS: frozenset({CrawlPhase.RUNS, CrawlPhase.SERIES, CrawlPhase.DONE}),
    CrawlPhase.SERIES: frozenset({CrawlPhase.SERIES, CrawlPhase.RUNS}),
    CrawlPhase.DONE: frozenset({CrawlPhase.RUNS}),
}


class PhaseTracker:
    """Current phase plus the resume key within it.

    ``key`` names the last entity fully processed in the current phase.
    Entering a different phase clears it.
    """

    def __init__(
        self,
        phase: CrawlPhase = CrawlPhase.DISCOVERY,
        key: str | None = None,
    ) -> None:
        self.phase = phase
        self.key = key

    def can_advance(self, to: CrawlPhase) -> bool:
        return to in TRANSITIONS[self.phase]

    def advance(self, to: CrawlPhase, key: str | None = None) -> None:
        """Move to ``to``, recording ``key`` as the last finished entity.

        Raises:
            InvalidPhaseTransitionError: If the transition table forbids it.
        """
        if not self.can_advance(to):
            raise InvalidPhaseTransitionError(
                f"Cannot move from {self.phase.value} to {to.value}"
            )
        self.phase = to
        self.key = key

    def finish(self, key: str) -> None:
        """Record ``key`` as the last finished entity of the current phase."""
        self.key = key

    def pending(self, keys: Iterable[str]) -> Iterator[str]:
        """Yield the keys still to do, skipping up to and including ``key``.

        If the resume key never appears in ``keys``, nothing is yielded.
        """
        begun = self.key is None
        for key in keys:
            if not begun:
                begun = key == self.key
                continue
            yield key

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase.value, "key": self.key}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhaseTracker:
        """Restore a tracker saved with :meth:`to_dict`.

        Older state files used ``stage`` and ``id`` and called the first
        phase ``none``; those are accepted too.
        """
        raw_phase = data.get("phase", data.get("stage", CrawlPhase.DISCOVERY.value))
        if raw_phase == "none":
            raw_phase = CrawlPhase.DISCOVERY.value
        return cls(phase=CrawlPhase(raw_phase), key=data.get("key", data.get("id")))

    def __repr__(self) -> str:
        return f"PhaseTracker(phase={self.phase.value!r}, key={self.key!r})"


__all__ = [
    "CrawlPhase",
    "TRANSITIONS",
    "PhaseTracker",
]
