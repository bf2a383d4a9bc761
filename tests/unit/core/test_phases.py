"""Tests for vodspine.core.phases."""

from __future__ import annotations

import pytest

from vodspine.core.exceptions import InvalidPhaseTransitionError
from vodspine.core.phases import CrawlPhase, PhaseTracker


class TestPhaseTracker:
    """PhaseTracker tests."""

    def test_starts_in_discovery(self) -> None:
        """A new tracker has no resume key."""
        tracker = PhaseTracker()
        assert tracker.phase is CrawlPhase.DISCOVERY
        assert tracker.key is None

    def test_allowed_transitions(self) -> None:
        """Discovery leads to runs, runs to series and back."""
        tracker = PhaseTracker()
        tracker.advance(CrawlPhase.RUNS)
        tracker.advance(CrawlPhase.SERIES, key="series-1")
        tracker.advance(CrawlPhase.RUNS)
        tracker.advance(CrawlPhase.DONE)
        assert tracker.phase is CrawlPhase.DONE

    def test_forbidden_transition(self) -> None:
        """Skipping the runs phase is rejected."""
        tracker = PhaseTracker()
        assert tracker.can_advance(CrawlPhase.SERIES) is False
        with pytest.raises(InvalidPhaseTransitionError):
            tracker.advance(CrawlPhase.SERIES)
        assert tracker.phase is CrawlPhase.DISCOVERY

    def test_pending_skips_through_key(self) -> None:
        """Keys up to and including the resume key are skipped."""
        tracker = PhaseTracker(CrawlPhase.RUNS, key="b")
        assert list(tracker.pending(["a", "b", "c", "d"])) == ["c", "d"]

    def test_pending_without_key(self) -> None:
        """Without a resume key every key is pending."""
        assert list(PhaseTracker(CrawlPhase.RUNS).pending(["a", "b"])) == ["a", "b"]

    def test_pending_unknown_key(self) -> None:
        """A resume key that never appears yields nothing."""
        tracker = PhaseTracker(CrawlPhase.RUNS, key="zz")
        assert list(tracker.pending(["a", "b"])) == []

    def test_dict_round_trip(self) -> None:
        """to_dict and from_dict agree."""
        tracker = PhaseTracker(CrawlPhase.SERIES, key="s-9")
        restored = PhaseTracker.from_dict(tracker.to_dict())
        assert (restored.phase, restored.key) == (CrawlPhase.SERIES, "s-9")

    def test_legacy_names(self) -> None:
        """stage/id and the 'none' phase are accepted."""
        restored = PhaseTracker.from_dict({"stage": "runs", "id": "game-x"})
        assert (restored.phase, restored.key) == (CrawlPhase.RUNS, "game-x")
        assert PhaseTracker.from_dict({"stage": "none"}).phase is CrawlPhase.DISCOVERY
