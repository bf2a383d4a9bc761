"""Tests for vodspine.engine.ranges."""

from __future__ import annotations

import asyncio

import pytest

from vodspine.core.checkpoint import MemoryCheckpointStore
from vodspine.core.state import CrawlState
from vodspine.engine.crawl import CancelToken
from vodspine.engine.ranges import (
    IdBatch,
    IdRange,
    RangeProgress,
    RangeScanner,
    parse_ranges,
)


class TestParseRanges:
    """parse_ranges tests."""

    def test_sorted(self) -> None:
        """Ranges come back sorted."""
        assert parse_ranges("200-300, 1-100") == [IdRange(1, 100), IdRange(200, 300)]

    def test_single_id(self) -> None:
        """A lone number is a one-id range."""
        assert parse_ranges("42") == [IdRange(42, 42)]

    @pytest.mark.parametrize("text", ["", "a-b", "10-5", "1-2-3", " , "])
    def test_invalid(self, text: str) -> None:
        """Malformed or backwards ranges raise ValueError."""
        with pytest.raises(ValueError):
            parse_ranges(text)

    def test_range_helpers(self) -> None:
        """IdRange supports len, membership and str."""
        r = IdRange(5, 9)
        assert len(r) == 5
        assert 7 in r and 10 not in r
        assert str(r) == "5-9"

    def test_batch_ids(self) -> None:
        """Batches list their ids as strings."""
        assert IdBatch(3, 5).ids() == ["3", "4", "5"]


class TestRangeProgress:
    """RangeProgress tests."""

    def test_batches_respect_range_ends(self) -> None:
        """Batches never cross the end of a range."""
        progress = RangeProgress(parse_ranges("1-10,21-26"), page_size=4)
        assert [b.label for b in progress] == ["1-4", "5-8", "9-10", "21-24", "25-26"]

    def test_marker_waits_for_gaps(self) -> None:
        """The marker only covers contiguously finished batches."""
        progress = RangeProgress(parse_ranges("1-12"), page_size=4)
        a, b, c = progress.issue(), progress.issue(), progress.issue()
        progress.complete(c)
        progress.complete(b)
        assert progress.marker == 0
        assert progress.in_flight == 3
        progress.complete(a)
        assert progress.marker == 12
        assert progress.in_flight == 0

    def test_marker_across_ranges(self) -> None:
        """The marker jumps the gap between ranges."""
        progress = RangeProgress(parse_ranges("1-4,11-14"), page_size=4)
        for batch in list(progress):
            progress.complete(batch)
        assert progress.marker == 14
        assert progress.covered == progress.total == 8

    def test_resume_after_marker(self) -> None:
        """A saved marker resumes just after it."""
        progress = RangeProgress(parse_ranges("1-10,21-30"), page_size=4, marker=8)
        assert [b.label for b in progress] == ["9-10", "21-24", "25-28", "29-30"]
        assert progress.covered == 8

    def test_complete_unknown_ignored(self) -> None:
        """Completing a batch twice is harmless."""
        progress = RangeProgress(parse_ranges("1-4"), page_size=4)
        batch = progress.issue()
        progress.complete(batch)
        progress.complete(batch)
        assert progress.marker == 4

    def test_page_size_positive(self) -> None:
        """page_size must be positive."""
        with pytest.raises(ValueError):
            RangeProgress(parse_ranges("1-4"), page_size=0)


class TestRangeScanner:
    """RangeScanner tests."""

    @pytest.fixture
    def store(self) -> MemoryCheckpointStore:
        """Create a memory store."""
        return MemoryCheckpointStore()

    async def test_scans_everything(self, store, fake_sleep) -> None:
        """Every id is handed to the worker exactly once."""
        seen: list[str] = []

        async def worker(batch: IdBatch) -> None:
            await asyncio.sleep(0)
            seen.extend(batch.ids())

        state = CrawlState("scan")
        scanner = RangeScanner(
            parse_ranges("1-50,100-109"), worker, state, store,
            page_size=7, concurrency=4, checkpoint_interval=0, sleep=fake_sleep,
        )
        result = await scanner.run()

        assert sorted(seen, key=int) == [str(i) for i in [*range(1, 51), *range(100, 110)]]
        assert result.marker == 109
        assert result.failed == []
        assert state.marker("scan") == 109
        restored = await CrawlState.load(store, "scan")
        assert restored.marker("scan") == 109

    async def test_failed_batch_does_not_block_marker(self, store, fake_sleep) -> None:
        """A batch that keeps failing is recorded and skipped over."""

        async def worker(batch: IdBatch) -> None:
            if batch.start == 5:
                raise RuntimeError("upstream error")

        state = CrawlState("scan")
        scanner = RangeScanner(
            parse_ranges("1-12"), worker, state, store,
            page_size=4, attempts=3, checkpoint_interval=0, sleep=fake_sleep,
        )
        result = await scanner.run()

        assert result.failed == ["5-8"]
        assert state.failed == {"5-8"}
        assert result.marker == 12
        assert fake_sleep.delays == [0.5, 1.0]
        assert result.failures[0].label == "5-8"

    async def test_service_timeout_retries_quickly(self, store, fake_sleep) -> None:
        """Service timeouts back off from a shorter base delay."""
        calls = 0

        async def worker(batch: IdBatch) -> None:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise RuntimeError("service timeout")

        scanner = RangeScanner(
            parse_ranges("1-1"), worker, CrawlState("s"), store,
            checkpoint_interval=0, sleep=fake_sleep,
        )
        result = await scanner.run()
        assert result.failed == []
        assert fake_sleep.delays == pytest.approx([0.1, 0.2])

    async def test_resumes_from_saved_marker(self, store, fake_sleep) -> None:
        """A scanner built on saved state skips ids below the marker."""
        state = CrawlState("scan")
        state.set_marker("twitch", 20)
        await state.save(store)
        seen: list[str] = []

        async def worker(batch: IdBatch) -> None:
            seen.append(batch.label)

        restored = await CrawlState.load(store, "scan")
        scanner = RangeScanner(
            parse_ranges("1-30"), worker, restored, store,
            page_size=5, concurrency=1, marker_name="twitch", checkpoint_interval=0, sleep=fake_sleep,
        )
        await scanner.run()
        assert seen == ["21-25", "26-30"]

    async def test_drain(self, store, fake_sleep) -> None:
        """Cancelling stops issuing batches; finished work is kept."""
        cancel = CancelToken()
        seen: list[str] = []

        async def worker(batch: IdBatch) -> None:
            seen.append(batch.label)
            cancel.cancel("exit command")

        state = CrawlState("scan")
        scanner = RangeScanner(
            parse_ranges("1-100"), worker, state, store,
            page_size=10, concurrency=1, checkpoint_interval=0, cancel=cancel, sleep=fake_sleep,
        )
        result = await scanner.run()
        assert seen == ["1-10"]
        assert result.cancelled is True
        assert result.marker == 10
        assert (await CrawlState.load(store, "scan")).marker("scan") == 10

    async def test_set_concurrency(self, store, fake_sleep) -> None:
        """Concurrency can be changed while scanning."""
        active = 0
        peak = 0
        scanner: RangeScanner

        async def worker(batch: IdBatch) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            if batch.start == 1:
                await scanner.set_concurrency(3)
            await asyncio.sleep(0.01)
            active -= 1

        scanner = RangeScanner(
            parse_ranges("1-40"), worker, CrawlState("s"), store,
            page_size=5, concurrency=1, checkpoint_interval=0, sleep=fake_sleep,
        )
        await scanner.run()
        assert scanner.concurrency == 3
        assert peak == 3
