"""Tests for vodspine.core.state."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from vodspine.core.checkpoint import FileCheckpointStore, MemoryCheckpointStore
from vodspine.core.exceptions import CheckpointError
from vodspine.core.phases import CrawlPhase
from vodspine.core.state import DISCOVERED, FAILED, CheckpointFlusher, CrawlState
from vodspine.engine.ranges import IdBatch, RangeScanner, parse_ranges


class FailingStore(MemoryCheckpointStore):
    """Store whose writes fail until ``broken`` is cleared."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = True

    async def save(self, name: str, value: Any) -> None:
        if self.broken:
            raise CheckpointError(f"disk full writing {name}")
        await super().save(name, value)


class PausingStore(MemoryCheckpointStore):
    """Store whose set-file writes wait until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.writing = asyncio.Event()
        self.release = asyncio.Event()

    async def save(self, name: str, value: Any) -> None:
        if name.endswith(".txt"):
            self.writing.set()
            await self.release.wait()
        await super().save(name, value)


class YieldingStore(MemoryCheckpointStore):
    """Store that yields to the loop on every set write.

    Each state document written is checked against the stored ``discovered``
    ids: every id up to the document's scan marker must already be stored.
    """

    def __init__(self, name: str) -> None:
        super().__init__()
        self.name = name
        self.docs = 0
        self.ahead: list[int] = []

    async def save(self, name: str, value: Any) -> None:
        if name.endswith(".txt"):
            for _ in range(3):
                await asyncio.sleep(0)
        await super().save(name, value)
        if name == f"{self.name}.json":
            self.docs += 1
            marker = value["markers"].get("scan", 0)
            stored = set(await self.load_or(f"{self.name}.{DISCOVERED}.txt", []))
            missing = [i for i in range(1, marker + 1) if str(i) not in stored]
            if missing:
                self.ahead.append(marker)


class TestCrawlStateSets:
    """Id set tests."""

    def test_default_sets(self) -> None:
        """discovered and failed always exist."""
        state = CrawlState("runs", sets=["videos"])
        assert set(state.set_names) == {DISCOVERED, FAILED, "videos"}

    def test_add_returns_new_ids(self) -> None:
        """add reports only ids not already present, as strings."""
        state = CrawlState("runs")
        assert state.add(DISCOVERED, [1, 2]) == ["1", "2"]
        assert state.add(DISCOVERED, [2, 3, 3]) == ["3"]
        assert state.ids(DISCOVERED) == {"1", "2", "3"}

    def test_add_nothing_new_is_clean(self) -> None:
        """Adding known ids does not dirty the state."""
        state = CrawlState("runs")
        state.add(DISCOVERED, ["a"])
        state._dirty_sets.clear()
        state.add(DISCOVERED, ["a"])
        assert state.dirty is False

    def test_mark_failed_and_complete(self) -> None:
        """Completing a stream clears it from the failed set."""
        state = CrawlState("runs")
        state.mark_failed("stream-a")
        assert "stream-a" in state.failed
        state.complete_stream("stream-a")
        assert "stream-a" not in state.failed
        assert state.is_complete("stream-a")


class TestCrawlStatePositions:
    """Stream position tests."""

    def test_record_and_clear(self) -> None:
        """None clears a recorded position."""
        state = CrawlState("runs")
        state.record_position("s", {"next": {"url": "u"}})
        assert state.position_for("s") == {"next": {"url": "u"}}
        state.record_position("s", None)
        assert state.position_for("s") is None

    def test_complete_clears_position(self) -> None:
        """A completed stream has no open position."""
        state = CrawlState("runs")
        state.record_position("s", {"next": {"url": "u"}})
        state.complete_stream("s")
        assert state.positions == {}
        assert state.completed_streams == {"s"}

    def test_unchanged_position_is_clean(self) -> None:
        """Recording the same position twice only dirties once."""
        state = CrawlState("runs")
        state.record_position("s", {"p": 1})
        state._doc_dirty = False
        state.record_position("s", {"p": 1})
        assert state.dirty is False

    def test_markers(self) -> None:
        """Markers default and persist in the doc."""
        state = CrawlState("scan")
        assert state.marker("twitch", 7) == 7
        state.set_marker("twitch", 500)
        assert state.marker("twitch") == 500
        assert state.to_dict()["markers"] == {"twitch": 500}


class TestCrawlStatePersistence:
    """Save and load tests."""

    @pytest.fixture
    def store(self) -> MemoryCheckpointStore:
        """Create a memory store."""
        return MemoryCheckpointStore()

    async def test_round_trip(self, store: MemoryCheckpointStore) -> None:
        """Everything saved comes back on load."""
        state = CrawlState("runs", sets=["videos"])
        state.add(DISCOVERED, ["a", "b"])
        state.add("videos", ["v1"])
        state.record_position("s1", {"style": "link", "next": {"url": "https://x.test/2"}})
        state.complete_stream("s2")
        state.mark_failed("s3")
        state.set_marker("scan", 42)
        state.phase.advance(CrawlPhase.RUNS, key="game-a")
        assert await state.save(store) is True

        restored = await CrawlState.load(store, "runs")
        assert restored.ids(DISCOVERED) == {"a", "b"}
        assert restored.ids("videos") == {"v1"}
        assert restored.position_for("s1") == {"style": "link", "next": {"url": "https://x.test/2"}}
        assert restored.is_complete("s2")
        assert restored.failed == {"s3"}
        assert restored.marker("scan") == 42
        assert restored.phase.phase is CrawlPhase.RUNS
        assert restored.phase.key == "game-a"

    async def test_fresh_when_missing(self, store: MemoryCheckpointStore) -> None:
        """Loading an unknown name gives an empty state."""
        state = await CrawlState.load(store, "nothing")
        assert state.positions == {}
        assert state.ids(DISCOVERED) == set()
        assert state.phase.phase is CrawlPhase.DISCOVERY

    async def test_layout(self, store: MemoryCheckpointStore) -> None:
        """Sets go to .txt files and are written before the doc."""
        state = CrawlState("runs")
        state.add(DISCOVERED, ["b", "a"])
        await state.save(store)
        assert store.writes == ["runs.discovered.txt", "runs.json"]
        assert await store.load("runs.discovered.txt") == ["a", "b"]

    async def test_only_dirty_parts_written(self, store: MemoryCheckpointStore) -> None:
        """A position change rewrites the doc but no set files."""
        state = CrawlState("runs")
        state.add(DISCOVERED, ["a"])
        await state.save(store)
        store.writes.clear()

        state.record_position("s", {"p": 2})
        await state.save(store)
        assert store.writes == ["runs.json"]

    async def test_clean_save_skipped(self, store: MemoryCheckpointStore) -> None:
        """Nothing is written when nothing changed."""
        state = CrawlState("runs")
        state.add(DISCOVERED, ["a"])
        await state.save(store)
        assert await state.save(store) is False
        assert state.saves == 1

    async def test_force(self, store: MemoryCheckpointStore) -> None:
        """force writes the doc even when clean."""
        state = CrawlState("runs")
        assert await state.save(store, force=True) is True
        assert await store.exists("runs.json")

    async def test_failed_save_stays_dirty(self) -> None:
        """A failed write keeps the changes for the next save."""
        store = FailingStore()
        state = CrawlState("runs")
        state.add(DISCOVERED, ["a"])
        with pytest.raises(CheckpointError):
            await state.save(store)
        assert state.dirty is True

        store.broken = False
        assert await state.save(store) is True
        assert await store.load("runs.discovered.txt") == ["a"]

    async def test_loads_legacy_phase_keys(self, store: MemoryCheckpointStore) -> None:
        """Older docs with stage/id are understood."""
        await store.save("old.json", {"stage": "none", "id": None})
        state = await CrawlState.load(store, "old")
        assert state.phase.phase is CrawlPhase.DISCOVERY

    def test_summary(self) -> None:
        """summary counts sets and streams."""
        state = CrawlState("runs")
        state.add(DISCOVERED, ["a", "b"])
        state.record_position("s", {"p": 1})
        summary = state.summary()
        assert summary["sets"][DISCOVERED] == 2
        assert summary["open_streams"] == 1
        assert summary["phase"] == "discovery"


class TestCrawlStateSaveConsistency:
    """Saves racing with running units."""

    async def test_changes_during_write_wait_for_next_save(self) -> None:
        """The document written matches the ids written with it."""
        store = PausingStore()
        state = CrawlState("runs")
        state.add(DISCOVERED, ["a"])
        state.record_position("s", {"next": {"url": "page2"}})
        state.set_marker("scan", 100)

        saving = asyncio.create_task(state.save(store))
        await store.writing.wait()
        state.add(DISCOVERED, ["b"])
        state.record_position("s", {"next": {"url": "page3"}})
        state.set_marker("scan", 200)
        store.release.set()
        await saving

        restored = await CrawlState.load(store, "runs")
        assert restored.ids(DISCOVERED) == {"a"}
        assert restored.position_for("s") == {"next": {"url": "page2"}}
        assert restored.marker("scan") == 100

        assert state.dirty is True
        await state.save(store)
        restored = await CrawlState.load(store, "runs")
        assert restored.ids(DISCOVERED) == {"a", "b"}
        assert restored.position_for("s") == {"next": {"url": "page3"}}
        assert restored.marker("scan") == 200

    async def test_scan_marker_never_ahead_of_ids(self, fake_sleep) -> None:
        """Concurrent batches and periodic saves never store a marker past the ids."""
        store = YieldingStore("scan")
        state = CrawlState("scan")

        async def worker(batch: IdBatch) -> None:
            await asyncio.sleep(0)
            state.add(DISCOVERED, batch.ids())

        scanner = RangeScanner(
            parse_ranges("1-200"), worker, state, store,
            page_size=5, concurrency=4, checkpoint_interval=1.0, sleep=fake_sleep,
        )
        await scanner.run()

        assert store.docs > 1
        assert store.ahead == []
        restored = await CrawlState.load(store, "scan")
        assert restored.marker("scan") == 200
        assert len(restored.ids(DISCOVERED)) == 200

    async def test_failed_url_key_survives_reload(self, tmp_path: Path) -> None:
        """A failed stream key with commas reloads intact and can be cleared."""
        key = "https://www.speedrun.com/api/v1/runs?embed=players,category"
        store = FileCheckpointStore(tmp_path)
        state = CrawlState("runs")
        state.mark_failed(key)
        await state.save(store)

        restored = await CrawlState.load(store, "runs")
        assert restored.failed == {key}
        restored.complete_stream(key)
        assert restored.failed == set()


class TestCheckpointFlusher:
    """CheckpointFlusher tests."""

    async def test_flushes_periodically(self) -> None:
        """Dirty state is saved on each tick."""
        store = MemoryCheckpointStore()
        state = CrawlState("runs")
        ticks = asyncio.Event()

        async def sleep(delay: float) -> None:
            await asyncio.sleep(0)
            if state.saves >= 2:
                ticks.set()
                await asyncio.Event().wait()

        flusher = CheckpointFlusher(state, store, interval=5.0, sleep=sleep)
        async with flusher:
            state.add(DISCOVERED, ["a"])
            await asyncio.sleep(0.01)
            state.add(DISCOVERED, ["b"])
            await asyncio.wait_for(ticks.wait(), timeout=1.0)

        assert flusher.flushes == 2
        assert not flusher.running
        assert await store.load("runs.discovered.txt") == ["a", "b"]

    async def test_errors_do_not_stop_flusher(self) -> None:
        """A failed flush is logged and the timer keeps running."""
        store = FailingStore()
        state = CrawlState("runs")
        state.add(DISCOVERED, ["a"])
        calls = 0

        async def sleep(delay: float) -> None:
            nonlocal calls
            calls += 1
            if calls == 2:
                store.broken = False
            await asyncio.sleep(0)

        flusher = CheckpointFlusher(state, store, interval=1.0, sleep=sleep)
        flusher.start()
        for _ in range(20):
            if flusher.flushes:
                break
            await asyncio.sleep(0)
        await flusher.stop()
        assert flusher.flushes == 1

    async def test_disabled_with_zero_interval(self) -> None:
        """interval=0 never starts a task."""
        flusher = CheckpointFlusher(CrawlState("x"), MemoryCheckpointStore(), interval=0)
        flusher.start()
        assert flusher.running is False
