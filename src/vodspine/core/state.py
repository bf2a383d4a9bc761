"""Explicit crawl state and its checkpoint flushing.

:class:`CrawlState` holds everything a crawl needs to resume: the current
phase, named id sets, the failed set, cursor positions per stream, and
range-scan markers. It is plain in-memory state; :meth:`CrawlState.load`
and :meth:`CrawlState.save` are the only points where it touches a
:class:`~vodspine.core.checkpoint.CheckpointStore`.

Layout in the store, for a state named ``runs``:

- ``runs.json``: phase, cursor positions, completed streams, markers.
- ``runs.<set>.txt``: one file per id set, newline-delimited.

Only the parts changed since the last save are rewritten.

Example:
    >>> import asyncio
    >>> from vodspine.core.checkpoint import MemoryCheckpointStore
    >>> from vodspine.core.state import CrawlState
    >>>
    >>> async def example():
    ...     store = MemoryCheckpointStore()
    ...     state = CrawlState("runs")
    ...     state.add("discovered", ["v1", "v2"])
    ...     await state.save(store)
    ...     restored = await CrawlState.load(store, "runs")
    ...     return sorted(restored.ids("discovered"))
    >>> asyncio.run(example())
    ['v1', 'v2']
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from vodspine.core.checkpoint import CheckpointStore
from vodspine.core.exceptions import CheckpointError
from vodspine.core.phases import PhaseTracker

logger = logging.getLogger("vodspine.state")

DISCOVERED = "discovered"
FAILED = "failed"


class CrawlState:
    """Resumable state of one crawl.

    Mutations happen between suspension points on a single event loop, so
    the in-memory mirror needs no lock. Saves are serialised with an
    :class:`asyncio.Lock`.

    Args:
        name: Prefix for this state's checkpoint names.
        sets: Id sets to create up front (``discovered`` and ``failed``
            always exist).
    """

    def __init__(self, name: str, sets: Iterable[str] = ()) -> None:
        self.name = name
        self.phase = PhaseTracker()
        self._sets: dict[str, set[str]] = {DISCOVERED: set(), FAILED: set()}
        for set_name in sets:
            self._sets.setdefault(set_name, set())
        self.positions: dict[str, dict[str, Any]] = {}
        self.completed_streams: set[str] = set()
        self.markers: dict[str, int] = {}
        self.saves = 0
        self._dirty_sets: set[str] = set()
        self._doc_dirty = False
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Id sets
    # ------------------------------------------------------------------

    @property
    def set_names(self) -> list[str]:
        return list(self._sets)

    def ids(self, set_name: str) -> set[str]:
        """The live id set ``set_name`` (created empty if missing)."""
        return self._sets.setdefault(set_name, set())

    def add(self, set_name: str, ids: Iterable[Any]) -> list[str]:
        """Add ids to a set.

        Returns:
            The ids that were not already present, in input order.
        """
        target = self.ids(set_name)
        added: list[str] = []
        for item in ids:
            key = str(item)
            if key not in target:
                target.add(key)
                added.append(key)
        if added:
            self._dirty_sets.add(set_name)
        return added

    def discard(self, set_name: str, item: Any) -> None:
        target = self.ids(set_name)
        if str(item) in target:
            target.discard(str(item))
            self._dirty_sets.add(set_name)

    @property
    def failed(self) -> set[str]:
        return self.ids(FAILED)

    def mark_failed(self, key: str) -> None:
        self.add(FAILED, [key])

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def position_for(self, key: str) -> dict[str, Any] | None:
        return self.positions.get(key)

    def record_position(self, key: str, position: dict[str, Any] | None) -> None:
        """Remember where stream ``key`` continues; None clears it."""
        if position is None:
            if self.positions.pop(key, None) is not None:
                self._doc_dirty = True
            return
        if self.positions.get(key) != position:
            self.positions[key] = position
            self._doc_dirty = True

    def complete_stream(self, key: str) -> None:
        """Mark stream ``key`` exhausted; it is skipped on resume."""
        self.record_position(key, None)
        if key not in self.completed_streams:
            self.completed_streams.add(key)
            self._doc_dirty = True
        self.discard(FAILED, key)

    def is_complete(self, key: str) -> bool:
        return key in self.completed_streams

    # ------------------------------------------------------------------
    # Markers and phase
    # ------------------------------------------------------------------

    def marker(self, name: str, default: int = 0) -> int:
        return self.markers.get(name, default)

    def set_marker(self, name: str, value: int) -> None:
        if self.markers.get(name) != value:
            self.markers[name] = value
            self._doc_dirty = True

    def touch(self) -> None:
        """Flag the state document for rewrite (after a phase change)."""
        self._doc_dirty = True

    @property
    def dirty(self) -> bool:
        return self._doc_dirty or bool(self._dirty_sets)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def doc_name(self) -> str:
        return f"{self.name}.json"

    def set_file(self, set_name: str) -> str:
        return f"{self.name}.{set_name}.txt"

    def to_dict(self) -> dict[str, Any]:
        """Snapshot of the state document, detached from live state."""
        return {
            **self.phase.to_dict(),
            "sets": sorted(self._sets),
            "positions": copy.deepcopy(self.positions),
            "completed": set(self.completed_streams),
            "markers": dict(self.markers),
        }

    async def save(self, store: CheckpointStore, force: bool = False) -> bool:
        """Write changed parts of the state to ``store``.

        Id sets and the document are snapshotted together before the first
        write, and the sets are written first. Units that advance while the
        writes are suspended only dirty the state for the next save, so the
        stored document never points past the stored ids.

        Returns:
            True if anything was written.
        """
        async with self._lock:
            if not (force or self.dirty):
                return False

            sets = {name: sorted(self._sets[name]) for name in self._dirty_sets}
            doc = self.to_dict() if (force or self._doc_dirty or sets) else None
            self._dirty_sets.clear()
            self._doc_dirty = False

            try:
                for set_name, ids in sets.items():
                    await store.save(self.set_file(set_name), ids)
                if doc is not None:
                    await store.save(self.doc_name(), doc)
            except Exception:
                self._dirty_sets.update(sets)
                self._doc_dirty = True
                raise

            self.saves += 1
            logger.debug(
                f"Saved state {self.name}: {len(sets)} set(s), "
                f"{len(self.positions)} open stream(s)"
            )
            return True

    @classmethod
    async def load(
        cls,
        store: CheckpointStore,
        name: str,
        sets: Iterable[str] = (),
    ) -> CrawlState:
        """Restore state saved under ``name``; a fresh state if none exists."""
        state = cls(name, sets)
        doc = await store.load_or(state.doc_name(), None)
        if isinstance(doc, dict):
            state.phase = PhaseTracker.from_dict(doc)
            state.positions = dict(doc.get("positions") or {})
            state.completed_streams = set(doc.get("completed") or ())
            state.markers = {k: int(v) for k, v in (doc.get("markers") or {}).items()}
            for set_name in doc.get("sets") or ():
                state._sets.setdefault(set_name, set())

        for set_name in list(state._sets):
            ids = await store.load_or(state.set_file(set_name), [])
            state._sets[set_name].update(str(item) for item in ids)

        if doc is not None:
            logger.info(
                f"Resumed {name}: phase={state.phase.phase.value}, "
                f"{len(state.completed_streams)} completed, {len(state.positions)} open, "
                f"{len(state.failed)} failed"
            )
        return state

    def summary(self) -> dict[str, Any]:
        """Counts for status display."""
        return {
            "name": self.name,
            "phase": self.phase.phase.value,
            "resume_key": self.phase.key,
            "sets": {name: len(ids) for name, ids in self._sets.items()},
            "open_streams": len(self.positions),
            "completed_streams": len(self.completed_streams),
            "markers": dict(self.markers),
        }

    def __repr__(self) -> str:
        return f"CrawlState(name={self.name!r}, phase={self.phase.phase.value!r})"


class CheckpointFlusher:
    """Background task that saves a :class:`CrawlState` every ``interval`` seconds.

    Example:
        >>> async with CheckpointFlusher(state, store, interval=5.0):
        ...     await engine_work()
    """

    def __init__(
        self,
        state: CrawlState,
        store: CheckpointStore,
        interval: float = 5.0,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.state = state
        self.store = store
        self.interval = interval
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self.flushes = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"flush-{self.state.name}")

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            try:
                if await self.state.save(self.store):
                    self.flushes += 1
            except CheckpointError as e:
                logger.error(f"Periodic checkpoint of {self.state.name} failed: {e}")

    async def stop(self) -> None:
        """Cancel the timer task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> CheckpointFlusher:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()


__all__ = [
    "DISCOVERED",
    "FAILED",
    "CrawlState",
    "CheckpointFlusher",
]
