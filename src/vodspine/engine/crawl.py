"""Crawl engine: drives page cursors to exhaustion.

The engine runs one unit per cursor in a :class:`~vodspine.engine.pool.WorkerPool`.
Units share the fetcher's rate limiter, so adding concurrency spreads
requests across endpoint classes without exceeding any class's budget.
Within a unit pages are strictly sequential, since each request is built
from the previous response.

After every page the engine:

1. hands the page's new items to ``on_page``,
2. records the cursor position in the :class:`~vodspine.core.state.CrawlState`,
3. saves the state once ``checkpoint_every`` pages have completed.

A :class:`~vodspine.core.state.CheckpointFlusher` also saves on a timer,
and a final save runs when the run ends.

Cancellation is a graceful drain: once the :class:`CancelToken` is set no
new unit or page is started, in-flight fetches finish, state is saved and
:meth:`CrawlEngine.run` returns normally.

Example:
    >>> from vodspine.engine import CrawlEngine
    >>> from vodspine.pagination import LinkCursor
    >>>
    >>> state = await CrawlState.load(store, "channels")
    >>> engine = CrawlEngine(state, store, concurrency=5)
    >>> cursors = [LinkCursor(fetcher, PageRequest(url)) for url in channel_urls]
    >>> result = await engine.run(cursors, on_page=lambda page, new: print(len(new)))
    >>> result.failed
    []
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from vodspine.core.exceptions import CheckpointError
from vodspine.core.phases import CrawlPhase
from vodspine.core.state import DISCOVERED, CheckpointFlusher, CrawlState
from vodspine.engine.pool import UnitFailure, WorkerPool
from vodspine.models.page import Page
from vodspine.pagination.base import PageCursor
from vodspine.pagination.merge import KeyedMerge
from vodspine.protocols.progress import (
    NullProgressReporter,
    ProgressEvent,
    ProgressReporter,
    ProgressStage,
)

if TYPE_CHECKING:
    from vodspine.core.checkpoint import CheckpointStore
    from vodspine.core.config import Settings

logger = logging.getLogger("vodspine.engine")

OnPage = Callable[[Page, list[Any]], Awaitable[None] | None]


class CancelToken:
    """Cooperative cancellation signal shared by engines and scanners.

    Example:
        >>> token = CancelToken()
        >>> token.cancel("exit command")
        >>> token.cancelled, token.reason
        (True, 'exit command')
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            logger.info(f"Draining: {reason}")
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class CrawlResult:
    """Outcome of one :meth:`CrawlEngine.run`.

    Attributes:
        pages: Pages fetched.
        items: Items returned across all pages.
        new_items: Items passed to ``on_page`` as new.
        completed: Stream keys exhausted in this run.
        failed: Stream keys that raised and were abandoned.
        skipped: Stream keys already completed by an earlier run.
        failures: Failure record per failed unit.
        cancelled: True when the run was drained early.
        checkpoints: State saves that wrote something.
    """

    pages: int = 0
    items: int = 0
    new_items: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[UnitFailure] = field(default_factory=list)
    cancelled: bool = False
    checkpoints: int = 0

    @property
    def items_seen(self) -> int:
        return self.items - self.new_items

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled


class CrawlEngine:
    """Runs page cursors concurrently with checkpointed, resumable progress.

    Args:
        state: State the run reads positions from and writes progress to.
        store: Where ``state`` is saved.
        concurrency: Units running at once.
        checkpoint_every: Save after this many pages (0 disables).
        checkpoint_interval: Also save every N seconds (0 disables).
        cancel: Drain signal (default: a private token).
        progress: Progress reporter.
        seen_set: State id set used to tell new items from known ones
            across streams and runs (None: trust the cursor's merge).
        id_key: Item identity key for ``seen_set``.
    """

    def __init__(
        self,
        state: CrawlState,
        store: CheckpointStore,
        *,
        concurrency: int = 5,
        checkpoint_every: int = 1,
        checkpoint_interval: float = 5.0,
        cancel: CancelToken | None = None,
        progress: ProgressReporter | None = None,
        seen_set: str | None = DISCOVERED,
        id_key: str = "id",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.state = state
        self.store = store
        self.concurrency = concurrency
        self.checkpoint_every = checkpoint_every
        self.checkpoint_interval = checkpoint_interval
        self.cancel = cancel or CancelToken()
        self.progress = progress or NullProgressReporter()
        self.seen_set = seen_set
        self.id_key = id_key
        self._sleep = sleep
        self._pool: WorkerPool | None = None
        self._result = CrawlResult()
        self._pages_since_save = 0
        self._units_done = 0
        self._units_total = 0
        self._started_at = datetime.now()

    @classmethod
    def from_settings(
        cls,
        state: CrawlState,
        store: CheckpointStore,
        settings: Settings,
        **kwargs: Any,
    ) -> CrawlEngine:
        kwargs.setdefault("concurrency", settings.concurrency)
        kwargs.setdefault("checkpoint_every", settings.checkpoint_every)
        kwargs.setdefault("checkpoint_interval", settings.checkpoint_interval)
        return cls(state, store, **kwargs)

    async def set_concurrency(self, n: int) -> None:
        """Change how many units run at once; 0 pauses new units."""
        if n < 0:
            raise ValueError("concurrency must be >= 0")
        self.concurrency = n
        if self._pool is not None:
            await self._pool.set_limit(n)

    @property
    def result(self) -> CrawlResult:
        """Counters of the current or last run."""
        return self._result

    async def run(
        self,
        cursors: Iterable[PageCursor],
        on_page: OnPage | None = None,
        concurrency: int | None = None,
    ) -> CrawlResult:
        """Exhaust ``cursors`` and return what happened.

        Never raises for a failing unit; failures are logged, recorded in
        the state's failed set and listed in the result.
        """
        if concurrency is not None:
            self.concurrency = concurrency
        result = self._result = CrawlResult()
        self._pages_since_save = 0
        self._units_done = 0
        self._started_at = datetime.now()
        self._units_total = len(cursors) if hasattr(cursors, "__len__") else 0  # type: ignore[arg-type]

        pool = self._pool = WorkerPool(self.concurrency, name="crawl")
        flusher = CheckpointFlusher(
            self.state, self.store, self.checkpoint_interval, sleep=self._sleep
        )
        self.progress.start()

        try:
            async with flusher:
                for cursor in cursors:
                    if self.state.is_complete(cursor.key):
                        logger.debug(f"Skipping completed stream {cursor.key}")
                        result.skipped.append(cursor.key)
                        self._units_done += 1
                        continue
                    self._prepare(cursor)
                    if not await self._wait_for_slot(pool):
                        break
                    await pool.submit(
                        lambda c=cursor: self._drive(c, on_page), label=cursor.key
                    )
                await pool.join()
        finally:
            self._pool = None
            result.failures = list(pool.failures)
            result.cancelled = self.cancel.cancelled
            await self.checkpoint()
            self.progress.finish(success=not result.cancelled)

        logger.info(
            f"Crawl {'drained' if result.cancelled else 'finished'}: "
            f"{result.pages} pages, {result.new_items} new items, "
            f"{len(result.completed)} completed, {len(result.failed)} failed, "
            f"{len(result.skipped)} skipped"
        )
        return result

    async def run_phase(
        self,
        phase: CrawlPhase,
        entities: Mapping[str, Callable[[], PageCursor]],
        on_page: OnPage | None = None,
    ) -> CrawlResult:
        """Run the entities of one crawl phase.

        ``entities`` maps entity keys, in crawl order, to cursor factories.
        Entering ``phase`` from another phase is checked against the
        transition table and resets the resume key. Entities up to the
        saved resume key are skipped. Afterwards the key moves to the last
        entity of the finished prefix, so a restart repeats only entities
        that were still running or failed.

        Raises:
            InvalidPhaseTransitionError: If ``phase`` cannot follow the
                saved phase.
        """
        tracker = self.state.phase
        if tracker.phase is not phase:
            tracker.advance(phase)
            self.state.touch()
        keys = list(tracker.pending(entities))
        cursors = {entity: entities[entity]() for entity in keys}
        result = await self.run(list(cursors.values()), on_page)

        finished = None
        for entity in keys:
            if not self.state.is_complete(cursors[entity].key):
                break
            finished = entity
        if finished is not None:
            tracker.finish(finished)
            self.state.touch()
            await self.checkpoint()
            logger.info(f"Phase {phase.value} resume key now {finished}")
        return result

    async def collect(self, cursor: PageCursor) -> dict[str, list[Any]]:
        """Run a single cursor and return everything its merge accumulated."""
        await self.run([cursor])
        return cursor.merge.results()

    async def checkpoint(self) -> bool:
        """Save the state now if anything changed."""
        self._pages_since_save = 0
        try:
            saved = await self.state.save(self.store)
        except CheckpointError as e:
            logger.error(f"Checkpoint failed, will retry on next save: {e}")
            return False
        if saved:
            self._result.checkpoints += 1
            self._emit(ProgressStage.CHECKPOINT)
        return saved

    def _prepare(self, cursor: PageCursor) -> None:
        position = self.state.position_for(cursor.key)
        if position:
            cursor.resume(position)
            logger.info(f"Resuming {cursor.key} at {cursor.next_request.url if cursor.next_request else '-'}")
            if self.seen_set is not None and isinstance(cursor.merge, KeyedMerge):
                known = self.state.ids(self.seen_set)
                for name in cursor.merge.fields:
                    cursor.merge.seed(name, known)

    async def _wait_for_slot(self, pool: WorkerPool) -> bool:
        """Wait for a free slot; False if the run was cancelled first."""
        if self.cancel.cancelled:
            return False
        slot = asyncio.ensure_future(pool.wait_idle_slot())
        cancelled = asyncio.ensure_future(self.cancel.wait())
        try:
            await asyncio.wait({slot, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (slot, cancelled):
                if not task.done():
                    task.cancel()
        return not self.cancel.cancelled

    async def _drive(self, cursor: PageCursor, on_page: OnPage | None) -> int:
        """Walk one cursor to the end. Returns pages fetched in this run."""
        key = cursor.key
        self._emit(ProgressStage.STARTING, key)
        pages = 0
        try:
            while not cursor.done:
                if self.cancel.cancelled:
                    self._emit(ProgressStage.CANCELLED, key)
                    return pages
                page = await cursor.fetch_page()
                if page is None:
                    break
                pages += 1
                await self._handle_page(cursor, page, on_page)
        except Exception as e:
            self.state.mark_failed(key)
            self._result.failed.append(key)
            self._units_done += 1
            self._emit(ProgressStage.FAILED, key, message=f"{type(e).__name__}: {e}")
            raise

        if not self.state.is_complete(key):
            self._finish_stream(key)
        return pages

    async def _handle_page(
        self,
        cursor: PageCursor,
        page: Page,
        on_page: OnPage | None,
    ) -> None:
        new = self._filter_new(page)
        self._result.pages += 1
        self._result.items += page.item_count
        self._result.new_items += len(new)

        if on_page is not None:
            outcome = on_page(page, new)
            if inspect.isawaitable(outcome):
                await outcome

        if cursor.done:
            self._finish_stream(cursor.key)
        else:
            self.state.record_position(cursor.key, cursor.position)

        self._pages_since_save += 1
        if self.checkpoint_every > 0 and self._pages_since_save >= self.checkpoint_every:
            await self.checkpoint()
        self._emit(ProgressStage.FETCHING, cursor.key)

    def _finish_stream(self, key: str) -> None:
        self.state.complete_stream(key)
        self._result.completed.append(key)
        self._units_done += 1
        self._emit(ProgressStage.COMPLETE, key)

    def _filter_new(self, page: Page) -> list[Any]:
        fresh = page.all_new()
        if self.seen_set is None:
            return fresh
        new: list[Any] = []
        for item in fresh:
            identity = item.get(self.id_key) if isinstance(item, dict) else None
            if identity is None or self.state.add(self.seen_set, [identity]):
                new.append(item)
        return new

    def _emit(self, stage: ProgressStage, stream: str = "", message: str = "") -> None:
        result = self._result
        self.progress.report(
            ProgressEvent(
                stage=stage,
                stream=stream,
                current=self._units_done,
                total=self._units_total,
                pages=result.pages,
                items_new=result.new_items,
                items_seen=result.items_seen,
                failed=len(result.failed),
                message=message,
                started_at=self._started_at,
            )
        )


__all__ = [
    "OnPage",
    "CancelToken",
    "CrawlResult",
    "CrawlEngine",
]
