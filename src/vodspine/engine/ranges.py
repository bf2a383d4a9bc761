"""ID-space fan-out: scan numeric id ranges in fixed-size batches.

Some sources can only be enumerated by asking for ids directly. The id
space is split into batches of ``page_size`` consecutive ids that many
workers fetch at once. Workers finish out of order, so progress is kept as
a durable marker: the last id below which every issued batch has finished.
A restarted scan resumes just after the marker, at worst redoing the
batches that were in flight.

Example:
    >>> from vodspine.engine.ranges import RangeScanner, parse_ranges
    >>>
    >>> async def fetch_batch(batch):
    ...     videos = await client.get_videos(batch.ids())
    ...     state.add("videos", [v["id"] for v in videos])
    >>>
    >>> scanner = RangeScanner(parse_ranges("1-100000"), fetch_batch, state, store, page_size=139)
    >>> result = await scanner.run()
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from vodspine.core.exceptions import CheckpointError
from vodspine.core.state import CrawlState
from vodspine.engine.crawl import CancelToken
from vodspine.engine.pool import UnitFailure, WorkerPool
from vodspine.protocols.progress import (
    NullProgressReporter,
    ProgressEvent,
    ProgressReporter,
    ProgressStage,
)
from vodspine.utils.retry import RetryConfig, with_retry

if TYPE_CHECKING:
    from vodspine.core.checkpoint import CheckpointStore

logger = logging.getLogger("vodspine.engine.ranges")

_RANGE = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")

SERVICE_TIMEOUT = "service timeout"


@dataclass(frozen=True, order=True)
class IdRange:
    """Inclusive range of integer ids."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Range end {self.end} is before start {self.start}")

    def __contains__(self, value: object) -> bool:
        return isinstance(value, int) and self.start <= value <= self.end

    def __len__(self) -> int:
        return self.end - self.start + 1

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


def parse_ranges(text: str) -> list[IdRange]:
    """Parse ``"1-100,200-300"`` into sorted ranges.

    A lone number is a one-id range.

    Example:
        >>> parse_ranges("200-300, 1-100")
        [IdRange(start=1, end=100), IdRange(start=200, end=300)]

    Raises:
        ValueError: On anything that is not a number or ``a-b`` pair.
    """
    ranges: list[IdRange] = []
    for part in text.split(","):
        if not part.strip():
            continue
        match = _RANGE.match(part)
        if match is None:
            raise ValueError(f"Invalid id range: {part.strip()!r}")
        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) else start
        ranges.append(IdRange(start, end))
    if not ranges:
        raise ValueError("No id ranges given")
    return sorted(ranges)


@dataclass(frozen=True)
class IdBatch:
    """Ids ``start`` to ``end`` inclusive, fetched as one unit."""

    start: int
    end: int

    def ids(self) -> list[str]:
        return [str(i) for i in range(self.start, self.end + 1)]

    @property
    def label(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass
class _Slot:
    batch: IdBatch
    done: bool = False


class RangeProgress:
    """Issues batches across ranges and tracks the contiguous marker.

    ``marker`` is the highest id such that every batch issued at or below it
    has completed. Batches are issued in ascending order starting just
    after the marker.

    Example:
        >>> progress = RangeProgress(parse_ranges("1-10"), page_size=4)
        >>> a, b, c = progress.issue(), progress.issue(), progress.issue()
        >>> (a.label, b.label, c.label)
        ('1-4', '5-8', '9-10')
        >>> progress.complete(b)
        >>> progress.marker
        0
        >>> progress.complete(a)
        >>> progress.marker
        8
    """

    def __init__(self, ranges: Sequence[IdRange], page_size: int, marker: int | None = None) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.ranges = sorted(ranges)
        self.page_size = page_size
        self.marker = marker if marker is not None else self.ranges[0].start - 1
        self._next = self.marker + 1
        self._outstanding: deque[_Slot] = deque()
        self._slots: dict[IdBatch, _Slot] = {}

    @property
    def total(self) -> int:
        return sum(len(r) for r in self.ranges)

    @property
    def covered(self) -> int:
        """Ids at or below the marker that fall inside a range."""
        return sum(
            max(0, min(r.end, self.marker) - r.start + 1) for r in self.ranges
        )

    @property
    def in_flight(self) -> int:
        return len(self._outstanding)

    def _range_for(self, value: int) -> IdRange | None:
        for r in self.ranges:
            if value <= r.end:
                return r
        return None

    def issue(self) -> IdBatch | None:
        """Next batch to fetch, or None when every range is issued."""
        current = self._range_for(self._next)
        if current is None:
            return None
        start = max(self._next, current.start)
        end = min(start + self.page_size - 1, current.end)
        batch = IdBatch(start, end)
        self._next = end + 1
        slot = _Slot(batch)
        self._outstanding.append(slot)
        self._slots[batch] = slot
        return batch

    def complete(self, batch: IdBatch) -> None:
        """Mark ``batch`` done and advance the marker over finished batches."""
        slot = self._slots.pop(batch, None)
        if slot is None:
            return
        slot.done = True
        while self._outstanding and self._outstanding[0].done:
            self.marker = self._outstanding.popleft().batch.end

    def __iter__(self) -> Iterator[IdBatch]:
        while (batch := self.issue()) is not None:
            yield batch


@dataclass
class ScanResult:
    """Outcome of one :meth:`RangeScanner.run`."""

    batches: int = 0
    failed: list[str] = field(default_factory=list)
    failures: list[UnitFailure] = field(default_factory=list)
    marker: int = 0
    cancelled: bool = False
    checkpoints: int = 0


def _retry_delay(exc: Exception) -> float:
    # Service timeouts clear quickly; anything else gets a longer pause.
    return 0.1 if SERVICE_TIMEOUT in str(exc) else 0.5


class RangeScanner:
    """Fans id batches out to a worker coroutine.

    Each batch is retried with linear backoff; a batch that still fails is
    logged, added to the state's failed set and counted as done so the
    marker keeps moving.

    Args:
        ranges: Id ranges to scan.
        worker: Coroutine function called with each :class:`IdBatch`.
        state: State holding the durable marker and failed set.
        store: Where ``state`` is saved.
        page_size: Ids per batch.
        concurrency: Batches in flight at once.
        marker_name: Marker key inside ``state``.
        checkpoint_interval: Save every N seconds.
        attempts: Tries per batch.
        cancel: Drain signal.
    """

    def __init__(
        self,
        ranges: Sequence[IdRange],
        worker: Callable[[IdBatch], Awaitable[Any]],
        state: CrawlState,
        store: CheckpointStore,
        *,
        page_size: int = 100,
        concurrency: int = 25,
        marker_name: str = "scan",
        checkpoint_interval: float = 5.0,
        attempts: int = 10,
        cancel: CancelToken | None = None,
        progress: ProgressReporter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.worker = worker
        self.state = state
        self.store = store
        self.marker_name = marker_name
        self.concurrency = concurrency
        self.checkpoint_interval = checkpoint_interval
        self.cancel = cancel or CancelToken()
        self.progress = progress or NullProgressReporter()
        self.retry = RetryConfig(max_attempts=attempts, base_delay=0.5, linear=True, delay_for=_retry_delay)
        self._sleep = sleep
        saved = state.markers.get(marker_name)
        self.ranges = RangeProgress(ranges, page_size, marker=saved)
        self._pool: WorkerPool | None = None
        self._result = ScanResult()
        self._started_at = datetime.now()

    async def set_concurrency(self, n: int) -> None:
        if n < 0:
            raise ValueError("concurrency must be >= 0")
        self.concurrency = n
        if self._pool is not None:
            await self._pool.set_limit(n)

    @property
    def marker(self) -> int:
        return self.ranges.marker

    async def run(self) -> ScanResult:
        """Scan from the durable marker to the end of the last range."""
        result = self._result = ScanResult(marker=self.marker)
        self._started_at = datetime.now()
        pool = self._pool = WorkerPool(self.concurrency, name="scan")
        logger.info(f"Scanning {', '.join(str(r) for r in self.ranges.ranges)} from {self.marker + 1}")
        self.progress.start()

        flusher_task = asyncio.create_task(self._flush_periodically())
        try:
            while not self.cancel.cancelled:
                if not await self._wait_for_slot(pool):
                    break
                batch = self.ranges.issue()
                if batch is None:
                    break
                await pool.submit(lambda b=batch: self._run_batch(b), label=batch.label)
            await pool.join()
        finally:
            flusher_task.cancel()
            try:
                await flusher_task
            except asyncio.CancelledError:
                pass
            self._pool = None
            result.failures = list(pool.failures)
            result.cancelled = self.cancel.cancelled
            await self._save()
            self.progress.finish(success=not result.cancelled)

        logger.info(
            f"Scan {'drained' if result.cancelled else 'finished'} at {self.marker}: "
            f"{result.batches} batches, {len(result.failed)} failed"
        )
        return result

    async def _wait_for_slot(self, pool: WorkerPool) -> bool:
        slot = asyncio.ensure_future(pool.wait_idle_slot())
        cancelled = asyncio.ensure_future(self.cancel.wait())
        try:
            await asyncio.wait({slot, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (slot, cancelled):
                if not task.done():
                    task.cancel()
        return not self.cancel.cancelled

    async def _run_batch(self, batch: IdBatch) -> None:
        try:
            await with_retry(lambda: self.worker(batch), self.retry, sleep=self._sleep)
        except Exception as e:
            logger.error(f"Batch {batch.label} failed after {self.retry.max_attempts} attempts: {e}")
            self.state.mark_failed(batch.label)
            self._result.failed.append(batch.label)
            self._emit(ProgressStage.FAILED, batch.label)
            raise
        finally:
            self.ranges.complete(batch)
            self._result.batches += 1
            self.state.set_marker(self.marker_name, self.ranges.marker)
            self._result.marker = self.ranges.marker
        self._emit(ProgressStage.FETCHING, batch.label)

    async def _flush_periodically(self) -> None:
        if self.checkpoint_interval <= 0:
            return
        while True:
            await self._sleep(self.checkpoint_interval)
            await self._save()

    async def _save(self) -> None:
        try:
            if await self.state.save(self.store):
                self._result.checkpoints += 1
                logger.info(
                    f"Scanned through {self.marker} "
                    f"({self.ranges.covered:,}/{self.ranges.total:,} ids, "
                    f"{self.ranges.in_flight} batches in flight)"
                )
        except CheckpointError as e:
            logger.error(f"Saving scan progress failed: {e}")

    def _emit(self, stage: ProgressStage, label: str) -> None:
        page_size = self.ranges.page_size
        self.progress.report(
            ProgressEvent(
                stage=stage,
                stream=label,
                current=self.ranges.covered // page_size,
                total=-(-self.ranges.total // page_size),
                pages=self._result.batches,
                failed=len(self._result.failed),
                started_at=self._started_at,
                metadata={"marker": self.ranges.marker},
            )
        )


__all__ = [
    "IdRange",
    "IdBatch",
    "parse_ranges",
    "RangeProgress",
    "ScanResult",
    "RangeScanner",
]
