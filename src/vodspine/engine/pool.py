"""Bounded worker pool with a resizable limit.

Units of work are submitted as zero-argument coroutine factories. At most
``limit`` run at once; :meth:`WorkerPool.submit` waits while the pool is
full. The limit can be changed while the pool is running, and a limit of 0
pauses new work until it is raised again.

Every unit is isolated: an exception is logged and recorded as a
:class:`UnitFailure`, never propagated to the submitter or to sibling
units.

Example:
    >>> import asyncio
    >>> from vodspine.engine.pool import WorkerPool
    >>>
    >>> async def example():
    ...     pool = WorkerPool(limit=2)
    ...     async def work(n):
    ...         if n == 2:
    ...             raise ValueError("bad unit")
    ...         return n
    ...     for n in range(4):
    ...         await pool.submit(lambda n=n: work(n), label=f"unit-{n}")
    ...     await pool.join()
    ...     return sorted(pool.results.values()), [f.label for f in pool.failures]
    >>> asyncio.run(example())
    ([0, 1, 3], ['unit-2'])
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("vodspine.engine.pool")

UnitFactory = Callable[[], Awaitable[Any]]


@dataclass
class UnitFailure:
    """A unit of work that raised."""

    label: str
    error: BaseException

    @property
    def error_type(self) -> str:
        return type(self.error).__name__

    def __str__(self) -> str:
        return f"{self.label}: {self.error_type}: {self.error}"


class WorkerPool:
    """Settle-style pool of concurrent units.

    Attributes:
        results: Return value per label for units that succeeded.
        failures: Units that raised, in completion order.
    """

    def __init__(self, limit: int = 5, name: str = "pool") -> None:
        if limit < 0:
            raise ValueError("limit must be >= 0")
        self.name = name
        self._limit = limit
        self._tasks: set[asyncio.Task[None]] = set()
        self._changed = asyncio.Condition()
        self.results: dict[str, Any] = {}
        self.failures: list[UnitFailure] = []
        self.submitted = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def completed(self) -> int:
        return len(self.results) + len(self.failures)

    async def set_limit(self, limit: int) -> None:
        """Resize the pool. Running units are never interrupted."""
        if limit < 0:
            raise ValueError("limit must be >= 0")
        async with self._changed:
            logger.info(f"{self.name}: concurrency {self._limit} -> {limit}")
            self._limit = limit
            self._changed.notify_all()

    async def submit(self, factory: UnitFactory, label: str | None = None) -> None:
        """Start a unit once a slot is free."""
        label = label or f"unit-{self.submitted}"
        async with self._changed:
            await self._changed.wait_for(lambda: len(self._tasks) < self._limit)
            task = asyncio.create_task(self._run(factory, label), name=label)
            self._tasks.add(task)
            self.submitted += 1

    async def wait_idle_slot(self) -> None:
        """Wait until a unit could be submitted without blocking."""
        async with self._changed:
            await self._changed.wait_for(lambda: len(self._tasks) < self._limit)

    async def _run(self, factory: UnitFactory, label: str) -> None:
        try:
            self.results[label] = await factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name}: {label} failed: {e!r}")
            self.failures.append(UnitFailure(label, e))
        finally:
            async with self._changed:
                self._tasks.discard(asyncio.current_task())  # type: ignore[arg-type]
                self._changed.notify_all()

    async def join(self) -> None:
        """Wait for every submitted unit to settle."""
        async with self._changed:
            await self._changed.wait_for(lambda: not self._tasks)

    async def cancel(self) -> None:
        """Cancel running units and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def __repr__(self) -> str:
        return f"WorkerPool(name={self.name!r}, limit={self._limit}, in_flight={self.in_flight})"


__all__ = [
    "UnitFactory",
    "UnitFailure",
    "WorkerPool",
]
