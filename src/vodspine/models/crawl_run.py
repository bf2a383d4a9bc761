"""CrawlRun model - a record of one crawl or scan.

A CrawlRun summarises a run for status output and for the run log kept
next to the checkpoints:

- when it started and finished, and whether it was drained early
- pages, new and already-seen items
- which units failed, and why

Example:
    >>> from vodspine.models.crawl_run import CrawlRun, CrawlRunStatus
    >>> run = CrawlRun(name="channels")
    >>> run.is_complete
    False
    >>> run.duration_seconds is None
    True
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import Field, field_validator

from vodspine.models.base import VodSpineModel

if TYPE_CHECKING:
    from vodspine.engine.crawl import CrawlResult
    from vodspine.engine.ranges import ScanResult


class CrawlRunStatus(str, Enum):
    """Crawl run states.

    Example:
        >>> CrawlRunStatus.DRAINED.value
        'drained'
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    DRAINED = "drained"


class CrawlRun(VodSpineModel):
    """Records a single crawl or scan run.

    ``PARTIAL`` means every unit was attempted but some failed; the run
    still counts as complete, and failed units are retried on the next run.

    Example:
        >>> run = CrawlRun(name="runs", status=CrawlRunStatus.SUCCESS, pages=10, items_new=80, items_seen=20)
        >>> run.dedup_rate
        0.2
    """

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique run identifier",
    )
    name: str = Field(..., description="State name the run worked on")
    kind: str = Field(default="crawl", description="'crawl' or 'scan'")
    status: CrawlRunStatus = Field(
        default=CrawlRunStatus.PENDING,
        description="Current run status",
    )

    # Timestamps
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the run started",
    )
    completed_at: datetime | None = Field(
        default=None,
        description="When the run finished or drained",
    )

    # Counts
    pages: int = Field(default=0, ge=0, description="Pages or batches fetched")
    items_new: int = Field(default=0, ge=0, description="Items not seen before")
    items_seen: int = Field(default=0, ge=0, description="Items already known")
    checkpoints: int = Field(default=0, ge=0, description="State saves that wrote data")

    # Failures
    failed_units: list[str] = Field(
        default_factory=list,
        description="Stream keys or batch labels that failed",
    )
    errors: list[str] = Field(
        default_factory=list,
        description="One message per failed unit",
    )

    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional run data (url, ranges, marker)",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure the name is non-empty and trimmed."""
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @property
    def is_complete(self) -> bool:
        return self.status in (
            CrawlRunStatus.SUCCESS,
            CrawlRunStatus.PARTIAL,
            CrawlRunStatus.DRAINED,
        )

    @property
    def duration_seconds(self) -> float | None:
        """Run duration in seconds, or None while running.

        Example:
            >>> from datetime import timedelta
            >>> start = datetime.now(UTC)
            >>> run = CrawlRun(name="t", started_at=start, completed_at=start + timedelta(seconds=5))
            >>> run.duration_seconds
            5.0
        """
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def dedup_rate(self) -> float:
        """Share of items that were already known (0.0 to 1.0)."""
        total = self.items_new + self.items_seen
        if total == 0:
            return 0.0
        return self.items_seen / total

    def start(self) -> CrawlRun:
        """Copy marked as running.

        Example:
            >>> CrawlRun(name="t").start().status
            <CrawlRunStatus.RUNNING: 'running'>
        """
        return self.model_copy(
            update={
                "status": CrawlRunStatus.RUNNING,
                "started_at": datetime.now(UTC),
            }
        )

    def finish(
        self,
        *,
        pages: int,
        items_new: int = 0,
        items_seen: int = 0,
        checkpoints: int = 0,
        failed_units: list[str] | None = None,
        errors: list[str] | None = None,
        cancelled: bool = False,
    ) -> CrawlRun:
        """Copy marked finished, with final counts."""
        failed_units = failed_units or []
        if cancelled:
            status = CrawlRunStatus.DRAINED
        elif failed_units:
            status = CrawlRunStatus.PARTIAL
        else:
            status = CrawlRunStatus.SUCCESS
        return self.model_copy(
            update={
                "status": status,
                "completed_at": datetime.now(UTC),
                "pages": pages,
                "items_new": items_new,
                "items_seen": items_seen,
                "checkpoints": checkpoints,
                "failed_units": failed_units,
                "errors": errors or [],
            }
        )

    def finish_crawl(self, result: CrawlResult) -> CrawlRun:
        """Copy finished from a :class:`~vodspine.engine.crawl.CrawlResult`."""
        return self.finish(
            pages=result.pages,
            items_new=result.new_items,
            items_seen=result.items_seen,
            checkpoints=result.checkpoints,
            failed_units=list(result.failed),
            errors=[str(f) for f in result.failures],
            cancelled=result.cancelled,
        )

    def finish_scan(self, result: ScanResult) -> CrawlRun:
        """Copy finished from a :class:`~vodspine.engine.ranges.ScanResult`."""
        run = self.finish(
            pages=result.batches,
            checkpoints=result.checkpoints,
            failed_units=list(result.failed),
            errors=[str(f) for f in result.failures],
            cancelled=result.cancelled,
        )
        return run.model_copy(update={"metadata": {**run.metadata, "marker": result.marker}})

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrawlRun:
        """Create a CrawlRun from :meth:`to_dict` output.

        Example:
            >>> data = {"name": "runs", "status": "drained", "started_at": "2024-01-01T00:00:00+00:00"}
            >>> CrawlRun.from_dict(data).status
            <CrawlRunStatus.DRAINED: 'drained'>
        """
        return cls.model_validate(data)


__all__ = [
    "CrawlRunStatus",
    "CrawlRun",
]
