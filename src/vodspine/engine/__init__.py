"""Crawl engine, worker pool and id-range scanning."""

from vodspine.engine.crawl import CancelToken, CrawlEngine, CrawlResult, OnPage
from vodspine.engine.pool import UnitFailure, WorkerPool
from vodspine.engine.ranges import (
    IdBatch,
    IdRange,
    RangeProgress,
    RangeScanner,
    ScanResult,
    parse_ranges,
)

__all__ = [
    # Fan-out over streams
    "CrawlEngine",
    "CrawlResult",
    "CancelToken",
    "OnPage",
    # Pool
    "WorkerPool",
    "UnitFailure",
    # Fan-out over an id space
    "IdRange",
    "IdBatch",
    "parse_ranges",
    "RangeProgress",
    "RangeScanner",
    "ScanResult",
]
