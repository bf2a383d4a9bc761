"""
vodspine - Resumable, rate-limited crawl engine.

vodspine walks paginated JSON APIs to discover video and channel ids before
they disappear. Every request goes through one shared rate limiter and
retry policy, progress is checkpointed to gzip files, and an interrupted
run picks up where it stopped.

Key Features:
- Per-endpoint-class request spacing shared by all concurrent cursors
- Retry classification (terminal, rate limited, transient) with a fixed cap
- Link, page-counter and token pagination with explicit merge strategies
- Bounded, runtime-resizable concurrency with graceful drain
- ID-space range scanning with a contiguous progress marker

Quick Start:
    >>> from vodspine import CrawlEngine, CrawlState, FileCheckpointStore, LinkCursor, RetryingFetcher
    >>> store = FileCheckpointStore("data")
    >>> state = await CrawlState.load(store, "runs")
    >>> async with RetryingFetcher.from_settings(get_settings()) as fetcher:
    ...     cursor = LinkCursor(fetcher, PageRequest("https://www.speedrun.com/api/v1/runs"))
    ...     result = await CrawlEngine(state, store).run([cursor])
"""

__version__ = "0.1.0"

# Core
from vodspine.core.checkpoint import CheckpointStore, FileCheckpointStore, MemoryCheckpointStore
from vodspine.core.config import Settings, get_settings
from vodspine.core.exceptions import (
    CheckpointError,
    CheckpointNotFoundError,
    ConfigurationError,
    FetchError,
    InvalidPhaseTransitionError,
    MalformedResponseError,
    RetriesExhaustedError,
    TerminalFetchError,
    VodSpineError,
)
from vodspine.core.phases import CrawlPhase, PhaseTracker
from vodspine.core.state import CheckpointFlusher, CrawlState

# Engine
from vodspine.engine.crawl import CancelToken, CrawlEngine, CrawlResult
from vodspine.engine.pool import UnitFailure, WorkerPool
from vodspine.engine.ranges import IdRange, RangeScanner, parse_ranges

# HTTP
from vodspine.http.auth import ClientCredentialsAuth
from vodspine.http.client import FetchResponse, RetryingFetcher
from vodspine.http.rate_limiter import RateLimiter

# Models
from vodspine.models.crawl_run import CrawlRun, CrawlRunStatus
from vodspine.models.page import Page, PageRequest

# Pagination
from vodspine.pagination import (
    AppendMerge,
    EncodedParamCodec,
    KeyedMerge,
    LinkCursor,
    PageCursor,
    PageNumberCursor,
    QueryParamCodec,
    TokenCursor,
)

__all__ = [
    "__version__",
    # Core
    "CheckpointStore",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
    "Settings",
    "get_settings",
    "CrawlPhase",
    "PhaseTracker",
    "CrawlState",
    "CheckpointFlusher",
    # Errors
    "VodSpineError",
    "ConfigurationError",
    "CheckpointError",
    "CheckpointNotFoundError",
    "FetchError",
    "TerminalFetchError",
    "RetriesExhaustedError",
    "MalformedResponseError",
    "InvalidPhaseTransitionError",
    # Engine
    "CancelToken",
    "CrawlEngine",
    "CrawlResult",
    "WorkerPool",
    "UnitFailure",
    "IdRange",
    "RangeScanner",
    "parse_ranges",
    # HTTP
    "RateLimiter",
    "RetryingFetcher",
    "FetchResponse",
    "ClientCredentialsAuth",
    # Models
    "Page",
    "PageRequest",
    "CrawlRun",
    "CrawlRunStatus",
    # Pagination
    "PageCursor",
    "LinkCursor",
    "PageNumberCursor",
    "TokenCursor",
    "QueryParamCodec",
    "EncodedParamCodec",
    "AppendMerge",
    "KeyedMerge",
]
