"""Pagination cursors and merge strategies.

Each cursor walks one paginated stream. Pick the cursor for the API's
pagination style and the merge strategy for its response shape:

- :class:`LinkCursor` follows an explicit ``next`` link.
- :class:`PageNumberCursor` bumps a page index until ``page >= pages``.
- :class:`TokenCursor` copies an opaque cursor token forward.

Example:
    >>> from vodspine.pagination import LinkCursor, AppendMerge
    >>> from vodspine.models.page import PageRequest
    >>>
    >>> cursor = LinkCursor(
    ...     fetcher,
    ...     PageRequest("https://www.speedrun.com/api/v1/runs", params={"max": 200}),
    ...     merge=AppendMerge(["data"]),
    ... )
    >>> async for page in cursor:
    ...     print(page.number, len(page.all_new()))
"""

from vodspine.pagination.base import PageCursor, Stopper, stream_key
from vodspine.pagination.counter import (
    EncodedParamCodec,
    PageNumberCursor,
    ParamCodec,
    QueryParamCodec,
)
from vodspine.pagination.link import LinkCursor, find_next_link
from vodspine.pagination.merge import AppendMerge, KeyedMerge, MergeStrategy
from vodspine.pagination.token import TokenCursor

CURSOR_STYLES: dict[str, type[PageCursor]] = {
    LinkCursor.style: LinkCursor,
    PageNumberCursor.style: PageNumberCursor,
    TokenCursor.style: TokenCursor,
}

__all__ = [
    # Cursors
    "PageCursor",
    "LinkCursor",
    "PageNumberCursor",
    "TokenCursor",
    "CURSOR_STYLES",
    "Stopper",
    "stream_key",
    "find_next_link",
    # Param codecs
    "ParamCodec",
    "QueryParamCodec",
    "EncodedParamCodec",
    # Merge strategies
    "MergeStrategy",
    "AppendMerge",
    "KeyedMerge",
]
