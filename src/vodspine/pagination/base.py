"""Page cursor base class.

A :class:`PageCursor` walks one paginated stream: it fetches a page, merges
its items, works out the request for the next page from the response, and
stops when the API says there is nothing more, when a caller-supplied
stopper says so, or when the stream hits a terminal error.

Subclasses only implement :meth:`PageCursor.next_page`.

Example:
    >>> from vodspine.pagination import LinkCursor
    >>> cursor = LinkCursor(fetcher, PageRequest("https://www.speedrun.com/api/v1/runs"))
    >>> async for page in cursor:
    ...     print(page.number, page.item_count)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import urlencode

from vodspine.core.exceptions import MalformedResponseError, TerminalFetchError
from vodspine.models.page import Page, PageRequest
from vodspine.pagination.merge import AppendMerge, MergeStrategy

if TYPE_CHECKING:
    from vodspine.http.client import RetryingFetcher

logger = logging.getLogger("vodspine.pagination")

Stopper = Callable[[Page], bool]


def stream_key(request: PageRequest) -> str:
    """Stable identity for a stream, derived from its first request.

    Example:
        >>> from vodspine.models.page import PageRequest
        >>> stream_key(PageRequest("https://x.test/videos", params={"user_id": "9", "type": "upload"}))
        'https://x.test/videos?type=upload&user_id=9'
    """
    if not request.params:
        return request.url
    query = urlencode(sorted((str(k), str(v)) for k, v in request.params.items()))
    separator = "&" if "?" in request.url else "?"
    return f"{request.url}{separator}{query}"


class PageCursor(ABC):
    """Walks one paginated stream, one page at a time.

    Pages come out strictly in order; each request is built from the
    previous response.

    Args:
        fetcher: Fetcher used for every page.
        first_request: Request for the first page.
        merge: Item merge strategy (default: append of ``data``).
        stopper: Called after each page is merged; True stops the stream.
        key: Stream identity for checkpoints (default: from first request).
        resume_from: Saved next request to continue from instead of
            ``first_request``.
    """

    style: ClassVar[str] = "base"

    def __init__(
        self,
        fetcher: RetryingFetcher,
        first_request: PageRequest,
        *,
        merge: MergeStrategy | None = None,
        stopper: Stopper | None = None,
        key: str | None = None,
        resume_from: PageRequest | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.first_request = first_request
        self.merge = merge if merge is not None else self.default_merge()
        self.stopper = stopper
        self.key = key or stream_key(first_request)
        self.next_request: PageRequest | None = resume_from or first_request
        self.pages_fetched = 0
        self.stopped_early = False
        self.terminal_error: TerminalFetchError | None = None

    def default_merge(self) -> MergeStrategy:
        return AppendMerge()

    @property
    def done(self) -> bool:
        return self.next_request is None

    @property
    def position(self) -> dict[str, Any] | None:
        """Checkpointable position: the next request, or None when done."""
        if self.next_request is None:
            return None
        return {"style": self.style, "next": self.next_request.to_dict()}

    def resume(self, position: dict[str, Any] | None) -> None:
        """Continue from a position saved with :attr:`position`."""
        if position and position.get("next"):
            self.next_request = PageRequest.from_dict(position["next"])

    @abstractmethod
    def next_page(self, request: PageRequest, body: Any, page: Page) -> PageRequest | None:
        """Request for the page after ``page``, or None when terminal.

        Raises:
            AttributeError, KeyError, TypeError, ValueError: Treated as malformed
                pagination metadata; the stream ends after this page.
        """
        ...

    def __aiter__(self) -> AsyncIterator[Page]:
        return self.pages()

    async def fetch_page(self) -> Page | None:
        """Fetch, merge and return the next page, or None when done."""
        request = self.next_request
        if request is None:
            return None

        try:
            response = await self.fetcher.fetch(request)
        except TerminalFetchError as e:
            logger.warning(f"Stream {self.key} ended: {e}")
            self.terminal_error = e
            self.next_request = None
            return None
        except MalformedResponseError as e:
            logger.error(f"Malformed page in {self.key}, treating as empty: {e}")
            self.pages_fetched += 1
            self.next_request = None
            return Page(request=request, number=self.pages_fetched, empty=True)

        body = response.data
        items = self.merge.extract(body)
        page = Page(
            request=request,
            number=self.pages_fetched + 1,
            body=body,
            items=items,
            new_items=self.merge.merge(items),
            empty=response.empty,
        )

        try:
            page.next_request = self.next_page(request, body, page)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed pagination in {self.key}: {e!r}")
            page.next_request = None

        self.pages_fetched = page.number
        self.next_request = page.next_request

        if self.stopper is not None and page.next_request is not None and self.stopper(page):
            logger.info(f"Stopper ended {self.key} after page {page.number}")
            self.stopped_early = True
            self.next_request = None
            page.next_request = None

        return page

    async def pages(self) -> AsyncIterator[Page]:
        """Yield pages until the stream is exhausted."""
        while self.next_request is not None:
            page = await self.fetch_page()
            if page is None:
                return
            yield page

    async def collect(self) -> dict[str, list[Any]]:
        """Exhaust the stream and return the merged items."""
        async for _ in self.pages():
            pass
        return self.merge.results()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(key={self.key!r}, pages={self.pages_fetched})"


__all__ = [
    "Stopper",
    "stream_key",
    "PageCursor",
]
