"""Link-based pagination.

The response carries an explicit "next" link in its pagination block:

.. code-block:: json

    {"data": [...], "pagination": {"links": [{"rel": "next", "uri": "..."}]}}

No next link means the stream is done.

Example:
    >>> from vodspine.pagination.link import LinkCursor
    >>> cursor = LinkCursor(fetcher, PageRequest(runs_url, params={"max": 200}))
    >>> items = await cursor.collect()
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from vodspine.models.page import Page, PageRequest
from vodspine.pagination.base import PageCursor


def find_next_link(body: Any, rel: str = "next") -> str | None:
    """The ``uri`` of the ``rel`` link in a pagination block, if any.

    Example:
        >>> find_next_link({"pagination": {"links": [{"rel": "next", "uri": "https://x.test?offset=20"}]}})
        'https://x.test?offset=20'
        >>> find_next_link({"data": []}) is None
        True
    """
    pagination = body.get("pagination") if isinstance(body, dict) else None
    if not pagination:
        return None
    for link in pagination.get("links") or []:
        if link.get("rel") == rel and link.get("uri"):
            return link["uri"]
    return None


class LinkCursor(PageCursor):
    """Follows ``pagination.links[rel=next].uri`` until it is absent.

    The next link is a complete URL, so the base request's parameters are
    dropped when following it.
    """

    style = "link"

    def next_page(self, request: PageRequest, body: Any, page: Page) -> PageRequest | None:
        uri = find_next_link(body)
        if uri is None:
            return None
        return replace(request, url=uri, params={})


__all__ = [
    "find_next_link",
    "LinkCursor",
]
