"""Opaque-cursor pagination.

The response carries a cursor token that is copied into the next request:

.. code-block:: json

    {"data": [...], "pagination": {"cursor": "eyJiIjpudWxs..."}}

A missing token, or a page with no items, ends the stream.
"""

from __future__ import annotations

from typing import Any

from vodspine.models.page import Page, PageRequest
from vodspine.pagination.base import PageCursor


class TokenCursor(PageCursor):
    """Copies ``pagination.cursor`` into the ``after`` parameter.

    Args:
        token_param: Query parameter that carries the token.
        stop_on_empty: End the stream on a page without items even if a
            token came back.
    """

    style = "token"

    def __init__(
        self,
        *args: Any,
        token_param: str = "after",
        stop_on_empty: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.token_param = token_param
        self.stop_on_empty = stop_on_empty

    def next_page(self, request: PageRequest, body: Any, page: Page) -> PageRequest | None:
        pagination = body.get("pagination") if isinstance(body, dict) else None
        token = (pagination or {}).get("cursor")
        if not token:
            return None
        if self.stop_on_empty and page.item_count == 0:
            return None
        return request.with_params(**{self.token_param: token})


__all__ = ["TokenCursor"]
