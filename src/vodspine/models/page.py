"""Page and request models shared by the fetcher, cursors and engine.

Example:
    >>> from vodspine.models.page import PageRequest
    >>> req = PageRequest("https://www.speedrun.com/api/v1/runs", params={"max": 200})
    >>> req.with_params(offset=200).params
    {'max': 200, 'offset': 200}
    >>> PageRequest.from_dict(req.to_dict()) == req
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class PageRequest:
    """Everything needed to fetch one page.

    For link-style pagination this is just a URL; for counter and token
    styles it is a base set of parameters plus the page index or token.

    Attributes:
        url: Absolute URL.
        method: HTTP method.
        params: Query parameters merged onto ``url``.
        json: JSON body for POST requests.
        data: Form body for POST requests.
        headers: Extra request headers.
        endpoint: Endpoint class for rate limiting (None: derive from URL).
    """

    url: str
    method: str = "GET"
    params: dict[str, Any] = field(default_factory=dict)
    json: Any = None
    data: dict[str, str] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    endpoint: str | None = None

    def with_params(self, **params: Any) -> PageRequest:
        """Copy with ``params`` merged over the existing parameters."""
        return replace(self, params={**self.params, **params})

    def with_url(self, url: str) -> PageRequest:
        return replace(self, url=url)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for checkpoints."""
        return {
            "url": self.url,
            "method": self.method,
            "params": self.params,
            "json": self.json,
            "data": self.data,
            "headers": self.headers,
            "endpoint": self.endpoint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PageRequest:
        return cls(
            url=data["url"],
            method=data.get("method", "GET"),
            params=dict(data.get("params") or {}),
            json=data.get("json"),
            data=data.get("data"),
            headers=dict(data.get("headers") or {}),
            endpoint=data.get("endpoint"),
        )


@dataclass
class Page:
    """One fetched page.

    Attributes:
        request: The request that produced this page.
        number: 1-based position within its cursor's run.
        body: Parsed response body.
        items: Items per named list field, as returned by the API.
        new_items: Items per field not seen on earlier pages of the stream.
        next_request: Request for the following page, None when terminal.
        empty: True when the API returned an empty or falsy body.
    """

    request: PageRequest
    number: int
    body: Any = None
    items: dict[str, list[Any]] = field(default_factory=dict)
    new_items: dict[str, list[Any]] = field(default_factory=dict)
    next_request: PageRequest | None = None
    empty: bool = False

    @property
    def is_last(self) -> bool:
        return self.next_request is None

    @property
    def item_count(self) -> int:
        return sum(len(items) for items in self.items.values())

    def all_new(self) -> list[Any]:
        """New items across every field, in field order."""
        return [item for items in self.new_items.values() for item in items]


__all__ = [
    "PageRequest",
    "Page",
]
