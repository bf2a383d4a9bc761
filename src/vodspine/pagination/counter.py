"""Page-number pagination.

The response carries a page counter; the next request is the previous one
with its page index bumped:

.. code-block:: json

    {"runList": [...], "playerList": [...], "pagination": {"page": 2, "pages": 7}}

Where the page index lives depends on the API. :class:`QueryParamCodec`
keeps it as a plain ``page`` query parameter; :class:`EncodedParamCodec`
keeps the whole parameter set as base64url JSON in ``_r``.

Example:
    >>> from vodspine.pagination.counter import EncodedParamCodec, PageNumberCursor
    >>> cursor = PageNumberCursor(
    ...     fetcher,
    ...     EncodedParamCodec().first_request(runs_url, {"gameId": "y65797de"}),
    ...     fields=["runList", "playerList"],
    ...     codec=EncodedParamCodec(),
    ... )
    >>> results = await cursor.collect()
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from vodspine.models.page import Page, PageRequest
from vodspine.pagination.base import PageCursor
from vodspine.pagination.merge import KeyedMerge, MergeStrategy
from vodspine.utils.params import R_PARAM, decode_r, encode_r, query_params, with_params


class ParamCodec(Protocol):
    """Reads and writes the parameter set carried by a request."""

    def read(self, request: PageRequest) -> dict[str, Any]:
        ...

    def write(self, request: PageRequest, params: dict[str, Any]) -> PageRequest:
        ...


class QueryParamCodec:
    """Parameters as plain query parameters.

    Parameters may sit in ``request.params`` or already be baked into the
    URL; both are read, and ``params`` wins.
    """

    def read(self, request: PageRequest) -> dict[str, Any]:
        return {**query_params(request.url), **request.params}

    def write(self, request: PageRequest, params: dict[str, Any]) -> PageRequest:
        url_keys = set(query_params(request.url))
        in_url = {k: v for k, v in params.items() if k in url_keys}
        rest = {k: v for k, v in params.items() if k not in url_keys}
        url = with_params(request.url, in_url) if in_url else request.url
        return PageRequest(
            url,
            method=request.method,
            params=rest,
            json=request.json,
            data=request.data,
            headers=request.headers,
            endpoint=request.endpoint,
        )


class EncodedParamCodec:
    """All parameters as one base64url-encoded JSON value in ``_r``.

    Example:
        >>> from vodspine.models.page import PageRequest
        >>> codec = EncodedParamCodec()
        >>> req = codec.first_request("https://x.test/api/v2/GetGameLeaderboard2", {"gameId": "g"})
        >>> codec.read(req)
        {'gameId': 'g'}
        >>> codec.read(codec.write(req, {"gameId": "g", "page": 2}))
        {'gameId': 'g', 'page': 2}
    """

    def __init__(self, param: str = R_PARAM) -> None:
        self.param = param

    def first_request(self, url: str, params: dict[str, Any], **kwargs: Any) -> PageRequest:
        return PageRequest(url, params={self.param: encode_r(params)}, **kwargs)

    def read(self, request: PageRequest) -> dict[str, Any]:
        raw = request.params.get(self.param) or query_params(request.url).get(self.param)
        if not raw:
            return {}
        decoded = decode_r(raw)
        if not isinstance(decoded, dict):
            raise ValueError(f"Encoded parameters are not an object: {decoded!r}")
        return decoded

    def write(self, request: PageRequest, params: dict[str, Any]) -> PageRequest:
        return request.with_params(**{self.param: encode_r(params)})


class PageNumberCursor(PageCursor):
    """Increments a page index until ``pagination.page >= pagination.pages``.

    A missing pagination block means the stream was a single page. The
    first request may leave the index out; it counts as ``implicit_page``.
    Items are de-duplicated by ``key`` per field by default, since entries
    can reappear on later pages.

    Args:
        fields: Named item lists in each response.
        key: Identity key for de-duplication.
        codec: Where the page index lives (default: query parameter).
        page_param: Name of the page index parameter.
        implicit_page: Page number of a request without the index.
    """

    style = "page"

    def __init__(
        self,
        *args: Any,
        fields: Sequence[str] = ("data",),
        key: str = "id",
        codec: ParamCodec | None = None,
        page_param: str = "page",
        implicit_page: int = 1,
        **kwargs: Any,
    ) -> None:
        self.fields = tuple(fields)
        self.id_key = key
        self.codec = codec or QueryParamCodec()
        self.page_param = page_param
        self.implicit_page = implicit_page
        super().__init__(*args, **kwargs)

    def default_merge(self) -> MergeStrategy:
        return KeyedMerge(self.fields, key=self.id_key)

    def next_page(self, request: PageRequest, body: Any, page: Page) -> PageRequest | None:
        pagination = body.get("pagination") if isinstance(body, dict) else None
        if not pagination:
            return None
        current = int(pagination["page"])
        total = int(pagination["pages"])
        if current >= total:
            return None

        params = self.codec.read(request)
        params[self.page_param] = int(params.get(self.page_param, self.implicit_page)) + 1
        return self.codec.write(request, params)


__all__ = [
    "ParamCodec",
    "QueryParamCodec",
    "EncodedParamCodec",
    "PageNumberCursor",
]
