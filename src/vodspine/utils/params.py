"""URL parameter helpers.

Some APIs take their whole parameter set as one query value: minified JSON,
base64url-encoded without padding, in ``_r``. These helpers encode and
decode that form and set plain query parameters on a URL.

Example:
    >>> from vodspine.utils.params import decode_r, encode_r
    >>> encode_r({"gameId": "y65797de", "page": 2})
    'eyJnYW1lSWQiOiJ5NjU3OTdkZSIsInBhZ2UiOjJ9'
    >>> decode_r(encode_r({"page": 2}))
    {'page': 2}
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

R_PARAM = "_r"


def encode_r(params: Mapping[str, Any]) -> str:
    """Encode params as unpadded base64url of minified JSON."""
    raw = json.dumps(params, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_r(value: str) -> Any:
    """Decode a value produced by :func:`encode_r`.

    Raises:
        ValueError: If the value is not base64url-encoded JSON.
    """
    padded = value + "=" * (-len(value) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Not an encoded parameter block: {value!r}") from e


def query_params(url: str) -> dict[str, str]:
    """Query parameters of ``url`` (last value wins for repeated keys)."""
    return dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))


def with_params(url: str, params: Mapping[str, Any]) -> str:
    """Return ``url`` with ``params`` set, replacing existing values.

    Example:
        >>> from vodspine.utils.params import with_params
        >>> with_params("https://x.test/runs?game=abc&offset=0", {"offset": 200})
        'https://x.test/runs?game=abc&offset=200'
    """
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    for key, value in params.items():
        query[key] = value if isinstance(value, str) else _stringify(value)
    return urlunsplit(parts._replace(query=urlencode(query)))


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = [
    "R_PARAM",
    "encode_r",
    "decode_r",
    "query_params",
    "with_params",
]
