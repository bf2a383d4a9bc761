"""Tests for vodspine.utils.params."""

from __future__ import annotations

import pytest

from vodspine.utils.params import decode_r, encode_r, query_params, with_params


class TestEncodedParams:
    """_r parameter encoding tests."""

    def test_unpadded_base64url(self) -> None:
        """Encoding is minified JSON, base64url, no padding."""
        encoded = encode_r({"a": 1})
        assert encoded == "eyJhIjoxfQ"
        assert "=" not in encoded

    def test_decode(self) -> None:
        """Decoding restores the parameter object."""
        assert decode_r(encode_r({"gameId": "y65797de", "page": 3})) == {"gameId": "y65797de", "page": 3}

    def test_decode_rejects_garbage(self) -> None:
        """Non-JSON payloads raise ValueError."""
        with pytest.raises(ValueError):
            decode_r("!!!not-base64!!!")
        with pytest.raises(ValueError):
            decode_r(encode_r({"a": 1})[:-3])


class TestQueryParams:
    """URL query helper tests."""

    def test_query_params(self) -> None:
        """Query values are read from the URL."""
        assert query_params("https://x.test/runs?game=abc&offset=20") == {"game": "abc", "offset": "20"}

    def test_with_params_replaces(self) -> None:
        """Existing values are replaced in place."""
        assert with_params("https://x.test/runs?offset=0&max=200", {"offset": 200}) == (
            "https://x.test/runs?offset=200&max=200"
        )

    def test_with_params_adds(self) -> None:
        """New values are appended and booleans lowercased."""
        assert with_params("https://x.test/runs", {"embed": True}) == "https://x.test/runs?embed=true"
