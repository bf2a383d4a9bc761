"""Merge strategies for combining page items.

A strategy is chosen by the caller for the response shape it knows:

- :class:`AppendMerge` for APIs that return one flat list per page.
- :class:`KeyedMerge` for APIs that return several named lists whose
  entries can reappear on later pages; entries are de-duplicated by id per
  field, keeping first-seen order.

Example:
    >>> from vodspine.pagination.merge import KeyedMerge
    >>> merge = KeyedMerge(["runList", "playerList"])
    >>> page1 = merge.extract({"runList": [{"id": "a"}, {"id": "b"}], "playerList": []})
    >>> [r["id"] for r in merge.merge(page1)["runList"]]
    ['a', 'b']
    >>> page2 = merge.extract({"runList": [{"id": "b"}, {"id": "c"}]})
    >>> [r["id"] for r in merge.merge(page2)["runList"]]
    ['c']
    >>> [r["id"] for r in merge.results()["runList"]]
    ['a', 'b', 'c']
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger("vodspine.pagination.merge")


@runtime_checkable
class MergeStrategy(Protocol):
    """Protocol for turning response bodies into accumulated item lists."""

    fields: Sequence[str]

    def extract(self, body: Any) -> dict[str, list[Any]]:
        """Pull the item lists this strategy knows about out of a body."""
        ...

    def merge(self, items: dict[str, list[Any]]) -> dict[str, list[Any]]:
        """Accumulate one page's items.

        Returns:
            The items from this page not seen before, per field.
        """
        ...

    def results(self) -> dict[str, list[Any]]:
        """Everything accumulated so far, per field."""
        ...


def _extract(fields: Sequence[str], body: Any) -> dict[str, list[Any]]:
    if not isinstance(body, dict):
        if body:
            logger.warning(f"Expected an object body, got {type(body).__name__}")
        return {}

    items: dict[str, list[Any]] = {}
    for name in fields:
        value = body.get(name)
        if value is None:
            continue
        if not isinstance(value, list):
            logger.warning(f"Field {name!r} is {type(value).__name__}, not a list; ignoring")
            continue
        items[name] = value
    return items


class AppendMerge:
    """Flat append of each field's items.

    Args:
        fields: Names of the list fields to read (default: ``data``).
        keep: Keep accumulated items for :meth:`results`. Turn off for long
            streams that are consumed page by page.
    """

    def __init__(self, fields: Sequence[str] = ("data",), keep: bool = True) -> None:
        self.fields = tuple(fields)
        self.keep = keep
        self._items: dict[str, list[Any]] = {name: [] for name in self.fields}

    def extract(self, body: Any) -> dict[str, list[Any]]:
        return _extract(self.fields, body)

    def merge(self, items: dict[str, list[Any]]) -> dict[str, list[Any]]:
        if self.keep:
            for name, values in items.items():
                self._items.setdefault(name, []).extend(values)
        return {name: list(values) for name, values in items.items()}

    def results(self) -> dict[str, list[Any]]:
        return {name: list(values) for name, values in self._items.items()}


class KeyedMerge:
    """Order-preserving de-duplication by identity key per field.

    Entries without the key are skipped. A repeated entry replaces the
    stored value in place but is not reported as new.

    Args:
        fields: Names of the list fields to read.
        key: Identity key inside each entry.
    """

    def __init__(self, fields: Sequence[str], key: str = "id") -> None:
        self.fields = tuple(fields)
        self.key = key
        self._items: dict[str, dict[Any, Any]] = {name: {} for name in self.fields}
        self._seen: dict[str, set[Any]] = {name: set() for name in self.fields}

    def seed(self, name: str, keys: Iterable[Any]) -> None:
        """Mark ``keys`` as already seen in ``name`` (for resumed runs)."""
        self._seen.setdefault(name, set()).update(keys)

    def seen(self, name: str) -> set[Any]:
        return set(self._seen.get(name, ()))

    def extract(self, body: Any) -> dict[str, list[Any]]:
        return _extract(self.fields, body)

    def merge(self, items: dict[str, list[Any]]) -> dict[str, list[Any]]:
        new: dict[str, list[Any]] = {}
        for name, values in items.items():
            stored = self._items.setdefault(name, {})
            seen = self._seen.setdefault(name, set())
            fresh: list[Any] = []
            for entry in values:
                if not isinstance(entry, dict) or self.key not in entry:
                    continue
                identity = entry[self.key]
                stored[identity] = entry
                if identity not in seen:
                    seen.add(identity)
                    fresh.append(entry)
            new[name] = fresh
        return new

    def results(self) -> dict[str, list[Any]]:
        return {name: list(stored.values()) for name, stored in self._items.items()}


__all__ = [
    "MergeStrategy",
    "AppendMerge",
    "KeyedMerge",
]
