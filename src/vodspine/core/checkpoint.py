"""Checkpoint storage for resumable crawls.

A checkpoint is a named value: a cursor position, a membership set of
discovered ids, or a nested mapping of structured state. Crawls save
checkpoints after each page or batch so an interrupted run can resume from
where it left off.

Names ending in ``.txt`` are stored as newline-delimited identifiers;
everything else is stored as JSON. File-backed checkpoints are always
gzip-compressed on write, and a prior uncompressed file is still readable.

Example:
    >>> import asyncio
    >>> from vodspine.core.checkpoint import MemoryCheckpointStore
    >>>
    >>> async def example():
    ...     store = MemoryCheckpointStore()
    ...     await store.save("last-channel.json", {"channel": "1234"})
    ...     loaded = await store.load("last-channel.json")
    ...     return loaded["channel"]
    >>> asyncio.run(example())
    '1234'
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from vodspine.core.exceptions import CheckpointError, CheckpointNotFoundError

logger = logging.getLogger("vodspine.checkpoint")

TEXT_SUFFIX = ".txt"
GZIP_SUFFIX = ".gz"


# =============================================================================
# Encoding
# =============================================================================


def _tag(value: Any) -> Any:
    """Rewrite sets and non-string-keyed mappings into tagged JSON objects."""
    if isinstance(value, dict):
        if all(isinstance(key, str) for key in value):
            return {key: _tag(item) for key, item in value.items()}
        return {
            "dataType": "Map",
            "value": [[_tag(key), _tag(item)] for key, item in value.items()],
        }
    if isinstance(value, (set, frozenset)):
        return {"dataType": "Set", "value": [_tag(item) for item in value]}
    if isinstance(value, (list, tuple)):
        return [_tag(item) for item in value]
    return value


def _hashable(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_hashable(item) for item in value)
    return value


def _revive(obj: dict[str, Any]) -> Any:
    """``json.loads`` object hook undoing :func:`_tag`."""
    data_type = obj.get("dataType")
    if data_type == "Map" and isinstance(obj.get("value"), list) and len(obj) == 2:
        return {_hashable(key): item for key, item in obj["value"]}
    if data_type == "Set" and isinstance(obj.get("value"), list) and len(obj) == 2:
        return {_hashable(item) for item in obj["value"]}
    return obj


def dumps_state(value: Any) -> str:
    """Serialize a checkpoint value to JSON text.

    Example:
        >>> from vodspine.core.checkpoint import dumps_state, loads_state
        >>> loads_state(dumps_state({1: {"a"}})) == {1: {"a"}}
        True
    """
    return json.dumps(_tag(value), ensure_ascii=False, separators=(",", ":"))


def loads_state(text: str) -> Any:
    """Parse JSON text written by :func:`dumps_state`."""
    return json.loads(text, object_hook=_revive)


def dumps_ids(ids: Iterable[str]) -> str:
    """Join identifiers one per line."""
    return "\n".join(str(item) for item in ids)


def loads_ids(text: str) -> list[str]:
    """One identifier per line, keeping file order and skipping blank lines.

    Ids may contain commas and spaces (stream keys are URLs).

    Example:
        >>> from vodspine.core.checkpoint import loads_ids
        >>> loads_ids("123\\n\\n runs?embed=players,category \\n")
        ['123', 'runs?embed=players,category']
    """
    return [line.strip() for line in text.splitlines() if line.strip()]


def encode(name: str, value: Any) -> str:
    """Encode ``value`` in the format implied by ``name``."""
    if name.endswith(TEXT_SUFFIX):
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            return str(value)
        return dumps_ids(value)
    return dumps_state(value)


def decode(name: str, text: str) -> Any:
    """Decode text produced by :func:`encode` for the same ``name``.

    A ``.txt`` checkpoint holding a single token comes back as a one-item
    list; callers storing a scalar cursor read ``[0]``.
    """
    if name.endswith(TEXT_SUFFIX):
        return loads_ids(text)
    return loads_state(text)


# =============================================================================
# Stores
# =============================================================================


class CheckpointStore(ABC):
    """Abstract base class for checkpoint storage backends.

    Implement this to provide persistent checkpoint storage.
    """

    @abstractmethod
    async def save(self, name: str, value: Any) -> None:
        """Persist ``value`` under ``name``, replacing any previous value."""
        ...

    @abstractmethod
    async def load(self, name: str) -> Any:
        """Load the value saved under ``name``.

        Raises:
            CheckpointNotFoundError: If nothing was saved under ``name``.
        """
        ...

    @abstractmethod
    async def exists(self, name: str) -> bool:
        """Whether a checkpoint named ``name`` exists."""
        ...

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """Delete a checkpoint.

        Returns:
            True if a checkpoint was deleted.
        """
        ...

    async def load_or(self, name: str, default: Any = None) -> Any:
        """Load ``name``, returning ``default`` when it does not exist."""
        try:
            return await self.load(name)
        except CheckpointNotFoundError:
            return default


class MemoryCheckpointStore(CheckpointStore):
    """In-memory checkpoint store for testing.

    Values go through the same encoder as the file store, so what a test
    reads back is what a file would have held.

    Example:
        >>> import asyncio
        >>> from vodspine.core.checkpoint import MemoryCheckpointStore
        >>> async def example():
        ...     store = MemoryCheckpointStore()
        ...     await store.save("videos.txt", ["1", "2"])
        ...     return await store.load("videos.txt")
        >>> asyncio.run(example())
        ['1', '2']
    """

    def __init__(self) -> None:
        """Initialize empty checkpoint store."""
        self._data: dict[str, str] = {}
        self.writes: list[str] = []

    async def save(self, name: str, value: Any) -> None:
        """Save checkpoint to memory."""
        self._data[name] = encode(name, value)
        self.writes.append(name)

    async def load(self, name: str) -> Any:
        """Load checkpoint from memory."""
        if name not in self._data:
            raise CheckpointNotFoundError(name)
        return decode(name, self._data[name])

    async def exists(self, name: str) -> bool:
        return name in self._data

    async def delete(self, name: str) -> bool:
        return self._data.pop(name, None) is not None


class FileCheckpointStore(CheckpointStore):
    """Gzip file checkpoint store.

    Each checkpoint is written to ``<directory>/<name>.gz`` as a whole-file
    rewrite through a temporary file. On load the compressed file is tried
    first, then a raw ``<directory>/<name>`` left over from older runs.

    Example:
        >>> import asyncio
        >>> import tempfile
        >>> from pathlib import Path
        >>> from vodspine.core.checkpoint import FileCheckpointStore
        >>> async def example():
        ...     with tempfile.TemporaryDirectory() as tmpdir:
        ...         store = FileCheckpointStore(Path(tmpdir))
        ...         await store.save("twitch-scrape-from.txt", 4200)
        ...         return await store.load("twitch-scrape-from.txt")
        >>> asyncio.run(example())
        ['4200']
    """

    def __init__(self, directory: Path | str) -> None:
        """Initialize file checkpoint store.

        Args:
            directory: Directory to store checkpoint files.
        """
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        """Directory holding checkpoint files."""
        return self._directory

    def path_for(self, name: str) -> Path:
        """Compressed file path for a checkpoint."""
        return self._directory / f"{name}{GZIP_SUFFIX}"

    def _raw_path(self, name: str) -> Path:
        return self._directory / name

    async def save(self, name: str, value: Any) -> None:
        """Compress and write a checkpoint."""
        payload = gzip.compress(encode(name, value).encode("utf-8"))
        path = self.path_for(name)
        try:
            await asyncio.to_thread(self._write, path, payload)
        except OSError as e:
            raise CheckpointError(f"Failed to write {path}: {e}") from e
        logger.debug(f"Saved {path}")

    @staticmethod
    def _write(path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        temp_path.write_bytes(payload)
        temp_path.replace(path)

    async def load(self, name: str) -> Any:
        """Read a checkpoint, falling back to an uncompressed file."""
        text = await asyncio.to_thread(self._read, name)
        try:
            return decode(name, text)
        except json.JSONDecodeError as e:
            raise CheckpointError(f"Checkpoint {name!r} is corrupt: {e}") from e

    def _read(self, name: str) -> str:
        compressed = self.path_for(name)
        if compressed.exists():
            try:
                return gzip.decompress(compressed.read_bytes()).decode("utf-8")
            except (OSError, EOFError) as e:
                logger.warning(f"Could not decompress {compressed}: {e}")

        raw = self._raw_path(name)
        if raw.exists():
            return raw.read_text(encoding="utf-8")

        raise CheckpointNotFoundError(name)

    async def exists(self, name: str) -> bool:
        return self.path_for(name).exists() or self._raw_path(name).exists()

    async def delete(self, name: str) -> bool:
        """Delete both compressed and raw copies of a checkpoint."""
        deleted = False
        for path in (self.path_for(name), self._raw_path(name)):
            if path.exists():
                path.unlink()
                deleted = True
        return deleted


__all__ = [
    "CheckpointStore",
    "MemoryCheckpointStore",
    "FileCheckpointStore",
    "dumps_state",
    "loads_state",
    "dumps_ids",
    "loads_ids",
    "encode",
    "decode",
]
