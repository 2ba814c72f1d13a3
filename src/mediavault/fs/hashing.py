"""ContentIdentity — content digests used as the deduplication key."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import PathNotFoundError, StorageError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def sha256_file(path: Path | str) -> str:
    """Lowercase hex SHA-256 of the file's bytes."""
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


class ContentIdentity:
    """Computes content digests, at most once per file per instance.

    Create one instance per request.  The cache key is the resolved path
    with its size and mtime, so a file rewritten in between is re-hashed.
    """

    def __init__(self, hasher: Callable[[Path], str] | None = None) -> None:
        self._hasher = hasher or sha256_file
        self._cache: dict[tuple[str, int, int], str] = {}
        self.computed = 0

    async def digest(self, path: Path | str) -> str:
        """Return the digest of the file at *path*.

        Raises:
            PathNotFoundError: The file does not exist.
            StorageError: The file could not be read.
        """
        p = Path(path)
        try:
            st = await asyncio.to_thread(os.stat, p)
        except FileNotFoundError as e:
            raise PathNotFoundError(f"File not found: {p}") from e
        except OSError as e:
            raise StorageError(f"Cannot stat {p}: {e}") from e

        key = (str(p.resolve()), st.st_size, st.st_mtime_ns)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            value = await asyncio.to_thread(self._hasher, p)
        except OSError as e:
            raise StorageError(f"Cannot hash {p}: {e}") from e
        self.computed += 1
        self._cache[key] = value
        logger.debug("Hashed %s -> %s", p, value)
        return value

    async def same_content(self, a: Path | str, b: Path | str) -> bool:
        return await self.digest(a) == await self.digest(b)

    def clear(self) -> None:
        self._cache.clear()
