"""Directory scanning — lazy enumeration of media files under a root."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from .types import ScannedFile
from .utils import IMAGE_EXTENSIONS, MEDIA_EXTENSIONS

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


def _created_timestamp(st: os.stat_result) -> float:
    birth = getattr(st, "st_birthtime", None)
    if birth is not None:
        return birth
    return min(st.st_ctime, st.st_mtime)


def scan(
    root: Path | str,
    *,
    extensions: set[str] | frozenset[str] = frozenset(MEDIA_EXTENSIONS),
) -> Iterator[ScannedFile]:
    """Yield every media file under *root*, recursively.

    Hidden files and directories (leading dot) are skipped, as are files
    that vanish between listing and stat.  A missing root yields nothing.
    The generator is finite and can be restarted by calling it again.
    """
    root = Path(root)
    if not root.is_dir():
        logger.debug("Scan root does not exist: %s", root)
        return

    for dirpath, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for name in sorted(files):
            if name.startswith("."):
                continue
            ext = os.path.splitext(name)[1].lower()
            if ext not in extensions:
                continue
            full = Path(dirpath) / name
            try:
                st = full.stat()
            except OSError:
                logger.debug("File vanished during scan: %s", full)
                continue
            yield ScannedFile(
                file_name=name,
                full_path=str(full.resolve()),
                size_bytes=st.st_size,
                created_date=datetime.fromtimestamp(_created_timestamp(st), UTC),
                modified_date=datetime.fromtimestamp(st.st_mtime, UTC),
                extension=ext,
                media_type="image" if ext in IMAGE_EXTENSIONS else "video",
            )
