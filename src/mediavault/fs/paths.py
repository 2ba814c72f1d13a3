"""PathVirtualizer — maps virtual paths onto physical storage roots.

``/assets/...`` lives under the internal managed root and ``/device/...``
under the current user's device root.  Every resolved path is checked
for containment in one of the roots the actor may touch.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import AccessDeniedError, InvalidArgumentError, RootNotFoundError
from .utils import ASSETS_PREFIX, DEVICE_PREFIX, has_traversal, is_under, normalize_path, validate_path

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def _within(path: Path, root: Path) -> bool:
    """Case-insensitive containment on a path-segment boundary."""
    p = str(path).replace("\\", "/").lower()
    r = str(root).replace("\\", "/").lower().rstrip("/")
    return p == r or p.startswith(r + "/")


class PathVirtualizer:
    """Bidirectional mapping between virtual paths and physical roots.

    Constructed per actor: *device_root* is that user's device directory
    and *extra_roots* are only honoured for admins.
    """

    def __init__(
        self,
        internal_root: Path | str,
        device_root: Path | str | None = None,
        *,
        is_admin: bool = False,
        extra_roots: Iterable[Path | str] = (),
    ) -> None:
        self.internal_root = Path(internal_root).resolve()
        self.device_root = Path(device_root).resolve() if device_root is not None else None
        self.is_admin = is_admin
        self.extra_roots = [Path(r).resolve() for r in extra_roots]

    # =========================================================================
    # Roots
    # =========================================================================

    def _allowed_roots(self) -> list[Path]:
        roots = [self.internal_root]
        if self.device_root is not None:
            roots.append(self.device_root)
        if self.is_admin:
            roots.extend(self.extra_roots)
        return roots

    def _virtual_roots(self) -> list[tuple[Path, str]]:
        """(physical root, virtual prefix) pairs, longest physical root first."""
        pairs = [(self.internal_root, ASSETS_PREFIX)]
        if self.device_root is not None:
            pairs.append((self.device_root, DEVICE_PREFIX))
        pairs.sort(key=lambda pair: len(str(pair[0])), reverse=True)
        return pairs

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_physical(self, virtual_path: str) -> Path:
        """Resolve *virtual_path* to an absolute physical path.

        Raises:
            AccessDeniedError: The path escapes every root the actor may use.
            InvalidArgumentError: The path is blank or malformed.
        """
        if has_traversal(virtual_path):
            raise AccessDeniedError(f"Path traversal rejected: {virtual_path}")
        ok, err = validate_path(virtual_path)
        if not ok:
            raise InvalidArgumentError(f"Invalid path {virtual_path!r}: {err}")

        path = normalize_path(virtual_path)
        if is_under(path, ASSETS_PREFIX):
            candidate = self.internal_root / path[len(ASSETS_PREFIX) :].lstrip("/")
        elif is_under(path, DEVICE_PREFIX):
            if self.device_root is None:
                raise AccessDeniedError(f"No device root configured for {virtual_path}")
            candidate = self.device_root / path[len(DEVICE_PREFIX) :].lstrip("/")
        else:
            candidate = Path(virtual_path)
            if not candidate.is_absolute():
                raise AccessDeniedError(f"Path outside managed roots: {virtual_path}")

        resolved = Path(os.path.abspath(candidate)).resolve()
        for root in self._allowed_roots():
            if _within(resolved, root):
                return resolved

        logger.warning("Rejected path outside allowed roots: %s", virtual_path)
        raise AccessDeniedError(f"Path outside managed roots: {virtual_path}")

    def virtualize(self, physical_path: Path | str) -> str:
        """Map a physical path back into the virtual namespace.

        Raises:
            RootNotFoundError: The path lies outside every known root.
        """
        resolved = Path(os.path.abspath(physical_path)).resolve()
        for root, prefix in self._virtual_roots():
            if _within(resolved, root):
                rel = self._relative(resolved, root)
                return normalize_path(f"{prefix}/{rel}") if rel else prefix
        raise RootNotFoundError(f"Path is not under any known root: {physical_path}")

    def device_relative(self, physical_path: Path | str) -> str:
        """Path of *physical_path* relative to the device root, forward-slashed."""
        if self.device_root is None:
            raise AccessDeniedError("No device root configured")
        resolved = Path(os.path.abspath(physical_path)).resolve()
        if not _within(resolved, self.device_root):
            raise AccessDeniedError(f"Path outside device root: {physical_path}")
        return self._relative(resolved, self.device_root)

    def is_device_path(self, physical_path: Path | str) -> bool:
        if self.device_root is None:
            return False
        return _within(Path(os.path.abspath(physical_path)).resolve(), self.device_root)

    @staticmethod
    def _relative(path: Path, root: Path) -> str:
        # Case may differ from the root on case-insensitive matches
        rel = str(path)[len(str(root)) :]
        return rel.replace("\\", "/").strip("/")
