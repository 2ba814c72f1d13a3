"""TimelineReconciler — one ordered view over the index, the store, and the device."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlmodel import select

from .exceptions import MediaVaultError
from .permissions import FolderPermissionResolver
from .scanner import scan
from .types import SyncStatus, TimelineEntry
from .utils import as_utc, is_under, normalize_path, user_root_path

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession

    from mediavault.models.assets import AssetBase
    from mediavault.models.folders import FolderBase, FolderPermissionBase

    from .paths import PathVirtualizer
    from .types import Actor, ScannedFile

logger = logging.getLogger(__name__)


def _order(entries: list[TimelineEntry]) -> list[TimelineEntry]:
    return sorted(entries, key=lambda e: (as_utc(e.sort_date), e.file_name), reverse=True)


def _scanned_entry(file: ScannedFile, path: str, status: SyncStatus) -> TimelineEntry:
    return TimelineEntry(
        file_name=file.file_name,
        path=path,
        size_bytes=file.size_bytes,
        created_date=file.created_date,
        modified_date=file.modified_date,
        extension=file.extension,
        media_type=file.media_type,
        status=status,
    )


class TimelineReconciler:
    """Merges indexed assets with live scans of the internal and device roots.

    Entries come from three passes:

    1. indexed assets the actor may read (``SYNCED``);
    2. files in the internal store that are not indexed (``COPIED``);
    3. files on the actor's device that are neither indexed nor already
       listed as copied (``PENDING``).

    Deleted assets are never listed but still count as indexed, so their
    trash files do not resurface as copied.
    """

    def __init__(
        self,
        asset_model: type[AssetBase],
        folder_model: type[FolderBase],
        permission_model: type[FolderPermissionBase],
        *,
        scanner: Callable[[Path], Iterable[ScannedFile]] = scan,
    ) -> None:
        self._asset_model = asset_model
        self._scanner = scanner
        self.permissions = FolderPermissionResolver(folder_model, permission_model)

    async def _scan(self, root: Path | None) -> list[ScannedFile]:
        if root is None:
            return []
        return await asyncio.to_thread(lambda: list(self._scanner(root)))

    async def timeline(
        self,
        session: AsyncSession,
        actor: Actor,
        paths: PathVirtualizer,
    ) -> list[TimelineEntry]:
        """Ordered, deduplicated, permission-filtered timeline for *actor*."""
        user_id = actor.user_id or ""
        allowed = await self.permissions.allowed_folders(session, user_id, actor.is_admin)
        prefixes = await self.permissions.allowed_path_prefixes(session, user_id, actor.is_admin)
        own_root = user_root_path(user_id)

        result = await session.execute(select(self._asset_model))
        assets = list(result.scalars().all())

        entries: list[TimelineEntry] = []
        indexed_virtual: set[str] = set()
        indexed_names: set[str] = set()
        indexed_physical: set[str] = set()
        indexed_physical_names: set[str] = set()

        # Pass 1: the index
        for asset in assets:
            indexed_virtual.add(normalize_path(asset.path).lower())
            indexed_names.add(asset.file_name.lower())
            try:
                physical = paths.resolve_physical(asset.path)
            except MediaVaultError:
                logger.debug("Indexed path %s does not resolve", asset.path)
            else:
                indexed_physical.add(str(physical).lower())
                indexed_physical_names.add(physical.name.lower())

            if asset.is_deleted:
                continue
            if allowed is not None:
                visible = asset.folder_id in allowed if asset.folder_id else is_under(asset.path, own_root)
                if not visible:
                    continue
            entries.append(
                TimelineEntry(
                    file_name=asset.file_name,
                    path=asset.path,
                    size_bytes=asset.size_bytes,
                    created_date=as_utc(asset.created_date),
                    modified_date=as_utc(asset.modified_date),
                    extension=asset.extension,
                    media_type=asset.media_type,
                    status=SyncStatus.SYNCED,
                    asset_id=asset.id,
                    checksum=asset.checksum,
                    scanned_at=as_utc(asset.scanned_at),
                    width=asset.width,
                    height=asset.height,
                )
            )

        # Pass 2: copied into the store but not indexed yet
        copied_names: set[str] = set()
        for file in await self._scan(paths.internal_root):
            if file.full_path.lower() in indexed_physical:
                continue
            if file.file_name.lower() in indexed_physical_names:
                continue
            virtual = paths.virtualize(file.full_path)
            if prefixes is not None and not any(virtual.lower().startswith(p.lower()) for p in prefixes):
                continue
            copied_names.add(file.file_name.lower())
            entries.append(_scanned_entry(file, virtual, SyncStatus.COPIED))

        # Pass 3: only on the device
        for file in await self._scan(paths.device_root):
            if file.full_path.lower() in indexed_physical:
                continue
            virtual = paths.virtualize(file.full_path)
            if virtual.lower() in indexed_virtual:
                continue
            name = file.file_name.lower()
            if name in indexed_names or name in copied_names:
                continue
            entries.append(_scanned_entry(file, virtual, SyncStatus.PENDING))

        ordered = _order(entries)
        logger.debug(
            "Timeline for %s: %d entries (%d indexed assets)", user_id, len(ordered), len(assets)
        )
        return ordered

    async def device_assets(self, actor: Actor, paths: PathVirtualizer) -> list[TimelineEntry]:
        """Device files whose name does not appear anywhere in the internal store."""
        stored = {f.file_name.lower() for f in await self._scan(paths.internal_root)}
        entries = [
            _scanned_entry(file, paths.virtualize(file.full_path), SyncStatus.PENDING)
            for file in await self._scan(paths.device_root)
            if file.file_name.lower() not in stored
        ]
        logger.debug("Device listing for %s: %d pending", actor.user_id, len(entries))
        return _order(entries)

