"""LifecycleController — delete, restore, purge, move, sync, upload, and folders.

Every operation that relocates indexed files runs in two phases through
``OperationJournal``: intents are committed, files are moved one asset at
a time, then asset rows are updated and intents removed in a single
commit.  A failure on one asset is recorded in the result and never
aborts the rest of the batch.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import posixpath
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from sqlalchemy import delete as sa_delete
from sqlmodel import or_, select

from mediavault.events import EventType, VaultEvent

from .exceptions import (
    AccessDeniedError,
    AssetNotFoundError,
    AuthenticationRequiredError,
    ConsistencyError,
    FolderNotFoundError,
    InvalidArgumentError,
    MediaVaultError,
    PathNotFoundError,
)
from .folders import FolderService, folder_owner
from .hashing import ContentIdentity
from .journal import OperationJournal, OperationKind
from .permissions import FolderPermissionResolver
from .types import FolderNode, LifecycleResult, SkippedItem, SyncResult, UploadResult
from .utils import (
    as_utc,
    device_backup_path,
    is_media_file,
    is_trash_path,
    is_under,
    media_type_for,
    normalize_path,
    owner_from_path,
    prefixed_name,
    run_to_completion,
    suffixed_name,
    trash_bucket_path,
    trash_file_name,
    trash_root_path,
    unique_token,
    uploads_path,
    user_root_path,
    validate_path,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from mediavault.events import EventBus
    from mediavault.models.assets import AlbumAsset, AssetBase, AssetThumbnail
    from mediavault.models.folders import FolderBase, FolderPermissionBase
    from mediavault.models.operations import PendingOperation

    from .paths import PathVirtualizer
    from .types import Actor

logger = logging.getLogger(__name__)

ALL: Literal["all"] = "all"
"""Selector meaning every deleted asset visible to the actor."""


# =============================================================================
# Blocking file operations (run through run_to_completion)
# =============================================================================


def _move_file(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists():
        raise FileExistsError(f"Target already exists: {target}")
    shutil.move(str(source), str(target))


def _copy_atomic(source: Path, target: Path) -> None:
    """Copy bytes and timestamps, publishing the file with a single link.

    Raises:
        FileExistsError: *target* appeared while the copy was in flight.
            The existing file is left untouched.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(f".{target.name}.{unique_token()}.part")
    try:
        shutil.copy2(source, tmp)
        os.link(tmp, target)
    finally:
        tmp.unlink(missing_ok=True)


def _move_dir(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists() and not source.samefile(target):
        raise FileExistsError(f"Target already exists: {target}")
    shutil.move(str(source), str(target))


def _has_files(directory: Path) -> bool:
    return directory.is_dir() and any(p.is_file() for p in directory.rglob("*"))


def _rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    return new_prefix + normalize_path(path)[len(old_prefix) :]


def _is_reserved_folder(path: str) -> bool:
    """Folders outside personal libraries, and the fixed folders inside them."""
    owner = owner_from_path(path)
    if owner is None:
        return True
    fixed = (user_root_path(owner), trash_root_path(owner), uploads_path(owner), device_backup_path(owner))
    return normalize_path(path).lower() in {p.lower() for p in fixed} or is_trash_path(path)


def _remove_files(source: Path | None, thumbnails: list[Path], thumbnail_dir: Path | None) -> None:
    if source is not None:
        source.unlink(missing_ok=True)
    for thumb in thumbnails:
        try:
            thumb.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove thumbnail %s", thumb, exc_info=True)
    if thumbnail_dir is not None and thumbnail_dir.is_dir():
        shutil.rmtree(thumbnail_dir, ignore_errors=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def require_user(actor: Actor | None) -> str:
    """Return the actor's user id, or raise when nobody is authenticated."""
    if actor is None or not actor.user_id:
        raise AuthenticationRequiredError("An authenticated user is required")
    return actor.user_id


@dataclass
class _Step:
    """One planned asset change within a batch."""

    asset: AssetBase
    op: PendingOperation
    action: Callable[[], None] | None
    old_path: str


class LifecycleController:
    """Drives assets through Active -> Deleted -> Purged and back.

    Constructor receives the concrete models so callers can use custom
    SQLModel subclasses with different table names.  Per-request state
    (the actor's ``PathVirtualizer`` and ``ContentIdentity``) is passed
    to each call.
    """

    def __init__(
        self,
        asset_model: type[AssetBase],
        folder_model: type[FolderBase],
        permission_model: type[FolderPermissionBase],
        album_asset_model: type[AlbumAsset],
        thumbnail_model: type[AssetThumbnail],
        operation_model: type[PendingOperation],
        *,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
        thumbnails_root: Path | str | None = None,
    ) -> None:
        self._asset_model = asset_model
        self._folder_model = folder_model
        self._permission_model = permission_model
        self._thumbnail_model = thumbnail_model
        self._event_bus = event_bus
        self._clock = clock or _utcnow
        self._thumbnails_root = Path(thumbnails_root) if thumbnails_root is not None else None
        self.folders = FolderService(folder_model, permission_model)
        self.permissions = FolderPermissionResolver(folder_model, permission_model)
        self.journal = OperationJournal(
            asset_model, operation_model, album_asset_model, thumbnail_model, event_bus
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _emit(self, event_type: EventType, path: str, **kwargs: str | None) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(VaultEvent(event_type=event_type, path=path, **kwargs))

    async def _load(self, session: AsyncSession, ids: Sequence[str]) -> list[AssetBase]:
        if not ids:
            raise InvalidArgumentError("At least one asset id is required")
        model = self._asset_model
        result = await session.execute(select(model).where(model.id.in_(list(ids))))  # type: ignore[union-attr]
        assets = list(result.scalars().all())
        if not assets:
            raise AssetNotFoundError(f"Assets not found: {', '.join(ids)}")
        return assets

    async def _deleted_for(self, session: AsyncSession, actor: Actor) -> list[AssetBase]:
        model = self._asset_model
        result = await session.execute(
            select(model).where(model.deleted_at.is_not(None))  # type: ignore[union-attr]
        )
        assets = list(result.scalars().all())
        if actor.is_admin:
            return assets
        assert actor.user_id is not None
        root = user_root_path(actor.user_id)
        return [a for a in assets if is_under(a.path, root)]

    @staticmethod
    def _authorize_owned(actor: Actor, assets: Sequence[AssetBase]) -> None:
        if actor.is_admin:
            return
        assert actor.user_id is not None
        root = user_root_path(actor.user_id)
        for asset in assets:
            if not is_under(asset.path, root):
                raise AccessDeniedError(f"Asset {asset.id} is outside your library")

    @staticmethod
    async def _is_file(path: Path) -> bool:
        return await asyncio.to_thread(path.is_file)

    async def _taken(self, path: Path, reserved: set[str]) -> bool:
        return str(path).lower() in reserved or await asyncio.to_thread(path.exists)

    async def _find_by_checksum(self, session: AsyncSession, checksum: str) -> AssetBase | None:
        model = self._asset_model
        result = await session.execute(select(model).where(model.checksum == checksum))
        return result.scalar_one_or_none()

    async def _physically_present(self, paths: PathVirtualizer, asset: AssetBase) -> bool:
        try:
            physical = paths.resolve_physical(asset.path)
        except MediaVaultError:
            return False
        return await self._is_file(physical)

    async def _run(
        self,
        session: AsyncSession,
        steps: list[_Step],
        skipped: list[SkippedItem],
        actor_id: str,
    ) -> list[_Step]:
        """Commit intents, perform each step's file action, then finalize."""
        await self.journal.commit_intents(session)

        completed: list[_Step] = []
        try:
            for step in steps:
                if step.action is not None:
                    try:
                        await run_to_completion(step.action)
                    except asyncio.CancelledError:
                        # The file action ran to the end before the cancellation surfaced
                        completed.append(step)
                        raise
                    except FileNotFoundError:
                        logger.info("Source of asset %s already moved", step.asset.id)
                        skipped.append(SkippedItem(step.asset.id, "source file already moved"))
                        await self._emit(
                            EventType.MOVE_FAILED,
                            step.old_path,
                            asset_id=step.asset.id,
                            user_id=actor_id,
                            detail="source file already moved",
                        )
                        continue
                    except OSError as e:
                        logger.warning(
                            "File operation failed for asset %s", step.asset.id, exc_info=True
                        )
                        skipped.append(SkippedItem(step.asset.id, str(e)))
                        await self._emit(
                            EventType.MOVE_FAILED,
                            step.old_path,
                            asset_id=step.asset.id,
                            user_id=actor_id,
                            detail=str(e),
                        )
                        continue
                completed.append(step)
        except asyncio.CancelledError:
            await self._settle(session, steps, completed)
            raise

        await self._settle(session, steps, completed)
        return completed

    async def _settle(self, session: AsyncSession, steps: list[_Step], completed: list[_Step]) -> None:
        done = {id(s) for s in completed}
        for step in steps:
            if id(step) in done:
                await self.journal.apply(session, step.op, step.asset)
            else:
                await self.journal.discard(session, step.op)
        await self.journal.finalize(session)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_assets(
        self,
        session: AsyncSession,
        ids: Sequence[str],
        actor: Actor,
        paths: PathVirtualizer,
    ) -> LifecycleResult:
        """Move assets into the actor's trash bucket for today.

        Already deleted assets are left untouched.
        """
        user_id = require_user(actor)
        assets = await self._load(session, ids)
        self._authorize_owned(actor, assets)
        assets = [a for a in assets if not a.is_deleted]
        if not assets:
            return LifecycleResult(success=True, message="Assets are already in trash")

        now = self._clock()
        bucket_virtual = trash_bucket_path(user_id, now)
        bucket = await self.folders.ensure_folder(session, bucket_virtual, user_id)
        bucket_physical = paths.resolve_physical(bucket_virtual)

        steps: list[_Step] = []
        skipped: list[SkippedItem] = []
        reserved: set[str] = set()
        for asset in assets:
            try:
                source = paths.resolve_physical(asset.path)
            except MediaVaultError as e:
                skipped.append(SkippedItem(asset.id, str(e)))
                continue

            name = posixpath.basename(normalize_path(asset.path)) or asset.file_name
            trash_name = trash_file_name(name, now)
            target = bucket_physical / trash_name
            if await self._taken(target, reserved):
                trash_name = trash_file_name(name, now, collided=True)
                target = bucket_physical / trash_name
                await self._emit(
                    EventType.COLLISION_RENAMED,
                    f"{bucket_virtual}/{trash_name}",
                    asset_id=asset.id,
                    user_id=user_id,
                    detail=name,
                )
            reserved.add(str(target).lower())

            present = await self._is_file(source)
            if not present:
                logger.warning("File for asset %s missing at %s, marking deleted only", asset.id, source)
            op = self.journal.record(
                session,
                OperationKind.TRASH,
                asset,
                source_path=source if present else None,
                target_path=target if present else None,
                actor_id=user_id,
                now=now,
                target_virtual_path=f"{bucket_virtual}/{trash_name}",
                target_file_name=trash_name,
                target_folder_id=bucket.id,
                deleted_from_path=asset.path,
                deleted_from_folder_id=asset.folder_id,
            )
            action = functools.partial(_move_file, source, target) if present else None
            steps.append(_Step(asset, op, action, asset.path))

        completed = await self._run(session, steps, skipped, user_id)
        for step in completed:
            await self._emit(
                EventType.ASSET_TRASHED,
                step.asset.path,
                old_path=step.old_path,
                asset_id=step.asset.id,
                user_id=user_id,
            )

        logger.info("Deleted %d asset(s) for user %s", len(completed), user_id)
        return LifecycleResult(
            success=True,
            message=f"Moved {len(completed)} asset(s) to trash",
            processed=[s.asset.id for s in completed],
            skipped=skipped,
        )

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_assets(
        self,
        session: AsyncSession,
        ids: Sequence[str] | Literal["all"],
        actor: Actor,
        paths: PathVirtualizer,
    ) -> LifecycleResult:
        """Move deleted assets back to where they were deleted from."""
        user_id = require_user(actor)
        if ids == ALL:
            assets = await self._deleted_for(session, actor)
            if not assets:
                return LifecycleResult(success=True, message="Nothing to restore")
        else:
            assets = await self._load(session, ids)
            if not actor.is_admin and any(not a.is_deleted for a in assets):
                raise AccessDeniedError("Only deleted assets can be restored")
            self._authorize_owned(actor, assets)

        now = self._clock()
        steps: list[_Step] = []
        skipped: list[SkippedItem] = []
        reserved: set[str] = set()
        for asset in assets:
            if not asset.is_deleted:
                continue
            target_virtual = normalize_path(
                asset.deleted_from_path or f"{user_root_path(user_id)}/{asset.file_name}"
            )
            try:
                source = paths.resolve_physical(asset.path)
                target = paths.resolve_physical(target_virtual)
            except MediaVaultError as e:
                skipped.append(SkippedItem(asset.id, str(e)))
                continue

            if await self._taken(target, reserved):
                renamed = suffixed_name(target.name)
                target = target.with_name(renamed)
                target_virtual = f"{posixpath.dirname(target_virtual)}/{renamed}"
                await self._emit(
                    EventType.COLLISION_RENAMED,
                    target_virtual,
                    asset_id=asset.id,
                    user_id=user_id,
                    detail=posixpath.basename(asset.deleted_from_path or asset.file_name),
                )
            reserved.add(str(target).lower())

            present = await self._is_file(source)
            op = self.journal.record(
                session,
                OperationKind.RESTORE,
                asset,
                source_path=source if present else None,
                target_path=target if present else None,
                actor_id=user_id,
                now=now,
                target_virtual_path=target_virtual,
                target_file_name=posixpath.basename(target_virtual),
                target_folder_id=asset.deleted_from_folder_id,
            )
            action = functools.partial(_move_file, source, target) if present else None
            steps.append(_Step(asset, op, action, asset.path))

        completed = await self._run(session, steps, skipped, user_id)
        for step in completed:
            await self._emit(
                EventType.ASSET_RESTORED,
                step.asset.path,
                old_path=step.old_path,
                asset_id=step.asset.id,
                user_id=user_id,
            )

        logger.info("Restored %d asset(s) for user %s", len(completed), user_id)
        return LifecycleResult(
            success=True,
            message=f"Restored {len(completed)} asset(s)",
            processed=[s.asset.id for s in completed],
            skipped=skipped,
        )

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    async def purge_assets(
        self,
        session: AsyncSession,
        ids: Sequence[str] | Literal["all"],
        actor: Actor,
        paths: PathVirtualizer,
    ) -> LifecycleResult:
        """Permanently remove deleted assets, their files, and thumbnails.

        Raises:
            InvalidArgumentError: A target has not been deleted first.
        """
        user_id = require_user(actor)
        if ids == ALL:
            assets = await self._deleted_for(session, actor)
            if not assets:
                return LifecycleResult(success=True, message="Trash is empty")
        else:
            assets = await self._load(session, ids)
            self._authorize_owned(actor, assets)
            active = [a.id for a in assets if not a.is_deleted]
            if active:
                raise InvalidArgumentError(
                    f"Only deleted assets can be purged: {', '.join(active)}"
                )

        now = self._clock()
        thumbs = self._thumbnail_model
        steps: list[_Step] = []
        skipped: list[SkippedItem] = []
        for asset in assets:
            try:
                source: Path | None = paths.resolve_physical(asset.path)
            except MediaVaultError:
                logger.warning("Cannot resolve %s for purge, removing row only", asset.path)
                source = None

            result = await session.execute(select(thumbs).where(thumbs.asset_id == asset.id))
            thumb_paths = [Path(t.file_path) for t in result.scalars().all() if t.file_path]
            thumb_dir = self._thumbnails_root / asset.id if self._thumbnails_root else None

            op = self.journal.record(
                session,
                OperationKind.PURGE,
                asset,
                source_path=source,
                actor_id=user_id,
                now=now,
            )
            action = functools.partial(_remove_files, source, thumb_paths, thumb_dir)
            steps.append(_Step(asset, op, action, asset.path))

        completed = await self._run(session, steps, skipped, user_id)
        for step in completed:
            await self._emit(
                EventType.ASSET_PURGED, step.old_path, asset_id=step.asset.id, user_id=user_id
            )

        logger.info("Purged %d asset(s) for user %s", len(completed), user_id)
        return LifecycleResult(
            success=True,
            message=f"Permanently deleted {len(completed)} asset(s)",
            processed=[s.asset.id for s in completed],
            skipped=skipped,
        )

    async def empty_trash(
        self,
        session: AsyncSession,
        actor: Actor,
        paths: PathVirtualizer,
    ) -> LifecycleResult:
        return await self.purge_assets(session, ALL, actor, paths)

    async def list_trash(self, session: AsyncSession, actor: Actor) -> list[AssetBase]:
        """Deleted assets in the actor's trash, newest first (all for admins)."""
        require_user(actor)
        assets = await self._deleted_for(session, actor)
        epoch = datetime.min.replace(tzinfo=UTC)
        return sorted(
            assets,
            key=lambda a: as_utc(a.deleted_at) if a.deleted_at is not None else epoch,
            reverse=True,
        )

    # ------------------------------------------------------------------
    # Move
    # ------------------------------------------------------------------

    async def move_assets(
        self,
        session: AsyncSession,
        ids: Sequence[str],
        target_folder_id: str,
        actor: Actor,
        paths: PathVirtualizer,
    ) -> LifecycleResult:
        """Relocate active assets into another folder."""
        user_id = require_user(actor)
        folder = await session.get(self._folder_model, target_folder_id)
        if folder is None:
            raise FolderNotFoundError(f"Folder not found: {target_folder_id}")
        if not await self.permissions.can_write(session, user_id, folder, actor.is_admin):
            raise AccessDeniedError(f"No write access to {folder.path}")

        assets = [a for a in await self._load(session, ids) if not a.is_deleted]
        for asset in assets:
            source_folder = await session.get(self._folder_model, asset.folder_id) if asset.folder_id else None
            if source_folder is not None:
                if not await self.permissions.can_write(session, user_id, source_folder, actor.is_admin):
                    raise AccessDeniedError(f"No write access to {source_folder.path}")
            else:
                self._authorize_owned(actor, [asset])

        now = self._clock()
        steps: list[_Step] = []
        skipped: list[SkippedItem] = []
        reserved: set[str] = set()
        for asset in assets:
            if asset.folder_id == folder.id:
                skipped.append(SkippedItem(asset.id, "already in target folder"))
                continue
            name = asset.file_name or posixpath.basename(asset.path)
            target_virtual = f"{folder.path}/{name}"
            try:
                source = paths.resolve_physical(asset.path)
                target = paths.resolve_physical(target_virtual)
            except MediaVaultError as e:
                skipped.append(SkippedItem(asset.id, str(e)))
                continue

            if await self._taken(target, reserved):
                name = suffixed_name(name)
                target = target.with_name(name)
                target_virtual = f"{folder.path}/{name}"
                await self._emit(
                    EventType.COLLISION_RENAMED, target_virtual, asset_id=asset.id, user_id=user_id
                )
            reserved.add(str(target).lower())

            present = await self._is_file(source)
            op = self.journal.record(
                session,
                OperationKind.MOVE,
                asset,
                source_path=source if present else None,
                target_path=target if present else None,
                actor_id=user_id,
                now=now,
                target_virtual_path=target_virtual,
                target_file_name=name,
                target_folder_id=folder.id,
            )
            action = functools.partial(_move_file, source, target) if present else None
            steps.append(_Step(asset, op, action, asset.path))

        completed = await self._run(session, steps, skipped, user_id)
        for step in completed:
            await self._emit(
                EventType.ASSET_MOVED,
                step.asset.path,
                old_path=step.old_path,
                asset_id=step.asset.id,
                user_id=user_id,
            )

        return LifecycleResult(
            success=True,
            message=f"Moved {len(completed)} asset(s) to {folder.path}",
            processed=[s.asset.id for s in completed],
            skipped=skipped,
        )

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def folder_tree(self, session: AsyncSession, actor: Actor) -> list[FolderNode]:
        """Readable folders, each nested under its nearest readable parent.

        Trash folders count deleted assets, every other folder counts
        active ones.  ``total_asset_count`` adds up the whole subtree.
        """
        user_id = require_user(actor)
        tree = await self.folders.tree(session)
        allowed = await self.permissions.allowed_folders(session, user_id, actor.is_admin)

        model = self._asset_model
        rows = await session.execute(
            select(model.folder_id, model.deleted_at).where(model.folder_id.is_not(None))  # type: ignore[union-attr]
        )
        counts: dict[str, int] = {}
        for folder_id, deleted_at in rows.all():
            folder = tree.get(folder_id)
            if folder is not None and (deleted_at is not None) == is_trash_path(folder.path):
                counts[folder_id] = counts.get(folder_id, 0) + 1

        def build(folder: FolderBase) -> FolderNode:
            node = FolderNode(
                id=folder.id,
                path=folder.path,
                name=folder.name,
                parent_id=folder.parent_id,
                asset_count=counts.get(folder.id, 0),
                is_owner=actor.is_admin or folder_owner(folder) == user_id,
            )
            children = sorted(tree.children(folder.id), key=lambda f: f.name.lower())
            node.children = [build(c) for c in children if allowed is None or c.id in allowed]
            node.total_asset_count = node.asset_count + sum(c.total_asset_count for c in node.children)
            return node

        if allowed is None:
            tops = tree.roots()
        else:
            tops = [f for f in tree if f.id in allowed and f.parent_id not in allowed]
        return [build(f) for f in sorted(tops, key=lambda f: f.path.lower())]

    async def _changeable_folder(self, session: AsyncSession, folder_id: str) -> FolderBase:
        folder = await session.get(self._folder_model, folder_id)
        if folder is None:
            raise FolderNotFoundError(f"Folder not found: {folder_id}")
        if _is_reserved_folder(folder.path):
            raise InvalidArgumentError(f"Folder cannot be changed: {folder.path}")
        return folder

    async def rename_folder(
        self,
        session: AsyncSession,
        folder_id: str,
        actor: Actor,
        paths: PathVirtualizer,
        *,
        name: str | None = None,
        parent_id: str | None = None,
    ) -> FolderBase:
        """Rename a folder or move it under another folder of the same library.

        The directory moves on disk and every subfolder path, asset path,
        and trash origin below the folder is rewritten in the same commit.
        Without *parent_id* the folder keeps its parent.

        Raises:
            FolderNotFoundError: The folder or the new parent does not exist.
            AccessDeniedError: No write access to the folder or the new parent.
            InvalidArgumentError: Invalid name, a reserved folder, a move into
                its own subtree, or the destination is taken.
        """
        user_id = require_user(actor)
        folder = await self._changeable_folder(session, folder_id)
        if not await self.permissions.can_write(session, user_id, folder, actor.is_admin):
            raise AccessDeniedError(f"No write access to {folder.path}")

        new_name = folder.name if name is None else name.strip()
        if not new_name or new_name in (".", "..") or "/" in new_name or "\\" in new_name:
            raise InvalidArgumentError(f"Invalid folder name: {name!r}")

        tree = await self.folders.tree(session)
        if parent_id is not None:
            parent = tree.get(parent_id)
            if parent is None:
                raise FolderNotFoundError(f"Folder not found: {parent_id}")
            if parent.id == folder.id or folder.id in {a.id for a in tree.ancestors(parent.id)}:
                raise InvalidArgumentError("A folder cannot be moved into its own subtree")
            if not await self.permissions.can_write(session, user_id, parent, actor.is_admin):
                raise AccessDeniedError(f"No write access to {parent.path}")
            parent_path, new_parent_id = parent.path, parent.id
        else:
            parent_path, new_parent_id = posixpath.dirname(folder.path), folder.parent_id

        old_path = folder.path
        new_path = normalize_path(f"{parent_path}/{new_name}")
        ok, error = validate_path(new_path)
        if not ok:
            raise InvalidArgumentError(error)
        if _is_reserved_folder(new_path):
            raise InvalidArgumentError(f"Folder cannot be moved to {new_path}")
        if owner_from_path(new_path) != owner_from_path(old_path):
            raise InvalidArgumentError("Folders cannot move between libraries")
        if new_path == old_path:
            return folder

        same_place = new_path.lower() == old_path.lower()
        taken = await self.folders.get_by_path(session, new_path)
        if taken is not None and taken.id != folder.id:
            raise InvalidArgumentError(f"A folder already exists at {new_path}")
        old_dir = paths.resolve_physical(old_path)
        new_dir = paths.resolve_physical(new_path)
        if not same_place and await asyncio.to_thread(new_dir.exists):
            raise InvalidArgumentError(f"Destination already exists on disk: {new_path}")

        for sub in tree.descendants(folder.id):
            sub.path = _rebase(sub.path, old_path, new_path)
            session.add(sub)
        folder.path, folder.name, folder.parent_id = new_path, new_name, new_parent_id
        session.add(folder)

        model = self._asset_model
        like = f"{old_path}/%"
        result = await session.execute(
            select(model).where(or_(model.path.like(like), model.deleted_from_path.like(like)))  # type: ignore[union-attr]
        )
        for asset in result.scalars().all():
            if is_under(asset.path, old_path):
                asset.path = _rebase(asset.path, old_path, new_path)
            if asset.deleted_from_path and is_under(asset.deleted_from_path, old_path):
                asset.deleted_from_path = _rebase(asset.deleted_from_path, old_path, new_path)
            session.add(asset)
        await session.flush()

        moved = False
        if await asyncio.to_thread(old_dir.is_dir):
            await run_to_completion(_move_dir, old_dir, new_dir)
            moved = True
        try:
            await self.journal.finalize(session)
        except ConsistencyError:
            if moved:
                try:
                    await run_to_completion(_move_dir, new_dir, old_dir)
                except OSError:
                    logger.error("Could not move %s back to %s", new_dir, old_dir, exc_info=True)
            raise

        await self._emit(EventType.FOLDER_MOVED, new_path, old_path=old_path, user_id=user_id)
        logger.info("Moved folder %s -> %s", old_path, new_path)
        return folder

    async def delete_folder(
        self,
        session: AsyncSession,
        folder_id: str,
        actor: Actor,
        paths: PathVirtualizer,
    ) -> list[str]:
        """Delete a folder, its subfolders, and their grants. Returns the removed ids.

        Raises:
            InvalidArgumentError: An asset, active or trashed, still belongs
                to the subtree, or files remain in its directory.
        """
        user_id = require_user(actor)
        folder = await self._changeable_folder(session, folder_id)
        if not await self.permissions.can_delete(session, user_id, folder, actor.is_admin):
            raise AccessDeniedError(f"No delete access to {folder.path}")

        tree = await self.folders.tree(session)
        subtree = [folder, *tree.descendants(folder.id)]
        ids = [f.id for f in subtree]
        model = self._asset_model
        held = await session.execute(select(model.id).where(model.folder_id.in_(ids)).limit(1))  # type: ignore[union-attr]
        if held.first() is not None:
            raise InvalidArgumentError(f"Folder must be empty before it can be deleted: {folder.path}")
        directory = paths.resolve_physical(folder.path)
        if await asyncio.to_thread(_has_files, directory):
            raise InvalidArgumentError(f"Folder still holds files on disk: {folder.path}")

        perms = self._permission_model
        await session.execute(sa_delete(perms).where(perms.folder_id.in_(ids)))  # type: ignore[attr-defined]
        for sub in reversed(subtree):
            await session.delete(sub)
        await self.journal.finalize(session)

        if await asyncio.to_thread(directory.is_dir):
            try:
                await run_to_completion(shutil.rmtree, directory)
            except OSError:
                logger.warning("Folder %s deleted but directory %s remains", folder.path, directory, exc_info=True)

        await self._emit(EventType.FOLDER_DELETED, folder.path, user_id=user_id, detail=str(len(ids)))
        logger.info("Deleted folder %s (%d folders)", folder.path, len(ids))
        return ids

    # ------------------------------------------------------------------
    # Device sync
    # ------------------------------------------------------------------

    async def _renamed_target(
        self, target: Path, target_virtual: str, user_id: str, source: Path
    ) -> tuple[Path, str]:
        renamed = prefixed_name(source.name)
        await self._emit(
            EventType.COLLISION_RENAMED,
            f"{posixpath.dirname(target_virtual)}/{renamed}",
            user_id=user_id,
            detail=source.name,
        )
        return target.with_name(renamed), f"{posixpath.dirname(target_virtual)}/{renamed}"

    async def sync_device_file(
        self,
        session: AsyncSession,
        device_path: str,
        actor: Actor,
        paths: PathVirtualizer,
        identity: ContentIdentity | None = None,
    ) -> SyncResult:
        """Copy one device file into the actor's ``DeviceBackup`` subtree.

        The file is not indexed; the external scan picks it up later.

        Raises:
            AccessDeniedError: The path is outside the actor's device root.
            PathNotFoundError: The file does not exist.
        """
        user_id = require_user(actor)
        if not device_path or not device_path.strip():
            raise InvalidArgumentError("A device path is required")
        identity = identity or ContentIdentity()

        source = paths.resolve_physical(device_path)
        if not paths.is_device_path(source):
            raise AccessDeniedError(f"Path is outside your device folder: {device_path}")
        if not await self._is_file(source):
            raise PathNotFoundError(f"File does not exist: {device_path}")

        digest = await identity.digest(source)
        existing = await self._find_by_checksum(session, digest)
        if existing is not None and await self._physically_present(paths, existing):
            logger.info("Sync skipped, content already indexed as %s", existing.id)
            await self._emit(
                EventType.DEDUP_HIT, existing.path, asset_id=existing.id, user_id=user_id, detail=device_path
            )
            return SyncResult(
                success=True,
                message="File already exists in the library (same content)",
                target_path=existing.path,
                already_exists=True,
                existing_asset_id=existing.id,
            )

        relative = paths.device_relative(source)
        target_virtual = normalize_path(f"{device_backup_path(user_id)}/{relative}")
        target = paths.resolve_physical(target_virtual)

        if await self._is_file(target):
            if await identity.digest(target) == digest:
                await self._emit(
                    EventType.DEDUP_HIT, target_virtual, user_id=user_id, detail=device_path
                )
                return SyncResult(
                    success=True,
                    message="File is already synchronized",
                    target_path=target_virtual,
                    already_exists=True,
                )
            target, target_virtual = await self._renamed_target(target, target_virtual, user_id, source)

        try:
            await run_to_completion(_copy_atomic, source, target)
        except FileExistsError:
            logger.info("Sync target %s was created concurrently, renaming", target_virtual)
            target, target_virtual = await self._renamed_target(target, target_virtual, user_id, source)
            await run_to_completion(_copy_atomic, source, target)
        await self.folders.ensure_folder(session, posixpath.dirname(target_virtual), user_id)
        await self.journal.finalize(session)

        await self._emit(EventType.FILE_SYNCED, target_virtual, old_path=device_path, user_id=user_id)
        logger.info("Synced %s -> %s", source, target_virtual)
        return SyncResult(
            success=True,
            message="File synchronized. Run indexing to add it to the library.",
            target_path=target_virtual,
        )

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_asset(
        self,
        session: AsyncSession,
        source: Path | str,
        actor: Actor,
        paths: PathVirtualizer,
        *,
        file_name: str | None = None,
        identity: ContentIdentity | None = None,
    ) -> UploadResult:
        """Move an uploaded file into the actor's ``Uploads`` folder and index it.

        When the content is already indexed the existing asset is reported
        and *source* is left untouched.
        """
        user_id = require_user(actor)
        source = Path(source)
        name = posixpath.basename((file_name or source.name).replace("\\", "/"))
        if not name or not is_media_file(name):
            raise InvalidArgumentError(f"Unsupported file type: {name!r}")
        if not await self._is_file(source):
            raise PathNotFoundError(f"Uploaded file not found: {source}")
        identity = identity or ContentIdentity()

        digest = await identity.digest(source)
        existing = await self._find_by_checksum(session, digest)
        if existing is not None and await self._physically_present(paths, existing):
            await self._emit(
                EventType.DEDUP_HIT, existing.path, asset_id=existing.id, user_id=user_id, detail=name
            )
            return UploadResult(
                success=True,
                message="File already exists in the library (same content)",
                asset_id=existing.id,
                target_path=existing.path,
                already_exists=True,
            )

        folder_virtual = uploads_path(user_id)
        folder = await self.folders.ensure_folder(session, folder_virtual, user_id)
        target = paths.resolve_physical(f"{folder_virtual}/{name}")
        if await self._is_file(target):
            name = prefixed_name(name)
            target = target.with_name(name)
            await self._emit(
                EventType.COLLISION_RENAMED, f"{folder_virtual}/{name}", user_id=user_id
            )

        st = await asyncio.to_thread(os.stat, source)
        await run_to_completion(_move_file, source, target)

        asset = existing or self._asset_model(checksum=digest, path="")
        asset.file_name = name
        asset.path = f"{folder_virtual}/{name}"
        asset.size_bytes = st.st_size
        asset.media_type = media_type_for(name)
        asset.extension = posixpath.splitext(name)[1].lower()
        asset.created_date = datetime.fromtimestamp(st.st_mtime, UTC)
        asset.modified_date = datetime.fromtimestamp(st.st_mtime, UTC)
        asset.scanned_at = self._clock()
        asset.owner_id = user_id
        asset.folder_id = folder.id
        asset.deleted_at = None
        asset.deleted_from_path = None
        asset.deleted_from_folder_id = None
        session.add(asset)
        await self.journal.finalize(session)

        await self._emit(EventType.FILE_UPLOADED, asset.path, asset_id=asset.id, user_id=user_id)
        logger.info("Uploaded %s as asset %s", asset.path, asset.id)
        return UploadResult(
            success=True,
            message="File uploaded",
            asset_id=asset.id,
            target_path=asset.path,
        )
