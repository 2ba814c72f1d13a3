"""MediaVaultAsync — async facade over the lifecycle and timeline engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediavault.events import EventBus
from mediavault.fs.hashing import ContentIdentity
from mediavault.fs.lifecycle import LifecycleController, require_user
from mediavault.fs.scanner import scan
from mediavault.fs.timeline import TimelineReconciler
from mediavault.models.assets import AlbumAsset, Asset, AssetThumbnail
from mediavault.models.folders import Folder, FolderPermission
from mediavault.models.operations import PendingOperation
from mediavault.models.settings import Setting
from mediavault.settings import SettingsStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Iterable, Sequence
    from datetime import datetime
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from mediavault.fs.paths import PathVirtualizer
    from mediavault.fs.types import (
        Actor,
        FolderNode,
        LifecycleResult,
        PermissionInfo,
        RecoveryResult,
        ScannedFile,
        SyncResult,
        TimelineEntry,
        UploadResult,
    )
    from mediavault.models.assets import AssetBase
    from mediavault.models.folders import FolderBase, FolderPermissionBase
    from mediavault.settings import VaultSettings

logger = logging.getLogger(__name__)


class MediaVaultAsync:
    """Async facade wiring paths, hashing, permissions, lifecycle, and timeline.

    Each public call runs in its own session and commits on success::

        engine = create_async_engine("sqlite+aiosqlite:///vault.db")
        vault = MediaVaultAsync(engine, VaultSettings.from_env())
        await vault.open()
        await vault.delete_assets(["..."], Actor("42"))
    """

    def __init__(
        self,
        engine: AsyncEngine,
        settings: VaultSettings,
        *,
        asset_model: type[AssetBase] = Asset,
        folder_model: type[FolderBase] = Folder,
        permission_model: type[FolderPermissionBase] = FolderPermission,
        album_asset_model: type[AlbumAsset] = AlbumAsset,
        thumbnail_model: type[AssetThumbnail] = AssetThumbnail,
        operation_model: type[PendingOperation] = PendingOperation,
        setting_model: type[Setting] = Setting,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
        hasher: Callable[[Path], str] | None = None,
        scanner: Callable[[Path], Iterable[ScannedFile]] = scan,
    ) -> None:
        self._engine = engine
        self._settings = settings
        self._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        self._event_bus = event_bus or EventBus()
        self._hasher = hasher
        self._models = (
            asset_model,
            folder_model,
            permission_model,
            album_asset_model,
            thumbnail_model,
            operation_model,
            setting_model,
        )
        self._store = SettingsStore(setting_model)
        self._lifecycle = LifecycleController(
            asset_model,
            folder_model,
            permission_model,
            album_asset_model,
            thumbnail_model,
            operation_model,
            event_bus=self._event_bus,
            clock=clock,
            thumbnails_root=settings.thumbnails_root,
        )
        self._timeline = TimelineReconciler(
            asset_model, folder_model, permission_model, scanner=scanner
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create any missing tables."""
        async with self._engine.begin() as conn:
            for model in self._models:
                await conn.run_sync(
                    lambda c, m=model: m.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
                )

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def _paths(self, session: AsyncSession, actor: Actor) -> PathVirtualizer:
        device_root = await self._store.resolve_device_root(session, self._settings, actor.user_id)
        return self._settings.virtualizer(actor, device_root)

    def _identity(self) -> ContentIdentity:
        return ContentIdentity(self._hasher)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def delete_assets(self, ids: Sequence[str], actor: Actor) -> LifecycleResult:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.delete_assets(session, ids, actor, paths)

    async def restore_assets(
        self, ids: Sequence[str] | Literal["all"], actor: Actor
    ) -> LifecycleResult:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.restore_assets(session, ids, actor, paths)

    async def purge_assets(
        self, ids: Sequence[str] | Literal["all"], actor: Actor
    ) -> LifecycleResult:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.purge_assets(session, ids, actor, paths)

    async def empty_trash(self, actor: Actor) -> LifecycleResult:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.empty_trash(session, actor, paths)

    async def move_assets(
        self, ids: Sequence[str], target_folder_id: str, actor: Actor
    ) -> LifecycleResult:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.move_assets(session, ids, target_folder_id, actor, paths)

    async def list_trash(self, actor: Actor) -> list[AssetBase]:
        async with self._session() as session:
            return await self._lifecycle.list_trash(session, actor)

    async def sync_device_file(self, device_path: str, actor: Actor) -> SyncResult:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.sync_device_file(
                session, device_path, actor, paths, self._identity()
            )

    async def upload_asset(
        self, source: Path | str, actor: Actor, *, file_name: str | None = None
    ) -> UploadResult:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.upload_asset(
                session, source, actor, paths, file_name=file_name, identity=self._identity()
            )

    async def recover(self) -> RecoveryResult:
        """Settle intents left behind by an interrupted batch."""
        async with self._session() as session:
            return await self._lifecycle.journal.recover(session)

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    async def timeline(self, actor: Actor) -> list[TimelineEntry]:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._timeline.timeline(session, actor, paths)

    async def device_assets(self, actor: Actor) -> list[TimelineEntry]:
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
        return await self._timeline.device_assets(actor, paths)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def allowed_folders(self, user_id: str, is_admin: bool = False) -> set[str] | None:
        async with self._session() as session:
            return await self._lifecycle.permissions.allowed_folders(session, user_id, is_admin)

    async def allowed_path_prefixes(self, user_id: str, is_admin: bool = False) -> set[str] | None:
        async with self._session() as session:
            return await self._lifecycle.permissions.allowed_path_prefixes(session, user_id, is_admin)

    async def list_folder_permissions(self, folder_id: str, actor: Actor) -> list[PermissionInfo]:
        require_user(actor)
        async with self._session() as session:
            return await self._lifecycle.permissions.list_permissions(session, actor, folder_id)

    async def set_folder_permission(
        self,
        folder_id: str,
        user_id: str,
        actor: Actor,
        *,
        can_read: bool = False,
        can_write: bool = False,
        can_delete: bool = False,
        can_manage_permissions: bool = False,
    ) -> PermissionInfo:
        require_user(actor)
        async with self._session() as session:
            return await self._lifecycle.permissions.set_permission(
                session,
                actor,
                folder_id,
                user_id,
                can_read=can_read,
                can_write=can_write,
                can_delete=can_delete,
                can_manage_permissions=can_manage_permissions,
            )

    async def remove_folder_permission(self, folder_id: str, user_id: str, actor: Actor) -> bool:
        require_user(actor)
        async with self._session() as session:
            return await self._lifecycle.permissions.remove_permission(session, actor, folder_id, user_id)

    async def ensure_folder(self, path: str, actor: Actor) -> FolderBase:
        """Create a folder (and its ancestry) owned by *actor*."""
        user_id = require_user(actor)
        async with self._session() as session:
            return await self._lifecycle.folders.ensure_folder(session, path, user_id)

    async def folder_tree(self, actor: Actor) -> list[FolderNode]:
        require_user(actor)
        async with self._session() as session:
            return await self._lifecycle.folder_tree(session, actor)

    async def rename_folder(
        self,
        folder_id: str,
        actor: Actor,
        *,
        name: str | None = None,
        parent_id: str | None = None,
    ) -> FolderBase:
        """Rename a folder or move it under *parent_id*, carrying its contents."""
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.rename_folder(
                session, folder_id, actor, paths, name=name, parent_id=parent_id
            )

    async def delete_folder(self, folder_id: str, actor: Actor) -> list[str]:
        """Delete an empty folder subtree. Returns the removed folder ids."""
        require_user(actor)
        async with self._session() as session:
            paths = await self._paths(session, actor)
            return await self._lifecycle.delete_folder(session, folder_id, actor, paths)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def set_device_root(self, actor: Actor, path: Path | str) -> None:
        """Persist a device directory for *actor*, overriding configuration."""
        user_id = require_user(actor)
        async with self._session() as session:
            await self._store.set_device_root(session, user_id, path)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def events(self) -> EventBus:
        return self._event_bus

    @property
    def settings(self) -> VaultSettings:
        return self._settings
