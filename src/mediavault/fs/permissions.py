"""FolderPermissionResolver — per-user folder visibility and capability checks.

Stateless service that receives the folder and permission models at
construction and a session at call time.  Nothing is cached between
calls; every check reads the current grants.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlmodel import select

from .exceptions import AccessDeniedError, FolderNotFoundError, InvalidArgumentError
from .folders import folder_owner
from .types import PermissionInfo
from .utils import user_root_path

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from mediavault.models.folders import FolderBase, FolderPermissionBase

    from .types import Actor

logger = logging.getLogger(__name__)


class FolderPermissionResolver:
    """Combines explicit grants with ownership of a user's personal root.

    A folder with no grant rows at all belongs implicitly to its owner.
    Once any grant exists on a folder, read access comes from grants only.
    Write, delete, and manage also fall back to ownership.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        permission_model: type[FolderPermissionBase],
    ) -> None:
        self._folder_model = folder_model
        self._permission_model = permission_model

    # ------------------------------------------------------------------
    # Visibility sets
    # ------------------------------------------------------------------

    async def allowed_folders(
        self,
        session: AsyncSession,
        user_id: str,
        is_admin: bool = False,
    ) -> set[str] | None:
        """Ids of folders *user_id* may read. ``None`` means unrestricted."""
        if is_admin:
            return None
        folders = await self._all_folders(session)
        return {f.id for f in await self._readable(session, folders, user_id)}

    async def allowed_path_prefixes(
        self,
        session: AsyncSession,
        user_id: str,
        is_admin: bool = False,
    ) -> set[str] | None:
        """Virtual path prefixes *user_id* may read, each ending in ``/``.

        ``None`` means unrestricted.  The user's own root is always included.
        """
        if is_admin:
            return None
        folders = await self._all_folders(session)
        prefixes = {f.path.rstrip("/") + "/" for f in await self._readable(session, folders, user_id)}
        prefixes.add(user_root_path(user_id) + "/")
        return prefixes

    async def _readable(
        self,
        session: AsyncSession,
        folders: list[FolderBase],
        user_id: str,
    ) -> list[FolderBase]:
        model = self._permission_model
        result = await session.execute(select(model.folder_id, model.user_id, model.can_read))
        granted: set[str] = set()
        explicit: set[str] = set()
        for folder_id, grantee, can_read in result.all():
            granted.add(folder_id)
            if grantee == user_id and can_read:
                explicit.add(folder_id)
        return [
            f
            for f in folders
            if f.id in explicit or (f.id not in granted and folder_owner(f) == user_id)
        ]

    async def _all_folders(self, session: AsyncSession) -> list[FolderBase]:
        result = await session.execute(select(self._folder_model))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Per-folder checks
    # ------------------------------------------------------------------

    async def get_grant(
        self,
        session: AsyncSession,
        user_id: str,
        folder_id: str,
    ) -> FolderPermissionBase | None:
        model = self._permission_model
        result = await session.execute(
            select(model).where(model.user_id == user_id, model.folder_id == folder_id)
        )
        return result.scalar_one_or_none()

    async def has_any_grant(self, session: AsyncSession, folder_id: str) -> bool:
        model = self._permission_model
        result = await session.execute(select(model.id).where(model.folder_id == folder_id).limit(1))
        return result.first() is not None

    async def can_read(
        self,
        session: AsyncSession,
        user_id: str,
        folder: FolderBase,
        is_admin: bool = False,
    ) -> bool:
        if is_admin:
            return True
        grant = await self.get_grant(session, user_id, folder.id)
        if grant is not None:
            return grant.can_read
        if folder_owner(folder) != user_id:
            return False
        return not await self.has_any_grant(session, folder.id)

    async def can_write(
        self,
        session: AsyncSession,
        user_id: str,
        folder: FolderBase,
        is_admin: bool = False,
    ) -> bool:
        return await self._check(session, user_id, folder, is_admin, "can_write")

    async def can_delete(
        self,
        session: AsyncSession,
        user_id: str,
        folder: FolderBase,
        is_admin: bool = False,
    ) -> bool:
        return await self._check(session, user_id, folder, is_admin, "can_delete")

    async def can_manage(
        self,
        session: AsyncSession,
        user_id: str,
        folder: FolderBase,
        is_admin: bool = False,
    ) -> bool:
        return await self._check(session, user_id, folder, is_admin, "can_manage_permissions")

    async def _check(
        self,
        session: AsyncSession,
        user_id: str,
        folder: FolderBase,
        is_admin: bool,
        capability: str,
    ) -> bool:
        if is_admin or folder_owner(folder) == user_id:
            return True
        grant = await self.get_grant(session, user_id, folder.id)
        return grant is not None and bool(getattr(grant, capability))

    # ------------------------------------------------------------------
    # Grant management
    # ------------------------------------------------------------------

    async def _require_manage(
        self,
        session: AsyncSession,
        actor: Actor,
        folder_id: str,
    ) -> FolderBase:
        assert actor.user_id is not None
        folder = await session.get(self._folder_model, folder_id)
        if folder is None:
            raise FolderNotFoundError(f"Folder not found: {folder_id}")
        if not await self.can_manage(session, actor.user_id, folder, actor.is_admin):
            raise AccessDeniedError(f"Cannot manage permissions on {folder.path}")
        return folder

    async def list_permissions(
        self,
        session: AsyncSession,
        actor: Actor,
        folder_id: str,
    ) -> list[PermissionInfo]:
        """All grants on a folder. Requires admin, owner, or manage rights."""
        await self._require_manage(session, actor, folder_id)
        model = self._permission_model
        result = await session.execute(select(model).where(model.folder_id == folder_id))
        return [_to_info(p) for p in result.scalars().all()]

    async def set_permission(
        self,
        session: AsyncSession,
        actor: Actor,
        folder_id: str,
        user_id: str,
        *,
        can_read: bool = False,
        can_write: bool = False,
        can_delete: bool = False,
        can_manage_permissions: bool = False,
    ) -> PermissionInfo:
        """Create or update the grant of *user_id* on *folder_id*. Flushes."""
        folder = await self._require_manage(session, actor, folder_id)
        if user_id == actor.user_id and folder_owner(folder) == actor.user_id:
            raise InvalidArgumentError("The folder owner's own permissions cannot be modified")

        grant = await self.get_grant(session, user_id, folder_id)
        if grant is None:
            grant = self._permission_model(user_id=user_id, folder_id=folder_id)
        grant.can_read = can_read
        grant.can_write = can_write
        grant.can_delete = can_delete
        grant.can_manage_permissions = can_manage_permissions
        grant.granted_by = actor.user_id
        grant.granted_at = datetime.now(UTC)
        session.add(grant)
        await session.flush()
        logger.info("Set permission on %s for user %s by %s", folder.path, user_id, actor.user_id)
        return _to_info(grant)

    async def remove_permission(
        self,
        session: AsyncSession,
        actor: Actor,
        folder_id: str,
        user_id: str,
    ) -> bool:
        """Remove the grant of *user_id* on *folder_id*. Returns True if found."""
        folder = await self._require_manage(session, actor, folder_id)
        if user_id == actor.user_id and folder_owner(folder) == actor.user_id:
            raise InvalidArgumentError("The folder owner's own permissions cannot be removed")

        grant = await self.get_grant(session, user_id, folder_id)
        if grant is None:
            return False
        await session.delete(grant)
        await session.flush()
        logger.info("Removed permission on %s for user %s by %s", folder.path, user_id, actor.user_id)
        return True


def _to_info(grant: FolderPermissionBase) -> PermissionInfo:
    return PermissionInfo(
        folder_id=grant.folder_id,
        user_id=grant.user_id,
        can_read=grant.can_read,
        can_write=grant.can_write,
        can_delete=grant.can_delete,
        can_manage_permissions=grant.can_manage_permissions,
        granted_by=grant.granted_by,
        granted_at=grant.granted_at,
    )
