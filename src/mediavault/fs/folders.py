"""FolderService and FolderTree — folder rows and their hierarchy.

Stateless service that receives the folder and permission models at
construction and a session at call time.  Hierarchy questions are
answered by ``FolderTree``, an id-keyed arena with a separate
parent -> children index, so no row holds a reference to another.
"""

from __future__ import annotations

import logging
import posixpath
from typing import TYPE_CHECKING

from sqlmodel import select

from .utils import USERS_PREFIX, is_under, normalize_path, owner_from_path, user_root_path

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from sqlalchemy.ext.asyncio import AsyncSession

    from mediavault.models.folders import FolderBase, FolderPermissionBase

logger = logging.getLogger(__name__)


class FolderTree:
    """Read-only arena over a snapshot of folder rows."""

    def __init__(self, folders: Iterable[FolderBase]) -> None:
        self._by_id: dict[str, FolderBase] = {}
        self._by_path: dict[str, str] = {}
        self._children: dict[str | None, list[str]] = {}
        for folder in folders:
            self._by_id[folder.id] = folder
            self._by_path[folder.path.lower()] = folder.id
        for folder in self._by_id.values():
            parent = folder.parent_id if folder.parent_id in self._by_id else None
            self._children.setdefault(parent, []).append(folder.id)

    @classmethod
    async def load(cls, session: AsyncSession, folder_model: type[FolderBase]) -> FolderTree:
        result = await session.execute(select(folder_model))
        return cls(result.scalars().all())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, folder_id: object) -> bool:
        return folder_id in self._by_id

    def __iter__(self) -> Iterator[FolderBase]:
        return iter(self._by_id.values())

    def get(self, folder_id: str | None) -> FolderBase | None:
        if folder_id is None:
            return None
        return self._by_id.get(folder_id)

    def by_path(self, path: str) -> FolderBase | None:
        folder_id = self._by_path.get(normalize_path(path).lower())
        return self._by_id.get(folder_id) if folder_id else None

    def roots(self) -> list[FolderBase]:
        return [self._by_id[i] for i in self._children.get(None, [])]

    def children(self, folder_id: str) -> list[FolderBase]:
        return [self._by_id[i] for i in self._children.get(folder_id, [])]

    def ancestors(self, folder_id: str) -> list[FolderBase]:
        """Parents of *folder_id*, nearest first."""
        out: list[FolderBase] = []
        seen = {folder_id}
        current = self.get(folder_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id in seen:
                logger.warning("Folder cycle detected at %s", current.parent_id)
                break
            seen.add(current.parent_id)
            current = self.get(current.parent_id)
            if current is not None:
                out.append(current)
        return out

    def descendants(self, folder_id: str) -> list[FolderBase]:
        """All folders below *folder_id*, breadth first."""
        out: list[FolderBase] = []
        queue = list(self._children.get(folder_id, []))
        seen = {folder_id}
        while queue:
            child_id = queue.pop(0)
            if child_id in seen:
                continue
            seen.add(child_id)
            out.append(self._by_id[child_id])
            queue.extend(self._children.get(child_id, []))
        return out


class FolderService:
    """Folder lookup and creation.

    Constructor receives the concrete folder and permission models so
    callers can use custom SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        permission_model: type[FolderPermissionBase],
    ) -> None:
        self._folder_model = folder_model
        self._permission_model = permission_model

    async def get(self, session: AsyncSession, folder_id: str) -> FolderBase | None:
        return await session.get(self._folder_model, folder_id)

    async def get_by_path(self, session: AsyncSession, path: str) -> FolderBase | None:
        path = normalize_path(path)
        model = self._folder_model
        result = await session.execute(select(model).where(model.path == path))
        return result.scalar_one_or_none()

    async def tree(self, session: AsyncSession) -> FolderTree:
        return await FolderTree.load(session, self._folder_model)

    async def ensure_folder(
        self,
        session: AsyncSession,
        path: str,
        owner_id: str | None = None,
    ) -> FolderBase:
        """Return the folder at *path*, creating it and its ancestry if needed.

        Folders inside *owner_id*'s personal root get ``owner_id`` set and an
        all-capability grant.  Shared ancestors such as ``/assets/users``
        are created without an owner.  Flushes but does not commit.
        """
        path = normalize_path(path)
        existing = await self.get_by_path(session, path)
        if existing is not None:
            if owner_id is not None and self._owned_by(path, owner_id):
                if existing.owner_id is None:
                    existing.owner_id = owner_id
                    session.add(existing)
                await self.ensure_owner_grant(session, existing, owner_id)
            return existing

        parent_path = posixpath.dirname(path)
        parent = None
        if parent_path not in ("/", path):
            parent = await self.ensure_folder(session, parent_path, owner_id)

        owned = owner_id is not None and self._owned_by(path, owner_id)
        folder = self._folder_model(
            path=path,
            name=posixpath.basename(path),
            parent_id=parent.id if parent is not None else None,
            owner_id=owner_id if owned else None,
        )
        session.add(folder)
        await session.flush()
        logger.debug("Created folder %s", path)

        if owned:
            assert owner_id is not None
            await self.ensure_owner_grant(session, folder, owner_id)
        return folder

    async def ensure_owner_grant(
        self,
        session: AsyncSession,
        folder: FolderBase,
        user_id: str,
    ) -> FolderPermissionBase:
        """Give *user_id* every capability on *folder*. Idempotent."""
        model = self._permission_model
        result = await session.execute(
            select(model).where(model.user_id == user_id, model.folder_id == folder.id)
        )
        grant = result.scalar_one_or_none()
        if grant is not None:
            return grant
        grant = model(
            user_id=user_id,
            folder_id=folder.id,
            can_read=True,
            can_write=True,
            can_delete=True,
            can_manage_permissions=True,
            granted_by=user_id,
        )
        session.add(grant)
        await session.flush()
        return grant

    @staticmethod
    def _owned_by(path: str, user_id: str) -> bool:
        return is_under(path, user_root_path(user_id))


def folder_owner(folder: FolderBase) -> str | None:
    """Explicit owner, falling back to the personal root the path lies in."""
    if folder.owner_id is not None:
        return folder.owner_id
    if is_under(folder.path, USERS_PREFIX):
        return owner_from_path(folder.path)
    return None
