"""Folder and FolderPermission models.

Folders reference their parent by id only; the in-memory tree is built
by ``mediavault.fs.folders.FolderTree``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class FolderBase(SQLModel):
    """Base fields for a folder node. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    path: str = Field(index=True, unique=True)
    name: str = Field(default="")
    parent_id: str | None = Field(default=None, index=True)
    owner_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Folder(FolderBase, table=True):
    """Default folder table — ``mv_folders``."""

    __tablename__ = "mv_folders"


class FolderPermissionBase(SQLModel):
    """Capabilities granted to ``user_id`` over ``folder_id``."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    folder_id: str = Field(index=True)
    can_read: bool = Field(default=False)
    can_write: bool = Field(default=False)
    can_delete: bool = Field(default=False)
    can_manage_permissions: bool = Field(default=False)
    granted_by: str | None = Field(default=None)
    granted_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_full(self) -> bool:
        """True for an all-capability (owner) grant."""
        return self.can_read and self.can_write and self.can_delete and self.can_manage_permissions


class FolderPermission(FolderPermissionBase, table=True):
    """Default folder permission table — ``mv_folder_permissions``."""

    __tablename__ = "mv_folder_permissions"
    __table_args__ = (UniqueConstraint("user_id", "folder_id"),)
