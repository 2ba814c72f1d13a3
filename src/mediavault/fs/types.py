"""Result types: ScannedFile, TimelineEntry, lifecycle and sync results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class SyncStatus(str, Enum):
    """Physical presence of a timeline entry."""

    SYNCED = "synced"
    COPIED = "copied"
    PENDING = "pending"
    SYNCING = "syncing"


@dataclass(slots=True)
class ScannedFile:
    """A media file found by a directory scan. Never persisted."""

    file_name: str
    full_path: str
    size_bytes: int
    created_date: datetime
    modified_date: datetime
    extension: str
    media_type: str


@dataclass
class TimelineEntry:
    """One item of the reconciled timeline."""

    file_name: str
    path: str
    size_bytes: int
    created_date: datetime
    modified_date: datetime
    extension: str
    media_type: str
    status: SyncStatus
    asset_id: str | None = None
    checksum: str | None = None
    scanned_at: datetime | None = None
    width: int | None = None
    height: int | None = None
    deleted_at: datetime | None = None

    @property
    def sort_date(self) -> datetime:
        """Date the timeline orders by for this entry's status."""
        if self.status == SyncStatus.SYNCED:
            return self.created_date
        return self.modified_date


@dataclass
class SkippedItem:
    """An asset a batch could not process."""

    asset_id: str
    reason: str


@dataclass
class LifecycleResult:
    """Result of a delete / restore / purge / move batch."""

    success: bool
    message: str
    processed: list[str] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result of copying one device file into the managed store."""

    success: bool
    message: str
    target_path: str | None = None
    already_exists: bool = False
    existing_asset_id: str | None = None


@dataclass
class UploadResult:
    """Result of an upload."""

    success: bool
    message: str
    asset_id: str | None = None
    target_path: str | None = None
    already_exists: bool = False


@dataclass
class RecoveryResult:
    """Counts from an operation journal recovery pass."""

    applied: int = 0
    discarded: int = 0
    conflicts: int = 0


@dataclass
class FolderNode:
    """A folder in an actor's tree, with its readable subfolders."""

    id: str
    path: str
    name: str
    parent_id: str | None = None
    asset_count: int = 0
    total_asset_count: int = 0
    is_owner: bool = False
    children: list[FolderNode] = field(default_factory=list)


@dataclass
class PermissionInfo:
    """Folder grant metadata."""

    folder_id: str
    user_id: str
    can_read: bool
    can_write: bool
    can_delete: bool
    can_manage_permissions: bool
    granted_by: str | None = None
    granted_at: datetime | None = None


@dataclass(frozen=True)
class Actor:
    """The authenticated user an operation runs for."""

    user_id: str | None
    is_admin: bool = False
