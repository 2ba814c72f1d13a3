"""Filesystem layer — paths, hashing, scanning, permissions, lifecycle, timeline."""

from mediavault.fs.exceptions import (
    AccessDeniedError,
    AssetNotFoundError,
    AuthenticationRequiredError,
    ConsistencyError,
    FolderNotFoundError,
    InvalidArgumentError,
    MediaVaultError,
    PathNotFoundError,
    RootNotFoundError,
    StorageError,
)
from mediavault.fs.folders import FolderService, FolderTree
from mediavault.fs.hashing import ContentIdentity, sha256_file
from mediavault.fs.journal import OperationJournal, OperationKind
from mediavault.fs.lifecycle import ALL, LifecycleController
from mediavault.fs.paths import PathVirtualizer
from mediavault.fs.permissions import FolderPermissionResolver
from mediavault.fs.scanner import scan
from mediavault.fs.timeline import TimelineReconciler
from mediavault.fs.types import (
    Actor,
    LifecycleResult,
    PermissionInfo,
    RecoveryResult,
    ScannedFile,
    SkippedItem,
    SyncResult,
    SyncStatus,
    TimelineEntry,
    UploadResult,
)

__all__ = [
    "ALL",
    "AccessDeniedError",
    "Actor",
    "AssetNotFoundError",
    "AuthenticationRequiredError",
    "ConsistencyError",
    "ContentIdentity",
    "FolderNotFoundError",
    "FolderPermissionResolver",
    "FolderService",
    "FolderTree",
    "InvalidArgumentError",
    "LifecycleController",
    "LifecycleResult",
    "MediaVaultError",
    "OperationJournal",
    "OperationKind",
    "PathNotFoundError",
    "PathVirtualizer",
    "PermissionInfo",
    "RecoveryResult",
    "RootNotFoundError",
    "ScannedFile",
    "SkippedItem",
    "StorageError",
    "SyncResult",
    "SyncStatus",
    "TimelineEntry",
    "TimelineReconciler",
    "UploadResult",
    "scan",
    "sha256_file",
]
