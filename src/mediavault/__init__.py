"""mediavault: asset sync and lifecycle engine for a personal media library.

Virtual paths, content deduplication, reversible trash, and a reconciled
timeline over the index, the managed store, and the user's device.
"""

__version__ = "0.1.0"

from mediavault._vault_async import MediaVaultAsync
from mediavault.events import EventBus, EventType, VaultEvent
from mediavault.fs.exceptions import (
    AccessDeniedError,
    AssetNotFoundError,
    AuthenticationRequiredError,
    ConsistencyError,
    FolderNotFoundError,
    InvalidArgumentError,
    MediaVaultError,
    PathNotFoundError,
    StorageError,
)
from mediavault.fs.lifecycle import ALL
from mediavault.fs.types import (
    Actor,
    FolderNode,
    LifecycleResult,
    RecoveryResult,
    SyncResult,
    SyncStatus,
    TimelineEntry,
    UploadResult,
)
from mediavault.settings import SettingsStore, VaultSettings

__all__ = [
    "ALL",
    "AccessDeniedError",
    "Actor",
    "AssetNotFoundError",
    "AuthenticationRequiredError",
    "ConsistencyError",
    "EventBus",
    "EventType",
    "FolderNode",
    "FolderNotFoundError",
    "InvalidArgumentError",
    "LifecycleResult",
    "MediaVaultAsync",
    "MediaVaultError",
    "PathNotFoundError",
    "RecoveryResult",
    "SettingsStore",
    "StorageError",
    "SyncResult",
    "SyncStatus",
    "TimelineEntry",
    "UploadResult",
    "VaultEvent",
    "VaultSettings",
    "__version__",
]
