"""SQLModel database models for mediavault."""

from mediavault.models.assets import AlbumAsset, Asset, AssetBase, AssetThumbnail
from mediavault.models.folders import (
    Folder,
    FolderBase,
    FolderPermission,
    FolderPermissionBase,
)
from mediavault.models.operations import PendingOperation
from mediavault.models.settings import Setting

__all__ = [
    "AlbumAsset",
    "Asset",
    "AssetBase",
    "AssetThumbnail",
    "Folder",
    "FolderBase",
    "FolderPermission",
    "FolderPermissionBase",
    "PendingOperation",
    "Setting",
]
