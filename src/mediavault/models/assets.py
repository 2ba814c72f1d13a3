"""Asset, AssetThumbnail and AlbumAsset models.

Provides ``AssetBase`` (non-table) and ``Asset`` (concrete table).
Subclass ``AssetBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per deployment.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class AssetBase(SQLModel):
    """Base fields for an indexed media file. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    file_name: str = Field(default="")
    path: str = Field(index=True)
    size_bytes: int = Field(default=0)
    checksum: str = Field(index=True, unique=True)
    media_type: str = Field(default="image")
    extension: str = Field(default="")
    width: int | None = Field(default=None)
    height: int | None = Field(default=None)
    owner_id: str | None = Field(default=None, index=True)
    folder_id: str | None = Field(default=None, index=True)
    created_date: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    modified_date: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    scanned_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    deleted_from_path: str | None = Field(default=None)
    deleted_from_folder_id: str | None = Field(default=None)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class Asset(AssetBase, table=True):
    """Default asset table — ``mv_assets``."""

    __tablename__ = "mv_assets"


class AssetThumbnail(SQLModel, table=True):
    """Thumbnail file produced for an asset by the thumbnail generator."""

    __tablename__ = "mv_asset_thumbnails"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    asset_id: str = Field(index=True)
    size: str = Field(default="medium")
    file_path: str = Field(default="")
    width: int = Field(default=0)
    height: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class AlbumAsset(SQLModel, table=True):
    """Membership of an asset in an album."""

    __tablename__ = "mv_album_assets"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    album_id: str = Field(index=True)
    asset_id: str = Field(index=True)
    order: int = Field(default=0)
    added_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
