"""Shared fixtures for mediavault tests."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import mediavault.models  # noqa: F401  registers tables
from mediavault.events import EventBus
from mediavault.fs.lifecycle import LifecycleController
from mediavault.fs.timeline import TimelineReconciler
from mediavault.fs.types import Actor
from mediavault.models.assets import AlbumAsset, Asset, AssetThumbnail
from mediavault.models.folders import Folder, FolderPermission
from mediavault.models.operations import PendingOperation
from mediavault.settings import VaultSettings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from mediavault.events import VaultEvent
    from mediavault.fs.paths import PathVirtualizer


FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


@dataclass
class Roots:
    internal: Path
    device: Path
    thumbnails: Path


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session bound to the in-memory engine."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


@pytest.fixture
def roots(tmp_path: Path) -> Roots:
    """Internal store, device, and thumbnail directories under tmp_path."""
    r = Roots(
        internal=tmp_path / "assets",
        device=tmp_path / "device",
        thumbnails=tmp_path / "thumbnails",
    )
    for d in (r.internal, r.device, r.thumbnails):
        d.mkdir()
    return r


@pytest.fixture
def settings(roots: Roots) -> VaultSettings:
    return VaultSettings(
        internal_root=roots.internal,
        device_root=roots.device,
        thumbnails_root=roots.thumbnails,
    )


@pytest.fixture
def paths_for(settings: VaultSettings) -> Callable[[Actor], PathVirtualizer]:
    return settings.virtualizer


@pytest.fixture
def events() -> list[VaultEvent]:
    return []


@pytest.fixture
def event_bus(events: list[VaultEvent]) -> EventBus:
    bus = EventBus()

    async def _collect(event: VaultEvent) -> None:
        events.append(event)

    bus.register_all(_collect)
    return bus


@pytest.fixture
def lifecycle(event_bus: EventBus, roots: Roots) -> LifecycleController:
    return LifecycleController(
        Asset,
        Folder,
        FolderPermission,
        AlbumAsset,
        AssetThumbnail,
        PendingOperation,
        event_bus=event_bus,
        clock=lambda: FIXED_NOW,
        thumbnails_root=roots.thumbnails,
    )


@pytest.fixture
def reconciler() -> TimelineReconciler:
    return TimelineReconciler(Asset, Folder, FolderPermission)


def write_file(path: Path, content: bytes, mtime: datetime | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if mtime is not None:
        ts = mtime.timestamp()
        os.utime(path, (ts, ts))
    return path


@pytest.fixture
def make_file() -> Callable[..., Path]:
    """``make_file(path, content, mtime=None)`` writes a file, creating parents."""
    return write_file


@pytest.fixture
def add_asset(
    async_session: AsyncSession, roots: Roots
) -> Callable[..., Awaitable[Asset]]:
    """Write a file under the internal root and index it.

    ``add_asset("/assets/users/42/IMG_001.jpg", b"bytes")``
    """

    async def _add(
        virtual_path: str,
        content: bytes | None = None,
        *,
        on_disk: bool = True,
        created: datetime | None = None,
        **fields: object,
    ) -> Asset:
        content = content if content is not None else virtual_path.encode()
        rel = virtual_path.removeprefix("/assets/")
        if on_disk:
            write_file(roots.internal / rel, content)
        name = virtual_path.rsplit("/", 1)[-1]
        asset = Asset(
            file_name=name,
            path=virtual_path,
            size_bytes=len(content),
            checksum=hashlib.sha256(content).hexdigest(),
            extension="." + name.rsplit(".", 1)[-1].lower(),
            created_date=created or FIXED_NOW,
            modified_date=created or FIXED_NOW,
            **fields,
        )
        async_session.add(asset)
        await async_session.commit()
        return asset

    return _add


@pytest.fixture
def alice() -> Actor:
    return Actor("42")


@pytest.fixture
def bob() -> Actor:
    return Actor("7")


@pytest.fixture
def admin() -> Actor:
    return Actor("1", is_admin=True)
