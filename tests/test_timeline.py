"""Tests for TimelineReconciler — merging the index with live scans."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from mediavault.fs.paths import PathVirtualizer
from mediavault.fs.timeline import TimelineReconciler
from mediavault.fs.types import ScannedFile, SyncStatus
from mediavault.models.assets import Asset
from mediavault.models.folders import Folder, FolderPermission

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession

    from conftest import Roots
    from mediavault.fs.lifecycle import LifecycleController
    from mediavault.fs.types import Actor, TimelineEntry

    AddAsset = Callable[..., Awaitable[Asset]]
    PathsFor = Callable[[Actor], PathVirtualizer]


def _by_name(entries: list[TimelineEntry]) -> dict[str, SyncStatus]:
    return {e.file_name: e.status for e in entries}


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    async def test_copied_today_before_synced_yesterday(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        add_asset: AddAsset,
        paths_for: PathsFor,
        roots: Roots,
        alice: Actor,
        make_file: Callable[..., Path],
    ):
        yesterday = datetime.now(UTC) - timedelta(days=1)
        await add_asset("/assets/users/42/old.jpg", created=yesterday)
        make_file(roots.internal / "users" / "42" / "DeviceBackup" / "new.jpg", b"new")

        entries = await reconciler.timeline(async_session, alice, paths_for(alice))

        assert [(e.file_name, e.status) for e in entries] == [
            ("new.jpg", SyncStatus.COPIED),
            ("old.jpg", SyncStatus.SYNCED),
        ]

    async def test_synced_orders_by_created_date(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        add_asset: AddAsset,
        paths_for: PathsFor,
        alice: Actor,
    ):
        base = datetime(2024, 1, 1, tzinfo=UTC)
        await add_asset("/assets/users/42/b.jpg", created=base)
        await add_asset("/assets/users/42/c.jpg", created=base + timedelta(days=2))
        await add_asset("/assets/users/42/a.jpg", created=base + timedelta(days=1))

        entries = await reconciler.timeline(async_session, alice, paths_for(alice))

        assert [e.file_name for e in entries] == ["c.jpg", "a.jpg", "b.jpg"]
        assert all(e.asset_id for e in entries)

    async def test_injected_scanner(
        self,
        async_session: AsyncSession,
        paths_for: PathsFor,
        roots: Roots,
        alice: Actor,
    ):
        stamp = datetime(2024, 6, 1, tzinfo=UTC)

        def fake_scan(root: Path):
            if root != paths_for(alice).device_root:
                return []
            return [
                ScannedFile(name, str(root / name), 1, stamp, stamp, ".jpg", "image")
                for name in ("a.jpg", "b.jpg")
            ]

        reconciler = TimelineReconciler(Asset, Folder, FolderPermission, scanner=fake_scan)
        entries = await reconciler.timeline(async_session, alice, paths_for(alice))

        # Equal dates fall back to name, descending
        assert [e.path for e in entries] == ["/device/b.jpg", "/device/a.jpg"]


# ---------------------------------------------------------------------------
# Deduplication across sources
# ---------------------------------------------------------------------------


class TestDedup:
    async def test_each_file_listed_once(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        add_asset: AddAsset,
        paths_for: PathsFor,
        roots: Roots,
        alice: Actor,
        make_file: Callable[..., Path],
    ):
        await add_asset("/assets/users/42/IMG_1.jpg")
        make_file(roots.internal / "users" / "42" / "DeviceBackup" / "DCIM" / "IMG_2.jpg", b"2")
        make_file(roots.device / "DCIM" / "IMG_1.jpg", b"1")
        make_file(roots.device / "DCIM" / "IMG_2.jpg", b"2")
        make_file(roots.device / "DCIM" / "IMG_3.jpg", b"3")

        entries = await reconciler.timeline(async_session, alice, paths_for(alice))

        assert _by_name(entries) == {
            "IMG_1.jpg": SyncStatus.SYNCED,
            "IMG_2.jpg": SyncStatus.COPIED,
            "IMG_3.jpg": SyncStatus.PENDING,
        }
        assert len(entries) == 3
        (pending,) = [e for e in entries if e.status is SyncStatus.PENDING]
        assert pending.path == "/device/DCIM/IMG_3.jpg"
        assert pending.asset_id is None

    async def test_deleted_assets_hidden_and_not_copied(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        lifecycle: LifecycleController,
        add_asset: AddAsset,
        paths_for: PathsFor,
        alice: Actor,
    ):
        gone = await add_asset("/assets/users/42/gone.jpg")
        await add_asset("/assets/users/42/kept.jpg")
        await lifecycle.delete_assets(async_session, [gone.id], alice, paths_for(alice))

        entries = await reconciler.timeline(async_session, alice, paths_for(alice))

        assert [e.file_name for e in entries] == ["kept.jpg"]

    async def test_without_device_root(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        add_asset: AddAsset,
        roots: Roots,
        alice: Actor,
    ):
        await add_asset("/assets/users/42/a.jpg")
        entries = await reconciler.timeline(async_session, alice, PathVirtualizer(roots.internal))
        assert _by_name(entries) == {"a.jpg": SyncStatus.SYNCED}


# ---------------------------------------------------------------------------
# Permission isolation
# ---------------------------------------------------------------------------


class TestIsolation:
    @pytest.fixture
    async def foreign(
        self,
        async_session: AsyncSession,
        lifecycle: LifecycleController,
        add_asset: AddAsset,
        roots: Roots,
        make_file: Callable[..., Path],
    ) -> Asset:
        # User 7's folder with no grant rows at all
        theirs = await lifecycle.folders.ensure_folder(async_session, "/assets/users/7/Trips")
        await async_session.commit()
        make_file(roots.internal / "users" / "7" / "loose.jpg", b"loose")
        return await add_asset("/assets/users/7/Trips/secret.jpg", folder_id=theirs.id)

    async def test_other_users_assets_invisible(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        add_asset: AddAsset,
        paths_for: PathsFor,
        alice: Actor,
        foreign: Asset,
    ):
        await add_asset("/assets/users/42/mine.jpg")

        entries = await reconciler.timeline(async_session, alice, paths_for(alice))

        assert _by_name(entries) == {"mine.jpg": SyncStatus.SYNCED}

    async def test_owner_sees_own(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        paths_for: PathsFor,
        bob: Actor,
        foreign: Asset,
    ):
        entries = await reconciler.timeline(async_session, bob, paths_for(bob))
        assert _by_name(entries) == {
            "secret.jpg": SyncStatus.SYNCED,
            "loose.jpg": SyncStatus.COPIED,
        }

    async def test_admin_sees_everything(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        add_asset: AddAsset,
        paths_for: PathsFor,
        admin: Actor,
        foreign: Asset,
    ):
        await add_asset("/assets/users/42/mine.jpg")
        entries = await reconciler.timeline(async_session, admin, paths_for(admin))
        assert set(_by_name(entries)) == {"secret.jpg", "loose.jpg", "mine.jpg"}

    async def test_read_grant_shares_folder(
        self,
        async_session: AsyncSession,
        reconciler: TimelineReconciler,
        lifecycle: LifecycleController,
        add_asset: AddAsset,
        paths_for: PathsFor,
        roots: Roots,
        alice: Actor,
        bob: Actor,
        make_file: Callable[..., Path],
    ):
        trips = await lifecycle.folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        await lifecycle.permissions.set_permission(async_session, alice, trips.id, "7", can_read=True)
        await async_session.commit()
        await add_asset("/assets/users/42/Trips/beach.jpg", folder_id=trips.id)
        await add_asset("/assets/users/42/private.jpg")
        make_file(roots.internal / "users" / "42" / "Trips" / "sunset.jpg", b"s")

        entries = await reconciler.timeline(async_session, bob, paths_for(bob))

        assert _by_name(entries) == {
            "beach.jpg": SyncStatus.SYNCED,
            "sunset.jpg": SyncStatus.COPIED,
        }


# ---------------------------------------------------------------------------
# device_assets
# ---------------------------------------------------------------------------


class TestDeviceAssets:
    async def test_lists_files_missing_from_store(
        self,
        reconciler: TimelineReconciler,
        paths_for: PathsFor,
        roots: Roots,
        alice: Actor,
        make_file: Callable[..., Path],
    ):
        make_file(roots.device / "a.jpg", b"a")
        make_file(roots.device / "sub" / "b.jpg", b"b")
        make_file(roots.internal / "users" / "42" / "DeviceBackup" / "A.JPG", b"a")

        entries = await reconciler.device_assets(alice, paths_for(alice))

        assert [(e.path, e.status) for e in entries] == [("/device/sub/b.jpg", SyncStatus.PENDING)]
