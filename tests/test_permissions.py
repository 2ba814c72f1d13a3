"""Tests for FolderPermissionResolver — visibility sets and grant management."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from mediavault.fs.exceptions import AccessDeniedError, FolderNotFoundError, InvalidArgumentError
from mediavault.fs.folders import FolderService
from mediavault.fs.permissions import FolderPermissionResolver
from mediavault.models.folders import Folder, FolderPermission

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from mediavault.fs.types import Actor


@pytest.fixture
def folders() -> FolderService:
    return FolderService(Folder, FolderPermission)


@pytest.fixture
def resolver() -> FolderPermissionResolver:
    return FolderPermissionResolver(Folder, FolderPermission)


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


class TestAllowedFolders:
    async def test_admin_unrestricted(self, async_session: AsyncSession, resolver: FolderPermissionResolver):
        assert await resolver.allowed_folders(async_session, "1", is_admin=True) is None
        assert await resolver.allowed_path_prefixes(async_session, "1", is_admin=True) is None

    async def test_own_folders_visible(
        self, async_session: AsyncSession, folders: FolderService, resolver: FolderPermissionResolver
    ):
        mine = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        allowed = await resolver.allowed_folders(async_session, "42")
        assert mine.id in allowed
        assert mine.parent_id in allowed

    async def test_other_users_folder_without_grants_hidden(
        self, async_session: AsyncSession, folders: FolderService, resolver: FolderPermissionResolver
    ):
        # Folder in user 7's root with zero grant rows at all
        theirs = await folders.ensure_folder(async_session, "/assets/users/7/Trips")
        assert not await resolver.has_any_grant(async_session, theirs.id)
        allowed = await resolver.allowed_folders(async_session, "42")
        assert theirs.id not in allowed

    async def test_shared_ancestors_not_visible(
        self, async_session: AsyncSession, folders: FolderService, resolver: FolderPermissionResolver
    ):
        await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        users = await folders.get_by_path(async_session, "/assets/users")
        assert users.id not in await resolver.allowed_folders(async_session, "42")
        prefixes = await resolver.allowed_path_prefixes(async_session, "42")
        assert "/assets/users/" not in prefixes
        assert "/assets/" not in prefixes

    async def test_prefixes(
        self, async_session: AsyncSession, folders: FolderService, resolver: FolderPermissionResolver
    ):
        await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        prefixes = await resolver.allowed_path_prefixes(async_session, "42")
        assert "/assets/users/42/" in prefixes
        assert "/assets/users/42/Trips/" in prefixes
        assert all(p.endswith("/") for p in prefixes)

    async def test_user_root_always_included(self, async_session: AsyncSession, resolver: FolderPermissionResolver):
        assert await resolver.allowed_path_prefixes(async_session, "42") == {"/assets/users/42/"}

    async def test_explicit_grant_makes_visible(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        alice: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        await resolver.set_permission(async_session, alice, trips.id, "7", can_read=True)
        assert trips.id in await resolver.allowed_folders(async_session, "7")
        assert "/assets/users/42/Trips/" in await resolver.allowed_path_prefixes(async_session, "7")

    async def test_grant_without_read_hides(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        alice: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        await resolver.set_permission(async_session, alice, trips.id, "7", can_write=True)
        assert trips.id not in await resolver.allowed_folders(async_session, "7")


# ---------------------------------------------------------------------------
# Capability checks
# ---------------------------------------------------------------------------


class TestCapabilities:
    async def test_owner_and_admin(
        self, async_session: AsyncSession, folders: FolderService, resolver: FolderPermissionResolver
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        assert await resolver.can_read(async_session, "42", trips)
        assert await resolver.can_write(async_session, "42", trips)
        assert await resolver.can_delete(async_session, "1", trips, is_admin=True)
        assert not await resolver.can_write(async_session, "7", trips)

    async def test_owner_without_grant_rows(
        self, async_session: AsyncSession, folders: FolderService, resolver: FolderPermissionResolver
    ):
        bare = await folders.ensure_folder(async_session, "/assets/users/42/Bare")
        assert bare.owner_id is None
        assert await resolver.can_read(async_session, "42", bare)
        assert not await resolver.can_read(async_session, "7", bare)

    async def test_grant_capabilities(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        alice: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        await resolver.set_permission(
            async_session, alice, trips.id, "7", can_read=True, can_delete=True
        )
        assert await resolver.can_read(async_session, "7", trips)
        assert await resolver.can_delete(async_session, "7", trips)
        assert not await resolver.can_write(async_session, "7", trips)
        assert not await resolver.can_manage(async_session, "7", trips)


# ---------------------------------------------------------------------------
# Grant management
# ---------------------------------------------------------------------------


class TestGrantManagement:
    async def test_set_creates_then_updates(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        alice: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        info = await resolver.set_permission(async_session, alice, trips.id, "7", can_read=True)
        assert info.can_read and not info.can_write
        assert info.granted_by == "42"

        info = await resolver.set_permission(async_session, alice, trips.id, "7", can_write=True)
        assert info.can_write and not info.can_read
        grants = await resolver.list_permissions(async_session, alice, trips.id)
        assert sorted(g.user_id for g in grants) == ["42", "7"]

    async def test_owner_cannot_modify_own_grant(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        alice: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        with pytest.raises(InvalidArgumentError):
            await resolver.set_permission(async_session, alice, trips.id, "42", can_read=False)
        with pytest.raises(InvalidArgumentError):
            await resolver.remove_permission(async_session, alice, trips.id, "42")

    async def test_requires_manage(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        bob: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        with pytest.raises(AccessDeniedError):
            await resolver.set_permission(async_session, bob, trips.id, "7", can_read=True)
        with pytest.raises(AccessDeniedError):
            await resolver.list_permissions(async_session, bob, trips.id)

    async def test_delegated_manager(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        alice: Actor,
        bob: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        await resolver.set_permission(
            async_session, alice, trips.id, "7", can_read=True, can_manage_permissions=True
        )
        info = await resolver.set_permission(async_session, bob, trips.id, "99", can_read=True)
        assert info.granted_by == "7"

    async def test_admin_manages_any_folder(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        admin: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        info = await resolver.set_permission(async_session, admin, trips.id, "7", can_read=True)
        assert info.granted_by == "1"

    async def test_remove(
        self,
        async_session: AsyncSession,
        folders: FolderService,
        resolver: FolderPermissionResolver,
        alice: Actor,
    ):
        trips = await folders.ensure_folder(async_session, "/assets/users/42/Trips", "42")
        await resolver.set_permission(async_session, alice, trips.id, "7", can_read=True)
        assert await resolver.remove_permission(async_session, alice, trips.id, "7")
        assert not await resolver.remove_permission(async_session, alice, trips.id, "7")
        assert await resolver.get_grant(async_session, "7", trips.id) is None

    async def test_unknown_folder(
        self, async_session: AsyncSession, resolver: FolderPermissionResolver, alice: Actor
    ):
        with pytest.raises(FolderNotFoundError):
            await resolver.set_permission(async_session, alice, "missing", "7", can_read=True)
