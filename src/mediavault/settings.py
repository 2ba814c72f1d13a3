"""VaultSettings and SettingsStore — physical roots and per-user overrides."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlmodel import select

from mediavault.fs.paths import PathVirtualizer

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from mediavault.fs.types import Actor
    from mediavault.models.settings import Setting

logger = logging.getLogger(__name__)

ASSETS_PATH_ENV = "MEDIAVAULT_ASSETS_PATH"
DEVICE_PATH_ENV = "MEDIAVAULT_DEVICE_PATH"
THUMBNAILS_PATH_ENV = "MEDIAVAULT_THUMBNAILS_PATH"

DEVICE_ROOT_KEY = "device_root:{user_id}"


@dataclass
class VaultSettings:
    """Physical storage roots."""

    internal_root: Path | str
    """Internal managed store, the target of ``/assets/...``."""

    device_root: Path | str | None = None
    """Default device directory, the target of ``/device/...``."""

    device_roots: dict[str, Path | str] = field(default_factory=dict)
    """Per-user device directories, overriding ``device_root``."""

    thumbnails_root: Path | str | None = None
    """Where generated thumbnails live (``{asset_id}/{size}.jpg``)."""

    def __post_init__(self) -> None:
        self.internal_root = Path(self.internal_root)
        if self.device_root is not None:
            self.device_root = Path(self.device_root)
        self.device_roots = {uid: Path(p) for uid, p in self.device_roots.items()}
        if self.thumbnails_root is not None:
            self.thumbnails_root = Path(self.thumbnails_root)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> VaultSettings:
        """Build settings from ``MEDIAVAULT_*`` environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            internal_root=env.get(ASSETS_PATH_ENV) or Path.cwd() / "assets",
            device_root=env.get(DEVICE_PATH_ENV) or None,
            thumbnails_root=env.get(THUMBNAILS_PATH_ENV) or Path.cwd() / "thumbnails",
        )

    def device_root_for(self, user_id: str | None) -> Path | None:
        if user_id is not None and user_id in self.device_roots:
            return Path(self.device_roots[user_id])
        return Path(self.device_root) if self.device_root is not None else None

    def virtualizer(self, actor: Actor, device_root: Path | None = None) -> PathVirtualizer:
        """PathVirtualizer scoped to *actor*."""
        extra = [self.thumbnails_root] if self.thumbnails_root is not None else []
        extra.extend(self.device_roots.values())
        if self.device_root is not None:
            extra.append(self.device_root)
        return PathVirtualizer(
            self.internal_root,
            device_root if device_root is not None else self.device_root_for(actor.user_id),
            is_admin=actor.is_admin,
            extra_roots=extra,
        )


class SettingsStore:
    """Persisted key/value settings.

    Constructor receives the concrete settings model so callers can use
    custom SQLModel subclasses with different table names.
    """

    def __init__(self, setting_model: type[Setting]) -> None:
        self._setting_model = setting_model

    async def get(self, session: AsyncSession, key: str, default: str | None = None) -> str | None:
        model = self._setting_model
        result = await session.execute(select(model).where(model.key == key))
        row = result.scalar_one_or_none()
        return row.value if row is not None else default

    async def set(self, session: AsyncSession, key: str, value: str) -> None:
        """Insert or update *key*. Flushes but does not commit."""
        model = self._setting_model
        result = await session.execute(select(model).where(model.key == key))
        row = result.scalar_one_or_none()
        if row is None:
            row = model(key=key, value=value)
        else:
            row.value = value
            row.updated_at = datetime.now(UTC)
        session.add(row)
        await session.flush()

    async def get_device_root(self, session: AsyncSession, user_id: str) -> Path | None:
        value = await self.get(session, DEVICE_ROOT_KEY.format(user_id=user_id))
        return Path(value) if value else None

    async def set_device_root(self, session: AsyncSession, user_id: str, path: Path | str) -> None:
        await self.set(session, DEVICE_ROOT_KEY.format(user_id=user_id), str(path))
        logger.info("Device root for user %s set to %s", user_id, path)

    async def resolve_device_root(
        self,
        session: AsyncSession,
        settings: VaultSettings,
        user_id: str | None,
    ) -> Path | None:
        """Stored override first, then the configured per-user or default root."""
        if user_id is not None:
            stored = await self.get_device_root(session, user_id)
            if stored is not None:
                return stored
        return settings.device_root_for(user_id)
