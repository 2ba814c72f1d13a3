"""OperationJournal — two-phase bookkeeping for physical file moves.

A batch records one ``PendingOperation`` per asset and commits them
before touching the disk.  After the moves, ``apply`` writes the intended
asset state and removes the intent, and ``finalize`` commits everything
at once.  Intents left behind by a crash are settled by ``recover``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlmodel import select

from mediavault.events import EventType, VaultEvent

from .exceptions import ConsistencyError
from .types import RecoveryResult
from .utils import as_utc

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from mediavault.events import EventBus
    from mediavault.models.assets import AlbumAsset, AssetBase, AssetThumbnail
    from mediavault.models.operations import PendingOperation

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    TRASH = "trash"
    RESTORE = "restore"
    PURGE = "purge"
    MOVE = "move"


class OperationJournal:
    """Records, applies, and recovers pending physical operations."""

    def __init__(
        self,
        asset_model: type[AssetBase],
        operation_model: type[PendingOperation],
        album_asset_model: type[AlbumAsset],
        thumbnail_model: type[AssetThumbnail],
        event_bus: EventBus | None = None,
    ) -> None:
        self._asset_model = asset_model
        self._operation_model = operation_model
        self._album_asset_model = album_asset_model
        self._thumbnail_model = thumbnail_model
        self._event_bus = event_bus

    # ------------------------------------------------------------------
    # Phase one
    # ------------------------------------------------------------------

    def record(
        self,
        session: AsyncSession,
        kind: OperationKind,
        asset: AssetBase,
        *,
        source_path: Path | None,
        target_path: Path | None = None,
        actor_id: str | None = None,
        now: datetime,
        target_virtual_path: str | None = None,
        target_file_name: str | None = None,
        target_folder_id: str | None = None,
        deleted_from_path: str | None = None,
        deleted_from_folder_id: str | None = None,
    ) -> PendingOperation:
        """Add an intent to *session*. Nothing is flushed."""
        op = self._operation_model(
            kind=kind.value,
            asset_id=asset.id,
            actor_id=actor_id,
            source_path=str(source_path) if source_path is not None else "",
            target_path=str(target_path) if target_path is not None else None,
            target_virtual_path=target_virtual_path,
            target_file_name=target_file_name,
            target_folder_id=target_folder_id,
            deleted_from_path=deleted_from_path,
            deleted_from_folder_id=deleted_from_folder_id,
            created_at=now,
        )
        session.add(op)
        return op

    async def commit_intents(self, session: AsyncSession) -> None:
        """Make recorded intents durable before any file is touched."""
        await session.commit()

    # ------------------------------------------------------------------
    # Phase two
    # ------------------------------------------------------------------

    async def apply(self, session: AsyncSession, op: PendingOperation, asset: AssetBase) -> None:
        """Write the state *op* describes onto *asset* and drop the intent."""
        kind = OperationKind(op.kind)
        if kind is OperationKind.TRASH:
            asset.path = op.target_virtual_path or asset.path
            asset.file_name = op.target_file_name or asset.file_name
            asset.deleted_at = op.created_at
            if asset.deleted_from_path is None:
                asset.deleted_from_path = op.deleted_from_path
            if asset.deleted_from_folder_id is None:
                asset.deleted_from_folder_id = op.deleted_from_folder_id
            asset.folder_id = op.target_folder_id
            session.add(asset)
            await self._remove_album_memberships(session, asset.id)
        elif kind is OperationKind.RESTORE:
            asset.path = op.target_virtual_path or asset.path
            asset.file_name = op.target_file_name or asset.file_name
            asset.folder_id = op.target_folder_id
            asset.deleted_at = None
            asset.deleted_from_path = None
            asset.deleted_from_folder_id = None
            session.add(asset)
        elif kind is OperationKind.MOVE:
            asset.path = op.target_virtual_path or asset.path
            asset.file_name = op.target_file_name or asset.file_name
            asset.folder_id = op.target_folder_id
            session.add(asset)
        elif kind is OperationKind.PURGE:
            await self._remove_album_memberships(session, asset.id)
            thumbs = self._thumbnail_model
            await session.execute(sa_delete(thumbs).where(thumbs.asset_id == asset.id))
            await session.delete(asset)
        await session.delete(op)

    async def discard(self, session: AsyncSession, op: PendingOperation) -> None:
        await session.delete(op)

    async def finalize(self, session: AsyncSession) -> None:
        """Commit applied changes.

        Raises:
            ConsistencyError: The commit failed after files were moved.
                The intents stay committed for ``recover``.
        """
        try:
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("Finalize failed after physical changes", exc_info=True)
            raise ConsistencyError(f"Index update failed after moving files: {e}") from e

    async def _remove_album_memberships(self, session: AsyncSession, asset_id: str) -> None:
        model = self._album_asset_model
        await session.execute(sa_delete(model).where(model.asset_id == asset_id))

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def pending(self, session: AsyncSession) -> list[PendingOperation]:
        model = self._operation_model
        result = await session.execute(select(model).order_by(model.created_at))
        return list(result.scalars().all())

    async def recover(self, session: AsyncSession) -> RecoveryResult:
        """Settle intents left behind by an interrupted batch.

        A move whose target exists and source is gone happened, so its
        asset change is applied.  A move whose source still exists never
        happened, so the intent is dropped.  A purge whose file is gone
        deletes the row.  A trash, restore or move recorded without any
        file is a metadata-only change and is applied.  Anything else is
        counted as a conflict and left in place for inspection.
        """
        result = RecoveryResult()
        for op in await self.pending(session):
            asset = await session.get(self._asset_model, op.asset_id)
            if asset is None:
                await self.discard(session, op)
                result.discarded += 1
                continue

            op.created_at = as_utc(op.created_at)
            source = Path(op.source_path) if op.source_path else None
            target = Path(op.target_path) if op.target_path else None
            source_exists = source is not None and await asyncio.to_thread(source.exists)
            target_exists = target is not None and await asyncio.to_thread(target.exists)

            kind = OperationKind(op.kind)
            if kind is not OperationKind.PURGE and source is None and target is None:
                await self.apply(session, op, asset)
                result.applied += 1
            elif kind is OperationKind.PURGE:
                if source_exists:
                    await self.discard(session, op)
                    result.discarded += 1
                else:
                    await self.apply(session, op, asset)
                    result.applied += 1
            elif target_exists and not source_exists:
                await self.apply(session, op, asset)
                result.applied += 1
            elif source_exists and not target_exists:
                await self.discard(session, op)
                result.discarded += 1
            else:
                logger.warning(
                    "Unresolvable %s intent for asset %s (source=%s target=%s)",
                    op.kind,
                    op.asset_id,
                    op.source_path,
                    op.target_path,
                )
                result.conflicts += 1
                continue

            if self._event_bus is not None:
                await self._event_bus.emit(
                    VaultEvent(
                        event_type=EventType.RECOVERY_APPLIED,
                        path=op.target_virtual_path or op.source_path,
                        asset_id=op.asset_id,
                        user_id=op.actor_id,
                        detail=op.kind,
                    )
                )

        await self.finalize(session)
        logger.info(
            "Recovery: %d applied, %d discarded, %d conflicts",
            result.applied,
            result.discarded,
            result.conflicts,
        )
        return result
