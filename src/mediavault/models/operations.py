"""PendingOperation — durable intent record for two-phase file moves."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class PendingOperation(SQLModel, table=True):
    """A physical mutation that has been announced but not yet finalized.

    Written and committed before the file is touched, removed in the same
    commit that applies the asset change.  Rows that survive a crash are
    resolved by ``OperationJournal.recover``.
    """

    __tablename__ = "mv_pending_operations"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    kind: str = Field(index=True)
    asset_id: str = Field(index=True)
    actor_id: str | None = Field(default=None)
    source_path: str = Field(default="")
    target_path: str | None = Field(default=None)
    target_virtual_path: str | None = Field(default=None)
    target_file_name: str | None = Field(default=None)
    target_folder_id: str | None = Field(default=None)
    deleted_from_path: str | None = Field(default=None)
    deleted_from_folder_id: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
