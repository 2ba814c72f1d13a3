"""EventBus and event types for lifecycle decision points."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    VaultHandler = Callable[["VaultEvent"], Awaitable[None] | None]

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Decision points observers can subscribe to."""

    DEDUP_HIT = "dedup_hit"
    COLLISION_RENAMED = "collision_renamed"
    MOVE_FAILED = "move_failed"
    ASSET_TRASHED = "asset_trashed"
    ASSET_RESTORED = "asset_restored"
    ASSET_PURGED = "asset_purged"
    ASSET_MOVED = "asset_moved"
    FOLDER_MOVED = "folder_moved"
    FOLDER_DELETED = "folder_deleted"
    FILE_SYNCED = "file_synced"
    FILE_UPLOADED = "file_uploaded"
    RECOVERY_APPLIED = "recovery_applied"


@dataclass(frozen=True, slots=True)
class VaultEvent:
    """Immutable record of a lifecycle decision.

    Attributes:
        event_type: The kind of decision that was taken.
        path: Virtual path of the affected file or folder (destination for moves).
        old_path: Previous path (moves, trash, restore).
        asset_id: Indexed asset involved, if any.
        user_id: Actor the operation ran for.
        detail: Free-form reason (failure message, renamed-to name).
    """

    event_type: EventType
    path: str
    old_path: str | None = None
    asset_id: str | None = None
    user_id: str | None = None
    detail: str | None = None


class EventBus:
    """Dispatches vault events to registered handlers.

    Handlers take a single ``VaultEvent`` and may be plain functions or
    coroutines.  Handlers subscribed to one type run first, in
    registration order, then the ones subscribed to every type.  A
    handler that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[VaultHandler]] = {et: [] for et in EventType}
        self._wildcard: list[VaultHandler] = []

    def register(self, event_type: EventType, handler: VaultHandler) -> None:
        self._handlers[event_type].append(handler)

    def register_all(self, handler: VaultHandler) -> None:
        """Subscribe *handler* to every event type, including ones added later."""
        self._wildcard.append(handler)

    def unregister(self, event_type: EventType | None, handler: VaultHandler) -> bool:
        """Remove the first occurrence of *handler*. Return True if found.

        Pass ``None`` as *event_type* to remove a ``register_all`` handler.
        """
        handlers = self._wildcard if event_type is None else self._handlers[event_type]
        if handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def handlers_for(self, event_type: EventType) -> list[VaultHandler]:
        return [*self._handlers[event_type], *self._wildcard]

    async def emit(self, event: VaultEvent) -> None:
        """Deliver *event* to every handler subscribed to its type."""
        for handler in self.handlers_for(event.event_type):
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on %s",
                    handler,
                    event.event_type.value,
                    event.path,
                    exc_info=True,
                )

    @property
    def handler_count(self) -> int:
        """Number of subscriptions, counting a ``register_all`` handler once."""
        return sum(len(h) for h in self._handlers.values()) + len(self._wildcard)

    def clear(self) -> None:
        for handlers in self._handlers.values():
            handlers.clear()
        self._wildcard.clear()
