"""Share lifecycle event types and the post-commit event bus."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vaultshare.sharing.types import NotificationInfo

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Share lifecycle events.  Also the audit log's event types."""

    CREATED = "created"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVOKED = "revoked"
    EXPIRED = "expired"
    ACCESSED = "accessed"
    PERMISSION_UPDATED = "permission_updated"
    EXPIRATION_EXTENDED = "expiration_extended"


# Types that record a state change of the share itself.  These are only
# ever appended by the registry, inside the transaction that makes them.
TRANSITION_EVENT_TYPES = frozenset(
    {
        EventType.CREATED,
        EventType.ACCEPTED,
        EventType.DECLINED,
        EventType.REVOKED,
        EventType.EXPIRED,
        EventType.PERMISSION_UPDATED,
        EventType.EXPIRATION_EXTENDED,
    }
)


@dataclass(frozen=True, slots=True)
class ShareEvent:
    """Immutable record of a committed share transition.

    Attributes:
        event_type: The kind of transition that occurred.
        share_id: The affected share.
        container_id: Container the share grants access to.
        actor: Username that caused the transition (``"system"`` for expiry).
        audit_event_id: Id of the audit row written with the transition.
        notification: Notification created for the counterpart, if any.
        channels: Delivery channels enabled for the notification's addressee.
    """

    event_type: EventType
    share_id: str
    container_id: str
    actor: str
    audit_event_id: int | None = None
    notification: NotificationInfo | None = None
    channels: frozenset[str] = field(default_factory=frozenset)


ShareEventHandler = Callable[[ShareEvent], Awaitable[None]]


class EventBus:
    """In-process fan-out for share transitions that have already committed.

    The facade publishes only after its session commits, so subscribers
    never see a transition that was rolled back.  A subscriber that raises
    is logged and skipped; the remaining subscribers still run, in the
    order they subscribed.
    """

    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[ShareEventHandler]] = {}

    def register(self, event_type: EventType, handler: ShareEventHandler) -> None:
        self._subscribers.setdefault(EventType(event_type), []).append(handler)

    def register_all(self, handler: ShareEventHandler) -> None:
        """Subscribe *handler* to every event type."""
        for event_type in EventType:
            self.register(event_type, handler)

    def unregister(self, event_type: EventType, handler: ShareEventHandler) -> bool:
        """Drop one subscription of *handler*; False when it was not subscribed."""
        subscribers = self._subscribers.get(EventType(event_type), [])
        if handler not in subscribers:
            return False
        subscribers.remove(handler)
        return True

    async def emit(self, event: ShareEvent) -> None:
        # Snapshot, so a subscriber may unsubscribe itself mid-dispatch.
        for handler in tuple(self._subscribers.get(event.event_type, ())):
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Share subscriber %s raised while handling '%s' (share %s, container %s)",
                    getattr(handler, "__qualname__", repr(handler)),
                    event.event_type.value,
                    event.share_id,
                    event.container_id,
                    exc_info=True,
                )

    @property
    def handler_count(self) -> int:
        return sum(map(len, self._subscribers.values()))

    def clear(self) -> None:
        self._subscribers.clear()
