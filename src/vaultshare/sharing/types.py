"""Result types: ShareInfo, projections, audit pages, bulk results, etc."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from vaultshare.events import EventType

    from .exceptions import ErrorKind
    from .notifications import NotificationType
    from .permissions import SharePermission
    from .states import ShareStatus


# ---------------------------------------------------------------------------
# Collaborator-facing records
# ---------------------------------------------------------------------------


@dataclass
class User:
    """Directory entry for a user."""

    id: str
    username: str
    email: str | None = None
    is_active: bool = True


@dataclass
class ContainerAccess:
    """Answer to one authorization check against the container service."""

    container_id: str
    container_name: str
    can_share: bool = False
    locked: bool = False
    owner_username: str | None = None


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------


@dataclass
class ShareInfo:
    """Full view of a share with its effective status."""

    id: str
    container_id: str
    container_name: str
    owner_username: str
    recipient_username: str
    permissions: frozenset[SharePermission]
    status: ShareStatus
    created_at: datetime
    expires_at: datetime | None = None
    access_count: int = 0
    last_accessed_at: datetime | None = None
    message: str | None = None
    max_access: int | None = None


@dataclass
class SharedContainer:
    """Owner's projection of a share."""

    id: str
    container_id: str
    container_name: str
    recipient_username: str
    permissions: frozenset[SharePermission]
    status: ShareStatus
    created_at: datetime
    expires_at: datetime | None = None
    access_count: int = 0
    last_accessed_at: datetime | None = None
    max_access: int | None = None


@dataclass
class ReceivedShare:
    """Recipient's projection of a share."""

    id: str
    container_id: str
    container_name: str
    sender_username: str
    permissions: frozenset[SharePermission]
    status: ShareStatus
    created_at: datetime
    expires_at: datetime | None = None
    message: str | None = None


@dataclass
class ShareStats:
    """Per-user sharing counters."""

    total_shared: int = 0
    total_received: int = 0
    active_shares: int = 0
    pending_shares: int = 0


@dataclass
class StatusUpdate:
    """Polling answer for one share."""

    status: ShareStatus
    last_activity: datetime
    access_count: int = 0


@dataclass
class RecipientValidation:
    """Result of checking whether a user can receive a share."""

    valid: bool
    reason: str | None = None
    suggestions: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass
class AuditEventInfo:
    """Read-only view of an audit event."""

    id: int
    event_type: EventType
    share_id: str
    container_id: str
    container_name: str
    actor_user_id: str
    actor_username: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class AuditFilter:
    """Audit query filter.  Dates form a half-open ``[start, end)`` range."""

    share_id: str | None = None
    container_id: str | None = None
    user_id: str | None = None
    event_type: EventType | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    page: int = 1
    limit: int | None = None


@dataclass
class AuditPage:
    """One page of audit events plus the total match count."""

    events: list[AuditEventInfo] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 50


@dataclass
class AuditSummary:
    """Per-type event counts over a date range.

    ``events`` holds the oldest matching events, at most one default page;
    compare its length with ``total_events`` to tell whether more exist.
    """

    total_events: int = 0
    counts: dict[EventType, int] = field(default_factory=dict)
    start_date: datetime | None = None
    end_date: datetime | None = None
    events: list[AuditEventInfo] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass
class NotificationInfo:
    """Read-only view of a notification."""

    id: str
    notification_type: NotificationType
    share_id: str
    to_username: str
    container_name: str
    created_at: datetime
    read: bool = False
    from_username: str | None = None
    message: str | None = None


@dataclass
class PreferencesInfo:
    """A user's notification switches."""

    share_received: bool = True
    share_accepted: bool = True
    share_declined: bool = True
    share_revoked: bool = True
    share_expired: bool = True
    email_notifications: bool = True
    push_notifications: bool = True


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


@dataclass
class BulkFailure:
    """One failed item of a bulk call."""

    share_id: str
    error: ErrorKind
    message: str = ""
    retryable: bool = False


@dataclass
class BulkResult:
    """Outcome of a bulk call.  Each input id lands in exactly one list."""

    successful: list[str] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)
