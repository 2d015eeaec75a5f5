"""ShareRegistry — share records, lifecycle transitions, and their projections.

Stateless service that receives the share model and its collaborators at
construction and a session at call time.  Every mutating method:

1. loads the record and checks the caller against it,
2. derives the effective status with the expiration evaluator,
3. writes the new state with a compare-and-set on ``version``,
4. appends exactly one audit event and dispatches at most one notification,

all on the caller's session.  Nothing here commits; the caller owns the
transaction, so a transition and its audit row land together or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from vaultshare.events import EventType
from vaultshare.models.shares import NON_TERMINAL_STATUS_VALUES

from .exceptions import (
    ContainerNotAccessibleError,
    ContainerNotFoundError,
    InsufficientPermissionsError,
    InvalidExpirationError,
    InvalidRecipientError,
    InvalidTransitionError,
    ShareAlreadyExistsError,
    ShareConflictError,
    ShareExpiredError,
    ShareLimitExceededError,
    ShareNotFoundError,
    UserNotFoundError,
)
from .expiration import effective_status, is_stale
from .notifications import NotificationType
from .permissions import (
    SharePermission,
    deserialize_permissions,
    parse_permissions,
    serialize_permissions,
)
from .states import NON_TERMINAL_STATUSES, ShareStatus, can_transition
from .types import ReceivedShare, SharedContainer, ShareInfo, ShareStats, StatusUpdate
from .utils import ensure_utc, isoformat, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultshare.models.audit import AuditEventBase
    from vaultshare.models.notifications import NotificationBase
    from vaultshare.models.shares import ShareRecordBase

    from .audit import AuditLog
    from .config import SharingConfig
    from .notifications import NotificationDispatcher
    from .protocol import ContainerService, UserDirectory
    from .types import ContainerAccess

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class Transition:
    """What one successful mutation wrote.

    ``superseded`` holds the expiry that ``create`` had to materialize on
    a stale record for the same container and recipient, if any.
    """

    record: ShareRecordBase
    event_type: EventType
    actor: str
    audit_event: AuditEventBase
    notification: NotificationBase | None = None
    channels: frozenset[str] = field(default_factory=frozenset)
    superseded: Transition | None = None


class ShareRegistry:
    """Authoritative store and state machine for share records."""

    def __init__(
        self,
        share_model: type[ShareRecordBase],
        audit: AuditLog,
        notifications: NotificationDispatcher,
        containers: ContainerService,
        users: UserDirectory,
        config: SharingConfig,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._share_model = share_model
        self._audit = audit
        self._notifications = notifications
        self._containers = containers
        self._users = users
        self._config = config
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return ensure_utc(self._clock())  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def check_create(
        self,
        session: AsyncSession,
        container_id: str,
        recipient_username: str,
        *,
        actor: str,
        permissions: frozenset[SharePermission] | None = None,
        now: datetime | None = None,
    ) -> tuple[ContainerAccess, list[ShareRecordBase], ShareRecordBase | None]:
        """Run every precondition of :meth:`create` without writing.

        Returns the container access facts, the stale live records for the
        pair that must be expired before the new share is inserted, and the
        grant a re-share is made under (None when the caller may share
        outright).  Performs exactly one container check.
        """
        now = now or self.now()
        if recipient_username == actor:
            raise InvalidRecipientError(
                "You cannot share a container with yourself",
                details={"recipient_username": recipient_username},
            )

        access = await self._containers.check_access(container_id, actor)
        if access is None:
            raise ContainerNotFoundError(
                f"Container not found: {container_id}",
                details={"container_id": container_id},
            )
        grant: ShareRecordBase | None = None
        if not access.can_share:
            grant = await self._require_reshare_grant(
                session, container_id, actor, permissions, now
            )
            if recipient_username == access.owner_username:
                raise InvalidRecipientError(
                    f"{recipient_username} already owns this container",
                    details={"recipient_username": recipient_username},
                )

        recipient = await self._users.get_user(recipient_username)
        if recipient is None or not recipient.is_active:
            raise UserNotFoundError(
                f"User not found: {recipient_username}",
                details={"recipient_username": recipient_username},
            )

        stale: list[ShareRecordBase] = []
        for record in await self.live_for_pair(session, container_id, recipient_username):
            if is_stale(record, now):
                stale.append(record)
            else:
                raise ShareAlreadyExistsError(
                    f"Container is already shared with {recipient_username}",
                    details={"share_id": record.id, "status": record.status},
                )

        active = [
            r for r in await self._live_for_container(session, container_id) if not is_stale(r, now)
        ]
        if len(active) >= self._config.max_active_shares_per_container:
            raise ShareLimitExceededError(
                f"Share limit reached for container {container_id}",
                details={
                    "container_id": container_id,
                    "limit": self._config.max_active_shares_per_container,
                },
            )
        return access, stale, grant

    async def create(
        self,
        session: AsyncSession,
        container_id: str,
        recipient_username: str,
        permissions: Iterable[SharePermission | str],
        *,
        actor: str,
        expires_at: datetime | None = None,
        message: str | None = None,
        max_access: int | None = None,
    ) -> Transition:
        """Create a PENDING share. Flushes but does not commit."""
        now = self.now()
        perms = parse_permissions(permissions)
        expires_at = ensure_utc(expires_at)
        if expires_at is not None and expires_at <= now:
            raise InvalidExpirationError(
                "Expiration must be in the future",
                details={"expires_at": isoformat(expires_at)},
            )
        if max_access is not None and max_access < 1:
            raise ValueError("max_access must be >= 1")

        access, stale, grant = await self.check_create(
            session, container_id, recipient_username, actor=actor, permissions=perms, now=now
        )

        superseded: Transition | None = None
        for record in stale:
            superseded = await self.expire(session, record, now=now)

        record = self._share_model(
            container_id=container_id,
            container_name=access.container_name,
            owner_username=actor,
            recipient_username=recipient_username,
            permissions=serialize_permissions(perms),
            status=ShareStatus.PENDING.value,
            message=message or None,
            max_access=max_access,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
            parent_share_id=grant.id if grant is not None else None,
        )
        session.add(record)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ShareAlreadyExistsError(
                f"Container is already shared with {recipient_username}",
                details={"container_id": container_id},
            ) from exc

        transition = await self._record(
            session,
            record,
            EventType.CREATED,
            actor=actor,
            now=now,
            details={
                "recipient_username": recipient_username,
                "permissions": sorted(p.value for p in perms),
                "expires_at": isoformat(expires_at),
                "max_access": max_access,
            },
            notify=NotificationType.SHARE_RECEIVED,
            notify_to=recipient_username,
        )
        transition.superseded = superseded
        logger.debug(
            "share %s created: %s -> %s on %s", record.id, actor, recipient_username, container_id
        )
        return transition

    # ------------------------------------------------------------------
    # Recipient transitions
    # ------------------------------------------------------------------

    async def accept(self, session: AsyncSession, share_id: str, *, actor: str) -> Transition:
        """PENDING -> ACCEPTED, by the recipient."""
        now = self.now()
        record = await self._load(session, share_id)
        self._require_recipient(record, actor)
        self._guard(record, "accept", now, target=ShareStatus.ACCEPTED)
        await self._require_live_parent(session, record, now)
        await self._write(session, record, now, status=ShareStatus.ACCEPTED.value)
        return await self._record(
            session,
            record,
            EventType.ACCEPTED,
            actor=actor,
            now=now,
            notify=NotificationType.SHARE_ACCEPTED,
            notify_to=record.owner_username,
        )

    async def decline(self, session: AsyncSession, share_id: str, *, actor: str) -> Transition:
        """PENDING -> DECLINED, by the recipient."""
        now = self.now()
        record = await self._load(session, share_id)
        self._require_recipient(record, actor)
        self._guard(record, "decline", now, target=ShareStatus.DECLINED)
        await self._write(session, record, now, status=ShareStatus.DECLINED.value)
        return await self._record(
            session,
            record,
            EventType.DECLINED,
            actor=actor,
            now=now,
            notify=NotificationType.SHARE_DECLINED,
            notify_to=record.owner_username,
        )

    async def record_access(
        self,
        session: AsyncSession,
        share_id: str,
        *,
        actor: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Transition:
        """Count one access by the recipient of an ACCEPTED share."""
        now = self.now()
        record = await self._load(session, share_id)
        self._require_recipient(record, actor)
        self._guard(record, "access", now, allowed_from=frozenset({ShareStatus.ACCEPTED}))
        await self._require_live_parent(session, record, now)
        if record.max_access is not None and record.access_count >= record.max_access:
            raise ShareLimitExceededError(
                f"Access limit reached for share {share_id}",
                details={"share_id": share_id, "max_access": record.max_access},
            )

        access = await self._containers.check_access(record.container_id, actor)
        if access is None:
            raise ContainerNotFoundError(
                f"Container not found: {record.container_id}",
                details={"container_id": record.container_id},
            )
        if access.locked:
            raise ContainerNotAccessibleError(
                f"Container {record.container_id} is locked",
                details={"container_id": record.container_id},
            )

        await self._write(
            session,
            record,
            now,
            access_count=record.access_count + 1,
            last_accessed_at=now,
        )
        return await self._record(
            session,
            record,
            EventType.ACCESSED,
            actor=actor,
            now=now,
            details={"access_count": record.access_count},
            ip_address=ip_address,
            user_agent=user_agent,
        )

    # ------------------------------------------------------------------
    # Owner transitions
    # ------------------------------------------------------------------

    async def revoke(self, session: AsyncSession, share_id: str, *, actor: str) -> Transition:
        """{PENDING, ACCEPTED} -> REVOKED, by the owner."""
        now = self.now()
        record = await self._load(session, share_id)
        self._require_owner(record, actor)
        self._guard(record, "revoke", now, target=ShareStatus.REVOKED)
        previous = record.status
        await self._write(session, record, now, status=ShareStatus.REVOKED.value)
        return await self._record(
            session,
            record,
            EventType.REVOKED,
            actor=actor,
            now=now,
            details={"previous_status": previous},
            notify=NotificationType.SHARE_REVOKED,
            notify_to=record.recipient_username,
        )

    async def update_permissions(
        self,
        session: AsyncSession,
        share_id: str,
        permissions: Iterable[SharePermission | str],
        *,
        actor: str,
    ) -> Transition:
        """Replace the permission set of a live share, by the owner."""
        now = self.now()
        perms = parse_permissions(permissions)
        record = await self._load(session, share_id)
        self._require_owner(record, actor)
        self._guard(record, "update permissions of", now)
        previous = deserialize_permissions(record.permissions)
        await self._write(session, record, now, permissions=serialize_permissions(perms))
        return await self._record(
            session,
            record,
            EventType.PERMISSION_UPDATED,
            actor=actor,
            now=now,
            details={
                "previous_permissions": sorted(p.value for p in previous),
                "permissions": sorted(p.value for p in perms),
            },
        )

    async def extend_expiration(
        self,
        session: AsyncSession,
        share_id: str,
        expires_at: datetime,
        *,
        actor: str,
    ) -> Transition:
        """Move the expiry of a live share later, by the owner."""
        now = self.now()
        new_expiry = ensure_utc(expires_at)
        record = await self._load(session, share_id)
        self._require_owner(record, actor)
        self._guard(record, "extend expiration of", now)
        current = ensure_utc(record.expires_at)
        if new_expiry is None or new_expiry <= now:
            raise InvalidExpirationError(
                "Expiration must be in the future",
                details={"expires_at": isoformat(new_expiry)},
            )
        if current is not None and new_expiry <= current:
            raise InvalidExpirationError(
                "New expiration must be later than the current one",
                details={"expires_at": isoformat(new_expiry), "current": isoformat(current)},
            )
        await self._write(session, record, now, expires_at=new_expiry)
        return await self._record(
            session,
            record,
            EventType.EXPIRATION_EXTENDED,
            actor=actor,
            now=now,
            details={"previous_expires_at": isoformat(current), "expires_at": isoformat(new_expiry)},
        )

    async def expire(
        self, session: AsyncSession, record: ShareRecordBase, *, now: datetime | None = None
    ) -> Transition:
        """Persist EXPIRED on a stale record.

        Reads never need this; it is used when a write must free the
        (container, recipient) slot the stale record still occupies.
        """
        now = now or self.now()
        if not is_stale(record, now):
            raise InvalidTransitionError(record.id, effective_status(record, now).value, "expire")
        await self._write(session, record, now, status=ShareStatus.EXPIRED.value)
        return await self._record(
            session,
            record,
            EventType.EXPIRED,
            actor=SYSTEM_ACTOR,
            now=now,
            details={"expires_at": isoformat(record.expires_at)},
            notify=NotificationType.SHARE_EXPIRED,
            notify_to=record.owner_username,
            notify_from=record.recipient_username,
        )

    # ------------------------------------------------------------------
    # Reads (never write)
    # ------------------------------------------------------------------

    async def get(self, session: AsyncSession, share_id: str) -> ShareRecordBase | None:
        return await session.get(self._share_model, share_id)

    async def get_visible(
        self, session: AsyncSession, share_id: str, *, actor: str
    ) -> ShareRecordBase:
        """Load a share the caller owns or received."""
        record = await self._load(session, share_id)
        if actor not in (record.owner_username, record.recipient_username):
            raise InsufficientPermissionsError(
                "You are not a party to this share", details={"share_id": share_id}
            )
        return record

    async def list_owned(self, session: AsyncSession, owner: str) -> list[ShareRecordBase]:
        """Shares created by *owner*, newest first."""
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.owner_username == owner)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def list_received(self, session: AsyncSession, recipient: str) -> list[ShareRecordBase]:
        """Shares addressed to *recipient*, newest first."""
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.recipient_username == recipient)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def live_for_pair(
        self, session: AsyncSession, container_id: str, recipient_username: str
    ) -> list[ShareRecordBase]:
        """Records stored as PENDING/ACCEPTED for the pair, stale ones included."""
        model = self._share_model
        result = await session.execute(
            select(model).where(
                model.container_id == container_id,
                model.recipient_username == recipient_username,
                model.status.in_(NON_TERMINAL_STATUS_VALUES),  # type: ignore[union-attr]
            )
        )
        return list(result.scalars().all())

    async def stats(self, session: AsyncSession, username: str) -> ShareStats:
        """Counters across the shares *username* owns or received."""
        now = self.now()
        owned = await self.list_owned(session, username)
        received = await self.list_received(session, username)
        statuses = [effective_status(r, now) for r in (*owned, *received)]
        return ShareStats(
            total_shared=len(owned),
            total_received=len(received),
            active_shares=sum(1 for s in statuses if s is ShareStatus.ACCEPTED),
            pending_shares=sum(1 for s in statuses if s is ShareStatus.PENDING),
        )

    async def status_updates(
        self, session: AsyncSession, share_ids: Iterable[str], *, actor: str
    ) -> dict[str, StatusUpdate]:
        """Current status of each visible share in *share_ids*.

        Ids that do not exist or that the caller is not a party to are
        left out of the result.
        """
        ids = list(dict.fromkeys(share_ids))
        if not ids:
            return {}
        now = self.now()
        model = self._share_model
        result = await session.execute(
            select(model).where(
                model.id.in_(ids),  # type: ignore[union-attr]
                or_(model.owner_username == actor, model.recipient_username == actor),
            )
        )
        updates: dict[str, StatusUpdate] = {}
        for record in result.scalars().all():
            activity = [ensure_utc(record.updated_at), ensure_utc(record.last_accessed_at)]
            updates[record.id] = StatusUpdate(
                status=effective_status(record, now),
                last_activity=max(a for a in activity if a is not None),
                access_count=record.access_count,
            )
        return updates

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    @staticmethod
    def share_to_info(r: ShareRecordBase, now: datetime) -> ShareInfo:
        """Convert a share record to ShareInfo with its effective status."""
        return ShareInfo(
            id=r.id,
            container_id=r.container_id,
            container_name=r.container_name,
            owner_username=r.owner_username,
            recipient_username=r.recipient_username,
            permissions=deserialize_permissions(r.permissions),
            status=effective_status(r, now),
            created_at=ensure_utc(r.created_at),  # type: ignore[arg-type]
            expires_at=ensure_utc(r.expires_at),
            access_count=r.access_count,
            last_accessed_at=ensure_utc(r.last_accessed_at),
            message=r.message,
            max_access=r.max_access,
        )

    @staticmethod
    def to_shared_container(r: ShareRecordBase, now: datetime) -> SharedContainer:
        """Owner's view of a share record."""
        return SharedContainer(
            id=r.id,
            container_id=r.container_id,
            container_name=r.container_name,
            recipient_username=r.recipient_username,
            permissions=deserialize_permissions(r.permissions),
            status=effective_status(r, now),
            created_at=ensure_utc(r.created_at),  # type: ignore[arg-type]
            expires_at=ensure_utc(r.expires_at),
            access_count=r.access_count,
            last_accessed_at=ensure_utc(r.last_accessed_at),
            max_access=r.max_access,
        )

    @staticmethod
    def to_received_share(r: ShareRecordBase, now: datetime) -> ReceivedShare:
        """Recipient's view of a share record."""
        return ReceivedShare(
            id=r.id,
            container_id=r.container_id,
            container_name=r.container_name,
            sender_username=r.owner_username,
            permissions=deserialize_permissions(r.permissions),
            status=effective_status(r, now),
            created_at=ensure_utc(r.created_at),  # type: ignore[arg-type]
            expires_at=ensure_utc(r.expires_at),
            message=r.message,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, session: AsyncSession, share_id: str) -> ShareRecordBase:
        record = await session.get(self._share_model, share_id, populate_existing=True)
        if record is None:
            raise ShareNotFoundError(f"Share not found: {share_id}", details={"share_id": share_id})
        return record

    async def _live_for_container(
        self, session: AsyncSession, container_id: str
    ) -> list[ShareRecordBase]:
        model = self._share_model
        result = await session.execute(
            select(model).where(
                model.container_id == container_id,
                model.status.in_(NON_TERMINAL_STATUS_VALUES),  # type: ignore[union-attr]
            )
        )
        return list(result.scalars().all())

    async def _require_reshare_grant(
        self,
        session: AsyncSession,
        container_id: str,
        actor: str,
        permissions: frozenset[SharePermission] | None,
        now: datetime,
    ) -> ShareRecordBase:
        """Return the accepted SHARE grant that lets a non-owner share.

        A re-share may not hand out more than the grant itself carries.
        """
        model = self._share_model
        result = await session.execute(
            select(model).where(
                model.container_id == container_id,
                model.recipient_username == actor,
                model.status == ShareStatus.ACCEPTED.value,
            )
        )
        for grant in result.scalars().all():
            if effective_status(grant, now) is not ShareStatus.ACCEPTED:
                continue
            held = deserialize_permissions(grant.permissions)
            if SharePermission.SHARE not in held:
                continue
            if permissions is not None and not permissions <= held:
                raise InsufficientPermissionsError(
                    "Cannot grant permissions you do not hold",
                    details={"held": sorted(p.value for p in held)},
                )
            return grant
        raise InsufficientPermissionsError(
            "You do not have permission to share this container",
            details={"container_id": container_id},
        )

    async def _require_live_parent(
        self, session: AsyncSession, record: ShareRecordBase, now: datetime
    ) -> None:
        """Fail unless every grant up the re-share chain of *record* still holds SHARE."""
        parent_id = record.parent_share_id
        while parent_id is not None:
            parent = await session.get(self._share_model, parent_id, populate_existing=True)
            if (
                parent is None
                or effective_status(parent, now) is not ShareStatus.ACCEPTED
                or SharePermission.SHARE not in deserialize_permissions(parent.permissions)
            ):
                raise InsufficientPermissionsError(
                    "The share this was re-shared from is no longer active",
                    details={"share_id": record.id, "parent_share_id": parent_id},
                )
            parent_id = parent.parent_share_id

    @staticmethod
    def _require_owner(record: ShareRecordBase, actor: str) -> None:
        if record.owner_username != actor:
            raise InsufficientPermissionsError(
                "Only the share owner can do this", details={"share_id": record.id}
            )

    @staticmethod
    def _require_recipient(record: ShareRecordBase, actor: str) -> None:
        if record.recipient_username != actor:
            raise InsufficientPermissionsError(
                "Only the share recipient can do this", details={"share_id": record.id}
            )

    @staticmethod
    def _guard(
        record: ShareRecordBase,
        operation: str,
        now: datetime,
        *,
        target: ShareStatus | None = None,
        allowed_from: frozenset[ShareStatus] = NON_TERMINAL_STATUSES,
    ) -> ShareStatus:
        """Effective status of *record*, or raise if *operation* is not allowed from it."""
        status = effective_status(record, now)
        if status is ShareStatus.EXPIRED:
            raise ShareExpiredError(
                f"Share {record.id} has expired",
                details={"share_id": record.id, "expires_at": isoformat(record.expires_at)},
            )
        allowed = can_transition(status, target) if target is not None else status in allowed_from
        if not allowed:
            raise InvalidTransitionError(record.id, status.value, operation)
        return status

    async def _write(
        self, session: AsyncSession, record: ShareRecordBase, now: datetime, **values: Any
    ) -> None:
        """Compare-and-set *values* onto *record*, bumping its version."""
        model = self._share_model
        expected = record.version
        values.update(version=expected + 1, updated_at=now)
        result = await session.execute(
            update(model)
            .where(model.id == record.id, model.version == expected)  # type: ignore[arg-type]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:  # type: ignore[attr-defined]
            raise ShareConflictError(
                f"Share {record.id} was modified concurrently",
                details={"share_id": record.id, "expected_version": expected},
            )
        await session.refresh(record)

    async def _record(
        self,
        session: AsyncSession,
        record: ShareRecordBase,
        event_type: EventType,
        *,
        actor: str,
        now: datetime,
        details: dict[str, Any] | None = None,
        notify: NotificationType | None = None,
        notify_to: str | None = None,
        notify_from: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Transition:
        """Write the audit event and notification that accompany a transition."""
        actor_user_id = ""
        if actor != SYSTEM_ACTOR:
            user = await self._users.get_user(actor)
            actor_user_id = user.id if user is not None else actor

        event = await self._audit.append(
            session,
            event_type=event_type,
            share=record,
            actor_user_id=actor_user_id,
            actor_username=actor,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=now,
        )
        transition = Transition(record=record, event_type=event_type, actor=actor, audit_event=event)

        if notify is not None and notify_to is not None:
            notification = await self._notifications.dispatch(
                session,
                notify,
                share=record,
                to_username=notify_to,
                from_username=notify_from or actor,
                now=now,
            )
            if notification is not None:
                prefs = await self._notifications.get_preferences(session, notify_to)
                transition.notification = notification
                transition.channels = self._notifications.channels_for(prefs)
        return transition
