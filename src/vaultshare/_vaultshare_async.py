"""VaultShareAsync — primary async facade over the sharing subsystem."""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultshare.events import TRANSITION_EVENT_TYPES, EventBus, EventType, ShareEvent
from vaultshare.models.audit import AuditEvent
from vaultshare.models.notifications import Notification, NotificationPreferences
from vaultshare.models.shares import ShareRecord
from vaultshare.sharing.audit import AuditLog
from vaultshare.sharing.bulk import BulkCoordinator
from vaultshare.sharing.config import SharingConfig
from vaultshare.sharing.exceptions import (
    SharingDisabledError,
    SharingError,
    StorageError,
    UserNotFoundError,
)
from vaultshare.sharing.notifications import NotificationDispatcher
from vaultshare.sharing.registry import ShareRegistry
from vaultshare.sharing.types import AuditFilter, RecipientValidation

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from vaultshare.models.audit import AuditEventBase
    from vaultshare.models.notifications import NotificationBase, NotificationPreferencesBase
    from vaultshare.models.shares import ShareRecordBase
    from vaultshare.sharing.permissions import SharePermission
    from vaultshare.sharing.protocol import ContainerService, DeliveryChannel, UserDirectory
    from vaultshare.sharing.registry import Transition
    from vaultshare.sharing.types import (
        AuditEventInfo,
        AuditPage,
        AuditSummary,
        BulkResult,
        NotificationInfo,
        PreferencesInfo,
        ReceivedShare,
        SharedContainer,
        ShareInfo,
        ShareStats,
        StatusUpdate,
        User,
    )

logger = logging.getLogger(__name__)

_SINGLE_WRITER_KEY = "*"


class VaultShareAsync:
    """Async facade wiring registry, audit log, notifications and bulk runner.

    Every method takes the authenticated caller as keyword-only ``actor``.
    Each call runs in its own session: committed on success, rolled back
    on failure.  Writes to one share are serialized in-process, and the
    registry's compare-and-set catches writers outside this process.

    Usage::

        engine = create_async_engine("sqlite+aiosqlite:///shares.db")
        async with VaultShareAsync(engine=engine, containers=c, users=u) as vs:
            share = await vs.create_share("c1", "bob", ["read"], actor="alice")
            await vs.accept(share.id, actor="bob")

    Committed transitions are published on :attr:`event_bus`; when a
    *delivery* channel is given, notifications are handed to it there.
    """

    def __init__(
        self,
        *,
        containers: ContainerService,
        users: UserDirectory,
        engine: AsyncEngine | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        delivery: DeliveryChannel | None = None,
        config: SharingConfig | None = None,
        share_model: type[ShareRecordBase] | None = None,
        audit_model: type[AuditEventBase] | None = None,
        notification_model: type[NotificationBase] | None = None,
        preferences_model: type[NotificationPreferencesBase] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if engine is not None and session_factory is not None:
            raise ValueError("Provide engine or session_factory, not both")
        if engine is None and session_factory is None:
            raise ValueError("Provide engine or session_factory")

        self._engine = engine
        # SQLite has a single writer; share one write lock across all keys there.
        self._single_writer = engine is not None and engine.dialect.name == "sqlite"
        self._session_factory = session_factory or async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        self._config = config or SharingConfig()
        self._delivery = delivery
        self._closed = False

        self._share_model = share_model or ShareRecord
        self._audit_model = audit_model or AuditEvent
        self._notification_model = notification_model or Notification
        self._preferences_model = preferences_model or NotificationPreferences

        self._audit = AuditLog(self._audit_model, self._share_model, self._config)
        self._notifications = NotificationDispatcher(
            self._notification_model, self._preferences_model, users
        )
        self._registry = ShareRegistry(
            self._share_model,
            self._audit,
            self._notifications,
            containers,
            users,
            self._config,
            clock=clock,
        )
        self._bulk = BulkCoordinator(
            concurrency=self._config.bulk_concurrency,
            max_batch=self._config.max_bulk_size,
        )
        self._users = users

        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        self._event_bus = EventBus()
        if delivery is not None:
            self._event_bus.register_all(self._deliver)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the sharing tables if they do not exist."""
        if self._engine is None:
            return
        models = (
            self._share_model,
            self._audit_model,
            self._notification_model,
            self._preferences_model,
        )
        async with self._engine.begin() as conn:
            for model in models:
                await conn.run_sync(
                    lambda c, m=model: m.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
                )
        logger.info("vaultshare tables ready on %s", self._engine.url.render_as_string())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._event_bus.clear()
        logger.info("vaultshare closed")

    async def __aenter__(self) -> VaultShareAsync:
        await self.open()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        """Yield a session; commit on success, roll back on error."""
        if self._closed:
            raise StorageError("VaultShareAsync is closed")
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncGenerator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield

    @asynccontextmanager
    async def _write_session(self, key: str) -> AsyncGenerator[AsyncSession]:
        """Session for a write, committed while the lock for *key* is held."""
        async with self._locked(_SINGLE_WRITER_KEY if self._single_writer else key):
            async with self._session() as session:
                yield session

    def _require_enabled(self) -> None:
        if not self._config.sharing_enabled:
            raise SharingDisabledError("Sharing is currently disabled")

    async def _mutate(self, key: str, operation: Callable[[AsyncSession], Any]) -> Transition:
        """Run one registry write under the lock for *key*, then publish it."""
        self._require_enabled()
        async with self._write_session(key) as session:
            transition = await operation(session)
        await self._publish(transition)
        return transition

    async def _publish(self, transition: Transition) -> None:
        if transition.superseded is not None:
            await self._publish(transition.superseded)
        record = transition.record
        notification = (
            self._notifications.notification_to_info(transition.notification)
            if transition.notification is not None
            else None
        )
        await self._event_bus.emit(
            ShareEvent(
                event_type=transition.event_type,
                share_id=record.id,
                container_id=record.container_id,
                actor=transition.actor,
                audit_event_id=transition.audit_event.id,
                notification=notification,
                channels=transition.channels,
            )
        )

    async def _deliver(self, event: ShareEvent) -> None:
        if self._delivery is None or event.notification is None or not event.channels:
            return
        await self._delivery.deliver(event.notification, event.channels)

    # ------------------------------------------------------------------
    # Share lifecycle
    # ------------------------------------------------------------------

    async def create_share(
        self,
        container_id: str,
        recipient_username: str,
        permissions: Iterable[SharePermission | str],
        *,
        actor: str,
        expires_at: datetime | None = None,
        message: str | None = None,
        max_access: int | None = None,
    ) -> ShareInfo:
        """Offer *container_id* to *recipient_username*; the share starts PENDING."""
        transition = await self._mutate(
            f"container:{container_id}",
            lambda session: self._registry.create(
                session,
                container_id,
                recipient_username,
                permissions,
                actor=actor,
                expires_at=expires_at,
                message=message,
                max_access=max_access,
            ),
        )
        return self._registry.share_to_info(transition.record, self._registry.now())

    async def accept(self, share_id: str, *, actor: str) -> None:
        await self._mutate(
            share_id, lambda session: self._registry.accept(session, share_id, actor=actor)
        )

    async def decline(self, share_id: str, *, actor: str) -> None:
        await self._mutate(
            share_id, lambda session: self._registry.decline(session, share_id, actor=actor)
        )

    async def revoke(self, share_id: str, *, actor: str) -> None:
        await self._mutate(
            share_id, lambda session: self._registry.revoke(session, share_id, actor=actor)
        )

    async def record_access(
        self,
        share_id: str,
        *,
        actor: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ShareInfo:
        """Count one access to an accepted share and return its new state."""
        transition = await self._mutate(
            share_id,
            lambda session: self._registry.record_access(
                session, share_id, actor=actor, ip_address=ip_address, user_agent=user_agent
            ),
        )
        return self._registry.share_to_info(transition.record, self._registry.now())

    async def update_permissions(
        self,
        share_id: str,
        permissions: Iterable[SharePermission | str],
        *,
        actor: str,
    ) -> None:
        await self._mutate(
            share_id,
            lambda session: self._registry.update_permissions(
                session, share_id, permissions, actor=actor
            ),
        )

    async def extend_expiration(self, share_id: str, expires_at: datetime, *, actor: str) -> None:
        await self._mutate(
            share_id,
            lambda session: self._registry.extend_expiration(
                session, share_id, expires_at, actor=actor
            ),
        )

    # ------------------------------------------------------------------
    # Share reads
    # ------------------------------------------------------------------

    async def get_share(self, share_id: str, *, actor: str) -> ShareInfo:
        async with self._session() as session:
            record = await self._registry.get_visible(session, share_id, actor=actor)
            return self._registry.share_to_info(record, self._registry.now())

    async def list_my_shares(self, *, actor: str) -> list[SharedContainer]:
        """Shares *actor* created, newest first."""
        async with self._session() as session:
            records = await self._registry.list_owned(session, actor)
        now = self._registry.now()
        return [self._registry.to_shared_container(r, now) for r in records]

    async def list_received_shares(self, *, actor: str) -> list[ReceivedShare]:
        """Shares addressed to *actor*, newest first."""
        async with self._session() as session:
            records = await self._registry.list_received(session, actor)
        now = self._registry.now()
        return [self._registry.to_received_share(r, now) for r in records]

    async def get_stats(self, *, actor: str) -> ShareStats:
        async with self._session() as session:
            return await self._registry.stats(session, actor)

    async def get_status_updates(
        self, share_ids: Iterable[str], *, actor: str
    ) -> dict[str, StatusUpdate]:
        """Poll the status of several shares.  Never writes, never locks."""
        async with self._session() as session:
            return await self._registry.status_updates(session, share_ids, actor=actor)

    # ------------------------------------------------------------------
    # Recipients
    # ------------------------------------------------------------------

    async def search_recipient_candidates(
        self, query: str, limit: int | None = None, *, actor: str
    ) -> list[User]:
        """Active users matching *query*, excluding *actor*."""
        query = query.strip()
        limit = self._config.default_search_limit if limit is None else limit
        if not query or limit < 1:
            return []
        users = await self._users.search_users(query, limit + 1)
        return [u for u in users if u.username != actor and u.is_active][:limit]

    async def validate_recipient(
        self, username: str, container_id: str, *, actor: str
    ) -> RecipientValidation:
        """Check whether *actor* could share *container_id* with *username* right now."""
        username = username.strip()
        if not username:
            return RecipientValidation(valid=False, reason="Username is required")
        try:
            async with self._session() as session:
                await self._registry.check_create(session, container_id, username, actor=actor)
        except UserNotFoundError as exc:
            suggestions = await self.search_recipient_candidates(
                username, self._config.search_suggestion_limit, actor=actor
            )
            return RecipientValidation(
                valid=False,
                reason=exc.message,
                suggestions=[u.username for u in suggestions],
            )
        except SharingError as exc:
            return RecipientValidation(valid=False, reason=exc.message)
        return RecipientValidation(valid=True)

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def bulk_accept(self, share_ids: Iterable[str], *, actor: str) -> BulkResult:
        return await self._bulk.run(share_ids, lambda share_id: self.accept(share_id, actor=actor))

    async def bulk_decline(self, share_ids: Iterable[str], *, actor: str) -> BulkResult:
        return await self._bulk.run(share_ids, lambda share_id: self.decline(share_id, actor=actor))

    async def bulk_revoke(self, share_ids: Iterable[str], *, actor: str) -> BulkResult:
        return await self._bulk.run(share_ids, lambda share_id: self.revoke(share_id, actor=actor))

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def list_notifications(
        self, *, actor: str, unread_only: bool = False
    ) -> list[NotificationInfo]:
        async with self._session() as session:
            rows = await self._notifications.list_for_user(session, actor, unread_only=unread_only)
            return [self._notifications.notification_to_info(n) for n in rows]

    async def mark_notification_read(self, notification_id: str, *, actor: str) -> bool:
        """Mark one of *actor*'s notifications read.  Others' ids return False."""
        async with self._write_session(f"notifications:{actor}") as session:
            return await self._notifications.mark_read(session, actor, notification_id)

    async def mark_all_read(self, *, actor: str) -> int:
        async with self._write_session(f"notifications:{actor}") as session:
            return await self._notifications.mark_all_read(session, actor)

    async def get_preferences(self, *, actor: str) -> PreferencesInfo:
        async with self._session() as session:
            prefs = await self._notifications.get_preferences(session, actor)
            return self._notifications.preferences_to_info(prefs)

    async def update_preferences(self, *, actor: str, **changes: bool) -> PreferencesInfo:
        async with self._write_session(f"preferences:{actor}") as session:
            prefs = await self._notifications.update_preferences(session, actor, **changes)
            return self._notifications.preferences_to_info(prefs)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def append_audit_event(
        self,
        share_id: str,
        event_type: EventType | str,
        *,
        actor: str,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEventInfo:
        """Record a client-reported event (e.g. an access) against a share.

        Lifecycle event types are written only by the transitions that
        cause them and are rejected here.
        """
        event_type = EventType(event_type)
        if event_type in TRANSITION_EVENT_TYPES:
            raise ValueError(f"{event_type.value!r} events are recorded by their transition")
        self._require_enabled()
        async with self._write_session(share_id) as session:
            record = await self._registry.get_visible(session, share_id, actor=actor)
            user = await self._users.get_user(actor)
            event = await self._audit.append(
                session,
                event_type=event_type,
                share=record,
                actor_user_id=user.id if user is not None else actor,
                actor_username=actor,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
                timestamp=self._registry.now(),
            )
            return self._audit.event_to_info(event)

    async def query_audit_logs(
        self, audit_filter: AuditFilter | None = None, *, actor: str
    ) -> AuditPage:
        """One page of events on shares *actor* owns or received."""
        async with self._session() as session:
            return await self._audit.query(session, audit_filter or AuditFilter(), visible_to=actor)

    async def get_share_audit_trail(self, share_id: str, *, actor: str) -> list[AuditEventInfo]:
        async with self._session() as session:
            await self._registry.get_visible(session, share_id, actor=actor)
            return await self._audit.trail(session, share_id)

    async def get_audit_summary(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        *,
        actor: str,
    ) -> AuditSummary:
        async with self._session() as session:
            return await self._audit.summary(session, start_date, end_date, visible_to=actor)

    async def get_recent_activity(self, limit: int = 20, *, actor: str) -> list[AuditEventInfo]:
        async with self._session() as session:
            return await self._audit.recent(session, limit, visible_to=actor)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        """Bus on which committed share transitions are published."""
        return self._event_bus

    @property
    def config(self) -> SharingConfig:
        return self._config
