"""VaultShare — synchronous wrapper around VaultShareAsync."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from vaultshare._vaultshare_async import VaultShareAsync
from vaultshare.sharing.exceptions import StorageError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from vaultshare.events import EventBus, EventType
    from vaultshare.sharing.config import SharingConfig
    from vaultshare.sharing.permissions import SharePermission
    from vaultshare.sharing.protocol import ContainerService, DeliveryChannel, UserDirectory
    from vaultshare.sharing.types import (
        AuditEventInfo,
        AuditFilter,
        AuditPage,
        AuditSummary,
        BulkResult,
        NotificationInfo,
        PreferencesInfo,
        ReceivedShare,
        RecipientValidation,
        SharedContainer,
        ShareInfo,
        ShareStats,
        StatusUpdate,
        User,
    )

logger = logging.getLogger(__name__)


class VaultShare:
    """Sharing facade with a synchronous API.

    Owns its engine and runs :class:`VaultShareAsync` on a private event
    loop in a background thread, so it can be used from plain sync code
    or from inside a running event loop.

    Usage::

        with VaultShare("sqlite+aiosqlite:///shares.db", containers=c, users=u) as vs:
            share = vs.create_share("c1", "bob", ["read"], actor="alice")
            vs.accept(share.id, actor="bob")
    """

    def __init__(
        self,
        url: str,
        *,
        containers: ContainerService,
        users: UserDirectory,
        delivery: DeliveryChannel | None = None,
        config: SharingConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        try:
            self._run(self._async_init(url, containers, users, delivery, config, clock))
        except BaseException:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)
            raise

    async def _async_init(
        self,
        url: str,
        containers: ContainerService,
        users: UserDirectory,
        delivery: DeliveryChannel | None,
        config: SharingConfig | None,
        clock: Callable[[], datetime] | None,
    ) -> None:
        self._engine = create_async_engine(url, echo=False)
        if self._engine.dialect.name == "sqlite":

            @event.listens_for(self._engine.sync_engine, "connect")
            def _set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
                cursor = dbapi_connection.cursor()  # type: ignore[union-attr]
                cursor.execute("PRAGMA journal_mode=WAL")
                result = cursor.fetchone()
                if result[0].lower() != "wal":
                    logger.debug("WAL mode not active, got: %s", result[0])
                cursor.execute("PRAGMA busy_timeout=5000")
                cursor.close()

        self._async = VaultShareAsync(
            engine=self._engine,
            containers=containers,
            users=users,
            delivery=delivery,
            config=config,
            clock=clock,
        )
        await self._async.open()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        if self._closed:
            coro.close()
            raise StorageError("VaultShare is closed")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the facade, dispose the engine, stop the loop and join the thread."""
        if self._closed:
            return
        try:
            self._run(self._async_close())
        finally:
            self._closed = True
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)

    async def _async_close(self) -> None:
        await self._async.close()
        await self._engine.dispose()

    def __enter__(self) -> VaultShare:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Share lifecycle (sync)
    # ------------------------------------------------------------------

    def create_share(
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
        return self._run(
            self._async.create_share(
                container_id,
                recipient_username,
                permissions,
                actor=actor,
                expires_at=expires_at,
                message=message,
                max_access=max_access,
            )
        )

    def accept(self, share_id: str, *, actor: str) -> None:
        self._run(self._async.accept(share_id, actor=actor))

    def decline(self, share_id: str, *, actor: str) -> None:
        self._run(self._async.decline(share_id, actor=actor))

    def revoke(self, share_id: str, *, actor: str) -> None:
        self._run(self._async.revoke(share_id, actor=actor))

    def record_access(
        self,
        share_id: str,
        *,
        actor: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ShareInfo:
        return self._run(
            self._async.record_access(
                share_id, actor=actor, ip_address=ip_address, user_agent=user_agent
            )
        )

    def update_permissions(
        self, share_id: str, permissions: Iterable[SharePermission | str], *, actor: str
    ) -> None:
        self._run(self._async.update_permissions(share_id, permissions, actor=actor))

    def extend_expiration(self, share_id: str, expires_at: datetime, *, actor: str) -> None:
        self._run(self._async.extend_expiration(share_id, expires_at, actor=actor))

    # ------------------------------------------------------------------
    # Share reads (sync)
    # ------------------------------------------------------------------

    def get_share(self, share_id: str, *, actor: str) -> ShareInfo:
        return self._run(self._async.get_share(share_id, actor=actor))

    def list_my_shares(self, *, actor: str) -> list[SharedContainer]:
        return self._run(self._async.list_my_shares(actor=actor))

    def list_received_shares(self, *, actor: str) -> list[ReceivedShare]:
        return self._run(self._async.list_received_shares(actor=actor))

    def get_stats(self, *, actor: str) -> ShareStats:
        return self._run(self._async.get_stats(actor=actor))

    def get_status_updates(self, share_ids: Iterable[str], *, actor: str) -> dict[str, StatusUpdate]:
        return self._run(self._async.get_status_updates(list(share_ids), actor=actor))

    def search_recipient_candidates(
        self, query: str, limit: int | None = None, *, actor: str
    ) -> list[User]:
        return self._run(self._async.search_recipient_candidates(query, limit, actor=actor))

    def validate_recipient(
        self, username: str, container_id: str, *, actor: str
    ) -> RecipientValidation:
        return self._run(self._async.validate_recipient(username, container_id, actor=actor))

    # ------------------------------------------------------------------
    # Bulk (sync)
    # ------------------------------------------------------------------

    def bulk_accept(self, share_ids: Iterable[str], *, actor: str) -> BulkResult:
        return self._run(self._async.bulk_accept(list(share_ids), actor=actor))

    def bulk_decline(self, share_ids: Iterable[str], *, actor: str) -> BulkResult:
        return self._run(self._async.bulk_decline(list(share_ids), actor=actor))

    def bulk_revoke(self, share_ids: Iterable[str], *, actor: str) -> BulkResult:
        return self._run(self._async.bulk_revoke(list(share_ids), actor=actor))

    # ------------------------------------------------------------------
    # Notifications (sync)
    # ------------------------------------------------------------------

    def list_notifications(
        self, *, actor: str, unread_only: bool = False
    ) -> list[NotificationInfo]:
        return self._run(self._async.list_notifications(actor=actor, unread_only=unread_only))

    def mark_notification_read(self, notification_id: str, *, actor: str) -> bool:
        return self._run(self._async.mark_notification_read(notification_id, actor=actor))

    def mark_all_read(self, *, actor: str) -> int:
        return self._run(self._async.mark_all_read(actor=actor))

    def get_preferences(self, *, actor: str) -> PreferencesInfo:
        return self._run(self._async.get_preferences(actor=actor))

    def update_preferences(self, *, actor: str, **changes: bool) -> PreferencesInfo:
        return self._run(self._async.update_preferences(actor=actor, **changes))

    # ------------------------------------------------------------------
    # Audit (sync)
    # ------------------------------------------------------------------

    def append_audit_event(
        self,
        share_id: str,
        event_type: EventType | str,
        *,
        actor: str,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEventInfo:
        return self._run(
            self._async.append_audit_event(
                share_id,
                event_type,
                actor=actor,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

    def query_audit_logs(self, audit_filter: AuditFilter | None = None, *, actor: str) -> AuditPage:
        return self._run(self._async.query_audit_logs(audit_filter, actor=actor))

    def get_share_audit_trail(self, share_id: str, *, actor: str) -> list[AuditEventInfo]:
        return self._run(self._async.get_share_audit_trail(share_id, actor=actor))

    def get_audit_summary(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        *,
        actor: str,
    ) -> AuditSummary:
        return self._run(self._async.get_audit_summary(start_date, end_date, actor=actor))

    def get_recent_activity(self, limit: int = 20, *, actor: str) -> list[AuditEventInfo]:
        return self._run(self._async.get_recent_activity(limit, actor=actor))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        """Bus on which committed transitions are published (handlers run on the private loop)."""
        return self._async.event_bus

    @property
    def aio(self) -> VaultShareAsync:
        """The underlying ``VaultShareAsync`` (for advanced async use)."""
        return self._async
