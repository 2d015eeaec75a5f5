"""NotificationDispatcher — idempotent, preference-gated share notifications."""

from __future__ import annotations

import logging
from dataclasses import fields
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlmodel import select

from .types import NotificationInfo, PreferencesInfo
from .utils import ensure_utc, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultshare.models.notifications import NotificationBase, NotificationPreferencesBase
    from vaultshare.models.shares import ShareRecordBase

    from .protocol import UserDirectory

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = tuple(f.name for f in fields(PreferencesInfo))


class NotificationType(str, Enum):
    """Notification categories.  Values match the preference switch names."""

    SHARE_RECEIVED = "share_received"
    SHARE_ACCEPTED = "share_accepted"
    SHARE_DECLINED = "share_declined"
    SHARE_REVOKED = "share_revoked"
    SHARE_EXPIRED = "share_expired"


class NotificationDispatcher:
    """Creates notifications for the counterpart of a share transition.

    Dispatch is idempotent on (share, type, addressee): while an unread
    notification for that key exists, dispatching again returns it rather
    than inserting a duplicate.  A disabled preference means no row is
    created at all.
    """

    def __init__(
        self,
        notification_model: type[NotificationBase],
        preferences_model: type[NotificationPreferencesBase],
        users: UserDirectory,
    ) -> None:
        self._notification_model = notification_model
        self._preferences_model = preferences_model
        self._users = users

    async def dispatch(
        self,
        session: AsyncSession,
        notification_type: NotificationType,
        *,
        share: ShareRecordBase,
        to_username: str,
        from_username: str | None,
        now: datetime | None = None,
    ) -> NotificationBase | None:
        """Create (or reuse) the notification for *to_username*. Flushes but does not commit."""
        prefs = await self.get_preferences(session, to_username)
        if not getattr(prefs, notification_type.value):
            logger.debug(
                "notification %s for %s suppressed by preferences",
                notification_type.value,
                to_username,
            )
            return None

        user = await self._users.get_user(to_username)
        user_id = user.id if user is not None else to_username

        model = self._notification_model
        result = await session.execute(
            select(model).where(
                model.share_id == share.id,
                model.notification_type == notification_type.value,
                model.user_id == user_id,
                model.is_read == False,  # noqa: E712
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        notification = model(
            notification_type=notification_type.value,
            share_id=share.id,
            user_id=user_id,
            to_username=to_username,
            from_username=from_username,
            container_name=share.container_name,
            message=share.message if notification_type is NotificationType.SHARE_RECEIVED else None,
            created_at=now or utcnow(),
        )
        session.add(notification)
        await session.flush()
        return notification

    # ------------------------------------------------------------------
    # Addressee reads and updates
    # ------------------------------------------------------------------

    async def list_for_user(
        self,
        session: AsyncSession,
        username: str,
        *,
        unread_only: bool = False,
    ) -> list[NotificationBase]:
        """Notifications addressed to *username*, newest first."""
        model = self._notification_model
        query = select(model).where(model.to_username == username)
        if unread_only:
            query = query.where(model.is_read == False)  # noqa: E712
        result = await session.execute(
            query.order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def mark_read(self, session: AsyncSession, username: str, notification_id: str) -> bool:
        """Mark one of *username*'s notifications read. Returns True if found."""
        model = self._notification_model
        result = await session.execute(
            select(model).where(
                model.id == notification_id,
                model.to_username == username,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            return False
        if not notification.is_read:
            notification.is_read = True
            await session.flush()
        return True

    async def mark_all_read(self, session: AsyncSession, username: str) -> int:
        """Mark every unread notification of *username* read. Returns the count."""
        model = self._notification_model
        result = await session.execute(
            update(model)
            .where(
                model.to_username == username,  # type: ignore[arg-type]
                model.is_read == False,  # type: ignore[arg-type]  # noqa: E712
            )
            .values(is_read=True)
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(
        self, session: AsyncSession, username: str
    ) -> NotificationPreferencesBase:
        """Stored preferences, or an unsaved all-enabled default."""
        model = self._preferences_model
        prefs = await session.get(model, username)
        if prefs is None:
            return model(username=username)
        return prefs

    async def update_preferences(
        self,
        session: AsyncSession,
        username: str,
        **changes: bool,
    ) -> NotificationPreferencesBase:
        """Apply a partial update to *username*'s preferences. Flushes but does not commit."""
        unknown = sorted(set(changes) - set(PREFERENCE_FIELDS))
        if unknown:
            raise ValueError(f"Unknown preference(s): {', '.join(unknown)}")

        model = self._preferences_model
        prefs = await session.get(model, username)
        if prefs is None:
            prefs = model(username=username)
            session.add(prefs)
        for name, value in changes.items():
            setattr(prefs, name, bool(value))
        prefs.updated_at = utcnow()
        await session.flush()
        return prefs

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def channels_for(prefs: NotificationPreferencesBase | PreferencesInfo) -> frozenset[str]:
        """Delivery channels the addressee has switched on."""
        channels = set()
        if prefs.email_notifications:
            channels.add("email")
        if prefs.push_notifications:
            channels.add("push")
        return frozenset(channels)

    @staticmethod
    def notification_to_info(n: NotificationBase) -> NotificationInfo:
        return NotificationInfo(
            id=n.id,
            notification_type=NotificationType(n.notification_type),
            share_id=n.share_id,
            to_username=n.to_username,
            container_name=n.container_name,
            created_at=ensure_utc(n.created_at),  # type: ignore[arg-type]
            read=n.is_read,
            from_username=n.from_username,
            message=n.message,
        )

    @staticmethod
    def preferences_to_info(p: NotificationPreferencesBase) -> PreferencesInfo:
        return PreferencesInfo(**{name: bool(getattr(p, name)) for name in PREFERENCE_FIELDS})
