"""Notification and NotificationPreferences models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel


class NotificationBase(SQLModel):
    """Base fields for a notification. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    notification_type: str = Field(index=True)
    share_id: str = Field(index=True)
    user_id: str = Field(index=True)
    to_username: str = Field(index=True)
    from_username: str | None = Field(default=None)
    container_name: str = Field(default="")
    message: str | None = Field(default=None)
    is_read: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Notification(NotificationBase, table=True):
    """Default notification table — ``vaultshare_notifications``.

    At most one *unread* notification per (share, type, addressee).
    """

    __tablename__ = "vaultshare_notifications"
    __table_args__ = (
        Index(
            "uq_vaultshare_notifications_unread",
            "share_id",
            "notification_type",
            "user_id",
            unique=True,
            sqlite_where=text("is_read = 0"),
            postgresql_where=text("is_read = false"),
        ),
    )


class NotificationPreferencesBase(SQLModel):
    """Per-user notification switches. One row per username."""

    username: str = Field(primary_key=True)
    share_received: bool = Field(default=True)
    share_accepted: bool = Field(default=True)
    share_declined: bool = Field(default=True)
    share_revoked: bool = Field(default=True)
    share_expired: bool = Field(default=True)
    email_notifications: bool = Field(default=True)
    push_notifications: bool = Field(default=True)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class NotificationPreferences(NotificationPreferencesBase, table=True):
    """Default preferences table — ``vaultshare_notification_preferences``."""

    __tablename__ = "vaultshare_notification_preferences"
