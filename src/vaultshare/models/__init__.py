"""SQLModel database models for VaultShare."""

from vaultshare.models.audit import AuditEvent, AuditEventBase
from vaultshare.models.notifications import (
    Notification,
    NotificationBase,
    NotificationPreferences,
    NotificationPreferencesBase,
)
from vaultshare.models.shares import NON_TERMINAL_STATUS_VALUES, ShareRecord, ShareRecordBase

__all__ = [
    "NON_TERMINAL_STATUS_VALUES",
    "AuditEvent",
    "AuditEventBase",
    "Notification",
    "NotificationBase",
    "NotificationPreferences",
    "NotificationPreferencesBase",
    "ShareRecord",
    "ShareRecordBase",
]
