"""VaultShare: container sharing and access control.

Share lifecycle, audit trail, and notifications for encrypted containers.
"""

__version__ = "0.1.0"

from vaultshare._vaultshare import VaultShare
from vaultshare._vaultshare_async import VaultShareAsync
from vaultshare.events import EventBus, EventType, ShareEvent
from vaultshare.sharing import (
    AuditEventInfo,
    AuditFilter,
    AuditPage,
    AuditSummary,
    BulkFailure,
    BulkResult,
    ClassifiedError,
    ContainerAccess,
    ContainerService,
    DeliveryChannel,
    ErrorKind,
    NotificationInfo,
    NotificationType,
    PreferencesInfo,
    ReceivedShare,
    RecipientValidation,
    SharedContainer,
    ShareInfo,
    SharePermission,
    ShareStats,
    ShareStatus,
    SharingConfig,
    SharingError,
    StatusUpdate,
    User,
    UserDirectory,
    VaultShareError,
    classify,
)

__all__ = [
    "AuditEventInfo",
    "AuditFilter",
    "AuditPage",
    "AuditSummary",
    "BulkFailure",
    "BulkResult",
    "ClassifiedError",
    "ContainerAccess",
    "ContainerService",
    "DeliveryChannel",
    "ErrorKind",
    "EventBus",
    "EventType",
    "NotificationInfo",
    "NotificationType",
    "PreferencesInfo",
    "ReceivedShare",
    "RecipientValidation",
    "ShareEvent",
    "ShareInfo",
    "SharePermission",
    "ShareStats",
    "ShareStatus",
    "SharedContainer",
    "SharingConfig",
    "SharingError",
    "StatusUpdate",
    "User",
    "UserDirectory",
    "VaultShare",
    "VaultShareAsync",
    "VaultShareError",
    "classify",
]
