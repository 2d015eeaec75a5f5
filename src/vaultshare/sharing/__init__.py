"""Sharing layer — share registry, audit log, notifications, bulk runner, errors."""

from vaultshare.sharing.audit import AuditLog
from vaultshare.sharing.bulk import BulkCoordinator
from vaultshare.sharing.config import SharingConfig
from vaultshare.sharing.errors import ClassifiedError, classify, is_transient
from vaultshare.sharing.exceptions import (
    ContainerNotAccessibleError,
    ContainerNotFoundError,
    ErrorKind,
    InsufficientPermissionsError,
    InvalidExpirationError,
    InvalidPermissionsError,
    InvalidRecipientError,
    InvalidTransitionError,
    ShareAlreadyExistsError,
    ShareConflictError,
    ShareExpiredError,
    ShareLimitExceededError,
    ShareNotFoundError,
    SharingDisabledError,
    SharingError,
    StorageError,
    UserNotFoundError,
    VaultShareError,
)
from vaultshare.sharing.expiration import effective_status, evaluate, is_stale
from vaultshare.sharing.notifications import NotificationDispatcher, NotificationType
from vaultshare.sharing.permissions import SharePermission, parse_permissions
from vaultshare.sharing.protocol import ContainerService, DeliveryChannel, UserDirectory
from vaultshare.sharing.registry import ShareRegistry, Transition
from vaultshare.sharing.states import ShareStatus, can_transition
from vaultshare.sharing.types import (
    AuditEventInfo,
    AuditFilter,
    AuditPage,
    AuditSummary,
    BulkFailure,
    BulkResult,
    ContainerAccess,
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

__all__ = [
    "AuditEventInfo",
    "AuditFilter",
    "AuditLog",
    "AuditPage",
    "AuditSummary",
    "BulkCoordinator",
    "BulkFailure",
    "BulkResult",
    "ClassifiedError",
    "ContainerAccess",
    "ContainerNotAccessibleError",
    "ContainerNotFoundError",
    "ContainerService",
    "DeliveryChannel",
    "ErrorKind",
    "InsufficientPermissionsError",
    "InvalidExpirationError",
    "InvalidPermissionsError",
    "InvalidRecipientError",
    "InvalidTransitionError",
    "NotificationDispatcher",
    "NotificationInfo",
    "NotificationType",
    "PreferencesInfo",
    "ReceivedShare",
    "RecipientValidation",
    "ShareAlreadyExistsError",
    "ShareConflictError",
    "ShareExpiredError",
    "ShareInfo",
    "ShareLimitExceededError",
    "ShareNotFoundError",
    "SharePermission",
    "ShareRegistry",
    "ShareStats",
    "ShareStatus",
    "SharedContainer",
    "SharingConfig",
    "SharingDisabledError",
    "SharingError",
    "StatusUpdate",
    "StorageError",
    "Transition",
    "User",
    "UserDirectory",
    "UserNotFoundError",
    "VaultShareError",
    "can_transition",
    "classify",
    "effective_status",
    "evaluate",
    "is_stale",
    "is_transient",
    "parse_permissions",
]
