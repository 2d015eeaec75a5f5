"""Exception hierarchy and the closed error taxonomy for sharing.

Every expected precondition failure is raised as a :class:`SharingError`
subclass carrying its :class:`ErrorKind`.  Anything else is mapped onto
the same taxonomy by :func:`vaultshare.sharing.errors.classify`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar


class ErrorKind(str, Enum):
    """Closed set of failure kinds surfaced to callers."""

    USER_NOT_FOUND = "user_not_found"
    CONTAINER_NOT_FOUND = "container_not_found"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    SHARE_EXPIRED = "share_expired"
    SHARE_LIMIT_EXCEEDED = "share_limit_exceeded"
    SHARE_ALREADY_EXISTS = "share_already_exists"
    INVALID_PERMISSIONS = "invalid_permissions"
    CONTAINER_NOT_ACCESSIBLE = "container_not_accessible"
    SHARING_DISABLED = "sharing_disabled"
    SHARE_NOT_FOUND = "share_not_found"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_RECIPIENT = "invalid_recipient"
    INVALID_EXPIRATION = "invalid_expiration"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({ErrorKind.SHARING_DISABLED, ErrorKind.CONFLICT})


class VaultShareError(Exception):
    """Base exception for all VaultShare errors."""


class StorageError(VaultShareError):
    """Raised when the storage layer is unusable (not opened, closed)."""


class SharingError(VaultShareError):
    """A classified sharing failure.

    Attributes:
        kind: Taxonomy entry for this failure.
        message: Human-readable description.
        details: Optional structured context (ids, statuses).
    """

    kind: ClassVar[ErrorKind] = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class UserNotFoundError(SharingError):
    """The recipient does not exist in the user directory."""

    kind = ErrorKind.USER_NOT_FOUND


class ContainerNotFoundError(SharingError):
    """The container collaborator does not know the container."""

    kind = ErrorKind.CONTAINER_NOT_FOUND


class InsufficientPermissionsError(SharingError):
    """The caller is not allowed to perform this operation on the share."""

    kind = ErrorKind.INSUFFICIENT_PERMISSIONS


class ShareExpiredError(SharingError):
    """The share's expiry has passed."""

    kind = ErrorKind.SHARE_EXPIRED


class ShareLimitExceededError(SharingError):
    """A share-count or access-count limit has been reached."""

    kind = ErrorKind.SHARE_LIMIT_EXCEEDED


class ShareAlreadyExistsError(SharingError):
    """A live share already exists for this container and recipient."""

    kind = ErrorKind.SHARE_ALREADY_EXISTS


class InvalidPermissionsError(SharingError):
    """Permission set is empty or contains unknown tokens."""

    kind = ErrorKind.INVALID_PERMISSIONS


class ContainerNotAccessibleError(SharingError):
    """The container is locked and cannot be accessed right now."""

    kind = ErrorKind.CONTAINER_NOT_ACCESSIBLE


class SharingDisabledError(SharingError):
    """Sharing is switched off for this service."""

    kind = ErrorKind.SHARING_DISABLED


class ShareNotFoundError(SharingError):
    """No share with the given id."""

    kind = ErrorKind.SHARE_NOT_FOUND


class InvalidRecipientError(SharingError):
    """The recipient cannot receive this share (e.g. it is the caller)."""

    kind = ErrorKind.INVALID_RECIPIENT


class InvalidExpirationError(SharingError):
    """The requested expiry is not strictly in the future."""

    kind = ErrorKind.INVALID_EXPIRATION


class InvalidTransitionError(SharingError):
    """The share's current status does not allow the requested operation."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, share_id: str, current: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} share {share_id!r} in status {current!r}",
            details={"share_id": share_id, "status": current, "operation": operation},
        )
        self.share_id = share_id
        self.current = current
        self.operation = operation


class ShareConflictError(SharingError):
    """A concurrent writer changed the share first."""

    kind = ErrorKind.CONFLICT
