"""Error classification — maps any failure onto the sharing taxonomy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from .exceptions import ErrorKind, SharingError

_GENERIC_MESSAGE = "Sharing operation failed"

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    OperationalError,
    PoolTimeoutError,
)


@dataclass(frozen=True)
class ClassifiedError:
    """Caller-facing shape of a failure."""

    kind: ErrorKind
    message: str
    retryable: bool
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


def classify(exc: BaseException) -> ClassifiedError:
    """Classify *exc* into a :class:`ClassifiedError`.

    Domain errors keep their own kind.  Collaborator errors that expose an
    HTTP-like ``status_code`` (directly or on ``.response``) are mapped by
    status.  Everything else becomes ``UNKNOWN`` with a best-effort
    ``retryable`` flag.
    """
    if isinstance(exc, SharingError):
        return ClassifiedError(
            kind=exc.kind,
            message=exc.message,
            retryable=exc.retryable,
            details=dict(exc.details),
        )

    status = _status_code(exc)
    if status is not None:
        return _classify_status(status, str(exc) or _GENERIC_MESSAGE)

    return ClassifiedError(
        kind=ErrorKind.UNKNOWN,
        message=str(exc) or _GENERIC_MESSAGE,
        retryable=is_transient(exc),
        details={"exception": type(exc).__name__},
    )


def is_transient(exc: BaseException) -> bool:
    """Best guess at whether retrying *exc* could succeed."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    status = _status_code(exc)
    return status is not None and status >= 500


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def _classify_status(status: int, message: str) -> ClassifiedError:
    lowered = message.lower()
    details = {"status_code": status}
    kind: ErrorKind
    retryable = False

    if status == 404:
        if "container" in lowered:
            kind = ErrorKind.CONTAINER_NOT_FOUND
        elif "share" in lowered:
            kind = ErrorKind.SHARE_NOT_FOUND
        else:
            kind = ErrorKind.USER_NOT_FOUND
    elif status in (401, 403):
        kind = ErrorKind.INSUFFICIENT_PERMISSIONS
    elif status == 409:
        if "already exists" in lowered:
            kind = ErrorKind.SHARE_ALREADY_EXISTS
        elif "limit" in lowered:
            kind = ErrorKind.SHARE_LIMIT_EXCEEDED
        elif "permission" in lowered:
            kind = ErrorKind.INVALID_PERMISSIONS
        else:
            kind = ErrorKind.CONFLICT
            retryable = True
    elif status == 410:
        kind = ErrorKind.SHARE_EXPIRED
    elif status == 423:
        kind = ErrorKind.CONTAINER_NOT_ACCESSIBLE
    elif status == 503:
        kind = ErrorKind.SHARING_DISABLED
        retryable = True
    else:
        kind = ErrorKind.UNKNOWN
        retryable = status >= 500 or status == 429

    return ClassifiedError(kind=kind, message=message, retryable=retryable, details=details)
