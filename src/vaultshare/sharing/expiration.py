"""Read-time expiration.

Stored status is never trusted on its own: a PENDING or ACCEPTED record
whose expiry has passed *is* expired, whether or not anything has
rewritten the row yet.  Every path that surfaces a status goes through
:func:`evaluate`, so there is no background sweep to keep in step.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .states import NON_TERMINAL_STATUSES, ShareStatus
from .utils import ensure_utc

if TYPE_CHECKING:
    from datetime import datetime

    from vaultshare.models.shares import ShareRecordBase


def evaluate(
    stored_status: ShareStatus | str,
    expires_at: datetime | None,
    now: datetime,
) -> ShareStatus:
    """Derive the effective status of a share.

    Returns ``EXPIRED`` iff *stored_status* is PENDING or ACCEPTED and
    *expires_at* is set and ``expires_at <= now``.  Otherwise returns
    *stored_status* unchanged.
    """
    status = ShareStatus(stored_status)
    if status not in NON_TERMINAL_STATUSES or expires_at is None:
        return status
    if ensure_utc(expires_at) <= ensure_utc(now):  # type: ignore[operator]
        return ShareStatus.EXPIRED
    return status


def effective_status(record: ShareRecordBase, now: datetime) -> ShareStatus:
    """Effective status of *record* at *now*."""
    return evaluate(record.status, record.expires_at, now)


def is_stale(record: ShareRecordBase, now: datetime) -> bool:
    """True when the row still says PENDING/ACCEPTED but has expired."""
    return (
        ShareStatus(record.status) in NON_TERMINAL_STATUSES
        and effective_status(record, now) is ShareStatus.EXPIRED
    )
