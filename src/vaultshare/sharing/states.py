"""Share lifecycle states and the transition table.

::

    PENDING --accept--> ACCEPTED --revoke--> REVOKED
       |                    |
       +--decline--> DECLINED   +--(expiry)--> EXPIRED
       +--revoke---> REVOKED
       +--(expiry)-> EXPIRED

DECLINED, REVOKED and EXPIRED are terminal.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType


class ShareStatus(str, Enum):
    """Lifecycle status of a share record."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVOKED = "revoked"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ShareStatus.DECLINED, ShareStatus.REVOKED, ShareStatus.EXPIRED}
)
NON_TERMINAL_STATUSES = frozenset({ShareStatus.PENDING, ShareStatus.ACCEPTED})

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        ShareStatus.PENDING: frozenset(
            {
                ShareStatus.ACCEPTED,
                ShareStatus.DECLINED,
                ShareStatus.REVOKED,
                ShareStatus.EXPIRED,
            }
        ),
        ShareStatus.ACCEPTED: frozenset({ShareStatus.REVOKED, ShareStatus.EXPIRED}),
        ShareStatus.DECLINED: frozenset(),
        ShareStatus.REVOKED: frozenset(),
        ShareStatus.EXPIRED: frozenset(),
    }
)


def can_transition(current: ShareStatus, target: ShareStatus) -> bool:
    """Return True if *current* -> *target* is a legal transition."""
    return target in ALLOWED_TRANSITIONS[current]
