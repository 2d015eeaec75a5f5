"""Collaborator protocols — runtime-checkable interfaces.

The sharing subsystem does not own containers, users or delivery
transports.  It talks to them through these three protocols, which the
host application implements.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .types import ContainerAccess, NotificationInfo, User


@runtime_checkable
class ContainerService(Protocol):
    """Ownership and lock checks for containers."""

    async def check_access(self, container_id: str, username: str) -> ContainerAccess | None:
        """Return access facts for *username* on the container, or None if unknown.

        ``owner_username`` should be filled in when known; re-shares back to
        the owner are refused with it.

        Must be fast: it is called at most once per mutating sharing call
        and must never wait on mount/unmount work.
        """
        ...


@runtime_checkable
class UserDirectory(Protocol):
    """User lookup and search."""

    async def get_user(self, username: str) -> User | None: ...

    async def search_users(self, query: str, limit: int) -> list[User]: ...


@runtime_checkable
class DeliveryChannel(Protocol):
    """Push/email transport for notifications."""

    async def deliver(self, notification: NotificationInfo, channels: frozenset[str]) -> None:
        """Deliver *notification* over *channels* (``"email"``, ``"push"``)."""
        ...
