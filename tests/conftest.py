"""Shared fixtures for VaultShare tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from vaultshare import VaultShareAsync
from vaultshare.models import AuditEvent, Notification, NotificationPreferences, ShareRecord
from vaultshare.sharing.audit import AuditLog
from vaultshare.sharing.config import SharingConfig
from vaultshare.sharing.notifications import NotificationDispatcher
from vaultshare.sharing.registry import ShareRegistry
from vaultshare.sharing.types import ContainerAccess, User

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from vaultshare.sharing.types import NotificationInfo


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


# =========================================================================
# Collaborator fakes
# =========================================================================


class FakeClock:
    """Mutable clock; call it to read the time."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class InMemoryContainerService:
    """Containers keyed by id; only the owner may share, unless told otherwise."""

    def __init__(self) -> None:
        self.containers: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []

    def add(self, container_id: str, name: str, owner: str, *, locked: bool = False) -> None:
        self.containers[container_id] = {"name": name, "owner": owner, "locked": locked}

    def lock(self, container_id: str, locked: bool = True) -> None:
        self.containers[container_id]["locked"] = locked

    async def check_access(self, container_id: str, username: str) -> ContainerAccess | None:
        self.calls.append((container_id, username))
        container = self.containers.get(container_id)
        if container is None:
            return None
        return ContainerAccess(
            container_id=container_id,
            container_name=container["name"],
            can_share=container["owner"] == username,
            locked=container["locked"],
            owner_username=container["owner"],
        )


class InMemoryUserDirectory:
    def __init__(self, *usernames: str) -> None:
        self.users: dict[str, User] = {}
        for name in usernames:
            self.add(name)

    def add(self, username: str, *, is_active: bool = True) -> User:
        user = User(
            id=f"uid-{username}",
            username=username,
            email=f"{username}@example.com",
            is_active=is_active,
        )
        self.users[username] = user
        return user

    async def get_user(self, username: str) -> User | None:
        return self.users.get(username)

    async def search_users(self, query: str, limit: int) -> list[User]:
        q = query.lower()
        matches = [u for name, u in sorted(self.users.items()) if q in name.lower()]
        return matches[:limit]


class RecordingDelivery:
    def __init__(self) -> None:
        self.delivered: list[tuple[NotificationInfo, frozenset[str]]] = []

    async def deliver(self, notification: NotificationInfo, channels: frozenset[str]) -> None:
        self.delivered.append((notification, channels))


# =========================================================================
# Database
# =========================================================================


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# =========================================================================
# Collaborators and services
# =========================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def containers() -> InMemoryContainerService:
    svc = InMemoryContainerService()
    svc.add("c1", "Tax Records", owner="alice")
    svc.add("c2", "Photos", owner="alice")
    svc.add("c3", "Bob's Vault", owner="bob")
    return svc


@pytest.fixture
def users() -> InMemoryUserDirectory:
    directory = InMemoryUserDirectory("alice", "bob", "carol", "dave", "bobby")
    directory.add("mallory", is_active=False)
    return directory


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def config() -> SharingConfig:
    return SharingConfig()


@pytest.fixture
def audit_log(config: SharingConfig) -> AuditLog:
    return AuditLog(AuditEvent, ShareRecord, config)


@pytest.fixture
def dispatcher(users: InMemoryUserDirectory) -> NotificationDispatcher:
    return NotificationDispatcher(Notification, NotificationPreferences, users)


@pytest.fixture
def registry(
    audit_log: AuditLog,
    dispatcher: NotificationDispatcher,
    containers: InMemoryContainerService,
    users: InMemoryUserDirectory,
    config: SharingConfig,
    clock: FakeClock,
) -> ShareRegistry:
    return ShareRegistry(
        ShareRecord,
        audit_log,
        dispatcher,
        containers,
        users,
        config,
        clock=clock,
    )


@pytest.fixture
async def vs(
    async_engine: AsyncEngine,
    containers: InMemoryContainerService,
    users: InMemoryUserDirectory,
    delivery: RecordingDelivery,
    config: SharingConfig,
    clock: FakeClock,
) -> AsyncIterator[VaultShareAsync]:
    """Async facade over the in-memory engine."""
    facade = VaultShareAsync(
        engine=async_engine,
        containers=containers,
        users=users,
        delivery=delivery,
        config=config,
        clock=clock,
    )
    async with facade:
        yield facade
