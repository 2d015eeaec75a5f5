"""Tests for AuditLog — append, filtered queries, trails, and summaries."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlmodel import select

from vaultshare.events import EventType
from vaultshare.models import AuditEvent, ShareRecord
from vaultshare.sharing.audit import AuditLog
from vaultshare.sharing.config import SharingConfig
from vaultshare.sharing.types import AuditFilter

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


# =========================================================================
# Helpers
# =========================================================================


async def _share(
    session: AsyncSession,
    share_id: str,
    *,
    owner: str = "alice",
    recipient: str = "bob",
    container_id: str = "c1",
) -> ShareRecord:
    record = ShareRecord(
        id=share_id,
        container_id=container_id,
        container_name=f"Container {container_id}",
        owner_username=owner,
        recipient_username=recipient,
        created_at=T0,
        updated_at=T0,
    )
    session.add(record)
    await session.flush()
    return record


async def _append(
    audit: AuditLog,
    session: AsyncSession,
    share: ShareRecord,
    event_type: EventType,
    *,
    actor: str = "alice",
    minutes: int = 0,
    **kwargs: object,
) -> AuditEvent:
    return await audit.append(  # type: ignore[return-value]
        session,
        event_type=event_type,
        share=share,
        actor_user_id=f"uid-{actor}",
        actor_username=actor,
        timestamp=T0 + timedelta(minutes=minutes),
        **kwargs,  # type: ignore[arg-type]
    )


# =========================================================================
# append
# =========================================================================


class TestAppend:
    async def test_append_denormalizes_share(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        event = await _append(
            audit_log,
            async_session,
            share,
            EventType.ACCESSED,
            actor="bob",
            details={"access_count": 1},
            ip_address="10.0.0.1",
            user_agent="vault-cli/1.0",
        )
        assert event.id is not None
        assert event.share_id == "s1"
        assert event.container_id == "c1"
        assert event.container_name == "Container c1"
        assert event.details == {"access_count": 1}
        assert event.ip_address == "10.0.0.1"

    async def test_append_rejects_unknown_type(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        with pytest.raises(ValueError):
            await audit_log.append(
                async_session,
                event_type="deleted",  # type: ignore[arg-type]
                share=share,
                actor_user_id="uid-alice",
                actor_username="alice",
            )

    async def test_details_copied(self, audit_log: AuditLog, async_session: AsyncSession) -> None:
        share = await _share(async_session, "s1")
        details = {"k": "v"}
        event = await _append(audit_log, async_session, share, EventType.CREATED, details=details)
        details["k"] = "changed"
        assert event.details == {"k": "v"}


# =========================================================================
# query
# =========================================================================


@pytest.fixture
async def populated(audit_log: AuditLog, async_session: AsyncSession) -> None:
    s1 = await _share(async_session, "s1")
    s2 = await _share(async_session, "s2", recipient="carol", container_id="c2")
    await _append(audit_log, async_session, s1, EventType.CREATED, minutes=0)
    await _append(audit_log, async_session, s2, EventType.CREATED, minutes=1)
    await _append(audit_log, async_session, s1, EventType.ACCEPTED, actor="bob", minutes=2)
    await _append(audit_log, async_session, s1, EventType.ACCESSED, actor="bob", minutes=3)
    await _append(audit_log, async_session, s2, EventType.REVOKED, minutes=4)


class TestQuery:
    async def test_all_ascending(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        page = await audit_log.query(async_session, AuditFilter())
        assert page.total == 5
        assert [e.timestamp for e in page.events] == sorted(e.timestamp for e in page.events)
        assert page.events[0].timestamp == T0

    async def test_filter_by_share(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        page = await audit_log.query(async_session, AuditFilter(share_id="s1"))
        assert [e.event_type for e in page.events] == [
            EventType.CREATED,
            EventType.ACCEPTED,
            EventType.ACCESSED,
        ]

    async def test_filter_by_container(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        page = await audit_log.query(async_session, AuditFilter(container_id="c2"))
        assert page.total == 2
        assert {e.share_id for e in page.events} == {"s2"}

    async def test_filter_by_user_matches_id_or_username(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        by_name = await audit_log.query(async_session, AuditFilter(user_id="bob"))
        by_id = await audit_log.query(async_session, AuditFilter(user_id="uid-bob"))
        assert by_name.total == by_id.total == 2

    async def test_filter_by_event_type(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        page = await audit_log.query(async_session, AuditFilter(event_type=EventType.CREATED))
        assert page.total == 2

    async def test_date_range_is_half_open(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        page = await audit_log.query(
            async_session,
            AuditFilter(start_date=T0 + timedelta(minutes=1), end_date=T0 + timedelta(minutes=3)),
        )
        assert [e.event_type for e in page.events] == [EventType.CREATED, EventType.ACCEPTED]

    async def test_pagination(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        first = await audit_log.query(async_session, AuditFilter(page=1, limit=2))
        second = await audit_log.query(async_session, AuditFilter(page=2, limit=2))
        third = await audit_log.query(async_session, AuditFilter(page=3, limit=2))
        assert first.total == second.total == third.total == 5
        assert len(first.events) == 2
        assert len(third.events) == 1
        ids = [e.id for page in (first, second, third) for e in page.events]
        assert len(set(ids)) == 5

    async def test_limit_capped(self, async_session: AsyncSession, populated: None) -> None:
        audit = AuditLog(AuditEvent, ShareRecord, SharingConfig(default_page_size=2, max_page_size=3))
        page = await audit.query(async_session, AuditFilter(limit=100))
        assert page.limit == 3
        assert len(page.events) == 3
        default = await audit.query(async_session, AuditFilter())
        assert default.limit == 2

    async def test_invalid_page(self, audit_log: AuditLog, async_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="page"):
            await audit_log.query(async_session, AuditFilter(page=0))

    async def test_visible_to_limits_to_parties(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        carol = await audit_log.query(async_session, AuditFilter(), visible_to="carol")
        assert {e.share_id for e in carol.events} == {"s2"}
        dave = await audit_log.query(async_session, AuditFilter(), visible_to="dave")
        assert dave.total == 0


# =========================================================================
# trail / recent / summary / count
# =========================================================================


class TestTrailAndSummary:
    async def test_trail_keeps_append_order_for_equal_timestamps(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        await _append(audit_log, async_session, share, EventType.CREATED)
        await _append(audit_log, async_session, share, EventType.ACCEPTED, actor="bob")
        await _append(audit_log, async_session, share, EventType.REVOKED)
        trail = await audit_log.trail(async_session, "s1")
        assert [e.event_type for e in trail] == [
            EventType.CREATED,
            EventType.ACCEPTED,
            EventType.REVOKED,
        ]

    async def test_recent_newest_first(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        for i, et in enumerate([EventType.CREATED, EventType.ACCEPTED, EventType.ACCESSED]):
            await _append(audit_log, async_session, share, et, minutes=i)
        recent = await audit_log.recent(async_session, 2)
        assert [e.event_type for e in recent] == [EventType.ACCESSED, EventType.ACCEPTED]

    async def test_summary_counts_every_type(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        await _append(audit_log, async_session, share, EventType.CREATED, minutes=0)
        await _append(audit_log, async_session, share, EventType.ACCESSED, minutes=1)
        await _append(audit_log, async_session, share, EventType.ACCESSED, minutes=2)
        await _append(audit_log, async_session, share, EventType.ACCESSED, minutes=60)

        summary = await audit_log.summary(async_session, T0, T0 + timedelta(minutes=30))
        assert summary.total_events == 3
        assert summary.counts[EventType.ACCESSED] == 2
        assert summary.counts[EventType.CREATED] == 1
        assert summary.counts[EventType.REVOKED] == 0
        assert set(summary.counts) == set(EventType)
        assert [e.event_type for e in summary.events] == [
            EventType.CREATED,
            EventType.ACCESSED,
            EventType.ACCESSED,
        ]
        assert all(e.timestamp < T0 + timedelta(minutes=30) for e in summary.events)

    async def test_summary_events_capped_to_default_page(
        self, async_session: AsyncSession, populated: None
    ) -> None:
        audit = AuditLog(AuditEvent, ShareRecord, SharingConfig(default_page_size=2, max_page_size=3))
        summary = await audit.summary(async_session)
        assert summary.total_events == 5
        assert [(e.share_id, e.event_type) for e in summary.events] == [
            ("s1", EventType.CREATED),
            ("s2", EventType.CREATED),
        ]

    async def test_summary_events_respect_visibility(
        self, audit_log: AuditLog, async_session: AsyncSession, populated: None
    ) -> None:
        summary = await audit_log.summary(async_session, visible_to="carol")
        assert summary.total_events == 2
        assert [e.event_type for e in summary.events] == [EventType.CREATED, EventType.REVOKED]
        assert {e.share_id for e in summary.events} == {"s2"}

    async def test_summary_does_not_write(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        await _append(audit_log, async_session, share, EventType.CREATED)
        before = await audit_log.count(async_session)
        await audit_log.summary(async_session)
        assert await audit_log.count(async_session) == before == 1

    async def test_events_outlive_share_record(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        await _append(audit_log, async_session, share, EventType.CREATED)
        await async_session.delete(share)
        await async_session.flush()
        result = await async_session.execute(select(AuditEvent).where(AuditEvent.share_id == "s1"))
        assert len(result.scalars().all()) == 1
        assert await audit_log.count(async_session, "s1") == 1


# =========================================================================
# format_event
# =========================================================================


class TestFormatEvent:
    async def test_created_mentions_recipient(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        event = await _append(
            audit_log,
            async_session,
            share,
            EventType.CREATED,
            details={"recipient_username": "bob"},
        )
        text = AuditLog.format_event(AuditLog.event_to_info(event))
        assert text == '2026-03-01 12:00:00 UTC: alice shared container "Container c1" with bob'

    async def test_expired_has_no_actor(
        self, audit_log: AuditLog, async_session: AsyncSession
    ) -> None:
        share = await _share(async_session, "s1")
        event = await _append(audit_log, async_session, share, EventType.EXPIRED, actor="system")
        text = AuditLog.format_event(AuditLog.event_to_info(event))
        assert text.endswith('Share of container "Container c1" expired')
        assert "system" not in text
