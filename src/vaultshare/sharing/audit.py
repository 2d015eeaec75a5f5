"""AuditLog — append-only share event store with filtered, paginated reads.

Stateless service that receives the audit and share models at construction
and a session at call time, following the SharingService pattern.
``append`` is the only write path; nothing here updates or deletes rows.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_
from sqlmodel import select

from vaultshare.events import EventType

from .types import AuditEventInfo, AuditFilter, AuditPage, AuditSummary
from .utils import ensure_utc, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultshare.models.audit import AuditEventBase
    from vaultshare.models.shares import ShareRecordBase

    from .config import SharingConfig

logger = logging.getLogger(__name__)


class AuditLog:
    """Append and query audit events.

    When a ``visible_to`` username is given to a read, results are limited
    to events on shares that user owns or received.
    """

    def __init__(
        self,
        audit_model: type[AuditEventBase],
        share_model: type[ShareRecordBase],
        config: SharingConfig,
    ) -> None:
        self._audit_model = audit_model
        self._share_model = share_model
        self._config = config

    async def append(
        self,
        session: AsyncSession,
        *,
        event_type: EventType,
        share: ShareRecordBase,
        actor_user_id: str,
        actor_username: str,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        timestamp: datetime | None = None,
    ) -> AuditEventBase:
        """Append one event for *share*. Flushes but does not commit."""
        event = self._audit_model(
            event_type=EventType(event_type).value,
            share_id=share.id,
            container_id=share.container_id,
            container_name=share.container_name,
            actor_user_id=actor_user_id,
            actor_username=actor_username,
            details=dict(details or {}),
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=timestamp or utcnow(),
        )
        session.add(event)
        await session.flush()
        logger.debug(
            "audit %s share=%s actor=%s", event.event_type, share.id, actor_username
        )
        return event

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def query(
        self,
        session: AsyncSession,
        audit_filter: AuditFilter,
        *,
        visible_to: str | None = None,
    ) -> AuditPage:
        """Return one page of events matching *audit_filter*, oldest first."""
        if audit_filter.page < 1:
            raise ValueError("page must be >= 1")
        limit = audit_filter.limit or self._config.default_page_size
        if limit < 1:
            raise ValueError("limit must be >= 1")
        limit = min(limit, self._config.max_page_size)

        conditions = self._conditions(audit_filter, visible_to)
        model = self._audit_model

        count_result = await session.execute(
            select(func.count()).select_from(model).where(*conditions)
        )
        total = int(count_result.scalar_one())

        result = await session.execute(
            select(model)
            .where(*conditions)
            .order_by(model.timestamp, model.id)  # type: ignore[arg-type]
            .offset((audit_filter.page - 1) * limit)
            .limit(limit)
        )
        events = [self.event_to_info(e) for e in result.scalars().all()]
        return AuditPage(events=events, total=total, page=audit_filter.page, limit=limit)

    async def trail(self, session: AsyncSession, share_id: str) -> list[AuditEventInfo]:
        """All events for *share_id* in the order they were appended."""
        model = self._audit_model
        result = await session.execute(
            select(model)
            .where(model.share_id == share_id)
            .order_by(model.timestamp, model.id)  # type: ignore[arg-type]
        )
        return [self.event_to_info(e) for e in result.scalars().all()]

    async def count(self, session: AsyncSession, share_id: str | None = None) -> int:
        """Number of events, optionally for one share."""
        model = self._audit_model
        query = select(func.count()).select_from(model)
        if share_id is not None:
            query = query.where(model.share_id == share_id)
        result = await session.execute(query)
        return int(result.scalar_one())

    async def recent(
        self,
        session: AsyncSession,
        limit: int = 20,
        *,
        visible_to: str | None = None,
    ) -> list[AuditEventInfo]:
        """Newest events first, for activity feeds."""
        model = self._audit_model
        limit = max(1, min(limit, self._config.max_page_size))
        result = await session.execute(
            select(model)
            .where(*self._conditions(AuditFilter(), visible_to))
            .order_by(model.timestamp.desc(), model.id.desc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return [self.event_to_info(e) for e in result.scalars().all()]

    async def summary(
        self,
        session: AsyncSession,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        *,
        visible_to: str | None = None,
    ) -> AuditSummary:
        """Per-event-type counts over ``[start_date, end_date)`` plus the first page of events."""
        model = self._audit_model
        conditions = self._conditions(
            AuditFilter(start_date=start_date, end_date=end_date), visible_to
        )
        result = await session.execute(
            select(model.event_type, func.count())
            .where(*conditions)
            .group_by(model.event_type)
        )
        counts = {et: 0 for et in EventType}
        for event_type, n in result.all():
            counts[EventType(event_type)] = int(n)
        rows = await session.execute(
            select(model)
            .where(*conditions)
            .order_by(model.timestamp, model.id)  # type: ignore[arg-type]
            .limit(self._config.default_page_size)
        )
        return AuditSummary(
            total_events=sum(counts.values()),
            counts=counts,
            start_date=start_date,
            end_date=end_date,
            events=[self.event_to_info(e) for e in rows.scalars().all()],
        )

    def _conditions(self, audit_filter: AuditFilter, visible_to: str | None) -> list[Any]:
        model = self._audit_model
        conditions: list[Any] = []
        if audit_filter.share_id is not None:
            conditions.append(model.share_id == audit_filter.share_id)
        if audit_filter.container_id is not None:
            conditions.append(model.container_id == audit_filter.container_id)
        if audit_filter.user_id is not None:
            conditions.append(
                or_(
                    model.actor_user_id == audit_filter.user_id,
                    model.actor_username == audit_filter.user_id,
                )
            )
        if audit_filter.event_type is not None:
            conditions.append(model.event_type == EventType(audit_filter.event_type).value)
        if audit_filter.start_date is not None:
            conditions.append(model.timestamp >= ensure_utc(audit_filter.start_date))
        if audit_filter.end_date is not None:
            conditions.append(model.timestamp < ensure_utc(audit_filter.end_date))
        if visible_to is not None:
            share = self._share_model
            visible_ids = select(share.id).where(
                or_(
                    share.owner_username == visible_to,
                    share.recipient_username == visible_to,
                )
            )
            conditions.append(model.share_id.in_(visible_ids))  # type: ignore[union-attr]
        return conditions

    # ------------------------------------------------------------------
    # Conversion and formatting
    # ------------------------------------------------------------------

    @staticmethod
    def event_to_info(e: AuditEventBase) -> AuditEventInfo:
        """Convert an audit row to AuditEventInfo."""
        return AuditEventInfo(
            id=e.id or 0,
            event_type=EventType(e.event_type),
            share_id=e.share_id,
            container_id=e.container_id,
            container_name=e.container_name,
            actor_user_id=e.actor_user_id,
            actor_username=e.actor_username,
            timestamp=ensure_utc(e.timestamp),  # type: ignore[arg-type]
            details=dict(e.details or {}),
            ip_address=e.ip_address,
            user_agent=e.user_agent,
        )

    @staticmethod
    def format_event(event: AuditEventInfo) -> str:
        """One-line human-readable description of *event*."""
        template = _EVENT_TEMPLATES.get(
            event.event_type, '{when}: {type} for container "{name}"'
        )
        return template.format(
            when=event.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC"),
            who=event.actor_username,
            name=event.container_name,
            type=event.event_type.value,
            recipient=event.details.get("recipient_username", "unknown user"),
        )


_EVENT_TEMPLATES: dict[EventType, str] = {
    EventType.CREATED: '{when}: {who} shared container "{name}" with {recipient}',
    EventType.ACCEPTED: '{when}: {who} accepted share of container "{name}"',
    EventType.DECLINED: '{when}: {who} declined share of container "{name}"',
    EventType.REVOKED: '{when}: {who} revoked share of container "{name}"',
    EventType.EXPIRED: '{when}: Share of container "{name}" expired',
    EventType.ACCESSED: '{when}: {who} accessed shared container "{name}"',
    EventType.PERMISSION_UPDATED: '{when}: {who} updated permissions for container "{name}"',
    EventType.EXPIRATION_EXTENDED: '{when}: {who} extended expiration for container "{name}"',
}
