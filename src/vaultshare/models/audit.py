"""AuditEvent model — append-only record of share lifecycle transitions.

Rows are inserted once and never updated or deleted.  They are keyed by
``share_id`` without a foreign key so the trail outlives its share.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class AuditEventBase(SQLModel):
    """Base fields for an audit event. Subclass with ``table=True`` for a concrete table."""

    # Autoincrement id doubles as the tiebreak for events sharing a timestamp.
    id: int | None = Field(default=None, primary_key=True)
    event_type: str = Field(index=True)
    share_id: str = Field(index=True)
    container_id: str = Field(index=True)
    container_name: str = Field(default="")
    actor_user_id: str = Field(default="", index=True)
    actor_username: str = Field(default="", index=True)
    details: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    ip_address: str | None = Field(default=None)
    user_agent: str | None = Field(default=None)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        index=True,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class AuditEvent(AuditEventBase, table=True):
    """Default audit table — ``vaultshare_audit_events``."""

    __tablename__ = "vaultshare_audit_events"
