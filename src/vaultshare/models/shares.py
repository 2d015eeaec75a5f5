"""ShareRecord model — one canonical row per container share grant.

Provides ``ShareRecordBase`` (non-table) and ``ShareRecord`` (concrete table).
Subclass ``ShareRecordBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per backend.

The owner and recipient views of a share are projections of the same row;
there is never a second copy to keep in sync.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel

# Stored status values that still hold a live grant.  Mirrored in the partial
# unique index below so the database refuses a second live share per pair.
NON_TERMINAL_STATUS_VALUES: tuple[str, ...] = ("pending", "accepted")


class ShareRecordBase(SQLModel):
    """Base fields for a share record. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    container_id: str = Field(index=True)
    container_name: str = Field(default="")
    owner_username: str = Field(index=True)
    recipient_username: str = Field(index=True)
    permissions: str = Field(default="read")
    status: str = Field(default="pending")
    message: str | None = Field(default=None)
    max_access: int | None = Field(default=None)
    access_count: int = Field(default=0)
    parent_share_id: str | None = Field(default=None, index=True)
    version: int = Field(default=1)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    last_accessed_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class ShareRecord(ShareRecordBase, table=True):
    """Default share table — ``vaultshare_shares``."""

    __tablename__ = "vaultshare_shares"
    __table_args__ = (
        Index(
            "uq_vaultshare_shares_live_pair",
            "container_id",
            "recipient_username",
            unique=True,
            sqlite_where=text("status IN ('pending', 'accepted')"),
            postgresql_where=text("status IN ('pending', 'accepted')"),
        ),
    )
