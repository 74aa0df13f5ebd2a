"""Shared base fields for registry models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every table.

    Stored as timezone-aware UTC (``timestamptz`` on PostgreSQL).
    """

    created_at: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )


class VersionedMixin(SQLModel):
    """Optimistic-concurrency counter.

    Bumped by every guarded UPDATE (``WHERE version = :expected``); a write
    that matches no row means somebody else changed the record first.
    """

    version: int = Field(default=1, nullable=False)
