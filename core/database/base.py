"""
Declarative base and shared column types for persisted back office tables.

Ids are 36-character strings and timestamps are timezone-aware so one schema
serves both SQLite (tests, single-node installs) and PostgreSQL.
"""

from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import uuid4

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


UUIDPrimaryKey = Annotated[str, mapped_column(String(36), primary_key=True, default=new_id)]

CreatedAt = Annotated[datetime, mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())]

UpdatedAt = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow),
]


class Base(DeclarativeBase):
    """Metadata root; ``init_database`` creates every table registered here."""


class TimestampMixin:
    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read back from the database to aware UTC.

    SQLite drops tzinfo on the way out, so naive values are taken as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
