"""SQLAlchemy declarative base and common column mixins for Mission Control.

Identifiers are uuid4 strings generated in Python and timestamps are
timezone-aware values also generated in Python, so the same models run
against PostgreSQL in production and SQLite in tests.

Example:
    >>> class MyModel(TimestampMixin, Base):
    ...     __tablename__ = "my_table"
    ...     name: Mapped[str] = mapped_column(Text, nullable=False)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new textual uuid4 identifier."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base for all Mission Control models."""

    pass


class TimestampMixin:
    """Mixin providing id, created_at, and updated_at columns.

    List it before Base in the class hierarchy.

    Attributes:
        id: uuid4 text primary key.
        created_at: Row creation time.
        updated_at: Last modification time. Engine operations also set it
                    explicitly so the bump is part of the same write.
    """

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )
