"""SQLAlchemy base classes and common mixins.

Defines the declarative base, a UTC-normalizing timestamp type and the
creation-timestamp mixin shared by every table.

Column types are portable: PostgreSQL in deployment, SQLite for the test
suite.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp stored in UTC.

    Values are converted to UTC on the way in and always come back aware.
    SQLite has no timezone support, so the offset is dropped there and
    restored on read; its text representation then still orders correctly.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: datetime | None, dialect: Dialect
    ) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            msg = "Naive datetimes are not allowed; pass an aware UTC value"
            raise ValueError(msg)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(
        self, value: datetime | None, dialect: Dialect  # noqa: ARG002
    ) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        datetime: UTCDateTime(),
    }


class CreatedAtMixin:
    """Mixin that adds a created_at column.

    Set in Python so ordering by creation time has microsecond resolution on
    every backend; the server default covers rows inserted outside the ORM.

    Attributes:
        created_at: Timestamp when the record was created.
    """

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
