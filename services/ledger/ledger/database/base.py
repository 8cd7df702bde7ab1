from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always round-trips as UTC.

    PostgreSQL keeps the offset natively; SQLite stores naive strings, so
    values are normalized to UTC on the way in and tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetime bound to a UTCDateTime column")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        datetime: UTCDateTime(),
    }


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


# Common column factories for consistent timestamp handling
def created_at_column() -> Mapped[datetime]:
    """Create a created_at column with cross-database compatibility."""
    return mapped_column(
        UTCDateTime(),
        server_default=func.now(),  # Works on PostgreSQL
        default=utc_now,  # Fallback for SQLite
        nullable=False,
    )


def updated_at_column() -> Mapped[datetime]:
    """Create an updated_at column.

    Services stamp it with their operation time; onupdate only fills it in
    for writes that leave it unset.
    """
    return mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )
