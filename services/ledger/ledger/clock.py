"""Clock sources. Operations take `now` from a Clock so tests can inject time."""

from datetime import datetime, timedelta, timezone
from typing import Protocol

from ledger.errors import InvalidArgument


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Synthetic clock that only moves when told to."""

    def __init__(self, start: datetime):
        self._now = ensure_aware(start)

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = ensure_aware(instant)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move forward by `delta` or by timedelta keyword arguments."""
        self._now = self._now + (delta if delta is not None else timedelta(**kwargs))
        return self._now


def ensure_aware(instant: datetime) -> datetime:
    """Return `instant` in UTC, rejecting naive datetimes."""
    if not isinstance(instant, datetime):
        raise InvalidArgument(f"Expected a datetime, got {type(instant).__name__}")
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise InvalidArgument("Naive datetime; pass a timezone-aware instant")
    return instant.astimezone(timezone.utc)
