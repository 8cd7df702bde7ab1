"""
Reset-instant arithmetic for quota cycles.

Monthly cycles step by calendar months from the stored reset instant,
pinned to an anchor day (the 31st becomes the 30th or 28th in shorter
months, then returns to the 31st). Daily cycles land on a fixed local hour
in a configured zone. All inputs and outputs are aware UTC datetimes.
"""

import calendar
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

UTC_ZONE = ZoneInfo("UTC")


def add_months(instant: datetime, months: int, anchor_day: int | None = None) -> datetime:
    """Shift `instant` by whole months, keeping the time of day."""
    day = anchor_day or instant.day
    years, month_index = divmod(instant.month - 1 + months, 12)
    year = instant.year + years
    month = month_index + 1
    last_day = calendar.monthrange(year, month)[1]
    return instant.replace(year=year, month=month, day=min(day, last_day))


def next_monthly_reset(reset_at: datetime, now: datetime, anchor_day: int) -> tuple[datetime, int]:
    """
    Advance a due monthly reset instant past `now`.

    Returns the smallest reset_at + k months (k >= 1) strictly after `now`,
    and k, the number of cycles that elapsed.
    """
    months_apart = (now.year - reset_at.year) * 12 + (now.month - reset_at.month)
    # Start just below the estimate; the loop settles it in at most a few steps
    cycles = max(1, months_apart - 1)
    candidate = add_months(reset_at, cycles, anchor_day)
    while candidate <= now:
        cycles += 1
        candidate = add_months(reset_at, cycles, anchor_day)
    return candidate, cycles


def next_daily_reset(now: datetime, hour: int, tz: ZoneInfo) -> datetime:
    """First instant at `hour`:00 local time in `tz` strictly after `now`, in UTC."""
    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), time(hour), tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), time(hour), tzinfo=tz)
    return candidate.astimezone(timezone.utc)


def elapsed_daily_cycles(reset_at: datetime, now: datetime, tz: ZoneInfo = UTC_ZONE) -> int:
    """
    How many daily reset instants, starting at `reset_at`, are at or before `now`.

    Counts local calendar days in `tz`, so a day shortened or lengthened by a
    DST change is still one cycle.
    """
    if reset_at > now:
        return 0
    local_reset = reset_at.astimezone(tz)
    local_now = now.astimezone(tz)
    days = (local_now.date() - local_reset.date()).days
    if local_now.time() >= local_reset.time():
        days += 1
    return days
