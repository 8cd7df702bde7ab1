"""
Quota ledger: per-principal monthly and daily balances.

Each principal has two independent balances, a monthly quota and a daily
allowance. Consumption decrements both in one atomic step or rejects
without touching either. Refresh refills a balance once its reset instant
has passed and moves the reset instant past `now`, however many cycles were
missed.
"""

import logging
import zlib
from datetime import datetime
from zoneinfo import ZoneInfo

from ledger.clock import Clock, SystemClock, ensure_aware
from ledger.config import Settings, get_settings
from ledger.errors import InvalidArgument, RecordNotFound
from ledger.models.enums import ConsumeOutcome, MemberLevel, QuotaKind
from ledger.models.membership_quota import MembershipQuota
from ledger.schemas.quota import QuotaSnapshot
from ledger.services.reset_schedule import (
    add_months,
    elapsed_daily_cycles,
    next_daily_reset,
    next_monthly_reset,
)
from ledger.services.store import LedgerStore
from ledger.types.results import ConsumeResult, QuotaExceeded, RefreshApplied

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 36


def validate_key(value: str, name: str = "principal_id") -> str:
    if not isinstance(value, str) or not value.strip() or len(value) > MAX_KEY_LENGTH:
        logger.error(f"Rejected malformed {name}: {value!r}")
        raise InvalidArgument(f"{name} must be a non-empty string of at most {MAX_KEY_LENGTH} chars")
    return value


def _validate_amount(value: int, name: str) -> int:
    # bool is an int subclass; True is not a cost
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        logger.error(f"Rejected invalid {name}: {value!r}")
        raise InvalidArgument(f"{name} must be a non-negative integer, got {value!r}")
    return value


def in_shard(principal_id: str, shard: tuple[int, int] | None) -> bool:
    """Stable assignment of principals to one of `count` shards."""
    if shard is None:
        return True
    index, count = shard
    return zlib.crc32(principal_id.encode("utf-8")) % count == index


def validate_shard(shard: tuple[int, int] | None) -> None:
    if shard is None:
        return
    index, count = shard
    if count < 1 or not 0 <= index < count:
        raise InvalidArgument(f"Invalid shard {shard!r}")


class QuotaLedger:
    """
    Owns the consume/refresh state machine for every principal.

    Args:
        store: LedgerStore providing per-key atomicity
        settings: tier capacities and reset schedule (defaults to get_settings())
        clock: used when an operation is called without an explicit `now`
    """

    def __init__(
        self,
        store: LedgerStore,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self._reset_zone: ZoneInfo = self.settings.reset_zone

    def _now(self, now: datetime | None) -> datetime:
        return ensure_aware(now if now is not None else self.clock.now())

    def _next_daily_reset(self, now: datetime) -> datetime:
        return next_daily_reset(now, self.settings.daily_reset_hour, self._reset_zone)

    # =====================
    # Lifecycle
    # =====================

    def create_membership(
        self,
        principal_id: str,
        level: MemberLevel = MemberLevel.FREE,
        now: datetime | None = None,
        monthly_quota: int | None = None,
        daily_limit: int | None = None,
    ) -> QuotaSnapshot:
        """
        Create the quota record for a principal with full balances.

        Capacities default to the level's configured amounts. The first
        monthly reset is one month out, anchored on today's day-of-month; the
        first daily reset is the next configured reset hour.

        Raises:
            AlreadyExists: the principal already has a record
        """
        validate_key(principal_id)
        level = MemberLevel(level)
        now = self._now(now)
        default_monthly, default_daily = self.settings.tier_quota(level)
        monthly = _validate_amount(default_monthly if monthly_quota is None else monthly_quota, "monthly_quota")
        daily = _validate_amount(default_daily if daily_limit is None else daily_limit, "daily_limit")

        record = MembershipQuota(
            principal_id=principal_id,
            level=level,
            monthly_quota=monthly,
            daily_limit=daily,
            remaining_monthly=monthly,
            remaining_daily=daily,
            monthly_reset_at=add_months(now, 1, now.day),
            daily_reset_at=self._next_daily_reset(now),
            monthly_anchor_day=now.day,
            created_at=now,
            updated_at=now,
        )
        self.store.add(record, principal_id)
        logger.info(f"Created {level.value} membership for {principal_id}: monthly={monthly}, daily={daily}")
        return QuotaSnapshot.model_validate(record)

    def remove_membership(self, principal_id: str) -> None:
        """Delete a principal's record. Called when the principal itself is removed."""
        validate_key(principal_id)
        self.store.delete(MembershipQuota, principal_id)
        logger.info(f"Removed membership for {principal_id}")

    def get_snapshot(self, principal_id: str) -> QuotaSnapshot:
        validate_key(principal_id)
        return QuotaSnapshot.model_validate(self.store.get(MembershipQuota, principal_id))

    def change_level(
        self,
        principal_id: str,
        level: MemberLevel,
        now: datetime | None = None,
        monthly_quota: int | None = None,
        daily_limit: int | None = None,
    ) -> QuotaSnapshot:
        """
        Move a principal to another membership level.

        Each balance shifts by the change in capacity and is clamped to the
        new capacity, so upgrades add headroom immediately and downgrades
        never leave more than the new capacity. Reset instants are kept.
        """
        validate_key(principal_id)
        level = MemberLevel(level)
        now = self._now(now)
        default_monthly, default_daily = self.settings.tier_quota(level)
        monthly = _validate_amount(default_monthly if monthly_quota is None else monthly_quota, "monthly_quota")
        daily = _validate_amount(default_daily if daily_limit is None else daily_limit, "daily_limit")

        with self.store.locked(MembershipQuota, principal_id) as (_, record):
            old_level = record.level
            record.remaining_monthly = min(monthly, max(0, record.remaining_monthly + monthly - record.monthly_quota))
            record.remaining_daily = min(daily, max(0, record.remaining_daily + daily - record.daily_limit))
            record.monthly_quota = monthly
            record.daily_limit = daily
            record.level = level
            record.updated_at = now

        logger.info(f"Changed level for {principal_id}: {old_level.value} -> {level.value}")
        return QuotaSnapshot.model_validate(record)

    # =====================
    # Consumption
    # =====================

    def try_consume(
        self,
        principal_id: str,
        daily_cost: int,
        monthly_cost: int,
        now: datetime | None = None,
    ) -> ConsumeResult:
        """
        Deduct `daily_cost` and `monthly_cost` from a principal's balances.

        Both deductions commit together or not at all. If either balance is
        short the call is rejected with QuotaExceeded naming it (daily is
        checked first) and the record is left exactly as it was.

        Raises:
            InvalidArgument: negative or non-integer cost, malformed id
            RecordNotFound: the principal has no record
            StoreUnavailable: the store could not be reached
        """
        validate_key(principal_id)
        _validate_amount(daily_cost, "daily_cost")
        _validate_amount(monthly_cost, "monthly_cost")
        now = self._now(now)

        with self.store.locked(MembershipQuota, principal_id) as (_, record):
            reason = None
            if record.remaining_daily < daily_cost:
                reason = QuotaExceeded(QuotaKind.DAILY, daily_cost, record.remaining_daily)
            elif record.remaining_monthly < monthly_cost:
                reason = QuotaExceeded(QuotaKind.MONTHLY, monthly_cost, record.remaining_monthly)
            else:
                record.remaining_daily -= daily_cost
                record.remaining_monthly -= monthly_cost
                record.updated_at = now

        if reason is not None:
            logger.info(
                f"Quota exceeded for {principal_id}: {reason.which.value} "
                f"requested={reason.requested} available={reason.available}"
            )
            return ConsumeResult(
                outcome=ConsumeOutcome.REJECTED,
                principal_id=principal_id,
                remaining_daily=record.remaining_daily,
                remaining_monthly=record.remaining_monthly,
                reason=reason,
            )

        logger.debug(
            f"Consumed daily={daily_cost} monthly={monthly_cost} for {principal_id} -> "
            f"{record.remaining_daily}/{record.daily_limit}, {record.remaining_monthly}/{record.monthly_quota}"
        )
        return ConsumeResult(
            outcome=ConsumeOutcome.CONSUMED,
            principal_id=principal_id,
            remaining_daily=record.remaining_daily,
            remaining_monthly=record.remaining_monthly,
        )

    # =====================
    # Refresh
    # =====================

    def refresh(
        self,
        now: datetime | None = None,
        shard: tuple[int, int] | None = None,
    ) -> list[RefreshApplied]:
        """
        Refill every balance whose reset instant is at or before `now`.

        Records are handled one at a time under their own lock, in
        principal_id order. Running it again at the same `now` changes
        nothing. A record removed between the scan and its lock is skipped.

        Args:
            now: evaluation instant (defaults to the clock)
            shard: optional (index, count) to refresh only one slice of principals

        Returns:
            One RefreshApplied per record that was refilled, in principal_id order
        """
        now = self._now(now)
        validate_shard(shard)
        events: list[RefreshApplied] = []

        for principal_id in self.store.due_principals(now):
            if not in_shard(principal_id, shard):
                continue
            try:
                event = self._refresh_locked(principal_id, now)
            except RecordNotFound:
                logger.debug(f"Skipping {principal_id}: removed during refresh")
                continue
            if event is not None:
                events.append(event)

        if events:
            logger.info(f"Refresh at {now.isoformat()} refilled {len(events)} record(s)")
        return events

    def refresh_principal(self, principal_id: str, now: datetime | None = None) -> RefreshApplied | None:
        """Refresh a single principal. Returns None when nothing was due."""
        validate_key(principal_id)
        return self._refresh_locked(principal_id, self._now(now))

    def _refresh_locked(self, principal_id: str, now: datetime) -> RefreshApplied | None:
        with self.store.locked(MembershipQuota, principal_id) as (_, record):
            monthly_cycles = 0
            daily_cycles = 0

            # Re-checked under the lock: the scan may be stale
            if record.monthly_reset_at <= now:
                record.remaining_monthly = record.monthly_quota
                record.monthly_reset_at, monthly_cycles = next_monthly_reset(
                    record.monthly_reset_at, now, record.monthly_anchor_day
                )

            if record.daily_reset_at <= now:
                daily_cycles = elapsed_daily_cycles(record.daily_reset_at, now, self._reset_zone)
                record.remaining_daily = record.daily_limit
                record.daily_reset_at = self._next_daily_reset(now)

            if not monthly_cycles and not daily_cycles:
                return None
            record.updated_at = now

        if monthly_cycles > 1 or daily_cycles > 1:
            logger.info(
                f"Caught up {principal_id}: {monthly_cycles} monthly and {daily_cycles} daily cycle(s) elapsed"
            )
        return RefreshApplied(
            principal_id=principal_id,
            daily_refreshed=daily_cycles > 0,
            monthly_refreshed=monthly_cycles > 0,
            daily_cycles=daily_cycles,
            monthly_cycles=monthly_cycles,
            daily_reset_at=record.daily_reset_at,
            monthly_reset_at=record.monthly_reset_at,
        )
