"""Result values returned by ledger and gate operations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ledger.models.enums import ConsumeOutcome, QuotaKind, TransitionOutcome


@dataclass(frozen=True)
class QuotaExceeded:
    """Why a consumption was rejected."""

    which: QuotaKind
    requested: int
    available: int


@dataclass(frozen=True)
class ConsumeResult:
    outcome: ConsumeOutcome
    principal_id: str
    remaining_daily: int
    remaining_monthly: int
    reason: QuotaExceeded | None = None

    @property
    def consumed(self) -> bool:
        return self.outcome is ConsumeOutcome.CONSUMED


@dataclass(frozen=True)
class RefreshApplied:
    """One record refilled by a refresh pass."""

    principal_id: str
    daily_refreshed: bool
    monthly_refreshed: bool
    daily_cycles: int  # reset instants that had elapsed, > 1 after missed ticks
    monthly_cycles: int
    daily_reset_at: datetime
    monthly_reset_at: datetime


@dataclass(frozen=True)
class CooldownActive:
    """Why a transition was rejected."""

    next_allowed_at: datetime


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    resource_id: str
    field: str
    value: bool
    changed: bool
    last_changed_at: datetime
    reason: CooldownActive | None = None

    @property
    def applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED

    @property
    def next_allowed_at(self) -> datetime | None:
        return self.reason.next_allowed_at if self.reason else None
