from enum import Enum


class MemberLevel(str, Enum):
    """Membership levels. Capacities per level come from configuration."""

    FREE = "free"
    STANDARD = "standard"
    PREMIUM = "premium"
    TOP_TIER = "top_tier"


class QuotaKind(str, Enum):
    """Which balance a quota operation refers to."""

    DAILY = "daily"
    MONTHLY = "monthly"


class ConsumeOutcome(str, Enum):
    CONSUMED = "consumed"
    REJECTED = "rejected"


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
