from .enums import ConsumeOutcome, MemberLevel, QuotaKind, TransitionOutcome
from .membership_quota import MembershipQuota
from .cooldown_flag import CooldownFlag

__all__ = [
    "ConsumeOutcome",
    "MemberLevel",
    "QuotaKind",
    "TransitionOutcome",
    "MembershipQuota",
    "CooldownFlag",
]
