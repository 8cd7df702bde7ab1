from .results import ConsumeResult, CooldownActive, QuotaExceeded, RefreshApplied, TransitionResult

__all__ = [
    "ConsumeResult",
    "CooldownActive",
    "QuotaExceeded",
    "RefreshApplied",
    "TransitionResult",
]
