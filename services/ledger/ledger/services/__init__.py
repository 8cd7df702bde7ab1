from .cooldown_gate import CooldownGate
from .quota_ledger import QuotaLedger
from .refresh_scheduler import RefreshScheduler, run_refresh_scheduler
from .store import KeyedLock, LedgerStore

__all__ = [
    "CooldownGate",
    "QuotaLedger",
    "RefreshScheduler",
    "run_refresh_scheduler",
    "KeyedLock",
    "LedgerStore",
]
