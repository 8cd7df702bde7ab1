from .quota import CooldownFlagSnapshot, QuotaSnapshot

__all__ = ["CooldownFlagSnapshot", "QuotaSnapshot"]
