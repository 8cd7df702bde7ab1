"""Membership quota ledger and cooldown-gated visibility flags."""

__version__ = "0.1.0"
