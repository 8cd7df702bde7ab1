"""Refresh scheduler process entry point."""

import asyncio
import logging
import sys

from ledger.clock import SystemClock
from ledger.config import Settings, get_settings
from ledger.database.session import get_session_factory
from ledger.services.quota_ledger import QuotaLedger
from ledger.services.refresh_scheduler import RefreshScheduler, run_refresh_scheduler
from ledger.services.store import LedgerStore

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    # Log to stdout so the process supervisor captures it
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_scheduler(settings: Settings) -> RefreshScheduler:
    """Wire store, ledger and scheduler from settings."""
    clock = SystemClock()
    store = LedgerStore(get_session_factory())
    ledger = QuotaLedger(store, settings=settings, clock=clock)
    return RefreshScheduler(ledger, clock=clock, shard=settings.refresh_shard)


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    scheduler = build_scheduler(settings)
    try:
        asyncio.run(run_refresh_scheduler(scheduler, settings.refresh_interval_seconds))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
