"""
Refresh scheduler.

Stateless: each tick asks the ledger to refresh everything due at the
current instant. Because due-ness is read from the stored reset instants,
extra ticks are harmless and a missed or failed tick is made up by the next
one.
"""

from __future__ import annotations

import asyncio
import logging

from ledger.clock import Clock, SystemClock
from ledger.errors import StoreUnavailable
from ledger.services.quota_ledger import QuotaLedger, validate_shard
from ledger.types.results import RefreshApplied

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Runs Refresh(now) for the whole population, or one shard of it."""

    def __init__(
        self,
        ledger: QuotaLedger,
        clock: Clock | None = None,
        shard: tuple[int, int] | None = None,
    ):
        validate_shard(shard)
        self.ledger = ledger
        self.clock = clock or SystemClock()
        self.shard = shard

    def tick(self) -> list[RefreshApplied]:
        """One refresh pass at the clock's current instant."""
        return self.ledger.refresh(self.clock.now(), shard=self.shard)


async def run_refresh_scheduler(
    scheduler: RefreshScheduler,
    check_interval: float = 60.0,
    max_ticks: int | None = None,
) -> None:
    """Background loop for quota refresh.

    Runs continuously, ticking every `check_interval` seconds. A failing tick
    is logged and the loop carries on.

    Args:
        scheduler: RefreshScheduler to tick
        check_interval: Seconds between ticks (default 60)
        max_ticks: Stop after this many ticks (None runs until cancelled)
    """
    logger.info(
        "Refresh scheduler started: interval=%ss, shard=%s",
        check_interval,
        scheduler.shard,
    )

    ticks = 0
    while True:
        ticks += 1
        try:
            # The store is synchronous; keep the event loop free while it works
            events = await asyncio.to_thread(scheduler.tick)
            logger.debug("Refresh tick %d applied %d refresh(es)", ticks, len(events))
        except asyncio.CancelledError:
            logger.info("Refresh scheduler stopped")
            raise
        except StoreUnavailable as e:
            logger.warning("Refresh tick %d skipped, store unavailable: %s", ticks, e)
        except Exception as e:
            logger.exception("Refresh scheduler error: %s", e)

        if max_ticks is not None and ticks >= max_ticks:
            break
        await asyncio.sleep(check_interval)
