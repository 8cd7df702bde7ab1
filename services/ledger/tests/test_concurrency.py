"""Concurrency and atomicity tests for the store, ledger and gate."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from ledger.database.session import make_session_factory
from ledger.errors import RecordNotFound, StoreUnavailable
from ledger.models.enums import QuotaKind
from ledger.models.membership_quota import MembershipQuota
from ledger.services.cooldown_gate import CooldownGate
from ledger.services.quota_ledger import QuotaLedger
from ledger.services.store import KeyedLock, LedgerStore


@pytest.fixture
def threaded_store(file_engine) -> LedgerStore:
    return LedgerStore(make_session_factory(file_engine))


@pytest.fixture
def threaded_ledger(threaded_store, test_settings, clock) -> QuotaLedger:
    return QuotaLedger(threaded_store, settings=test_settings, clock=clock)


def run_together(n: int, fn):
    """Start `n` calls of fn() at the same moment and collect the results."""
    barrier = threading.Barrier(n)

    def call():
        barrier.wait()
        return fn()

    with ThreadPoolExecutor(max_workers=n) as pool:
        futures = [pool.submit(call) for _ in range(n)]
        return [f.result(timeout=60) for f in futures]


class TestConcurrentConsume:
    def test_two_competing_consumptions(self, threaded_ledger: QuotaLedger, test_user_id: str, t0: datetime):
        """Balance 5, two requests of 3: exactly one succeeds."""
        threaded_ledger.create_membership(test_user_id, now=t0)

        results = run_together(2, lambda: threaded_ledger.try_consume(test_user_id, daily_cost=3, monthly_cost=0))

        consumed = [r for r in results if r.consumed]
        rejected = [r for r in results if not r.consumed]
        assert len(consumed) == 1
        assert len(rejected) == 1
        assert rejected[0].reason.which == QuotaKind.DAILY
        assert threaded_ledger.get_snapshot(test_user_id).remaining_daily == 2

    def test_many_small_consumptions(self, threaded_ledger: QuotaLedger, test_user_id: str, t0: datetime):
        threaded_ledger.create_membership(test_user_id, now=t0, monthly_quota=1_000, daily_limit=10)

        results = run_together(16, lambda: threaded_ledger.try_consume(test_user_id, daily_cost=1, monthly_cost=7))

        assert sum(r.consumed for r in results) == 10
        snapshot = threaded_ledger.get_snapshot(test_user_id)
        assert snapshot.remaining_daily == 0
        assert snapshot.remaining_monthly == 1_000 - 10 * 7

    def test_consume_races_refresh(self, threaded_ledger: QuotaLedger, test_user_id: str, t0: datetime):
        """Consumptions and refreshes interleave without breaking the balance bounds."""
        threaded_ledger.create_membership(test_user_id, now=t0)
        threaded_ledger.try_consume(test_user_id, daily_cost=5, monthly_cost=0)
        now = t0 + timedelta(days=1)

        def work(i: int):
            if i % 2:
                return threaded_ledger.refresh(now)
            return threaded_ledger.try_consume(test_user_id, daily_cost=1, monthly_cost=1, now=now)

        counter = iter(range(10))
        lock = threading.Lock()

        def next_job():
            with lock:
                i = next(counter)
            return work(i)

        results = run_together(10, next_job)

        refresh_events = [e for r in results if isinstance(r, list) for e in r]
        consumed = [r for r in results if not isinstance(r, list) and r.consumed]
        assert len(refresh_events) == 1  # refilled exactly once at this instant
        snapshot = threaded_ledger.get_snapshot(test_user_id)
        assert 0 <= snapshot.remaining_daily <= snapshot.daily_limit
        # Consumptions that ran before the refill were rejected against the empty balance
        assert snapshot.remaining_daily == 5 - len(consumed)
        assert snapshot.daily_reset_at == t0 + timedelta(days=2)


class TestConcurrentTransition:
    def test_only_one_change_wins(self, threaded_store: LedgerStore, test_settings, t0: datetime):
        gate = CooldownGate(threaded_store, settings=test_settings)
        gate.register("prompt-1", now=t0 - timedelta(days=10))

        results = run_together(8, lambda: gate.try_transition("prompt-1", True, now=t0))

        assert sum(r.changed for r in results) == 1
        assert all(r.applied for r in results)

    def test_flip_flop_race(self, threaded_store: LedgerStore, test_settings, t0: datetime):
        """Competing opposite transitions: exactly one change is accepted."""
        gate = CooldownGate(threaded_store, settings=test_settings)
        gate.register("prompt-2", value=False, now=t0 - timedelta(days=10))
        values = iter([True, False] * 4)
        lock = threading.Lock()

        def flip():
            with lock:
                value = next(values)
            return gate.try_transition("prompt-2", value, now=t0)

        results = run_together(8, flip)

        assert sum(r.changed for r in results) == 1
        snapshot = gate.get_snapshot("prompt-2")
        assert snapshot.value is True
        assert snapshot.last_changed_at == t0


class TestSeparateStores:
    """Two stores on one database stand in for the API process and the scheduler process."""

    def test_refresh_waits_for_inflight_consume(self, file_engine, test_settings, test_user_id: str, t0: datetime):
        api = QuotaLedger(LedgerStore(make_session_factory(file_engine)), settings=test_settings)
        scheduler = QuotaLedger(LedgerStore(make_session_factory(file_engine)), settings=test_settings)
        api.create_membership(test_user_id, now=t0)
        api.try_consume(test_user_id, daily_cost=2, monthly_cost=0, now=t0)

        inside = threading.Event()
        proceed = threading.Event()

        def consume_one():
            # The read-check-write of try_consume, held open until told to finish
            with api.store.locked(MembershipQuota, test_user_id) as (_, record):
                inside.set()
                proceed.wait(timeout=10)
                record.remaining_daily -= 1

        with ThreadPoolExecutor(max_workers=2) as pool:
            consume = pool.submit(consume_one)
            assert inside.wait(timeout=10)
            refresh = pool.submit(scheduler.refresh, t0 + timedelta(days=1))
            # Give the refresh time to run: it cannot get in while the consumption holds the record
            time.sleep(0.5)
            assert not refresh.done()
            proceed.set()
            consume.result(timeout=60)
            events = refresh.result(timeout=60)

        assert len(events) == 1
        snapshot = scheduler.get_snapshot(test_user_id)
        # Consume then refresh: the refill is not lost
        assert snapshot.remaining_daily == 5
        assert snapshot.daily_reset_at == t0 + timedelta(days=2)

    def test_concurrent_consumes_across_stores(self, file_engine, test_settings, test_user_id: str, t0: datetime):
        ledgers = [
            QuotaLedger(LedgerStore(make_session_factory(file_engine)), settings=test_settings) for _ in range(4)
        ]
        ledgers[0].create_membership(test_user_id, now=t0, monthly_quota=1_000, daily_limit=10)
        picks = iter(range(16))
        lock = threading.Lock()

        def consume():
            with lock:
                ledger = ledgers[next(picks) % len(ledgers)]
            return ledger.try_consume(test_user_id, daily_cost=1, monthly_cost=1, now=t0)

        results = run_together(16, consume)

        assert sum(r.consumed for r in results) == 10
        snapshot = ledgers[0].get_snapshot(test_user_id)
        assert (snapshot.remaining_daily, snapshot.remaining_monthly) == (0, 990)


class TestLedgerStore:
    def test_rollback_on_error(self, store: LedgerStore, ledger: QuotaLedger, member: str):
        with pytest.raises(RuntimeError):
            with store.locked(MembershipQuota, member) as (_, record):
                record.remaining_daily = 0
                record.remaining_monthly = 0
                raise RuntimeError("abandoned")

        snapshot = ledger.get_snapshot(member)
        assert (snapshot.remaining_daily, snapshot.remaining_monthly) == (5, 100)

    def test_missing_record(self, store: LedgerStore):
        with pytest.raises(RecordNotFound):
            with store.locked(MembershipQuota, "missing"):
                pass

    def test_driver_failure_is_store_unavailable(self):
        session = MagicMock()
        session.get.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
        factory = MagicMock(return_value=session)
        store = LedgerStore(factory)

        with pytest.raises(StoreUnavailable):
            with store.locked(MembershipQuota, "anyone"):
                pass

        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_unavailable_store_fails_consume(self, test_settings):
        session = MagicMock()
        session.get.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
        ledger = QuotaLedger(LedgerStore(MagicMock(return_value=session)), settings=test_settings)

        with pytest.raises(StoreUnavailable) as exc_info:
            ledger.try_consume("anyone", daily_cost=1, monthly_cost=1)
        assert exc_info.value.retryable


class TestKeyedLock:
    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        holding = threading.Event()
        release = threading.Event()

        def hold_a():
            with locks.hold("a"):
                holding.set()
                release.wait(timeout=10)

        thread = threading.Thread(target=hold_a)
        thread.start()
        try:
            assert holding.wait(timeout=10)
            acquired = threading.Event()

            def take_b():
                with locks.hold("b"):
                    acquired.set()

            other = threading.Thread(target=take_b)
            other.start()
            assert acquired.wait(timeout=5)
            other.join(timeout=5)
        finally:
            release.set()
            thread.join(timeout=10)

    def test_same_key_blocks(self):
        locks = KeyedLock()
        release = threading.Event()
        holding = threading.Event()

        def hold():
            with locks.hold("a"):
                holding.set()
                release.wait(timeout=10)

        thread = threading.Thread(target=hold)
        thread.start()
        assert holding.wait(timeout=10)

        acquired = threading.Event()

        def take():
            with locks.hold("a"):
                acquired.set()

        other = threading.Thread(target=take)
        other.start()
        assert not acquired.wait(timeout=0.2)
        release.set()
        assert acquired.wait(timeout=10)
        thread.join(timeout=10)
        other.join(timeout=10)

    def test_idle_locks_are_dropped(self):
        locks = KeyedLock()
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0
