from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from ledger.clock import FixedClock
from ledger.config import Settings
from ledger.database.base import Base
from ledger.database.engine import enable_sqlite_write_locks
from ledger.database.session import make_session_factory
from ledger.models import CooldownFlag, MembershipQuota
from ledger.services.cooldown_gate import CooldownGate
from ledger.services.quota_ledger import QuotaLedger
from ledger.services.store import LedgerStore

# Ensure all models are imported so they're registered with Base.metadata
__all__ = ["CooldownFlag", "MembershipQuota"]

# 01:00 UTC, on the daily reset hour used by test_settings
T0 = datetime(2026, 1, 15, 1, 0, tzinfo=timezone.utc)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key enforcement in SQLite."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def test_settings() -> Settings:
    """Settings independent of the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        cooldown_days=3,
        daily_reset_hour=1,
        reset_timezone="UTC",
        free_monthly_quota=100,
        free_daily_limit=5,
        standard_monthly_quota=1_000,
        standard_daily_limit=20,
        premium_monthly_quota=5_000,
        premium_daily_limit=50,
        top_tier_monthly_quota=20_000,
        top_tier_daily_limit=200,
    )


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing.

    Uses StaticPool to ensure all connections share the same in-memory database.
    Without this, each connection would get a fresh database without tables.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    # Enable foreign key enforcement in SQLite
    event.listen(engine, "connect", _set_sqlite_pragma)
    enable_sqlite_write_locks(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine; each thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        echo=False,
    )
    enable_sqlite_write_locks(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def session(session_factory):
    """Create a new database session for direct model tests."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def store(session_factory) -> LedgerStore:
    return LedgerStore(session_factory)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def ledger(store, test_settings, clock) -> QuotaLedger:
    return QuotaLedger(store, settings=test_settings, clock=clock)


@pytest.fixture
def gate(store, test_settings, clock) -> CooldownGate:
    return CooldownGate(store, settings=test_settings, clock=clock)


@pytest.fixture
def test_user_id() -> str:
    """Provide a consistent test principal ID."""
    return "00000000-0000-0000-0000-000000000001"


@pytest.fixture
def member(ledger: QuotaLedger, test_user_id: str) -> str:
    """A free-level principal created at T0 (5 daily, 100 monthly)."""
    ledger.create_membership(test_user_id, now=T0)
    return test_user_id
