"""Run the Alembic migrations against a scratch SQLite database."""

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from ledger.config import get_settings

SERVICE_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def migration_db(tmp_path, monkeypatch):
    """Point settings at a fresh database file for the duration of the test."""
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest.fixture
def alembic_config() -> Config:
    # No ini file: keeps the test's logging configuration untouched
    config = Config()
    config.set_main_option("script_location", str(SERVICE_ROOT / "alembic"))
    return config


def test_upgrade_and_downgrade(migration_db: str, alembic_config: Config):
    command.upgrade(alembic_config, "head")

    engine = create_engine(migration_db)
    try:
        tables = set(inspect(engine).get_table_names())
        assert {"membership_quotas", "cooldown_flags", "alembic_version"} <= tables
        quota_columns = {c["name"] for c in inspect(engine).get_columns("membership_quotas")}
        assert {"remaining_daily", "remaining_monthly", "monthly_anchor_day", "updated_at"} <= quota_columns
    finally:
        engine.dispose()

    command.downgrade(alembic_config, "base")

    engine = create_engine(migration_db)
    try:
        tables = set(inspect(engine).get_table_names())
        assert "membership_quotas" not in tables
        assert "cooldown_flags" not in tables
    finally:
        engine.dispose()
