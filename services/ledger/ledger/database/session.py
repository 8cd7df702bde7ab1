"""Database session management."""

from collections.abc import Generator
from functools import lru_cache
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ledger.database.engine import get_engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory used by the ledger store."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    """Session factory bound to the configured engine."""
    return make_session_factory(get_engine())


def get_db() -> Generator[Session, Any, None]:
    """
    Yield a database session and close it afterwards.

    For read-only use by collaborators (reporting, admin scripts). Mutations
    go through LedgerStore, which owns locking and commit.
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
