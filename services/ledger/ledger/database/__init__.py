from .base import Base, UTCDateTime
from .engine import build_engine, enable_sqlite_write_locks, get_engine, is_postgres, supports_row_locks
from .session import get_db, get_session_factory, make_session_factory

__all__ = [
    "Base",
    "UTCDateTime",
    "build_engine",
    "enable_sqlite_write_locks",
    "get_engine",
    "is_postgres",
    "supports_row_locks",
    "get_db",
    "get_session_factory",
    "make_session_factory",
]
