from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL

from ledger.config import Settings, get_settings

# Seconds a SQLite writer waits on the database lock before giving up
SQLITE_BUSY_TIMEOUT = 30


def enable_sqlite_write_locks(engine: Engine) -> Engine:
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite otherwise reads outside any transaction and only locks the file
    at the first write, so two processes can both read a row before either
    writes it back. BEGIN IMMEDIATE takes the database write lock up front,
    which makes each read-check-write atomic across connections and
    processes. Concurrent transactions wait up to the busy timeout.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        # Let the "begin" listener below emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(settings: Settings) -> Engine:
    """Create an engine from settings."""
    # SQLite-specific settings
    if settings.database_url and settings.database_url.startswith("sqlite"):
        return _sqlite_engine(settings.database_url)

    # PostgreSQL - use separate params to handle special chars in password
    if settings.db_host:
        url = URL.create(
            drivername="postgresql",
            username=settings.db_user,
            password=settings.db_password,  # SQLAlchemy handles encoding
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
        )
    elif settings.database_url:
        url = settings.database_url
    else:
        # Default to SQLite
        return _sqlite_engine("sqlite:///./local.db")

    # PostgreSQL settings
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=False,
    )


def _sqlite_engine(url: str) -> Engine:
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        echo=False,
    )
    return enable_sqlite_write_locks(engine)


@lru_cache
def get_engine() -> Engine:
    """Create and cache the database engine."""
    return build_engine(get_settings())


def supports_row_locks(engine: Engine) -> bool:
    """Whether SELECT ... FOR UPDATE takes a real row lock on this backend.

    SQLite has no row locks; there enable_sqlite_write_locks serializes whole
    transactions instead.
    """
    return engine.dialect.name not in ("sqlite",)


def is_postgres(engine: Engine | None = None) -> bool:
    """Check if the database is PostgreSQL."""
    return (engine or get_engine()).dialect.name == "postgresql"
