"""
Ledger store: keyed storage with per-key atomic read-modify-write.

Every mutation of a record runs inside `LedgerStore.locked(model, key)`:
one session, one transaction, the row loaded under the key's serialization
unit. The unit is an in-process lock for the key plus a database lock that
also holds across processes: SELECT ... FOR UPDATE on PostgreSQL, and on
SQLite the write lock taken by BEGIN IMMEDIATE (see
ledger.database.engine.enable_sqlite_write_locks), which serializes all
writers.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Hashable, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ledger.database.engine import supports_row_locks
from ledger.errors import AlreadyExists, RecordNotFound, StoreUnavailable
from ledger.models.membership_quota import MembershipQuota

logger = logging.getLogger(__name__)

M = TypeVar("M")

# Driver-level failures that mean "try again later", not "bad request"
TRANSIENT_ERRORS = (OperationalError, InterfaceError)


class KeyedLock:
    """Registry of per-key locks. Idle entries are dropped."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list[Any]] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def _kind(model: type) -> str:
    return model.__tablename__


class LedgerStore:
    """SQLAlchemy-backed store for ledger records."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._keys = KeyedLock()
        bind = session_factory.kw.get("bind")
        self._row_locks = bind is not None and supports_row_locks(bind)

    @contextmanager
    def locked(self, model: type[M], key: Any) -> Iterator[tuple[Session, M]]:
        """
        Load `model` by primary key under its serialization unit.

        Yields (session, row). Commits when the block exits normally and rolls
        back on any exception, including cancellation, so a caller abandoning
        the call never leaves a partial write.

        Raises:
            RecordNotFound: no row for `key`
            StoreUnavailable: the database could not be reached
        """
        with self._keys.hold((_kind(model), key)):
            session = self._session_factory()
            try:
                row = session.get(model, key, with_for_update=self._row_locks)
                if row is None:
                    raise RecordNotFound(_kind(model), _key_repr(key))
                yield session, row
                session.commit()
            except TRANSIENT_ERRORS as e:
                session.rollback()
                logger.warning(f"Store unavailable while updating {_kind(model)} {key!r}: {e}")
                raise StoreUnavailable(str(e)) from e
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    def add(self, instance: Any, key: Any) -> Any:
        """Insert a new record. Raises AlreadyExists if the key is taken."""
        model = type(instance)
        with self._keys.hold((_kind(model), key)):
            session = self._session_factory()
            try:
                session.add(instance)
                session.commit()
                return instance
            except IntegrityError as e:
                session.rollback()
                if session.get(model, key) is not None:
                    raise AlreadyExists(_kind(model), _key_repr(key)) from e
                raise
            except TRANSIENT_ERRORS as e:
                session.rollback()
                raise StoreUnavailable(str(e)) from e
            finally:
                session.close()

    def delete(self, model: type, key: Any) -> None:
        with self.locked(model, key) as (session, row):
            session.delete(row)

    def get(self, model: type[M], key: Any) -> M:
        """Read a record without locking. The returned object is detached."""
        session = self._session_factory()
        try:
            row = session.get(model, key)
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailable(str(e)) from e
        finally:
            session.close()
        if row is None:
            raise RecordNotFound(_kind(model), _key_repr(key))
        return row

    def due_principals(self, now: datetime) -> list[str]:
        """Principals with a monthly or daily reset at or before `now`, in key order."""
        stmt = (
            select(MembershipQuota.principal_id)
            .where(
                or_(
                    MembershipQuota.monthly_reset_at <= now,
                    MembershipQuota.daily_reset_at <= now,
                )
            )
            .order_by(MembershipQuota.principal_id)
        )
        session = self._session_factory()
        try:
            return list(session.scalars(stmt))
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailable(str(e)) from e
        finally:
            session.close()


def _key_repr(key: Any) -> str:
    if isinstance(key, tuple):
        return "/".join(str(part) for part in key)
    return str(key)
