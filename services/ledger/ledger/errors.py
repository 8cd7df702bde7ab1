"""Exceptions raised by the ledger core.

Quota and cooldown rejections are not exceptions: they come back as result
values (see ledger.types.results). The exceptions here cover caller bugs and
infrastructure failures.
"""


class LedgerError(Exception):
    """Base class for ledger errors."""


class RecordNotFound(LedgerError):
    """The principal or resource has no record. Records are never created implicitly."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"No {kind} record for {key!r}")


class AlreadyExists(LedgerError):
    """A record with the same key already exists."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} record for {key!r} already exists")


class InvalidArgument(LedgerError, ValueError):
    """Programming error: negative cost, malformed key, naive datetime. Not retryable."""


class StoreUnavailable(LedgerError):
    """Transient failure of the backing store. Safe to retry; the core never does."""

    retryable = True
