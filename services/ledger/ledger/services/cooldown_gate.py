"""Cooldown gate for flags that may change at most once per window (e.g. a prompt's public status)."""

import logging
from datetime import datetime, timedelta

from ledger.clock import Clock, SystemClock, ensure_aware
from ledger.config import Settings, get_settings
from ledger.errors import InvalidArgument
from ledger.models.cooldown_flag import CooldownFlag
from ledger.models.enums import TransitionOutcome
from ledger.schemas.quota import CooldownFlagSnapshot
from ledger.services.quota_ledger import validate_key
from ledger.services.store import LedgerStore
from ledger.types.results import CooldownActive, TransitionResult

logger = logging.getLogger(__name__)

DEFAULT_FIELD = "is_public"


def _validate_value(value: bool) -> bool:
    if not isinstance(value, bool):
        logger.error(f"Rejected non-boolean flag value: {value!r}")
        raise InvalidArgument(f"Flag value must be a bool, got {type(value).__name__}")
    return value


def _validate_field(field: str) -> str:
    if not isinstance(field, str) or not field or len(field) > 64:
        raise InvalidArgument(f"Invalid flag field: {field!r}")
    return field


class CooldownGate:
    """
    Accepts a change to a gated flag only when the cooldown window has passed
    since the last accepted change.

    Setting a flag to the value it already has is accepted without touching
    last_changed_at, so it never consumes the window.
    """

    def __init__(
        self,
        store: LedgerStore,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()

    def _now(self, now: datetime | None) -> datetime:
        return ensure_aware(now if now is not None else self.clock.now())

    def register(
        self,
        resource_id: str,
        value: bool = False,
        now: datetime | None = None,
        field: str = DEFAULT_FIELD,
        owner_id: str | None = None,
    ) -> CooldownFlagSnapshot:
        """
        Start tracking a flag. last_changed_at starts at `now`, so the first
        change is allowed one full window after registration.
        """
        validate_key(resource_id, "resource_id")
        _validate_field(field)
        if owner_id is not None:
            validate_key(owner_id, "owner_id")
        now = self._now(now)
        flag = CooldownFlag(
            resource_id=resource_id,
            field=field,
            owner_id=owner_id,
            value=_validate_value(value),
            last_changed_at=now,
            created_at=now,
            updated_at=now,
        )
        self.store.add(flag, (resource_id, field))
        logger.info(f"Registered {field}={value} for {resource_id}")
        return CooldownFlagSnapshot.model_validate(flag)

    def remove(self, resource_id: str, field: str = DEFAULT_FIELD) -> None:
        validate_key(resource_id, "resource_id")
        self.store.delete(CooldownFlag, (resource_id, _validate_field(field)))

    def get_snapshot(self, resource_id: str, field: str = DEFAULT_FIELD) -> CooldownFlagSnapshot:
        validate_key(resource_id, "resource_id")
        return CooldownFlagSnapshot.model_validate(
            self.store.get(CooldownFlag, (resource_id, _validate_field(field)))
        )

    def try_transition(
        self,
        resource_id: str,
        new_value: bool,
        now: datetime | None = None,
        cooldown: timedelta | None = None,
        field: str = DEFAULT_FIELD,
    ) -> TransitionResult:
        """
        Set a gated flag to `new_value` if its cooldown has elapsed.

        Returns APPLIED (changed=False for a same-value request) or REJECTED
        carrying next_allowed_at = last_changed_at + cooldown. A rejection
        writes nothing.

        Raises:
            InvalidArgument: non-bool value, negative window, malformed id
            RecordNotFound: the flag was never registered
        """
        validate_key(resource_id, "resource_id")
        _validate_field(field)
        _validate_value(new_value)
        window = self.settings.cooldown_window if cooldown is None else cooldown
        if not isinstance(window, timedelta) or window < timedelta(0):
            raise InvalidArgument(f"Cooldown window must be a non-negative timedelta, got {window!r}")
        now = self._now(now)

        with self.store.locked(CooldownFlag, (resource_id, field)) as (_, flag):
            changed = False
            reason = None
            if flag.value != new_value:
                next_allowed_at = flag.last_changed_at + window
                if now < next_allowed_at:
                    reason = CooldownActive(next_allowed_at=next_allowed_at)
                else:
                    flag.value = new_value
                    flag.last_changed_at = now
                    flag.updated_at = now
                    changed = True

        if reason is not None:
            logger.info(
                f"Cooldown active for {resource_id}.{field}: next change allowed at "
                f"{reason.next_allowed_at.isoformat()}"
            )
            return TransitionResult(
                outcome=TransitionOutcome.REJECTED,
                resource_id=resource_id,
                field=field,
                value=flag.value,
                changed=False,
                last_changed_at=flag.last_changed_at,
                reason=reason,
            )

        if changed:
            logger.debug(f"{resource_id}.{field} -> {new_value}")
        return TransitionResult(
            outcome=TransitionOutcome.APPLIED,
            resource_id=resource_id,
            field=field,
            value=flag.value,
            changed=changed,
            last_changed_at=flag.last_changed_at,
        )
