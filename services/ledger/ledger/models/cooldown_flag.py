from datetime import datetime

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger.database.base import Base, created_at_column, updated_at_column


class CooldownFlag(Base):
    """
    A boolean flag on a resource that may change at most once per cooldown window.

    Keyed by (resource_id, field) so one resource can carry several gated
    flags. value and last_changed_at are only ever written together.
    Access: owner_id is informational; authorization happens upstream.
    """

    __tablename__ = "cooldown_flags"

    resource_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    field: Mapped[str] = mapped_column(String(64), primary_key=True, default="is_public")
    owner_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)

    value: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_changed_at: Mapped[datetime] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()
