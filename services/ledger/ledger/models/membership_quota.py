"""Per-principal quota balances and their refresh cycles."""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Enum as SAEnum, Integer, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger.database.base import Base, created_at_column, updated_at_column
from ledger.models.enums import MemberLevel


class MembershipQuota(Base):
    """
    Quota record for one principal.

    Balances are decremented by consumption and refilled to capacity when
    their reset instant passes. 0 <= remaining <= capacity always holds.
    Access: Direct via principal_id (read-only for the principal).
    """

    __tablename__ = "membership_quotas"
    __table_args__ = (
        CheckConstraint("monthly_quota >= 0", name="ck_membership_quotas_monthly_quota_non_negative"),
        CheckConstraint("daily_limit >= 0", name="ck_membership_quotas_daily_limit_non_negative"),
        CheckConstraint(
            "remaining_monthly >= 0 AND remaining_monthly <= monthly_quota",
            name="ck_membership_quotas_remaining_monthly_bounds",
        ),
        CheckConstraint(
            "remaining_daily >= 0 AND remaining_daily <= daily_limit",
            name="ck_membership_quotas_remaining_daily_bounds",
        ),
        CheckConstraint(
            "monthly_anchor_day BETWEEN 1 AND 31",
            name="ck_membership_quotas_monthly_anchor_day_range",
        ),
    )

    principal_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    level: Mapped[MemberLevel] = mapped_column(
        SAEnum(MemberLevel, native_enum=False),
        default=MemberLevel.FREE,
        index=True,
        nullable=False,
    )

    # Capacities per cycle
    monthly_quota: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    daily_limit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Balances for the current cycle
    remaining_monthly: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    remaining_daily: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Next refill instants
    monthly_reset_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    daily_reset_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    monthly_anchor_day: Mapped[int] = mapped_column(SmallInteger, nullable=False)

    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    def __repr__(self) -> str:
        return (
            f"<MembershipQuota {self.principal_id} {self.level.value} "
            f"daily={self.remaining_daily}/{self.daily_limit} "
            f"monthly={self.remaining_monthly}/{self.monthly_quota}>"
        )
