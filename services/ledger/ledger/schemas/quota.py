"""Read-only snapshots of ledger records."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ledger.models.enums import MemberLevel


class QuotaSnapshot(BaseModel):
    """Schema for a principal's quota state."""

    principal_id: str = Field(alias="principalId")
    level: MemberLevel
    monthly_quota: int = Field(ge=0, alias="monthlyQuota")
    daily_limit: int = Field(ge=0, alias="dailyLimit")
    remaining_monthly: int = Field(ge=0, alias="remainingMonthly")
    remaining_daily: int = Field(ge=0, alias="remainingDaily")
    monthly_reset_at: datetime = Field(alias="monthlyResetAt")
    daily_reset_at: datetime = Field(alias="dailyResetAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)


class CooldownFlagSnapshot(BaseModel):
    """Schema for a gated flag's state."""

    resource_id: str = Field(alias="resourceId")
    field: str
    owner_id: str | None = Field(default=None, alias="ownerId")
    value: bool
    last_changed_at: datetime = Field(alias="lastChangedAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)
