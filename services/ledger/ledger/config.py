from datetime import timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Field-name prefixes of the per-level capacity settings, one per MemberLevel value
TIER_PREFIXES = ("free", "standard", "premium", "top_tier")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database - can use either DATABASE_URL or separate params
    database_url: str | None = None

    # Separate DB params (for passwords with special characters)
    db_host: str | None = None
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str | None = None
    db_name: str = "postgres"

    # Visibility cooldown
    cooldown_days: float = Field(default=3, ge=0)

    # Daily balances refill at this local hour in reset_timezone
    daily_reset_hour: int = Field(default=1, ge=0, le=23)
    reset_timezone: str = "UTC"

    # Refresh scheduler
    refresh_interval_seconds: float = Field(default=60.0, gt=0)
    refresh_shard_index: int | None = None
    refresh_shard_count: int | None = None

    # Per-level capacities (monthly quota, daily calls)
    free_monthly_quota: int = Field(default=10_000, ge=0)
    free_daily_limit: int = Field(default=10, ge=0)
    standard_monthly_quota: int = Field(default=100_000, ge=0)
    standard_daily_limit: int = Field(default=50, ge=0)
    premium_monthly_quota: int = Field(default=500_000, ge=0)
    premium_daily_limit: int = Field(default=200, ge=0)
    top_tier_monthly_quota: int = Field(default=2_000_000, ge=0)
    top_tier_daily_limit: int = Field(default=1_000, ge=0)

    log_level: str = "INFO"

    @field_validator("reset_timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        # Raises ZoneInfoNotFoundError (a KeyError) for unknown keys
        try:
            ZoneInfo(value)
        except Exception as e:
            raise ValueError(f"Unknown time zone: {value}") from e
        return value

    @property
    def cooldown_window(self) -> timedelta:
        return timedelta(days=self.cooldown_days)

    @property
    def reset_zone(self) -> ZoneInfo:
        return ZoneInfo(self.reset_timezone)

    @property
    def refresh_shard(self) -> tuple[int, int] | None:
        """Shard (index, count) this process refreshes, if sharding is configured."""
        if self.refresh_shard_count is None:
            return None
        return (self.refresh_shard_index or 0, self.refresh_shard_count)

    def tier_quota(self, level) -> tuple[int, int]:
        """Return (monthly_quota, daily_limit) for a MemberLevel or its value."""
        prefix = getattr(level, "value", level)
        if prefix not in TIER_PREFIXES:
            raise ValueError(f"Unknown membership level: {level!r}")
        return (
            getattr(self, f"{prefix}_monthly_quota"),
            getattr(self, f"{prefix}_daily_limit"),
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
