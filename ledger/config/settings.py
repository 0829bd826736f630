"""
Configuration Management for the Recurring Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The ledger core is mostly pure date math, so the knobs are few:
the name of the cash pseudo-card, the local timezone that defines "today",
the projection horizon and the offline retry schedule.
"""

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger semantics configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    cash_method: str = Field(
        default="Cash",
        min_length=1,
        description="Name of the cash pseudo-card (no billing cycle)"
    )
    timezone: str = Field(
        default="UTC",
        description="IANA timezone used to decide what 'today' is"
    )
    planned_horizon_days: int = Field(
        default=90,
        ge=1,
        le=730,
        description="How many days ahead planned occurrences are projected"
    )
    profile: str = Field(
        default="default",
        min_length=1,
        description="Active ledger profile (scopes cache keys and remote paths)"
    )

    @field_validator("cash_method")
    @classmethod
    def strip_cash_method(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("cash_method cannot be blank")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject timezone names the zoneinfo database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v


class SyncSettings(BaseSettings):
    """Offline queue and remote store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_SYNC_",
        extra="ignore"
    )

    remote_root: str = Field(
        default="ledgers",
        description="Root path under which each profile's collections live"
    )
    cache_path: str = Field(
        default="./data/ledger-cache.json",
        description="File used by the JSON persistent cache"
    )

    # Retry schedule for failed flushes
    initial_retry_seconds: float = Field(
        default=5.0,
        gt=0,
        description="First retry delay after a failed flush"
    )
    max_retry_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for the doubling retry delay"
    )

    @model_validator(mode="after")
    def check_retry_bounds(self) -> "SyncSettings":
        if self.max_retry_seconds < self.initial_retry_seconds:
            raise ValueError("max_retry_seconds must be >= initial_retry_seconds")
        return self


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus "<name>_error"
    entries describing what failed. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "sync"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
