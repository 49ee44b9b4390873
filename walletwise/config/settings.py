"""
Configuration Management for Walletwise

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The projection heuristics (reserve weight, trailing window, horizon
thresholds) live here as tunable parameters rather than being buried
in the engine.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (advisory text generation)."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=800,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class LedgerSettings(BaseSettings):
    """Ledger and projection engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Projection heuristics
    reserve_weight: Decimal = Field(
        default=Decimal("0.8"),
        ge=0,
        le=1,
        description="Weight applied to planned expenses due after the target date"
    )
    trailing_window_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Days of recent expenses used for the spending run-rate"
    )
    medium_horizon_days: int = Field(
        default=90,
        ge=1,
        description="Projections further out than this are at most MEDIUM confidence"
    )
    low_horizon_days: int = Field(
        default=180,
        ge=1,
        description="Projections further out than this are LOW confidence"
    )

    # Store access
    store_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long to wait for the store before reporting it unavailable"
    )
    confidence_batch_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay used to batch triggered confidence recalculations"
    )

    # Locale
    utc_offset_hours: int = Field(
        default=8,
        ge=-12,
        le=14,
        description="Offset of the user's local time from UTC (Philippine time by default)"
    )
    currency_symbol: str = Field(
        default="₱",
        max_length=5,
        description="Symbol used in advisory text"
    )

    @model_validator(mode='after')
    def validate_horizons(self) -> 'LedgerSettings':
        """The LOW horizon must lie beyond the MEDIUM horizon."""
        if self.low_horizon_days < self.medium_horizon_days:
            raise ValueError("low_horizon_days cannot be shorter than medium_horizon_days")
        return self

    @property
    def local_timezone(self) -> timezone:
        """The user's local timezone as a fixed offset."""
        return timezone(timedelta(hours=self.utc_offset_hours))

    def local_now(self) -> datetime:
        """Current time in the user's timezone."""
        return datetime.now(self.local_timezone)


class CacheSettings(BaseSettings):
    """Insight cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="INSIGHT_CACHE_",
        extra="ignore"
    )

    ttl_seconds: int = Field(
        default=24 * 60 * 60,
        ge=0,
        description="How long cached advisory text stays valid"
    )
    max_entries_per_user: int = Field(
        default=32,
        ge=1,
        description="Oldest entries are evicted past this count"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )


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

    # Sub-settings are loaded lazily so that a missing Gemini key
    # does not prevent the ledger from starting.

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


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

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("gemini", "ledger", "cache", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
