"""Configuration package."""

from walletwise.config.settings import (
    AppSettings,
    CacheSettings,
    GeminiSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CacheSettings",
    "GeminiSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
