"""Configuration package."""

from reconciler.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    ImportSettings,
    MatchingSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "ImportSettings",
    "MatchingSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
