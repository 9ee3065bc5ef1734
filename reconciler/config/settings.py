"""
Configuration Management for Household Reconciler

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImportSettings(BaseSettings):
    """Transaction import configuration (webhook secret, sheet sync)."""

    model_config = SettingsConfigDict(
        env_prefix="TRANSACTION_IMPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # No key configured means every webhook request is rejected
    api_key: Optional[str] = Field(
        default=None,
        description="Shared secret expected in the x-api-key header"
    )
    sheet_id: str = Field(
        default="1Bp1DlgifwNrU7trcrk-02O6pyAYgz-VP220xRCroDgs",
        description="ID of the publicly viewable spreadsheet to sync from"
    )
    sheet_export_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120,
        description="Timeout for downloading the spreadsheet CSV export"
    )

    @property
    def sheet_url(self) -> str:
        return f"https://docs.google.com/spreadsheets/d/{self.sheet_id}"


class MatchingSettings(BaseSettings):
    """Auto-match engine tuning."""

    model_config = SettingsConfigDict(
        env_prefix="AUTO_MATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    month_boundary_tolerance_days: int = Field(
        default=3,
        ge=0,
        le=15,
        description="Days a transaction may fall outside the event's month and still match"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    families_sheet_name: str = Field(default="Families")
    accounts_sheet_name: str = Field(default="Accounts")
    transactions_sheet_name: str = Field(default="Transactions")
    events_sheet_name: str = Field(default="Events")
    categories_sheet_name: str = Field(default="MerchantCategories")
    rules_sheet_name: str = Field(default="MerchantRules")
    goals_sheet_name: str = Field(default="SavingsGoals")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which ledger storage backend to use"
    )

    # File upload limits
    max_upload_size_mb: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum CSV upload size in MB"
    )

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def imports(self) -> ImportSettings:
        return ImportSettings()

    @property
    def matching(self) -> MatchingSettings:
        return MatchingSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
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

    sections = {
        "imports": lambda: settings.imports,
        "matching": lambda: settings.matching,
        "google_sheets": lambda: settings.google_sheets,
        "app": lambda: settings.app,
    }

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    # A missing webhook secret is valid config but disables the webhook
    try:
        results["webhook_enabled"] = bool(settings.imports.api_key)
    except Exception:
        results["webhook_enabled"] = False

    return results
