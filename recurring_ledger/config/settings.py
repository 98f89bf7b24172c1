"""
Configuration Management for Recurring Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from recurring_ledger.models.template import DEFAULT_FREQUENCY, Frequency


class SchedulerSettings(BaseSettings):
    """
    Batch scheduling behaviour.

    The cutover is the daily "settlement" moment after which the current
    day's occurrences may post. Defaults to 04:00 India Standard Time.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECURRING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    cutover_hour: int = Field(
        default=4,
        ge=0,
        le=23,
        description="Hour of the daily cutover in the reference timezone"
    )
    cutover_minute: int = Field(
        default=0,
        ge=0,
        le=59,
        description="Minute of the daily cutover in the reference timezone"
    )
    reference_timezone: str = Field(
        default="Asia/Kolkata",
        description="IANA timezone the cutover and 'today' are evaluated in"
    )
    default_frequency: Frequency = Field(
        default=DEFAULT_FREQUENCY,
        description="Frequency substituted when a template has none"
    )
    use_atomic_claims: bool = Field(
        default=True,
        description="Claim each occurrence with compare-and-set before writing it"
    )
    transaction_note: str = Field(
        default="auto-generated",
        max_length=200,
        description="Note attached to every generated transaction"
    )
    upcoming_window_days: int = Field(
        default=7,
        ge=1,
        le=366,
        description="Look-ahead window for the upcoming payments preview"
    )

    @field_validator('reference_timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject timezone names the tz database doesn't know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


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
    templates_sheet_name: str = Field(
        default="RecurringPayments",
        description="Name of the sheet holding recurring templates"
    )
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet holding ledger transactions"
    )
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
                "Make sure it exists before running the scheduler."
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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
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

    # Sub-settings are loaded lazily to allow partial configuration
    # (the scheduler can run against in-memory stores without Sheets).

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()

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

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries describing failures.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("scheduler", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
