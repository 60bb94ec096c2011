"""
Configuration Management for Calc Pro

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here, so every tunable constant of the
receipt pipeline and every storage credential is visible in one place
and validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CompressionSettings(BaseSettings):
    """Receipt image compression configuration."""

    model_config = SettingsConfigDict(
        env_prefix="COMPRESSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    target_max_bytes: int = Field(
        default=900 * 1024,
        ge=1,
        description="Encoded size budget for one receipt"
    )
    max_dim: int = Field(
        default=2000,
        ge=1,
        description="Longest side after the initial downscale"
    )
    min_quality: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Lowest encoder quality the pipeline may reach"
    )

    # Algorithm constants
    initial_quality: float = Field(default=0.82, gt=0.0, le=1.0)
    quality_step: float = Field(default=0.07, gt=0.0, le=1.0)
    min_dimension_floor: int = Field(
        default=800,
        ge=1,
        description="Shrinking stops once the longest side is at or below this"
    )
    initial_shrink: float = Field(default=0.9, gt=0.0, lt=1.0)
    shrink_step: float = Field(default=0.08, gt=0.0, lt=1.0)
    min_shrink: float = Field(default=0.6, gt=0.0, lt=1.0)

    @model_validator(mode='after')
    def validate_quality_range(self) -> 'CompressionSettings':
        """The starting quality cannot sit below the floor."""
        if self.initial_quality < self.min_quality:
            raise ValueError("initial_quality cannot be below min_quality")
        return self


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets session storage configuration."""

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

    # One worksheet per principal: "{worksheet_prefix}_{principal}"
    worksheet_prefix: str = Field(
        default="sessions",
        min_length=1,
        description="Prefix of the per-user session worksheets"
    )
    max_record_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Per-session record ceiling (metadata + attachments)"
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

    # Single-user deployments pin the principal here
    principal_id: Optional[str] = Field(
        default=None,
        description="Principal used when no sign-in provider is wired"
    )

    # Session defaults
    default_percent: float = Field(
        default=10.0,
        ge=0.0,
        description="Percent rate of a new session"
    )
    default_title: str = Field(
        default="New calculation",
        description="Title of a new session"
    )
    untitled_title: str = Field(
        default="Untitled calculation",
        description="Title stored when the user clears the title"
    )

    # Naming of receipts and archives
    receipt_title_fallback: str = Field(default="Calculation")
    receipt_note_fallback: str = Field(default="Deduction")
    archive_prefix: str = Field(default="receipts")


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

    @property
    def compression(self) -> CompressionSettings:
        return CompressionSettings()

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

    Returns a dict of {setting_name: is_valid}, plus a
    "{setting_name}_error" entry for each failure.
    """
    results = {}

    settings = get_settings()

    for name in ("compression", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
