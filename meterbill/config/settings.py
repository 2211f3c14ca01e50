"""
Configuration Management for Household Meter Billing

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
]


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the spreadsheet holding the meter readings"
    )

    # Sheet names within the spreadsheet
    readings_sheet_name: str = Field(
        default="Sheet1",
        description="Name of the sheet for bill records"
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
                "Make sure it exists before running the application."
            )
        return v


class GoogleAuthSettings(BaseSettings):
    """Identity provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_AUTH_",
        extra="ignore"
    )

    scopes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SCOPES),
        description="OAuth scopes requested on sign-in"
    )
    userinfo_url: str = Field(
        default="https://www.googleapis.com/oauth2/v3/userinfo",
        description="Endpoint returning the signed-in identity"
    )
    revoke_url: str = Field(
        default="https://oauth2.googleapis.com/revoke",
        description="Endpoint used to revoke an access token"
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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )

    # Billing defaults
    default_cost_per_unit: float = Field(
        default=10.0,
        gt=0,
        description="Cost per unit used when no earlier record carries one"
    )

    # Session lifecycle
    session_max_age_minutes: int = Field(
        default=55,
        ge=1,
        le=60,
        description="Age after which an access token is treated as expired"
    )
    session_notice_seconds: int = Field(
        default=5,
        ge=1,
        description="How long the session-expired notice stays visible"
    )

    # Local state (persisted token, family preferences)
    state_dir: str = Field(
        default=".meterbill",
        description="Directory for locally persisted state"
    )

    @property
    def state_path(self) -> Path:
        """Get the local state directory as a Path."""
        return Path(self.state_dir)


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
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def google_auth(self) -> GoogleAuthSettings:
        return GoogleAuthSettings()

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

    for name in ("google_sheets", "google_auth", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
