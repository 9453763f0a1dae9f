"""
Configuration Management for Money Manager

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every setting has a default, so the application runs with no environment
at all; variables and the .env file only override.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Local record store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONEY_MANAGER_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    path: str = Field(
        default="money_manager.db",
        description="Path to the SQLite database file (':memory:' for tests)"
    )
    schema_version: Optional[int] = Field(
        default=None,
        ge=1,
        description="Schema version to open the store at (None = latest)"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="How long SQLite waits on a locked database before failing"
    )
    lock_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts to begin a transaction while the database is locked"
    )


class BackupSettings(BaseSettings):
    """Backup export/import configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONEY_MANAGER_BACKUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    include_attachments: bool = Field(
        default=True,
        description="Embed voucher attachments in exported documents"
    )
    attachment_chunk_size: int = Field(
        default=196608,
        ge=3,
        description="Raw bytes encoded per chunk (must be a multiple of 3)"
    )
    default_mime_type: str = Field(
        default="application/octet-stream",
        description="MIME type recorded for imported attachments that carry none"
    )

    @field_validator('attachment_chunk_size')
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Chunks must align with base64 groups so chunk encodings concatenate."""
        if v % 3 != 0:
            raise ValueError(
                f"attachment_chunk_size must be a multiple of 3, got {v}"
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONEY_MANAGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_name: str = Field(
        default="money-manager-single",
        description="Application name"
    )
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    log_json: bool = Field(
        default=True,
        description="Render log lines as JSON (console format otherwise)"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level = v.strip().upper()
        if level not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {sorted(allowed)}")
        return level


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
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def backup(self) -> BackupSettings:
        return BackupSettings()

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

    Returns a dict of {setting_name: is_valid}, with a
    `<name>_error` entry for each invalid group.
    """
    results = {}

    settings = get_settings()

    for name in ("store", "backup", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
