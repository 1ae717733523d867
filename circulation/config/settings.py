"""
Configuration Management for Library Circulation

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Loan period and fine rate are deliberately NOT configuration: they are
fixed lending policy and live as named constants in the ledger.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """SQLite durable store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    path: str = Field(
        default="library_management.db",
        description="Path to the SQLite database file"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="How long SQLite waits on a locked database before failing"
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
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Minimum level for the structured log"
    )
    log_json: bool = Field(
        default=True,
        description="Render log lines as JSON (False renders for a console)"
    )

    # Store access
    store_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Upper bound on any single store call"
    )

    # Cache maintenance
    resync_interval_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Seconds between background resyncs (0 disables)"
    )
    repair_drift: bool = Field(
        default=True,
        description="Write corrected copy counts back to the store during resync"
    )
    seed_sample_data: bool = Field(
        default=True,
        description="Seed demo members and books into an empty store"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def periodic_resync_enabled(self) -> bool:
        return self.resync_interval_seconds > 0


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

    Returns a dict of {setting_name: is_valid}, with an
    {setting_name}_error entry for each section that failed to load.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    sections = {
        "store": lambda: settings.store,
        "app": lambda: settings.app,
    }
    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
