"""
Configuration Management for MessMate

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable of the sync layer (remote endpoint, health-check window,
cache TTL classes, local data directory) is visible in one place and
validated when first loaded.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RemoteSettings(BaseSettings):
    """Remote authoritative service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MESSMATE_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    base_url: str = Field(
        default="http://localhost:5000/api",
        description="Base URL of the remote API (including the /api prefix)"
    )
    use_backend: bool = Field(
        default=True,
        description="Set to false to always work against the local store"
    )
    timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=120.0,
        description="Overall timeout for one remote call"
    )

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoints are joined as base_url + '/path'."""
        return v.rstrip("/")


class ConnectivitySettings(BaseSettings):
    """Health-check cadence for the connectivity monitor."""

    model_config = SettingsConfigDict(
        env_prefix="MESSMATE_CONNECTIVITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    health_check_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="How long a health check result stays valid"
    )
    auto_health_check: bool = Field(
        default=True,
        description="Probe /health before an operation when the last check is stale"
    )


class CacheSettings(BaseSettings):
    """TTL classes for the response cache."""

    model_config = SettingsConfigDict(
        env_prefix="MESSMATE_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    short_ttl_seconds: float = Field(default=10.0, gt=0.0)
    default_ttl_seconds: float = Field(default=30.0, gt=0.0)
    long_ttl_seconds: float = Field(default=60.0, gt=0.0)


class LocalStoreSettings(BaseSettings):
    """Local fallback store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MESSMATE_LOCAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path(".messmate"),
        description="Directory holding one JSON file per collection"
    )
    serialize_writes: bool = Field(
        default=True,
        description="Run each collection's read-modify-write under a lock"
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
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured log output"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def remote(self) -> RemoteSettings:
        return RemoteSettings()

    @property
    def connectivity(self) -> ConnectivitySettings:
        return ConnectivitySettings()

    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @property
    def local_store(self) -> LocalStoreSettings:
        return LocalStoreSettings()

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

    for name in ("remote", "connectivity", "cache", "local_store", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
