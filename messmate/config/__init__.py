"""Configuration package."""

from messmate.config.settings import (
    AppSettings,
    CacheSettings,
    ConnectivitySettings,
    LocalStoreSettings,
    RemoteSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CacheSettings",
    "ConnectivitySettings",
    "LocalStoreSettings",
    "RemoteSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
