"""Configuration package for drivemirror."""

from .settings import (
    AppSettings,
    DriveSettings,
    LocalSettings,
    LoggingSettings,
    SchedulingSettings,
    ServerSettings,
    SyncSettings,
    get_settings,
    reload_settings
)

from .schema import MirrorConfig, ServiceAccountCredentials

from .loader import (
    ConfigLoader,
    ConfigurationError,
    load_config_from_env
)

__all__ = [
    # Environment settings
    "AppSettings",
    "DriveSettings",
    "LocalSettings",
    "LoggingSettings",
    "SchedulingSettings",
    "ServerSettings",
    "SyncSettings",
    "get_settings",
    "reload_settings",

    # Mirror configuration
    "MirrorConfig",
    "ServiceAccountCredentials",

    "ConfigLoader",
    "ConfigurationError",
    "load_config_from_env"
]
