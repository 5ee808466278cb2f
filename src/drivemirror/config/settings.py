"""Application configuration settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Every section reads .env itself; nested defaults are built outside AppSettings
_ENV_FILE = {
    "env_file": ".env",
    "env_file_encoding": "utf-8",
    "extra": "ignore",
}


class DriveSettings(BaseSettings):
    """Google Drive service account and request configuration."""

    client_email: str = ""
    private_key: str = Field(default="", repr=False)
    folder_id: str = ""
    credentials_file: Optional[str] = None
    request_timeout_seconds: float = 60.0
    rate_limit_calls: int = 100
    rate_limit_window: float = 100.0

    model_config = SettingsConfigDict(env_prefix="DRIVEMIRROR_DRIVE_", **_ENV_FILE)


class LocalSettings(BaseSettings):
    """Local directory being mirrored."""

    directory: str = "./vault"
    file_extension: str = "md"

    model_config = SettingsConfigDict(env_prefix="DRIVEMIRROR_LOCAL_", **_ENV_FILE)


class SyncSettings(BaseSettings):
    """Reconciliation behaviour."""

    max_concurrent_uploads: int = 1
    folder_scoped_lookup: bool = True
    cache_tokens: bool = False
    mime_type: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="DRIVEMIRROR_SYNC_", **_ENV_FILE)


class SchedulingSettings(BaseSettings):
    """Scheduling configuration."""

    # 0 disables the periodic job
    sync_interval_minutes: int = 5

    model_config = SettingsConfigDict(env_prefix="DRIVEMIRROR_SCHEDULE_", **_ENV_FILE)


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    file_path: Optional[str] = "./logs/drivemirror.log"

    model_config = SettingsConfigDict(env_prefix="DRIVEMIRROR_LOG_", **_ENV_FILE)


class ServerSettings(BaseSettings):
    """Status/trigger HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8080

    model_config = SettingsConfigDict(env_prefix="DRIVEMIRROR_SERVER_", **_ENV_FILE)


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = "drivemirror"
    version: str = "1.0.0"
    environment: str = "development"

    drive: DriveSettings = Field(default_factory=DriveSettings)
    local: LocalSettings = Field(default_factory=LocalSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    scheduling: SchedulingSettings = Field(default_factory=SchedulingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = SettingsConfigDict(
        env_prefix="DRIVEMIRROR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = AppSettings()


def get_settings() -> AppSettings:
    """Get application settings."""
    return settings


def reload_settings() -> AppSettings:
    """Re-read settings from the environment and ``.env``."""
    global settings
    settings = AppSettings()
    return settings
