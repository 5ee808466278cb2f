"""Configuration loader for JSON/YAML files and environment variables."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from .schema import MirrorConfig
from .settings import AppSettings, get_settings
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""
    pass


class ConfigLoader:
    """Loads and validates a MirrorConfig from files, dicts or settings."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> MirrorConfig:
        """Load configuration from a JSON or YAML file.

        Relative ``local_directory`` and ``credentials_file`` values are
        resolved against the directory holding the configuration file.

        Raises:
            ConfigurationError: If the file cannot be read or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                if file_path.suffix.lower() in ['.yaml', '.yml']:
                    data = yaml.safe_load(f)
                elif file_path.suffix.lower() == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {file_path}")

        return self.load_from_dict(data, base_dir=file_path.parent)

    def load_from_dict(self, data: Dict[str, Any], base_dir: Optional[Path] = None) -> MirrorConfig:
        """Load configuration from a dictionary."""
        data = self._apply_env_overrides(dict(data))
        data = self._resolve_paths(data, base_dir)
        data = self._resolve_credentials(data)

        try:
            config = MirrorConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        self.logger.info(
            "Configuration loaded",
            target_folder_id=config.target_folder_id,
            local_directory=str(config.local_directory),
            file_extension=config.file_extension
        )

        return config

    def load_from_settings(self, settings: Optional[AppSettings] = None) -> MirrorConfig:
        """Build configuration from environment based application settings."""
        settings = settings or get_settings()

        data: Dict[str, Any] = {
            "target_folder_id": settings.drive.folder_id,
            "local_directory": settings.local.directory,
            "file_extension": settings.local.file_extension,
            "max_concurrent_uploads": settings.sync.max_concurrent_uploads,
            "folder_scoped_lookup": settings.sync.folder_scoped_lookup,
            "request_timeout_seconds": settings.drive.request_timeout_seconds,
            "mime_type": settings.sync.mime_type,
        }

        if settings.drive.credentials_file:
            data["credentials_file"] = settings.drive.credentials_file
        else:
            data["credentials"] = {
                "client_email": settings.drive.client_email,
                "private_key": settings.drive.private_key,
            }

        return self.load_from_dict(data)

    def _resolve_paths(self, data: Dict[str, Any], base_dir: Optional[Path]) -> Dict[str, Any]:
        if base_dir is None:
            return data

        for key in ("local_directory", "credentials_file"):
            value = data.get(key)
            if value and not Path(value).expanduser().is_absolute():
                data[key] = str(base_dir / Path(value))

        return data

    def _resolve_credentials(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Load service account fields from ``credentials_file`` if given."""
        credentials_file = data.pop("credentials_file", None)
        if not credentials_file:
            return data

        if data.get("credentials"):
            raise ConfigurationError("Specify either credentials or credentials_file, not both")

        key_path = Path(credentials_file).expanduser()
        try:
            with open(key_path, 'r', encoding='utf-8') as f:
                key_data = json.load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read credentials file {key_path}: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid credentials file format {key_path}: {e}")

        missing = [field for field in ("client_email", "private_key") if not key_data.get(field)]
        if missing:
            raise ConfigurationError(f"Credentials file {key_path} is missing: {missing}")

        data["credentials"] = {
            "client_email": key_data["client_email"],
            "private_key": key_data["private_key"],
        }
        return data

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration data.

        Recognised variables: DRIVEMIRROR_FOLDER_ID, DRIVEMIRROR_LOCAL_DIRECTORY,
        DRIVEMIRROR_FILE_EXTENSION and DRIVEMIRROR_MAX_CONCURRENT_UPLOADS.
        """
        env_overrides: Dict[str, Any] = {}

        if os.getenv('DRIVEMIRROR_FOLDER_ID'):
            env_overrides['target_folder_id'] = os.getenv('DRIVEMIRROR_FOLDER_ID')

        if os.getenv('DRIVEMIRROR_LOCAL_DIRECTORY'):
            env_overrides['local_directory'] = os.getenv('DRIVEMIRROR_LOCAL_DIRECTORY')

        if os.getenv('DRIVEMIRROR_FILE_EXTENSION'):
            env_overrides['file_extension'] = os.getenv('DRIVEMIRROR_FILE_EXTENSION')

        if os.getenv('DRIVEMIRROR_MAX_CONCURRENT_UPLOADS'):
            try:
                env_overrides['max_concurrent_uploads'] = int(os.getenv('DRIVEMIRROR_MAX_CONCURRENT_UPLOADS'))
            except ValueError:
                self.logger.warning("Invalid DRIVEMIRROR_MAX_CONCURRENT_UPLOADS value, ignoring")

        if env_overrides:
            self.logger.info("Applied environment variable overrides", overrides=list(env_overrides.keys()))
            data = {**data, **env_overrides}

        return data


def load_config_from_env() -> MirrorConfig:
    """Load configuration from the first source found.

    Looks in this order:
    1. DRIVEMIRROR_CONFIG_FILE environment variable
    2. ./config/drivemirror.yaml, .yml or .json
    3. ./drivemirror.yaml, .yml or .json

    Falls back to the environment based AppSettings when no file exists.
    """
    loader = ConfigLoader()
    logger = get_logger("load_config_from_env")

    config_file = os.getenv('DRIVEMIRROR_CONFIG_FILE')
    if config_file:
        if os.path.exists(config_file):
            return loader.load_from_file(config_file)
        logger.warning("Specified config file not found", file=config_file)

    possible_files = [
        './config/drivemirror.yaml',
        './config/drivemirror.yml',
        './config/drivemirror.json',
        './drivemirror.yaml',
        './drivemirror.yml',
        './drivemirror.json'
    ]

    for file_path in possible_files:
        if os.path.exists(file_path):
            logger.debug("Found configuration file", file=file_path)
            return loader.load_from_file(file_path)

    return loader.load_from_settings()
