"""
relaychat - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables, plus the small JSON profile that
identifies the local user to the relay.
"""

import copy
import json
import logging
import os
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .constants import (
    CONFIG_FILENAME,
    DEFAULT_DATA_DIR,
    DEFAULT_HOST,
    DEFAULT_RELAY_PORT,
    DEFAULT_SERVER_URL,
    DEFAULT_STORAGE_PASSPHRASE,
    PROFILE_FILENAME,
)
from .errors import ConfigError, ErrorCode
from .identity import normalize_phone

logger = logging.getLogger(__name__)

ENV_PREFIX = "RELAYCHAT"

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "relay": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_RELAY_PORT,
        # 0 means no frame ceiling
        "max_frame_size": 0,
    },
    "client": {
        "server_url": DEFAULT_SERVER_URL,
    },
    "storage": {
        "passphrase": DEFAULT_STORAGE_PASSPHRASE,
    },
    "logging": {
        "level": "INFO",
        "file_logging": True,
        "console_logging": True,
    },
}


class Config:
    """Configuration manager for relaychat.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
        """
        if config_path is None:
            config_path = Path(DEFAULT_DATA_DIR).expanduser() / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Raises:
            ConfigError: If the file exists but cannot be read or parsed
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e
            except OSError as e:
                raise ConfigError(
                    ErrorCode.E701_CONFIG_LOAD_FAILED,
                    f"Failed to read configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e

            config = self._merge_config(config, file_config)
            logger.debug(f"Loaded configuration from {self.config_path}")

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: RELAYCHAT_SECTION_KEY
        For example: RELAYCHAT_RELAY_PORT=9191
        """
        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)
                if env_value is None:
                    continue

                try:
                    if isinstance(current, bool):
                        settings[key] = env_value.lower() in ("true", "1", "yes")
                    elif isinstance(current, int):
                        settings[key] = int(env_value)
                    elif isinstance(current, float):
                        settings[key] = float(env_value)
                    else:
                        settings[key] = env_value
                except ValueError:
                    logger.warning(f"Ignoring {env_var}: cannot convert {env_value!r}")

        return config

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value."""
        self.data.setdefault(section, {})[key] = value

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                self._write_toml(f, self.data)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            ) from e

    @staticmethod
    def _write_toml(file, data: Dict[str, Any]) -> None:
        """Write configuration data as TOML format."""
        for section, settings in data.items():
            if not isinstance(settings, dict):
                continue
            file.write(f"[{section}]\n")
            for key, value in settings.items():
                if isinstance(value, bool):
                    file.write(f"{key} = {str(value).lower()}\n")
                elif isinstance(value, (int, float)):
                    file.write(f"{key} = {value}\n")
                elif isinstance(value, str):
                    file.write(f"{key} = {json.dumps(value)}\n")
            file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)

    @property
    def data_dir(self) -> Path:
        """Directory holding this configuration and the client data."""
        return self.config_path.parent

    @classmethod
    def create_example(cls, path: Path) -> None:
        """Create an example configuration file.

        Raises:
            ConfigError: If file creation fails
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write("# relaychat configuration file\n")
                f.write("# Generated example configuration\n\n")
                cls._write_toml(f, DEFAULT_CONFIG)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to create example configuration: {e}",
                {"path": str(path), "error": str(e)},
            ) from e


@dataclass
class LocalProfile:
    """Identity of the local user: own phone and the relay to register with."""

    phone_number: str
    signaling_server_url: str = DEFAULT_SERVER_URL
    user_name: Optional[str] = None

    def __post_init__(self):
        self.phone_number = normalize_phone(self.phone_number)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "phoneNumber": data["phone_number"],
            "signalingServerUrl": data["signaling_server_url"],
            "userName": data["user_name"],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "LocalProfile":
        return LocalProfile(
            phone_number=data["phoneNumber"],
            signaling_server_url=data.get("signalingServerUrl") or DEFAULT_SERVER_URL,
            user_name=data.get("userName"),
        )

    @staticmethod
    def path_in(data_dir: Union[str, Path]) -> Path:
        return Path(data_dir) / PROFILE_FILENAME

    @classmethod
    def load(cls, data_dir: Union[str, Path]) -> Optional["LocalProfile"]:
        """
        Load the profile from ``<data_dir>/profile.json``.

        Returns:
            The profile, or None if it has not been set up yet

        Raises:
            ConfigError: If the file exists but is not a valid profile
        """
        path = cls.path_in(data_dir)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ConfigError(
                ErrorCode.E701_CONFIG_LOAD_FAILED,
                f"Invalid profile: {e}",
                {"path": str(path), "error": str(e)},
            ) from e

    def save(self, data_dir: Union[str, Path]) -> None:
        """Write the profile atomically.

        Raises:
            ConfigError: If saving fails
        """
        path = self.path_in(data_dir)
        temp_file = f"{path}.tmp"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(temp_file, path)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save profile: {e}",
                {"path": str(path), "error": str(e)},
            ) from e
