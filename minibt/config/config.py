"""Configuration management for minibt.

Provides centralized configuration with TOML support, validation and
hierarchical loading from defaults → config file → environment.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError

from minibt.models import Config, DownloadConfig, NetworkConfig, ObservabilityConfig
from minibt.utils.exceptions import ConfigurationError
from minibt.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "minibt.toml"

# Mapping of environment variables to config paths
ENV_MAPPINGS: dict[str, str] = {
    # Network
    "MINIBT_LISTEN_PORT": "network.listen_port",
    "MINIBT_CONNECTION_TIMEOUT": "network.connection_timeout",
    "MINIBT_READ_TIMEOUT": "network.read_timeout",
    "MINIBT_MAX_MESSAGE_LENGTH": "network.max_message_length",
    "MINIBT_PEER_ID_PREFIX": "network.peer_id_prefix",
    # Download
    "MINIBT_BLOCK_SIZE": "download.block_size",
    "MINIBT_MAX_BLOCK_RETRIES": "download.max_block_retries",
    # Observability
    "MINIBT_LOG_LEVEL": "observability.log_level",
    "MINIBT_LOG_FILE": "observability.log_file",
    "MINIBT_STRUCTURED_LOGGING": "observability.structured_logging",
}

# Global configuration instance
_config_manager: ConfigManager | None = None


def _parse_env_value(raw: str) -> bool | int | float | str:
    low = raw.lower()
    if low in {"true", "yes", "on"}:
        return True
    if low in {"false", "no", "off"}:
        return False
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = d
    for p in parts[:-1]:
        cur = cur.setdefault(p, {})
    cur[parts[-1]] = value


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_file: str | Path | None = None, setup_log: bool = True):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for minibt.toml
            setup_log: Configure logging from the loaded observability section

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        if setup_log:
            self._setup_logging()

    def _find_config_file(self, config_file: str | Path | None) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            path = Path(config_file)
            if not path.exists():
                msg = f"Config file not found: {path}"
                raise ConfigurationError(msg)
            return path

        search_paths = [
            Path.cwd() / CONFIG_FILE_NAME,
            Path.home() / ".config" / "minibt" / CONFIG_FILE_NAME,
            Path.home() / f".{CONFIG_FILE_NAME}",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file is not None:
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e
            logger.debug("Loaded configuration from %s", self.config_file)

        config_data = self._merge_config(config_data, self._get_env_config())

        try:
            return Config(**config_data)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}
        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw))
        return env_config

    def _merge_config(
        self, base: dict[str, Any], override: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self) -> str:
        """Export current configuration as TOML."""
        return toml.dumps(self.config.model_dump(mode="json", exclude_none=True))

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(setup_log=False)
    return _config_manager.config


def init_config(
    config_file: str | Path | None = None, setup_log: bool = True
) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file, setup_log=setup_log)
    return _config_manager


def reload_config() -> Config:
    """Reload configuration from file and environment."""
    if _config_manager is None:
        msg = "Configuration not initialized"
        raise ConfigurationError(msg)

    _config_manager.config = _config_manager._load_config()
    _config_manager._setup_logging()
    return _config_manager.config


def set_config(new_config: Config) -> None:
    """Replace the global configuration at runtime."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(setup_log=False)
    _config_manager.config = new_config


def reset_config() -> None:
    """Drop the global configuration so the next access reloads it."""
    global _config_manager
    _config_manager = None


def get_network_config() -> NetworkConfig:
    """Get network configuration."""
    return get_config().network


def get_download_config() -> DownloadConfig:
    """Get download configuration."""
    return get_config().download


def get_observability_config() -> ObservabilityConfig:
    """Get observability configuration."""
    return get_config().observability
