"""Configuration package for minibt."""

from __future__ import annotations

from minibt.config.config import (
    ConfigManager,
    get_config,
    init_config,
    reload_config,
    reset_config,
    set_config,
)

__all__ = [
    "ConfigManager",
    "get_config",
    "init_config",
    "reload_config",
    "reset_config",
    "set_config",
]
