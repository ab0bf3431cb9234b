"""Shared utilities and infrastructure.

This module contains the exception hierarchy and logging setup used
throughout the application.
"""

from __future__ import annotations

from minibt.utils.exceptions import (
    ConfigurationError,
    FormatError,
    IntegrityError,
    MiniBTError,
    NetworkError,
    ProtocolError,
)
from minibt.utils.logging_config import get_logger, setup_logging

__all__ = [
    "ConfigurationError",
    "FormatError",
    "IntegrityError",
    "MiniBTError",
    "NetworkError",
    "ProtocolError",
    "get_logger",
    "setup_logging",
]
