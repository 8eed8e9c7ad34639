"""Configuration management.

This module handles configuration loading and validation.
"""

from __future__ import annotations

from retrieve_checker.config.config import (
    Config,
    ConfigManager,
    get_config,
    init_config,
)

__all__ = [
    "Config",
    "ConfigManager",
    "get_config",
    "init_config",
]
