"""Configuration management for the retrieval checker.

Provides centralized configuration with TOML support, validation and
hierarchical loading from defaults → config file → environment.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import toml

from retrieve_checker.models import Config, LogLevel
from retrieve_checker.utils.exceptions import ConfigurationError
from retrieve_checker.utils.logging_config import setup_logging

# Global configuration instance
_config_manager: ConfigManager | None = None

ENV_MAPPINGS: dict[str, str] = {
    # Observability
    "RCHECK_LOG_LEVEL": "observability.log_level",
    "RCHECK_LOG_FILE": "observability.log_file",
    "RCHECK_STRUCTURED_LOGGING": "observability.structured_logging",
    "RCHECK_LOG_CORRELATION_ID": "observability.log_correlation_id",
    # IPNI
    "RCHECK_INDEXER_URL": "indexer.url",
    "RCHECK_INDEXER_MAX_ATTEMPTS": "indexer.max_attempts",
    "RCHECK_INDEXER_MIN_BACKOFF": "indexer.min_backoff",
    "RCHECK_INDEXER_BACKOFF_MULTIPLIER": "indexer.backoff_multiplier",
    "RCHECK_INDEXER_REQUEST_TIMEOUT": "indexer.request_timeout",
    # Chain
    "RCHECK_RPC_URL": "chain.rpc_url",
    "RCHECK_RPC_AUTH_TOKEN": "chain.rpc_auth_token",
    "RCHECK_RPC_REQUEST_TIMEOUT": "chain.request_timeout",
    "RCHECK_RPC_MAX_ATTEMPTS": "chain.max_attempts",
    "RCHECK_RPC_MIN_BACKOFF": "chain.min_backoff",
    "RCHECK_RPC_BACKOFF_MULTIPLIER": "chain.backoff_multiplier",
    "RCHECK_PEER_ID_SOURCES": "chain.peer_id_sources",
    "RCHECK_PEER_ID_SOURCE_TIMEOUT": "chain.source_timeout",
    "RCHECK_PEER_ID_CONTRACT_ADDRESS": "chain.peer_id_contract_address",
    # Retrieval
    "RCHECK_IDLE_TIMEOUT": "retrieval.idle_timeout",
    "RCHECK_MAX_REQUEST_DURATION": "retrieval.max_request_duration",
    "RCHECK_MAX_CAR_SIZE": "retrieval.max_car_size",
    "RCHECK_HEAD_TIMEOUT": "retrieval.head_timeout",
    "RCHECK_FULL_VERIFICATION": "retrieval.full_verification",
    "RCHECK_LASSIE_URL": "retrieval.lassie_url",
    # Queue
    "RCHECK_EVENT_POLL_INTERVAL": "queue.event_poll_interval",
    "RCHECK_ROUND_LENGTH": "queue.round_length",
    "RCHECK_MAX_TASKS_PER_ROUND": "queue.max_tasks_per_round",
    "RCHECK_MAX_JITTER": "queue.max_jitter",
}

# Paths whose values are comma-separated lists
_LIST_PATHS = frozenset({"chain.peer_id_sources"})

# Paths that must stay strings even when they look numeric
_STRING_PATHS = frozenset(
    {
        "observability.log_file",
        "indexer.url",
        "chain.rpc_url",
        "chain.rpc_auth_token",
        "chain.peer_id_contract_address",
        "retrieval.lassie_url",
    }
)


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for rcheck.toml

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        # Search in current directory, then home directory
        search_paths = [
            Path.cwd() / "rcheck.toml",
            Path.home() / ".config" / "rcheck" / "rcheck.toml",
            Path.home() / ".rcheck.toml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        # Start with defaults
        config_data: dict[str, Any] = {}

        if self.config_file is not None:
            if not self.config_file.exists():
                msg = f"Configuration file not found: {self.config_file}"
                raise ConfigurationError(msg)
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    toml_data = toml.load(f)
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e
            config_data.update(toml_data)

            # Allow "miner_info,contract" in TOML as well as a list
            sources = config_data.get("chain", {}).get("peer_id_sources")
            if isinstance(sources, str):
                config_data["chain"]["peer_id_sources"] = _split_list(sources)

        # Apply environment overrides
        env_config = self._get_env_config()
        config_data = self._merge_config(config_data, env_config)

        try:
            return Config(**config_data)
        except Exception as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}

        def _parse_env_value(
            raw: str, path: str
        ) -> bool | int | float | str | list[str]:
            if path in _LIST_PATHS:
                return _split_list(raw)
            if path in _STRING_PATHS:
                return raw

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

        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw, cfg_path))

        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self, fmt: str = "toml", include_secrets: bool = False) -> str:
        """Export current configuration as a string in the given format.

        Args:
            fmt: one of "toml" or "json"
            include_secrets: If False, the RPC auth token is masked

        """
        data = self.config.model_dump(mode="json", exclude_none=True)
        if not include_secrets and data.get("chain", {}).get("rpc_auth_token"):
            data["chain"]["rpc_auth_token"] = "***"

        fmt = (fmt or "toml").lower()
        if fmt == "toml":
            return toml.dumps(data)
        if fmt == "json":
            return json.dumps(data, indent=2)
        msg = f"Unsupported export format: {fmt}"
        raise ConfigurationError(msg)

    def setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager.config


def init_config(config_file: str | Path | None = None, verbosity: int = 0) -> ConfigManager:
    """Initialize the global configuration manager and logging.

    Each step of ``verbosity`` lowers the configured log level by one,
    stopping at DEBUG.
    """
    global _config_manager
    _config_manager = ConfigManager(config_file)
    if verbosity > 0:
        observability = _config_manager.config.observability
        levels = list(LogLevel)
        index = max(levels.index(LogLevel(observability.log_level)) - verbosity, 0)
        observability.log_level = levels[index]
    _config_manager.setup_logging()
    logging.getLogger(__name__).debug(
        "Loaded configuration from %s",
        _config_manager.config_file or "defaults",
    )
    return _config_manager
