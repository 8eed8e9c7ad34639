"""Shared utilities and infrastructure.

This module contains common utilities used throughout the application.
"""

from __future__ import annotations

from retrieve_checker.utils.backoff import ExponentialBackoff
from retrieve_checker.utils.exceptions import (
    CheckerError,
    ConfigurationError,
    ContentVerificationError,
    MultiaddrError,
    NetworkError,
)
from retrieve_checker.utils.logging_config import setup_logging
from retrieve_checker.utils.resilience import retry_async

__all__ = [
    # Exceptions
    "CheckerError",
    "ConfigurationError",
    "ContentVerificationError",
    "MultiaddrError",
    "NetworkError",
    # Retry
    "ExponentialBackoff",
    "retry_async",
    # Logging
    "setup_logging",
]
