"""Structured logging configuration for the retrieval checker.

Provides logging setup with correlation IDs (one per dispute), structured JSON
file output and Rich console output.
"""

from __future__ import annotations

import json
import logging
import logging.config
import time
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from retrieve_checker.utils.rich_logging import create_rich_handler

if TYPE_CHECKING:  # pragma: no cover
    from retrieve_checker.models import ObservabilityConfig

correlation_id: ContextVar[str | None] = cast(
    "ContextVar[str | None]",
    ContextVar("correlation_id", default=None),
)

_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "correlation_id",
    }
)


class CorrelationFilter(logging.Filter):
    """Filter to add correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record."""
        record.correlation_id = correlation_id.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry: dict[str, Any] = {
            "timestamp": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        if hasattr(record, "correlation_id"):
            log_entry["correlation_id"] = record.correlation_id
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # extra={...} fields
        log_entry.update(
            {
                key: value
                for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_KEYS
            }
        )
        return json.dumps(log_entry, default=str)


def setup_logging(config: ObservabilityConfig) -> None:
    """Set up logging with a Rich console handler and an optional file handler."""
    level = config.log_level if isinstance(config.log_level, str) else config.log_level.value

    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
            },
            "simple": {
                "format": "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s.%(funcName)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "filters": {
            "correlation": {
                "()": CorrelationFilter,
            },
        },
        "handlers": {},
        "loggers": {
            "retrieve_checker": {
                "level": level,
                "handlers": [],
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": [],
        },
    }

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "structured" if config.structured_logging else "simple",
            "filters": ["correlation"],
            "filename": str(log_path),
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
        }
        logging_config["loggers"]["retrieve_checker"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)

    console_handler = create_rich_handler(level=level)
    logging.getLogger("retrieve_checker").addHandler(console_handler)
    logging.getLogger().addHandler(console_handler)

    if config.log_correlation_id:
        correlation_id.set(str(uuid.uuid4())[:8])


def set_correlation_id(corr_id: str | None = None) -> str:
    """Set correlation ID for the current context."""
    if corr_id is None:
        corr_id = str(uuid.uuid4())[:8]
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return correlation_id.get()


class LoggingContext:
    """Context manager that logs an operation's start, finish and failure."""

    def __init__(
        self,
        operation: str,
        logger: logging.Logger | None = None,
        log_level: int = logging.DEBUG,
        slow_threshold: float = 1.0,
        **kwargs: Any,
    ):
        """Initialize operation context manager.

        Args:
            operation: Name of the operation
            logger: Logger to write to (default: this module's logger)
            log_level: Level for start/finish messages
            slow_threshold: Duration in seconds above which completion is logged at INFO
            **kwargs: Additional context passed as ``extra``

        """
        self.operation = operation
        self.kwargs = kwargs
        self.logger = logger or logging.getLogger(__name__)
        self.log_level = log_level
        self.slow_threshold = slow_threshold
        self.start_time: float | None = None

    def __enter__(self) -> LoggingContext:
        """Enter the context manager."""
        self.start_time = time.monotonic()
        self.logger.log(self.log_level, "Starting %s", self.operation, extra=self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Exit the context manager."""
        duration = time.monotonic() - self.start_time if self.start_time else 0.0

        if exc_type is None:
            level = logging.INFO if duration >= self.slow_threshold else self.log_level
            self.logger.log(
                level,
                "Completed %s in %.3fs",
                self.operation,
                duration,
                extra=self.kwargs,
            )
        else:
            self.logger.error(
                "Failed %s in %.3fs: %s",
                self.operation,
                duration,
                exc_val,
                extra=self.kwargs,
            )

        return False  # Don't suppress exceptions
