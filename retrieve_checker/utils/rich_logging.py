"""Rich logging integration for the retrieval checker.

Provides a Rich console handler that carries the current correlation id.
"""

from __future__ import annotations

import copy
import logging
import re
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape


class CorrelationRichHandler(RichHandler):
    """RichHandler with correlation ID support.

    Task ids and CIDs are highlighted so a single dispute can be followed
    through interleaved output.
    """

    # CIDv1 (base32) and CIDv0 (base58) strings
    CID_PATTERN = re.compile(r"\b(?:baf[a-z2-7]{20,}|Qm[1-9A-HJ-NP-Za-km-z]{44})\b")

    def __init__(
        self,
        *args: Any,
        console: Console | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize handler.

        Args:
            *args: Positional arguments for RichHandler
            console: Optional Rich Console instance
            **kwargs: Keyword arguments for RichHandler

        """
        if console is None:
            console = Console(file=sys.stderr, markup=True)
        kwargs.setdefault("markup", True)
        super().__init__(*args, console=console, **kwargs)

    def _highlight_cids(self, message: str) -> str:
        return self.CID_PATTERN.sub(lambda m: f"[green]{m.group(0)}[/green]", message)

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record prefixed with its correlation id."""
        try:
            if not hasattr(record, "correlation_id"):
                from retrieve_checker.utils.logging_config import correlation_id

                record.correlation_id = correlation_id.get()

            message = self._highlight_cids(escape(record.getMessage()))
            corr = getattr(record, "correlation_id", None)
            if corr:
                message = f"[magenta]\\[{corr}][/magenta] {message}"
            # Other handlers share the record and must see the plain message
            rendered = copy.copy(record)
            rendered.msg = message
            rendered.args = ()
            super().emit(rendered)
        except Exception:
            self.handleError(record)


def create_rich_handler(
    console: Console | None = None,
    level: int | str = logging.INFO,
    show_path: bool = False,
    rich_tracebacks: bool = True,
) -> logging.Handler:
    """Create a RichHandler with correlation ID support.

    Args:
        console: Optional Rich Console instance
        level: Log level
        show_path: Whether to show file paths in log output
        rich_tracebacks: Whether to use rich tracebacks

    Returns:
        Configured RichHandler instance

    """
    return CorrelationRichHandler(
        console=console,
        level=level,
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
    )
