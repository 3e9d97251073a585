"""Rich logging integration for drive-profiler.

Provides the console handler used for diagnostics and a formatter for
plain-text log files.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

_MARKUP_PATTERN = re.compile(r"\[/?[^\]]+\]")


class CorrelationRichHandler(RichHandler):
    """RichHandler that tags every record with the session correlation ID.

    Session lifecycle words (state names such as AWAITING_METADATA) are
    highlighted so state transitions stand out in a long run.
    """

    LEVEL_COLORS: dict[str, str] = {
        "DEBUG": "dim",
        "INFO": "cyan",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "bold red",
    }

    STATE_PATTERN = re.compile(r"\b[A-Z][A-Z_]*[A-Z]\b")

    def __init__(
        self,
        *args: Any,
        console: Console | None = None,
        show_colors: bool = True,
        **kwargs: Any,
    ) -> None:
        """Initialize handler.

        Args:
            *args: Positional arguments for RichHandler
            console: Optional Rich Console instance
            show_colors: Whether to highlight state names
            **kwargs: Keyword arguments for RichHandler

        """
        if console is None:
            console = Console(file=sys.stdout, markup=True, highlight=False)
        self.show_colors = show_colors
        kwargs.setdefault("markup", True)
        super().__init__(*args, console=console, **kwargs)

    def _colorize_states(self, message: str) -> str:
        if not self.show_colors:
            return message
        return self.STATE_PATTERN.sub(
            lambda m: f"[orange1]{m.group(0)}[/orange1]", message
        )

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a record with correlation ID and state highlighting."""
        try:
            if not hasattr(record, "correlation_id"):
                from driveprof.utils.logging_config import correlation_id

                record.correlation_id = correlation_id.get() or "no-correlation-id"

            super().emit(record)
        except Exception:
            self.handleError(record)

    def render_message(self, record: logging.LogRecord, message: str) -> Any:
        """Render the message with state names highlighted."""
        return super().render_message(record, self._colorize_states(escape(message)))


def strip_rich_markup(text: str) -> str:
    """Strip Rich markup from text for file logging."""
    return _MARKUP_PATTERN.sub("", text)


class FileFormatter(logging.Formatter):
    """Formatter for file output that strips Rich markup."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record, stripping Rich markup for file output."""
        return strip_rich_markup(super().format(record))


def create_rich_handler(
    console: Console | None = None,
    level: int | str = logging.INFO,
    show_path: bool = False,
    rich_tracebacks: bool = True,
    show_colors: bool = True,
) -> logging.Handler:
    """Create the console log handler.

    Args:
        console: Optional Rich Console instance
        level: Log level
        show_path: Whether to show file paths in log output
        rich_tracebacks: Whether to use rich tracebacks
        show_colors: Whether to highlight state names

    Returns:
        Configured handler instance

    """
    return CorrelationRichHandler(
        console=console,
        level=level,
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
        show_colors=show_colors,
    )
