"""Coloured logging configuration for the benchmark bootstrap.

This module exposes the shared ``logger`` and a ``setup_logging`` function that
attaches a coloured console handler to it. Nothing is configured at import time;
the entry point calls ``setup_logging`` once when the process starts.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import ClassVar, TextIO

LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

# Aliases accepted on top of the names the logging module already knows
_LEVEL_ALIASES = {"WARN": logging.WARNING, "TRACE": logging.DEBUG}


class LogMessageFilter(logging.Filter):
    """A logging filter to remove problematic control characters from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log records, removing only problematic control characters.

        Returns:
            True if the log record should be processed, False otherwise.
        """
        if isinstance(record.msg, str):
            record.msg = _CONTROL_CHARS.sub("", record.msg)
        if record.exc_text:
            record.exc_text = _CONTROL_CHARS.sub("", record.exc_text)
        return True


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colour codes to different log levels."""

    # ANSI colour codes
    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[90m",  # Grey
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET: ClassVar[str] = "\033[0m"

    def __init__(self, fmt: str | None = None, *, use_colour: bool = True) -> None:
        """Initialise the formatter, optionally disabling colour output."""
        super().__init__(fmt)
        self.use_colour = use_colour

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with appropriate colours.

        Returns:
            The formatted log record with appropriate colours.
        """
        formatted = super().format(record)
        colour = self.COLORS.get(record.levelname, "") if self.use_colour else ""
        if colour:
            formatted = f"{colour}{formatted}{self.RESET}"
        return formatted


def parse_log_level(value: str | None) -> int:
    """Translate a ``LOG_LEVEL`` value into a logging level.

    Unknown or empty values fall back to ``INFO`` rather than failing, so a typo in
    the environment never prevents a benchmark from starting.

    Returns:
        The numeric logging level.
    """
    if not value:
        return DEFAULT_LOG_LEVEL
    name = value.strip().upper()
    if name in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[name]
    level = logging.getLevelName(name)
    if isinstance(level, int):
        return level
    return DEFAULT_LOG_LEVEL


logger = logging.getLogger("tgi_benchmark")


def setup_logging(level: str | None = None, stream: TextIO | None = None) -> logging.Logger:
    """Attach the coloured console handler to the shared benchmark logger.

    Calling this more than once replaces the previous handler instead of stacking a
    second one. Errors are always shown: a level above ERROR is capped at ERROR so a
    failed run still reports its cause.

    Args:
        level: Log level name; defaults to the ``LOG_LEVEL`` environment variable.
        stream: Destination stream; defaults to stderr.

    Returns:
        The configured logger.
    """
    if level is None:
        level = os.getenv(LOG_LEVEL_ENV)
    resolved = min(parse_log_level(level), logging.ERROR)
    stream = stream if stream is not None else sys.stderr

    for handler in list(logger.handlers):
        if getattr(handler, "_tgi_console", False):
            logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream)
    console_handler.setLevel(resolved)
    console_handler.setFormatter(
        ColoredFormatter(LOG_FORMAT, use_colour=getattr(stream, "isatty", lambda: False)())
    )
    console_handler.addFilter(LogMessageFilter())
    console_handler._tgi_console = True  # type: ignore[attr-defined]  # noqa: SLF001

    logger.addHandler(console_handler)
    logger.setLevel(resolved)

    # Prevent duplicate logs from root logger
    logger.propagate = False
    return logger
