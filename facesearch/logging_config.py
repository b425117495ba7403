"""Logging configuration for the face search subsystem.

Every module obtains its logger through ``get_logger(__name__)`` so that
indexing and search runs share one format and one level.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record: logging.LogRecord) -> str:
        """Format a record, adding ANSI colors only for a tty."""
        # Color a copy so file handlers keep plain level names
        if hasattr(sys.stderr, "isatty") and sys.stderr.isatty():
            record = logging.makeLogRecord(record.__dict__)
            levelname = record.levelname
            if levelname in self.COLORS:
                record.levelname = (
                    f"{self.COLORS[levelname]}{self.BOLD}{levelname}{self.RESET}"
                )
                record.name = f"{self.BOLD}{record.name}{self.RESET}"

        return super().format(record)


def setup_logging(
    name: str = "facesearch",
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Create or return a configured logger.

    Args:
        name: Logger name (usually the module name).
        level: Log level name. If None, read from ``Config.log_level``.
        log_file: Optional file path that also receives the records.

    Returns:
        Configured logger instance.

    Example:
        >>> logger = setup_logging(__name__)
        >>> logger.info("Indexing started")
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    if level is None:
        try:
            from facesearch.config import get_config

            level = get_config().log_level
        except ValueError:
            level = "INFO"

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logger.level)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logger.level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    # Keep records out of the root logger to avoid duplicate lines
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get the logger for a module.

    Example:
        >>> from facesearch.logging_config import get_logger
        >>> logger = get_logger(__name__)
    """
    return setup_logging(name)
