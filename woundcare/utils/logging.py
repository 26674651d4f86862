"""
Structured Logging Configuration

Handlers are attached to the ``woundcare`` package logger only, so an
embedding service keeps control of the root logger. Audit trails are
returned to callers; log lines carry ids and counts only.
"""
import logging
import sys
from typing import Optional, TextIO
from datetime import datetime, timezone

from woundcare import config

PACKAGE_LOGGER = "woundcare"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class StructuredFormatter(logging.Formatter):
    """Single-line formatter with UTC timestamps; ANSI colors on a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG:    "\033[36m",
        logging.INFO:     "\033[32m",
        logging.WARNING:  "\033[33m",
        logging.ERROR:    "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")
        line = f"[{stamp}] {record.levelname:8} [{record.name}] {record.getMessage()}"
        if self.use_color:
            line = f"{self.LEVEL_COLORS.get(record.levelno, '')}{line}{self.RESET}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def _is_tty(stream: TextIO) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the engine's package logger.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL); unknown names fall back to INFO
        log_file: Optional path; plain pipe-delimited lines are appended there

    Returns:
        The configured ``woundcare`` logger
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(StructuredFormatter(use_color=_is_tty(sys.stdout)))
    package_logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        package_logger.addHandler(file_handler)

    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__`` so it sits under the package logger."""
    return logging.getLogger(name)


# Configure from woundcare.config on import
setup_logging(level=config.LOG_LEVEL, log_file=config.LOG_FILE or None)
