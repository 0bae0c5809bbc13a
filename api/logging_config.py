"""
Logging configuration for the Missing Money search API.
Provides structured logging with proper formatting.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

# Log directory
LOG_DIR = Path(os.getenv("LOG_DIR", Path(__file__).parent.parent / "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Log level from environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Library packages whose module loggers share the service handlers
LIBRARY_PACKAGES = ("core", "browser")


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        original = record.levelname
        color = self.COLORS.get(original, self.RESET)
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _build_handlers(name: str):
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    file_format = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler with rotation
    file_handler = RotatingFileHandler(
        LOG_DIR / f"{name}.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)

    # Error file handler (errors and above)
    error_handler = RotatingFileHandler(
        LOG_DIR / f"{name}_errors.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)

    return [console_handler, file_handler, error_handler]


def setup_logging(name: str = "missing_money", packages: Iterable[str] = LIBRARY_PACKAGES) -> logging.Logger:
    """
    Setup and return a configured logger.

    The same handlers are attached to the loggers of ``packages`` so module
    loggers (``logging.getLogger(__name__)``) end up in the service log.

    Args:
        name: Logger name (default: missing_money)
        packages: Package logger names sharing the handlers

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    handlers = _build_handlers(name)
    for target in [logger] + [logging.getLogger(p) for p in packages]:
        target.setLevel(level)
        for handler in handlers:
            target.addHandler(handler)

    return logger


# Create default logger
logger = setup_logging()


def log_request(method: str, path: str, status_code: int = None, duration_ms: float = None):
    """Log an HTTP request."""
    if duration_ms is not None:
        logger.info(f"HTTP {method} {path} -> {status_code} ({duration_ms:.2f}ms)")
    else:
        logger.info(f"HTTP {method} {path}")


def log_search(request_id: str, state: str, success: bool, results: int = 0,
               total: float = 0.0, error: Optional[str] = None):
    """Log a finished search. Owner names are left out of the service log."""
    if error:
        logger.error(f"Search {request_id} ({state}) failed: {error}")
    else:
        logger.info(f"Search {request_id} ({state}) -> {results} results, ${total:,.2f}"
                    if success else f"Search {request_id} ({state}) -> no results")

