"""
Logging configuration for CEP Automation.
Provides structured logging with proper formatting.
"""

import copy
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Log level from environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


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
        # Color a copy so file handlers still see the plain level name
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(name: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup and return a configured logger.

    Args:
        name: Logger name. The default configures the root logger, so every
            module logger created with ``logging.getLogger(__name__)`` uses it.
        log_dir: Directory for the rotating log files (default: LOG_DIR env or ./logs)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if any(getattr(h, "_cep_handler", False) for h in logger.handlers):
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    directory = Path(log_dir or os.getenv("LOG_DIR", "./logs"))
    directory.mkdir(parents=True, exist_ok=True)
    file_format = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler with rotation
    file_handler = RotatingFileHandler(
        directory / "cep_automation.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)

    # Error file handler (errors and above)
    error_handler = RotatingFileHandler(
        directory / "cep_automation_errors.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)

    for handler in (console_handler, file_handler, error_handler):
        handler._cep_handler = True
        logger.addHandler(handler)

    return logger


def mask_email(email: str) -> str:
    """ops@example.com -> o**@example.com"""
    local, sep, domain = (email or "").partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}{'*' * max(len(local) - 1, 2)}@{domain}"


logger = logging.getLogger("api")


def log_request(method: str, path: str, status_code: int = None, duration_ms: float = None):
    """Log an HTTP request."""
    logger.info(f"HTTP {method} {path} -> {status_code} ({duration_ms:.2f}ms)" if duration_ms else f"HTTP {method} {path}")


def log_browser_event(engine: str, event: str, details: dict = None):
    """Log a browser engine event."""
    if details:
        logger.info(f"Browser {engine}: {event} | {', '.join(f'{k}={v}' for k, v in details.items())}")
    else:
        logger.info(f"Browser {engine}: {event}")


def log_job_event(job_id: str, event: str, email: str = None, error: str = None):
    """Log a job lifecycle event."""
    who = f" for {mask_email(email)}" if email else ""
    if error:
        logger.error(f"Job {job_id} {event}{who}: {error}")
    else:
        logger.info(f"Job {job_id} {event}{who}")
