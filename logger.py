"""Logging configuration for the China Unicom usage bot.

Every record passes through the log sanitizer so cookies and refresh tokens
never reach the log files.
"""

import logging
import sys
from datetime import datetime

from config import LOG_DIR
from utils.log_sanitizer import sanitize_log


class SanitizingFilter(logging.Filter):
    """Redact credentials from the fully formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_log(record.getMessage())
        record.args = None
        return True


def setup_logging() -> logging.Logger:
    """Set up logging to a dated file and, when interactive, the console."""
    logger = logging.getLogger("unicom_bot")
    logger.setLevel(logging.INFO)

    # Clear any existing handlers
    logger.handlers.clear()
    logger.filters.clear()
    logger.addFilter(SanitizingFilter())

    log_file = LOG_DIR / f"{datetime.now().strftime('%Y-%m-%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(file_handler)

    # Console handler (only if not running as background)
    if sys.stdout is not None and sys.stdout.isatty():
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(message)s",
            datefmt="%H:%M:%S"
        ))
        logger.addHandler(console_handler)

    return logger


# Global logger instance
logger = setup_logging()
