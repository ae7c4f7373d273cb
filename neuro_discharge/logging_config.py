"""
Logging configuration for the discharge extraction service.

Console output is colored and kept at INFO; the rotating file log is JSON at
full verbosity so stage events and their `extra` payloads stay queryable.
"""

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "neuro-discharge"


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'

    def format(self, record):
        # Work on a copy so the file handlers still see the plain record
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.msg = f"{color}{record.getMessage()}{self.RESET}"
        record.args = None
        return super().format(record)


def setup_logging(
    log_file: Optional[str] = "neuro_discharge.log",
    error_log_file: Optional[str] = "neuro_discharge.error.log",
    console_level: int = logging.INFO,
) -> logging.Logger:
    """Setup logging for the package logger. Pass None to skip a file handler."""

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_formatter = ColoredFormatter(
        '%(asctime)s | %(levelname)s | [%(name)s] %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # Rotates daily, keeps 7 days of logs
    if log_file:
        file_handler = TimedRotatingFileHandler(
            log_file, when="midnight", interval=1, backupCount=7, encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        json_formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(message)s %(lineno)d %(funcName)s',
            rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
        )
        file_handler.setFormatter(json_formatter)
        logger.addHandler(file_handler)

    if error_log_file:
        error_handler = logging.FileHandler(error_log_file, mode='a', encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | [%(name)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        error_handler.setFormatter(error_formatter)
        logger.addHandler(error_handler)

    return logger
