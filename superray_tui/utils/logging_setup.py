"""
Logging Setup module
"""

import logging
import sys
from pathlib import Path
from typing import Callable, Optional

PACKAGE_LOGGER = 'superray_tui'

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = (
    '%(asctime)s - %(name)s - %(levelname)s - '
    '%(funcName)s:%(lineno)d - %(message)s'
)


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger

    Handlers live on the package logger only, so that the TUI can take over
    the terminal without module loggers writing to it.
    """
    return logging.getLogger(name)


def setup_console_logging(level: int = logging.INFO,
                          name: str = PACKAGE_LOGGER) -> logging.Logger:
    """Log to stderr (one-shot CLI commands)"""
    logger = logging.getLogger(name)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    logger.addHandler(console_handler)
    logger.setLevel(level)
    return logger


def setup_file_logging(
    name: str = PACKAGE_LOGGER,
    log_file: Optional[Path] = None,
    level: int = logging.INFO
) -> logging.Logger:
    """Setup file logging"""
    logger = logging.getLogger(name)

    if log_file is None:
        log_dir = Path.home() / '.config' / 'superray-tui' / 'logs'
        log_file = log_dir / 'superray-tui.log'
    log_file = Path(log_file).expanduser()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))

    logger.addHandler(file_handler)
    logger.setLevel(level)

    return logger


def set_logging_level(level: str = "INFO"):
    """Set logging level for the package loggers"""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.getLogger(PACKAGE_LOGGER).setLevel(log_level)
    logging.getLogger().setLevel(log_level)


class CallbackHandler(logging.Handler):
    """Hand formatted records to a callable (the TUI activity log)"""

    def __init__(self, callback: Callable[[logging.LogRecord, str], None],
                 level: int = logging.INFO):
        super().__init__(level)
        self.callback = callback
        self.setFormatter(logging.Formatter('%(message)s'))

    def emit(self, record: logging.LogRecord):
        try:
            self.callback(record, self.format(record))
        except Exception:
            self.handleError(record)
