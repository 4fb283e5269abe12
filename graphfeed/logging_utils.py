"""
Logging Utilities

Console and optional file logging for GraphFeed entry points. Library modules
only ever call logging.getLogger(__name__); handlers are configured here.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_PREFIX = "[graphfeed]"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the 'graphfeed' logger.

    Args:
        level: Console log level name
        log_file: If given, DEBUG and above are also written to this file

    Returns:
        The configured package logger
    """
    logger = logging.getLogger("graphfeed")
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers to avoid duplicates on repeated calls
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter(f'{LOG_PREFIX} %(levelname)s: %(message)s'))
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def log_exception(logger: logging.Logger, exc: BaseException, context: str = "", **kwargs) -> None:
    """Log an exception with its traceback and optional key/value context."""
    message = f"{type(exc).__name__}: {exc}"
    if context:
        message = f"{context} - {message}"
    if kwargs:
        message = f"{message} ({', '.join(f'{k}={v}' for k, v in kwargs.items())})"
    logger.error(message, exc_info=exc)
