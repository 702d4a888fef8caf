"""
Logging configuration utilities for the Server Query bot.
"""

import logging
import sys
from typing import Optional, Union

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
PLAIN_FORMAT = '%(name)s - %(levelname)s - %(message)s'
DEBUG_FORMAT = '%(asctime)s - %(name)s:%(lineno)d - %(threadName)s - %(levelname)s - %(message)s'

PACKAGE_LOGGERS = ('src.tsquery', 'src.tui')


def setup_logger(
    name: str,
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    include_timestamp: bool = True
) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name
        level: Logging level
        format_string: Custom format string
        include_timestamp: Whether to include timestamp in logs

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if format_string is None:
        format_string = DEFAULT_FORMAT if include_timestamp else PLAIN_FORMAT

    handler.setFormatter(logging.Formatter(format_string))
    logger.addHandler(handler)

    return logger


def parse_log_level(level: Union[str, int]) -> int:
    """
    Turn a level name such as ``"debug"`` into a logging constant.

    Raises:
        ValueError: If the name is not a known level
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"unknown log level: {level!r}")
    return value


def set_global_log_level(level: int) -> None:
    """
    Set the logging level on the root logger and the package loggers.
    """
    logging.getLogger().setLevel(level)

    for logger_name in PACKAGE_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def configure_debug_logging() -> None:
    """Configure debug-level logging, including the emitting thread."""
    set_global_log_level(logging.DEBUG)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.setFormatter(logging.Formatter(DEBUG_FORMAT))


def silence_external_loggers() -> None:
    """Silence noisy external library loggers."""
    logging.getLogger('rich').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
