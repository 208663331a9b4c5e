"""
Centralized logging configuration module.

Provides a consistent logging setup across all gexwatch components. The
entry point calls configure_logging() once with the level from configuration;
modules obtain their loggers with get_logger(__name__).

Usage:
    from gexwatch.utils import configure_logging, get_logger

    configure_logging("INFO")
    logger = get_logger(__name__)
    logger.info("Collector started")
"""

import logging
from typing import Optional

# Valid logging levels mapping
VALID_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = 'INFO') -> int:
    """
    Configure the root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Unknown names fall back to INFO with a warning.

    Returns:
        int: The configured logging level
    """
    level_upper = (level or 'INFO').upper()

    if level_upper in VALID_LEVELS:
        log_level = VALID_LEVELS[level_upper]
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        force=True  # Override any existing configuration
    )

    if level_upper not in VALID_LEVELS:
        logging.getLogger(__name__).warning(
            f"Invalid LOG_LEVEL '{level}', defaulting to INFO. "
            f"Valid options: {', '.join(VALID_LEVELS.keys())}"
        )

    return log_level


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name, typically __name__ from the calling module.
              If None, returns the root logger.

    Returns:
        logging.Logger: Logger instance
    """
    return logging.getLogger(name)


def set_log_level(level: str) -> None:
    """
    Dynamically change the logging level at runtime.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Raises:
        ValueError: If level is not valid
    """
    level_upper = level.upper()

    if level_upper not in VALID_LEVELS:
        raise ValueError(
            f"Invalid log level '{level}'. "
            f"Valid options: {', '.join(VALID_LEVELS.keys())}"
        )

    logging.getLogger().setLevel(VALID_LEVELS[level_upper])
