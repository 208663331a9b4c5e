"""
Utility modules for gexwatch

Components:
- Logging configuration with environment-based levels

Usage:
    from gexwatch.utils import configure_logging, get_logger, set_log_level

    configure_logging("INFO")
    logger = get_logger(__name__)

    # Change log level at runtime
    set_log_level('DEBUG')
"""

from gexwatch.utils.logging import configure_logging, get_logger, set_log_level

__all__ = [
    "configure_logging",
    "get_logger",
    "set_log_level",
]
