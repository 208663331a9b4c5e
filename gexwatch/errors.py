"""
Error types for the gexwatch collection engine

Per-symbol errors (UpstreamError, PersistenceError) are recovered by the
engine and reported in the cycle summary. ConfigurationError stops a whole
cycle's dispatch before any request is made.
"""

from typing import Optional


class GexWatchError(Exception):
    """Base class for all gexwatch errors"""


class UpstreamError(GexWatchError):
    """Network, HTTP or decode failure talking to the market-data provider"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    """Provider answered with HTTP 429 (too many requests)"""

    def __init__(self, message: str, status_code: int = 429, retry_after: Optional[float] = None):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class PersistenceError(GexWatchError):
    """Snapshot store read or write failure"""


class ConfigurationError(GexWatchError):
    """Missing or invalid configuration (e.g. no API key)"""
