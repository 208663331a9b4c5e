"""
gexwatch - scheduled gamma exposure (GEX) collection for a universe of symbols

Collects nearest-expiry option chains from Tradier, computes GEX by strike,
caches snapshots in PostgreSQL and keeps an append-only GEX history.
"""

__version__ = "0.1.0"

# Import key modules for easy access
from gexwatch.config import load_config, get_all_config
from gexwatch.errors import (
    GexWatchError,
    UpstreamError,
    RateLimitedError,
    PersistenceError,
    ConfigurationError,
)
from gexwatch.market_clock import is_market_open, get_market_session
from gexwatch.validation import safe_float, safe_int, safe_date

__all__ = [
    "__version__",
    "load_config",
    "get_all_config",
    "GexWatchError",
    "UpstreamError",
    "RateLimitedError",
    "PersistenceError",
    "ConfigurationError",
    "is_market_open",
    "get_market_session",
    "safe_float",
    "safe_int",
    "safe_date",
]
