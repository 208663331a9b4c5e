"""
Centralized configuration for the gexwatch collector

All tunables are read from the environment (and a local .env file) by
load_config() and returned as frozen dataclasses. Components receive the
section they need through their constructors; nothing reads os.environ
after startup.
"""

import math
import os
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Mapping, Optional, Tuple
from dotenv import load_dotenv

from gexwatch.errors import ConfigurationError
from gexwatch.symbols import DEFAULT_SYMBOLS, normalize_symbols


# =============================================================================
# API Configuration
# =============================================================================

@dataclass(frozen=True)
class TradierConfig:
    """Upstream market-data provider settings"""
    api_key: Optional[str] = None
    base_url: str = "https://api.tradier.com/v1"
    request_timeout: float = 30.0  # seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


# =============================================================================
# Collection Configuration
# =============================================================================

@dataclass(frozen=True)
class CollectorConfig:
    """Collection engine scheduling, pacing and cache policy"""
    symbols: Tuple[str, ...] = tuple(DEFAULT_SYMBOLS)
    collection_interval: float = 1800.0  # 30 minutes
    max_workers: int = 5
    request_delay: float = 1.0  # seconds between symbols, per worker
    rate_limit_backoff: float = 5.0  # seconds before the single retry
    cycle_timeout: float = 1800.0  # seconds

    # Cache freshness
    snapshot_freshness: float = 600.0  # 10 minutes
    expiry_dates_freshness: float = 86400.0  # 24 hours
    expiry_guard_window: float = 86400.0  # 24 hours


# =============================================================================
# Database Configuration
# =============================================================================

@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection settings"""
    host: str = "localhost"
    port: int = 5432
    name: str = "gexwatch"
    user: str = "postgres"
    pool_min: int = 1
    pool_max: int = 10
    password_provider: str = "pgpass"


@dataclass(frozen=True)
class AppConfig:
    """Complete configuration"""
    tradier: TradierConfig = field(default_factory=TradierConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    log_level: str = "INFO"


# =============================================================================
# Loading
# =============================================================================

def _get_float(env: Mapping[str, str], name: str, default: float, minimum: float = 0.0) -> float:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'")
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be a finite number, got '{raw}'")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_symbols(env: Mapping[str, str]) -> Tuple[str, ...]:
    raw = env.get("GEX_SYMBOLS", "")
    if not raw.strip():
        return tuple(DEFAULT_SYMBOLS)
    symbols = normalize_symbols(raw.split(","))
    if not symbols:
        raise ConfigurationError("GEX_SYMBOLS is set but contains no symbols")
    return tuple(symbols)


def load_config(env: Optional[Mapping[str, str]] = None, use_dotenv: bool = True) -> AppConfig:
    """
    Build the application configuration

    Args:
        env: Mapping to read from (default: os.environ)
        use_dotenv: Load a .env file into os.environ first

    Returns:
        AppConfig

    Raises:
        ConfigurationError: If a numeric setting cannot be parsed
    """
    if env is None:
        if use_dotenv:
            load_dotenv()
        env = os.environ

    tradier = TradierConfig(
        api_key=env.get("TRADIER_API_KEY") or None,
        base_url=env.get("TRADIER_BASE_URL", TradierConfig.base_url).rstrip("/"),
        request_timeout=_get_float(env, "API_REQUEST_TIMEOUT", TradierConfig.request_timeout, minimum=0.1),
    )

    collector = CollectorConfig(
        symbols=_get_symbols(env),
        collection_interval=_get_float(env, "COLLECTION_INTERVAL", CollectorConfig.collection_interval, minimum=1.0),
        max_workers=_get_int(env, "COLLECTION_WORKERS", CollectorConfig.max_workers, minimum=1),
        request_delay=_get_float(env, "REQUEST_DELAY", CollectorConfig.request_delay),
        rate_limit_backoff=_get_float(env, "RATE_LIMIT_BACKOFF", CollectorConfig.rate_limit_backoff),
        cycle_timeout=_get_float(env, "CYCLE_TIMEOUT", CollectorConfig.cycle_timeout, minimum=1.0),
        snapshot_freshness=_get_float(env, "SNAPSHOT_FRESHNESS", CollectorConfig.snapshot_freshness),
        expiry_dates_freshness=_get_float(env, "EXPIRY_DATES_FRESHNESS", CollectorConfig.expiry_dates_freshness),
        expiry_guard_window=_get_float(env, "EXPIRY_GUARD_WINDOW", CollectorConfig.expiry_guard_window),
    )

    database = DatabaseConfig(
        host=env.get("DB_HOST", DatabaseConfig.host),
        port=_get_int(env, "DB_PORT", DatabaseConfig.port, minimum=1),
        name=env.get("DB_NAME", DatabaseConfig.name),
        user=env.get("DB_USER", DatabaseConfig.user),
        pool_min=_get_int(env, "DB_POOL_MIN", DatabaseConfig.pool_min, minimum=1),
        pool_max=_get_int(env, "DB_POOL_MAX", DatabaseConfig.pool_max, minimum=1),
        password_provider=env.get("DB_PASSWORD_PROVIDER", DatabaseConfig.password_provider),
    )

    if database.pool_max < database.pool_min:
        raise ConfigurationError(
            f"DB_POOL_MAX ({database.pool_max}) must be >= DB_POOL_MIN ({database.pool_min})"
        )

    return AppConfig(
        tradier=tradier,
        collector=collector,
        database=database,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


# =============================================================================
# Helper Functions
# =============================================================================

def get_all_config(config: AppConfig) -> Dict[str, Any]:
    """Get all configuration as dictionary for logging/debugging (API key masked)"""
    tradier = asdict(config.tradier)
    if tradier["api_key"]:
        tradier["api_key"] = tradier["api_key"][:4] + "****"

    collector = asdict(config.collector)
    collector["symbols"] = ",".join(config.collector.symbols)

    return {
        "api": tradier,
        "collector": collector,
        "database": asdict(config.database),
        "logging": {"level": config.log_level},
    }


def print_config(config: Optional[AppConfig] = None):
    """Pretty print configuration for debugging"""
    values_by_section = get_all_config(config or load_config())
    print("\n" + "=" * 80)
    print("gexwatch Configuration")
    print("=" * 80)
    for section, values in values_by_section.items():
        print(f"\n{section.upper()}:")
        for key, value in values.items():
            print(f"  {key}: {value}")
    print("=" * 80 + "\n")


def symbols_from_args(value: Optional[str], config: AppConfig) -> List[str]:
    """
    Symbols for a --symbols CLI value

    An explicit comma separated list replaces the configured symbols and is
    only normalized, not filtered; an empty value falls back to the config.
    """
    if not value:
        return list(config.collector.symbols)
    return normalize_symbols(value.split(","))
