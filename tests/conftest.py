"""
Shared test fixtures for the gexwatch test suite.

Provides:
- A controllable clock (starts Wednesday 2024-06-12 10:00 ET, market open)
- An in-memory SnapshotStore that shares the real freshness policy
- A MagicMock Tradier client serving canned option chains
- A MagicMock psycopg2-style connection pool

Run tests with: pytest -v
"""

import json
import threading
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import pytz

from gexwatch.config import CollectorConfig
from gexwatch.database.snapshot_store import SnapshotStore
from gexwatch.ingestion.tradier_client import TradierClient
from gexwatch.models import ExpiryDateSet, GexHistoryRecord, OptionChainSnapshot

# Wednesday, 10:00 America/New_York (EDT)
MARKET_OPEN_UTC = datetime(2024, 6, 12, 14, 0, tzinfo=pytz.UTC)

EXPIRATIONS = [date(2024, 6, 12), date(2024, 6, 14), date(2024, 6, 21)]

SPOT_PRICES = {"SPY": 500.0, "QQQ": 440.0, "IWM": 200.0, "AAPL": 190.0}


# =============================================================================
# HELPERS
# =============================================================================

class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)

    def set(self, when: datetime):
        self.current = when


class InMemorySnapshotStore(SnapshotStore):
    """SnapshotStore backed by dicts and a list, safe for worker threads"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._lock = threading.Lock()
        self.snapshots: Dict[Tuple[str, date], OptionChainSnapshot] = {}
        self.expiry_sets: Dict[str, ExpiryDateSet] = {}
        self.history: List[GexHistoryRecord] = []

    def get_snapshot(self, symbol, expiry_date):
        with self._lock:
            return self.snapshots.get((symbol, expiry_date))

    def _save_snapshot(self, snapshot):
        with self._lock:
            self.snapshots[(snapshot.symbol, snapshot.expiry_date)] = snapshot

    def _load_expiry_dates(self, symbol):
        with self._lock:
            return self.expiry_sets.get(symbol)

    def _save_expiry_dates(self, expiry_set):
        with self._lock:
            self.expiry_sets[expiry_set.symbol] = expiry_set

    def _insert_history(self, record):
        with self._lock:
            self.history.append(record)

    def _newest_first(self, records, include_chain=True):
        # Later inserts win ties on recorded_at
        records = sorted(reversed(records), key=lambda r: r.recorded_at, reverse=True)
        if not include_chain:
            records = [r.model_copy(update={"option_chain": ""}) for r in records]
        return records

    def get_history(self, symbol, since=None, limit=None, include_chain=True):
        with self._lock:
            records = [r for r in self.history if r.symbol == symbol]
        if since is not None:
            records = [r for r in records if r.recorded_at >= since]
        records = self._newest_first(records, include_chain)
        return records[:limit] if limit is not None else records

    def get_history_since(self, since, include_chain=True):
        with self._lock:
            records = [r for r in self.history if r.recorded_at >= since]
        return self._newest_first(records, include_chain)


def make_chain(symbol: str, expiry_date: date, entries, spot: Optional[float] = None) -> str:
    """
    Build a raw Tradier option chain response

    entries: iterable of (strike, option_type, open_interest, gamma)
    """
    options = []
    for strike, option_type, open_interest, gamma in entries:
        options.append({
            "symbol": f"{symbol}{expiry_date:%y%m%d}{option_type[0].upper()}{int(strike * 1000):08d}",
            "underlying": symbol,
            "strike": strike,
            "option_type": option_type,
            "open_interest": open_interest,
            "expiration_date": expiry_date.isoformat(),
            "expiration_type": "standard",
            "greeks": {"gamma": gamma, "delta": 0.5} if gamma is not None else None,
        })
    return json.dumps({"options": {"option": options}})


# Per contract at spot 500: call 100 * 0.05 * 250000 = 1,250,000 ; put 200 * 0.04 * 250000 = 2,000,000
DEFAULT_ENTRIES = [
    (495.0, "put", 200, 0.04),
    (500.0, "call", 100, 0.05),
    (505.0, "call", 0, 0.03),  # no open interest
]


def default_chain(symbol: str, expiry_date: date) -> str:
    return make_chain(symbol, expiry_date, DEFAULT_ENTRIES)


def expected_total_gex(symbol: str) -> float:
    spot_squared = SPOT_PRICES[symbol] ** 2
    return 100 * 0.05 * spot_squared - 200 * 0.04 * spot_squared


def make_client(chains=None, expirations=None, spots=None) -> MagicMock:
    """
    MagicMock TradierClient with canned responses

    chains: optional dict symbol -> raw chain text (default_chain otherwise)
    """
    chains = chains or {}
    expirations = list(expirations if expirations is not None else EXPIRATIONS)
    spots = spots or SPOT_PRICES

    client = MagicMock(spec=TradierClient)
    client.request_timeout = 30.0
    client.ensure_configured.return_value = None

    def get_expiration_dates(symbol, timeout=None):
        return list(expirations)

    def get_spot_price(symbol, timeout=None):
        return spots.get(symbol, 100.0)

    def fetch_options_chain(symbol, expiry_date, timeout=None):
        raw = chains.get(symbol) or default_chain(symbol, expiry_date)
        return TradierClient.parse_option_chain(raw), raw

    client.get_expiration_dates.side_effect = get_expiration_dates
    client.get_spot_price.side_effect = get_spot_price
    client.fetch_options_chain.side_effect = fetch_options_chain
    return client


def make_response(status_code: int = 200, payload=None, text: Optional[str] = None, headers=None) -> MagicMock:
    """MagicMock requests.Response"""
    response = MagicMock()
    response.status_code = status_code
    response.text = text if text is not None else json.dumps(payload)
    response.headers = headers or {}
    return response


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Clock at Wednesday 10:00 ET"""
    return FakeClock(MARKET_OPEN_UTC)


@pytest.fixture
def store(clock):
    """In-memory snapshot store with default freshness windows"""
    return InMemorySnapshotStore(clock=clock)


@pytest.fixture
def client():
    return make_client()


@pytest.fixture
def collector_config():
    """Two symbols, no pacing or backoff delays"""
    return CollectorConfig(
        symbols=("SPY", "QQQ"),
        max_workers=2,
        request_delay=0.0,
        rate_limit_backoff=0.0,
        cycle_timeout=30.0,
    )


@pytest.fixture
def mock_db_pool():
    """
    ConnectionPool stand-in

    pool.connection() yields mock_db_pool.conn; conn.cursor() yields mock_db_pool.cursor
    """
    db_pool = MagicMock()
    conn = MagicMock()
    cursor = MagicMock()

    db_pool.connection.return_value.__enter__.return_value = conn
    db_pool.connection.return_value.__exit__.return_value = False
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.cursor.return_value.__exit__.return_value = False

    db_pool.conn = conn
    db_pool.cursor = cursor
    return db_pool
