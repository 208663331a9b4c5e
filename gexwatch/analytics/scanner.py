"""
GEX Scanner - period-over-period GEX changes and anomaly scores

Reads only from the history table. During the regular session the scanner
compares the latest record in the current window against the latest record
in the window before it; outside the session (or when nothing was recorded
recently) it compares each symbol's last two records.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np
from scipy import stats

from gexwatch.database.snapshot_store import SnapshotStore
from gexwatch.market_clock import is_market_open
from gexwatch.models import GexHistoryRecord, GexScanItem
from gexwatch.symbols import normalize_symbols
from gexwatch.utils import get_logger

logger = get_logger(__name__)

SORT_KEYS = ("gex_asc", "gex_desc", "zscore_abs_desc")

# Fewer points than this give a z-score of 0
MIN_ANOMALY_POINTS = 3


def _direction(change: float) -> str:
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "neutral"


def build_scan_item(current: GexHistoryRecord, previous: GexHistoryRecord) -> GexScanItem:
    """Change between two history records of the same symbol"""
    change = current.gex_value - previous.gex_value
    change_pct = (change / abs(previous.gex_value)) * 100 if previous.gex_value else 0.0

    return GexScanItem(
        symbol=current.symbol,
        current_gex=current.gex_value,
        previous_gex=previous.gex_value,
        gex_change=change,
        gex_change_pct=change_pct,
        current_price=current.spot_price,
        expiry_date=current.expiry_date,
        direction=_direction(change),
    )


def z_score(values: List[float]) -> float:
    """
    Z-score of the last value against the whole series

    Uses the sample standard deviation. Returns 0.0 for short or flat series.
    """
    if len(values) < MIN_ANOMALY_POINTS:
        return 0.0

    series = np.asarray(values, dtype=float)
    if np.std(series, ddof=1) == 0:
        return 0.0

    return float(stats.zscore(series, ddof=1)[-1])


def sort_items(items: List[GexScanItem], sort: Optional[str]) -> List[GexScanItem]:
    """Order scan items by one of SORT_KEYS; unknown or empty keys keep the input order"""
    if sort == "gex_asc":
        return sorted(items, key=lambda item: item.current_gex)
    if sort == "gex_desc":
        return sorted(items, key=lambda item: item.current_gex, reverse=True)
    if sort == "zscore_abs_desc":
        return sorted(items, key=lambda item: abs(item.z_score), reverse=True)
    if sort:
        logger.warning(f"Unknown sort key '{sort}', expected one of {', '.join(SORT_KEYS)}")
    return list(items)


class GexScanner:
    """Read-side queries over GEX history for an allow-list of symbols"""

    def __init__(
        self,
        store: SnapshotStore,
        allowed_symbols: Iterable[str],
        market_open: Callable[[datetime], bool] = is_market_open
    ):
        self.store = store
        self.allowed_symbols = normalize_symbols(allowed_symbols)
        self._allowed = set(self.allowed_symbols)
        self.market_open = market_open

    def _group_by_symbol(self, records: Iterable[GexHistoryRecord]) -> Dict[str, List[GexHistoryRecord]]:
        """Allowed records per symbol, newest first"""
        grouped: Dict[str, List[GexHistoryRecord]] = defaultdict(list)
        for record in records:
            if record.symbol in self._allowed:
                grouped[record.symbol].append(record)
        for symbol_records in grouped.values():
            symbol_records.sort(key=lambda r: r.recorded_at, reverse=True)
        return grouped

    def gex_changes(self, window: timedelta = timedelta(minutes=30)) -> List[GexScanItem]:
        """
        Latest record in [now - window, now] vs latest in [now - 2*window, now - window)

        Symbols missing either side are left out.
        """
        now = self.store.now()
        current_start = now - window
        previous_start = now - 2 * window

        grouped = self._group_by_symbol(self.store.get_history_since(previous_start, include_chain=False))

        items = []
        for symbol in self.allowed_symbols:
            records = grouped.get(symbol, [])
            current = next((r for r in records if current_start <= r.recorded_at <= now), None)
            previous = next((r for r in records if previous_start <= r.recorded_at < current_start), None)
            if current is not None and previous is not None:
                items.append(build_scan_item(current, previous))

        logger.debug(f"GEX changes over {window}: {len(items)} symbols")
        return items

    def latest_gex_changes(self) -> List[GexScanItem]:
        """Last two records per symbol regardless of when they were recorded"""
        items = []
        for symbol in self.allowed_symbols:
            records = self.store.get_history(symbol, limit=2, include_chain=False)
            if len(records) == 2:
                items.append(build_scan_item(records[0], records[1]))
        return items

    def gex_anomalies(self, lookback: timedelta = timedelta(days=5)) -> Dict[str, float]:
        """Z-score of each symbol's latest GEX against its history in the lookback"""
        since = self.store.now() - lookback
        grouped = self._group_by_symbol(self.store.get_history_since(since, include_chain=False))

        return {
            symbol: z_score([r.gex_value for r in reversed(records)])
            for symbol, records in grouped.items()
        }

    def scan(self, sort: Optional[str] = None) -> List[GexScanItem]:
        """
        Scanner table: changes with z-scores attached, optionally sorted

        Args:
            sort: 'gex_asc', 'gex_desc' or 'zscore_abs_desc'
        """
        if self.market_open(self.store.now()):
            items = self.gex_changes()
            if not items:
                logger.debug("No recent GEX changes, falling back to latest records")
                items = self.latest_gex_changes()
        else:
            items = self.latest_gex_changes()

        anomalies = self.gex_anomalies()
        items = [
            item.model_copy(update={"z_score": anomalies.get(item.symbol, 0.0)})
            for item in items
        ]

        return sort_items(items, sort)


def print_scan(items: List[GexScanItem]):
    """Print scanner rows as a fixed-width table"""
    print("\n" + "=" * 80)
    print(f"{'Symbol':<8}{'Current GEX':>18}{'Change':>18}{'Change %':>10}{'Price':>11}{'Z':>8}  Dir")
    print("=" * 80)
    for item in items:
        print(f"{item.symbol:<8}{item.current_gex:>18,.0f}{item.gex_change:>18,.0f}"
              f"{item.gex_change_pct:>9.1f}%{item.current_price:>11.2f}{item.z_score:>8.2f}  {item.direction}")
    print("=" * 80 + "\n")


def main():
    """Print the scanner table from stored history"""
    import argparse
    from gexwatch.config import load_config, symbols_from_args
    from gexwatch.database import ConnectionPool, PostgresSnapshotStore
    from gexwatch.utils import configure_logging

    parser = argparse.ArgumentParser(description="gexwatch GEX scanner")
    parser.add_argument("--symbols", default=None, help="Comma-separated symbols (default: configured list)")
    parser.add_argument("--sort", choices=SORT_KEYS, default=None, help="Sort order")
    args = parser.parse_args()

    config = load_config()
    configure_logging(config.log_level)

    db_pool = ConnectionPool(config.database)
    try:
        store = PostgresSnapshotStore.from_config(db_pool, config.collector)
        scanner = GexScanner(store, symbols_from_args(args.symbols, config))
        items = scanner.scan(sort=args.sort)
        if not items:
            print("No GEX history yet")
            return
        print_scan(items)
    finally:
        db_pool.close()


if __name__ == "__main__":
    main()
