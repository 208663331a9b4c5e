"""
gexwatch Collection Engine - scheduled GEX collection across many symbols

Each cycle:
1. Skips entirely when the regular session is closed
2. Distributes the symbol list over a bounded pool of worker threads
3. Per symbol: resolves the nearest expiry, reuses a fresh cached chain or
   fetches chain + spot price, computes GEX, writes the snapshot and
   appends a history record
4. Collects one result per symbol, bounded by a cycle-wide deadline

The engine also exposes the read path used by presentation code, which
shares the same cache-or-fetch logic.
"""

import queue
import signal
import threading
import time
from datetime import datetime, date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from gexwatch.analytics.gex_calculator import (
    GexByStrike,
    calculate_gex_per_strike,
    combine_gex,
    total_gex,
)
from gexwatch.config import CollectorConfig
from gexwatch.database.snapshot_store import SnapshotStore
from gexwatch.errors import ConfigurationError, PersistenceError, RateLimitedError, UpstreamError
from gexwatch.ingestion.tradier_client import TradierClient
from gexwatch.market_clock import expiry_close, get_market_session, is_market_open
from gexwatch.models import (
    CycleSummary,
    GexHistoryRecord,
    Option,
    OptionChainSnapshot,
    SymbolResult,
)
from gexwatch.symbols import normalize_symbols
from gexwatch.utils import get_logger

logger = get_logger(__name__)

# Closes the work queue for one worker
_STOP = object()


class CollectionEngine:
    """
    Bounded worker-pool GEX collector

    Client, store, clocks and sleep are injected so the engine can be
    driven deterministically in tests.
    """

    def __init__(
        self,
        client: TradierClient,
        store: SnapshotStore,
        config: CollectorConfig,
        market_open: Callable[[datetime], bool] = is_market_open,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic
    ):
        """Initialize collection engine"""
        self.client = client
        self.store = store
        self.config = config
        self.symbols = normalize_symbols(config.symbols)
        self.market_open = market_open
        self._sleep = sleep
        self._monotonic = monotonic

        self._stop_event = threading.Event()
        self._scheduler: Optional[threading.Thread] = None
        self._cycle_lock = threading.Lock()

        # Metrics
        self.cycles_completed = 0
        self.errors_count = 0
        self.last_summary: Optional[CycleSummary] = None

        logger.info(f"Initialized CollectionEngine for {len(self.symbols)} symbols")
        logger.info(f"Config: interval={config.collection_interval}s, workers={config.max_workers}, "
                    f"freshness={config.snapshot_freshness}s, cycle timeout={config.cycle_timeout}s")

    # =========================================================================
    # UPSTREAM CALLS
    # =========================================================================

    def _request_timeout(self, deadline: Optional[float]) -> Optional[float]:
        """Per-request timeout clamped to what is left of the cycle"""
        if deadline is None:
            return None
        remaining = deadline - self._monotonic()
        if remaining <= 0:
            raise UpstreamError("Cycle deadline exceeded before request")
        return min(self.client.request_timeout, remaining)

    def _check_deadline(self, deadline: Optional[float], step: str):
        """Refuse to start a write once the cycle deadline has passed"""
        if deadline is not None and self._monotonic() >= deadline:
            raise UpstreamError(f"Cycle deadline exceeded before {step}")

    def _call_upstream(self, func: Callable, *args, deadline: Optional[float] = None):
        """
        Call a client method, retrying exactly once after a rate limit

        The retry waits rate_limit_backoff seconds. A second failure of any
        kind is raised as UpstreamError.
        """
        try:
            return func(*args, timeout=self._request_timeout(deadline))
        except RateLimitedError:
            backoff = self.config.rate_limit_backoff
            name = getattr(func, "__name__", "request")
            logger.warning(f"Rate limited on {name}{args}, retrying once in {backoff}s")
            self._sleep(backoff)

        try:
            return func(*args, timeout=self._request_timeout(deadline))
        except RateLimitedError as e:
            raise UpstreamError(f"Still rate limited after retry: {e}", status_code=e.status_code) from e

    # =========================================================================
    # PER-SYMBOL PIPELINE
    # =========================================================================

    def nearest_expiry(self, dates: Sequence[date]) -> Optional[date]:
        """Chronologically first expiry that has not closed yet"""
        now = self.store.now()
        for expiry_date in sorted(dates):
            if expiry_close(expiry_date) > now:
                return expiry_date
        return None

    def _resolve_expiry_dates(self, symbol: str, deadline: Optional[float] = None) -> List[date]:
        """Cached expiry dates, refreshed from upstream when missing, stale or inside the guard window"""
        expiry_set = self.store.get_expiry_dates(symbol)

        if expiry_set is not None and not self.store.expiry_set_needs_refresh(expiry_set):
            logger.debug(f"{symbol}: using {len(expiry_set.dates)} cached expiry dates")
            return expiry_set.dates

        dates = self._call_upstream(self.client.get_expiration_dates, symbol, deadline=deadline)
        self._check_deadline(deadline, "expiry dates upsert")
        expiry_set = self.store.upsert_expiry_dates(symbol, dates)
        logger.debug(f"{symbol}: refreshed {len(expiry_set.dates)} expiry dates from upstream")
        return expiry_set.dates

    def resolve_expiry(self, symbol: str, deadline: Optional[float] = None) -> date:
        """
        Nearest expiry for a symbol

        Raises:
            UpstreamError: If no upcoming expiry is available
        """
        dates = self._resolve_expiry_dates(symbol, deadline)
        nearest = self.nearest_expiry(dates)
        if nearest is None:
            raise UpstreamError(f"No upcoming expirations for {symbol}")
        return nearest

    def _fetch_and_persist(
        self,
        symbol: str,
        expiry_date: date,
        deadline: Optional[float] = None,
        spot_price: Optional[float] = None
    ) -> Tuple[List[Option], OptionChainSnapshot, GexByStrike]:
        """
        Fetch a chain, compute GEX and write it through

        The snapshot upsert happens before the history append; either
        failing raises PersistenceError. Neither write starts once the cycle
        deadline has passed.
        """
        if spot_price is None:
            spot_price = self._call_upstream(self.client.get_spot_price, symbol, deadline=deadline)

        options, raw_chain = self._call_upstream(
            self.client.fetch_options_chain, symbol, expiry_date, deadline=deadline
        )

        gex_by_strike = calculate_gex_per_strike(options, spot_price)
        chain_gex = total_gex(gex_by_strike)
        expiry_type = next((o.expiration_type for o in options if o.expiration_type), "standard")

        self._check_deadline(deadline, "snapshot upsert")
        snapshot = self.store.upsert_snapshot(
            symbol,
            expiry_date,
            raw_chain,
            spot_price,
            gex_value=chain_gex,
            expiry_type=expiry_type,
        )
        self._check_deadline(deadline, "history append")
        self.store.append_history(GexHistoryRecord(
            symbol=symbol,
            expiry_date=expiry_date,
            expiry_type=expiry_type,
            option_chain=raw_chain,
            gex_value=chain_gex,
            spot_price=spot_price,
        ))

        return options, snapshot, gex_by_strike

    def collect_symbol(self, symbol: str, deadline: Optional[float] = None) -> SymbolResult:
        """
        Run resolve -> fetch-or-reuse -> compute -> persist for one symbol

        Never raises; failures are returned as an unsuccessful result.
        """
        expiry_date = None
        try:
            expiry_date = self.resolve_expiry(symbol, deadline)

            snapshot = self.store.get_fresh_snapshot(symbol, expiry_date)
            if snapshot is not None:
                logger.debug(f"{symbol} {expiry_date}: cache hit (updated {snapshot.updated_at})")
                return SymbolResult(
                    symbol=symbol,
                    success=True,
                    cached=True,
                    expiry_date=expiry_date,
                    spot_price=snapshot.spot_price,
                    total_gex=snapshot.gex_value,
                )

            _, snapshot, _ = self._fetch_and_persist(symbol, expiry_date, deadline)

            logger.info(f"✅ {symbol} (expiry {expiry_date}): total GEX {snapshot.gex_value:,.2f} "
                        f"@ ${snapshot.spot_price:.2f}")
            return SymbolResult(
                symbol=symbol,
                success=True,
                expiry_date=expiry_date,
                spot_price=snapshot.spot_price,
                total_gex=snapshot.gex_value,
            )

        except (UpstreamError, PersistenceError) as e:
            logger.error(f"❌ {symbol}: {type(e).__name__}: {e}")
            return SymbolResult(symbol=symbol, success=False, expiry_date=expiry_date, error=str(e))
        except Exception as e:
            logger.error(f"❌ {symbol}: unexpected error: {e}", exc_info=True)
            return SymbolResult(symbol=symbol, success=False, expiry_date=expiry_date, error=str(e))

    # =========================================================================
    # CYCLE
    # =========================================================================

    def _worker(self, work_queue: queue.Queue, results_queue: queue.Queue, deadline: float):
        """Pull symbols until the stop marker; one result per processed symbol"""
        processed = 0
        while True:
            symbol = work_queue.get()
            if symbol is _STOP:
                return

            # Past the deadline: drain without reporting, aggregator marks timed out
            if self._monotonic() >= deadline:
                continue

            if processed and self.config.request_delay > 0:
                self._sleep(self.config.request_delay)

            results_queue.put(self.collect_symbol(symbol, deadline))
            processed += 1

    def _dispatch(self, symbols: List[str], summary: CycleSummary):
        """Run the worker pool over symbols and gather results into summary"""
        deadline = self._monotonic() + self.config.cycle_timeout

        work_queue: queue.Queue = queue.Queue()
        results_queue: queue.Queue = queue.Queue()

        num_workers = max(1, min(self.config.max_workers, len(symbols)))
        for symbol in symbols:
            work_queue.put(symbol)
        for _ in range(num_workers):
            work_queue.put(_STOP)

        workers = [
            threading.Thread(
                target=self._worker,
                args=(work_queue, results_queue, deadline),
                name=f"gex-worker-{i}",
                daemon=True,
            )
            for i in range(num_workers)
        ]
        for worker in workers:
            worker.start()

        results: Dict[str, SymbolResult] = {}
        while len(results) < len(symbols):
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                break
            try:
                result = results_queue.get(timeout=remaining)
            except queue.Empty:
                break
            results[result.symbol] = result

        summary.results = [results[s] for s in symbols if s in results]
        summary.timed_out = [s for s in symbols if s not in results]

        if summary.timed_out:
            logger.warning(f"⚠️  Cycle deadline reached, {len(summary.timed_out)} symbols unfinished: "
                           f"{', '.join(summary.timed_out)}")

    def run_cycle(self, symbols: Optional[Sequence[str]] = None) -> CycleSummary:
        """
        Run one collection cycle

        Args:
            symbols: Override the configured symbol list

        Returns:
            CycleSummary (skipped_reason set when nothing was attempted)
        """
        symbols = normalize_symbols(symbols) if symbols is not None else list(self.symbols)
        summary = CycleSummary(started_at=self.store.now())

        if not self._cycle_lock.acquire(blocking=False):
            summary.skipped_reason = "cycle already running"
            logger.warning("Previous cycle still running, skipping")
            return summary

        try:
            if not self.market_open(summary.started_at):
                summary.skipped_reason = "market closed"
                logger.info(f"Market closed ({get_market_session(summary.started_at)}), skipping cycle")
                return summary

            try:
                self.client.ensure_configured()
            except ConfigurationError as e:
                summary.skipped_reason = str(e)
                self.errors_count += 1
                logger.error(f"❌ Cannot collect: {e}")
                return summary

            logger.info(f"Starting GEX collection for {len(symbols)} symbols")
            cycle_start = self._monotonic()

            if symbols:
                self._dispatch(symbols, summary)

            summary.finished_at = self.store.now()
            self.cycles_completed += 1
            self.errors_count += summary.failed

            logger.info(f"Completed GEX collection in {self._monotonic() - cycle_start:.1f}s: "
                        f"{summary.succeeded} ok ({summary.fetched} fetched, {summary.cache_hits} cached), "
                        f"{summary.failed} failed")
            return summary

        finally:
            self.last_summary = summary
            self._cycle_lock.release()

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def _run_scheduler(self):
        """Run a cycle now, then every collection_interval until stopped"""
        interval = self.config.collection_interval

        while not self._stop_event.is_set():
            cycle_start = self._monotonic()

            try:
                self.run_cycle()
            except Exception as e:
                self.errors_count += 1
                logger.error(f"Error in collection cycle: {e}", exc_info=True)

            cycle_duration = self._monotonic() - cycle_start
            sleep_time = max(0.0, interval - cycle_duration)

            if sleep_time == 0:
                logger.warning(f"Cycle took {cycle_duration:.1f}s, longer than interval ({interval}s)")
            else:
                logger.debug(f"Next cycle in {sleep_time:.1f}s")

            if self._stop_event.wait(sleep_time):
                break

        logger.info("Scheduler stopped")

    def start(self):
        """Start the background scheduler (first cycle runs immediately)"""
        if self._scheduler is not None and self._scheduler.is_alive():
            logger.warning("Scheduler already running")
            return

        self._stop_event.clear()
        self._scheduler = threading.Thread(target=self._run_scheduler, name="gex-scheduler", daemon=True)
        self._scheduler.start()
        logger.info("Scheduler started")

    def stop(self, wait: bool = True, timeout: Optional[float] = None):
        """Prevent further cycles; an in-flight cycle is allowed to finish"""
        self._stop_event.set()
        if wait and self._scheduler is not None:
            self._scheduler.join(timeout)

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_alive()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Received signal {signum}, stopping after the current cycle...")
        self._stop_event.set()

    def run_forever(self):
        """Run the scheduler in the foreground until SIGINT/SIGTERM"""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.start()
        try:
            while self.running:
                self._scheduler.join(1.0)
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            self.stop()
        finally:
            logger.info("=" * 80)
            logger.info("COLLECTION ENGINE SUMMARY")
            logger.info("=" * 80)
            logger.info(f"Cycles completed: {self.cycles_completed}")
            logger.info(f"Errors encountered: {self.errors_count}")
            logger.info("=" * 80)

    # =========================================================================
    # READ PATH
    # =========================================================================

    def get_expiry_dates(self, symbol: str) -> List[date]:
        """
        Known expiry dates for a symbol, populating the cache if needed

        Returns an empty list when nothing is cached and upstream is unavailable.
        """
        symbol = symbol.upper()
        try:
            return list(self._resolve_expiry_dates(symbol))
        except (UpstreamError, ConfigurationError, PersistenceError) as e:
            logger.warning(f"No expiry dates for {symbol}: {e}")
            return []

    def get_option_chain(
        self,
        symbol: str,
        expiry_date: date,
        spot_price: Optional[float] = None
    ) -> Tuple[List[Option], Optional[OptionChainSnapshot]]:
        """
        Option chain for (symbol, expiry), from cache when fresh

        On a miss the chain is fetched and written through exactly like a
        collection. If upstream fails the last stored chain is returned
        (possibly stale); with no stored chain the result is ([], None).
        """
        symbol = symbol.upper()

        snapshot = self.store.get_fresh_snapshot(symbol, expiry_date)
        if snapshot is not None:
            return TradierClient.parse_option_chain(snapshot.option_chain), snapshot

        try:
            options, snapshot, _ = self._fetch_and_persist(symbol, expiry_date, spot_price=spot_price)
            return options, snapshot
        except (UpstreamError, ConfigurationError, PersistenceError) as e:
            logger.warning(f"Could not refresh {symbol} {expiry_date}: {e}")

        stale = self.store.get_snapshot(symbol, expiry_date)
        if stale is None:
            return [], None
        return TradierClient.parse_option_chain(stale.option_chain), stale

    def calculate_gex_for_all_expiries(self, symbol: str) -> GexByStrike:
        """
        Combined GEX by strike across every known expiry

        Each expiry's GEX uses the spot price captured with its chain.
        Expiries that cannot be loaded are skipped.
        """
        symbol = symbol.upper()
        dates = [d for d in self.get_expiry_dates(symbol) if expiry_close(d) > self.store.now()]
        logger.info(f"Processing {len(dates)} expiry dates for {symbol}")

        spot_price: Optional[float] = None
        per_expiry = []

        for expiry_date in dates:
            try:
                options, snapshot = self.get_option_chain(symbol, expiry_date, spot_price=spot_price)
            except UpstreamError as e:
                logger.warning(f"Skipping {symbol} {expiry_date}: {e}")
                continue

            if snapshot is None:
                continue

            # Reuse the first freshly quoted price for later misses
            if spot_price is None and self.store.is_snapshot_fresh(snapshot):
                spot_price = snapshot.spot_price

            per_expiry.append(calculate_gex_per_strike(options, snapshot.spot_price))

        return combine_gex(per_expiry)


def main():
    """Main entry point"""
    import argparse
    from gexwatch.config import load_config, symbols_from_args
    from gexwatch.database import ConnectionPool, PostgresSnapshotStore
    from gexwatch.utils import configure_logging, set_log_level

    config = load_config()
    configure_logging(config.log_level)

    parser = argparse.ArgumentParser(description="gexwatch GEX Collection Engine")
    parser.add_argument("--symbols", default=None,
                        help="Comma-separated symbols (default: GEX_SYMBOLS or the built-in list)")
    parser.add_argument("--once", action="store_true",
                        help="Run a single cycle and exit")
    parser.add_argument("--force", action="store_true",
                        help="Collect even when the market is closed")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")

    args = parser.parse_args()

    if args.debug:
        set_log_level("DEBUG")

    symbols = symbols_from_args(args.symbols, config)
    collector_config = config.collector
    if args.symbols:
        from dataclasses import replace
        collector_config = replace(collector_config, symbols=tuple(symbols))

    db_pool = ConnectionPool(config.database)
    store = PostgresSnapshotStore.from_config(db_pool, collector_config)
    client = TradierClient.from_config(config.tradier)

    engine = CollectionEngine(
        client=client,
        store=store,
        config=collector_config,
        market_open=(lambda now: True) if args.force else is_market_open,
    )

    try:
        if args.once:
            summary = engine.run_cycle()
            if summary.skipped_reason:
                logger.info(f"Cycle skipped: {summary.skipped_reason}")
        else:
            engine.run_forever()
    finally:
        db_pool.close()


if __name__ == "__main__":
    main()
