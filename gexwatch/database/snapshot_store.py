"""
Snapshot Store - option chain snapshots, expiry date sets and GEX history

SnapshotStore holds the freshness policy and the read/write contract.
Every staleness decision in the system goes through it, using the store's
own clock, so callers never do their own time arithmetic and tests can
inject a fixed clock. PostgresSnapshotStore is the production backend.
"""

import json
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, date, timedelta
from typing import Callable, List, Optional, Sequence

import psycopg2
import pytz

from gexwatch.config import CollectorConfig
from gexwatch.database.connection import ConnectionPool
from gexwatch.database.schema import SCHEMA_SQL, TABLES
from gexwatch.errors import PersistenceError
from gexwatch.market_clock import expiry_close
from gexwatch.models import ExpiryDateSet, GexHistoryRecord, OptionChainSnapshot
from gexwatch.utils import get_logger
from gexwatch.validation import safe_date

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


class SnapshotStore(ABC):
    """
    Freshness policy plus the persistence contract

    Subclasses implement the storage primitives; timestamps are always
    stamped here from self.clock.
    """

    def __init__(
        self,
        snapshot_freshness: timedelta = timedelta(minutes=10),
        expiry_dates_freshness: timedelta = timedelta(hours=24),
        expiry_guard_window: timedelta = timedelta(hours=24),
        clock: Optional[Clock] = None
    ):
        self.snapshot_freshness = snapshot_freshness
        self.expiry_dates_freshness = expiry_dates_freshness
        self.expiry_guard_window = expiry_guard_window
        self.clock = clock or utc_now

    def now(self) -> datetime:
        return self.clock()

    # =========================================================================
    # FRESHNESS POLICY
    # =========================================================================

    def is_snapshot_fresh(self, snapshot: OptionChainSnapshot) -> bool:
        """A snapshot is reusable while its age is within snapshot_freshness"""
        return self.now() - snapshot.updated_at <= self.snapshot_freshness

    def is_expiry_set_fresh(self, expiry_set: ExpiryDateSet) -> bool:
        return self.now() - expiry_set.updated_at <= self.expiry_dates_freshness

    def expiry_set_needs_refresh(self, expiry_set: ExpiryDateSet) -> bool:
        """
        Whether a (fresh) expiry set should still be refetched

        True when no listed date is still trading, or when the nearest one
        closes inside the guard window and the set was captured before that
        window opened.
        """
        now = self.now()
        upcoming = [d for d in expiry_set.dates if expiry_close(d) > now]
        if not upcoming:
            return True

        guard_start = expiry_close(upcoming[0]) - self.expiry_guard_window
        return now >= guard_start and expiry_set.updated_at < guard_start

    def get_fresh_snapshot(self, symbol: str, expiry_date: date) -> Optional[OptionChainSnapshot]:
        """Stored snapshot for the key if it is still fresh, else None"""
        snapshot = self.get_snapshot(symbol, expiry_date)
        if snapshot is None or not self.is_snapshot_fresh(snapshot):
            return None
        return snapshot

    # =========================================================================
    # CONTRACT
    # =========================================================================

    def upsert_snapshot(
        self,
        symbol: str,
        expiry_date: date,
        option_chain: str,
        spot_price: float,
        gex_value: Optional[float] = None,
        expiry_type: str = "standard"
    ) -> OptionChainSnapshot:
        """Replace the snapshot for (symbol, expiry_date), stamped now"""
        snapshot = OptionChainSnapshot(
            symbol=symbol,
            expiry_date=expiry_date,
            expiry_type=expiry_type or "standard",
            option_chain=option_chain,
            spot_price=spot_price,
            gex_value=gex_value,
            updated_at=self.now(),
        )
        self._save_snapshot(snapshot)
        return snapshot

    def get_expiry_dates(self, symbol: str) -> Optional[ExpiryDateSet]:
        """Stored expiry dates, or None if missing or older than expiry_dates_freshness"""
        expiry_set = self._load_expiry_dates(symbol)
        if expiry_set is None or not self.is_expiry_set_fresh(expiry_set):
            return None
        return expiry_set

    def upsert_expiry_dates(self, symbol: str, dates: Sequence[date]) -> ExpiryDateSet:
        expiry_set = ExpiryDateSet(symbol=symbol, dates=sorted(set(dates)), updated_at=self.now())
        self._save_expiry_dates(expiry_set)
        return expiry_set

    def append_history(self, record: GexHistoryRecord) -> GexHistoryRecord:
        """Insert a history record; recorded_at is always stamped by the store"""
        stamped = record.model_copy(update={"recorded_at": self.now()})
        self._insert_history(stamped)
        return stamped

    @abstractmethod
    def get_snapshot(self, symbol: str, expiry_date: date) -> Optional[OptionChainSnapshot]:
        """Stored snapshot regardless of age"""

    @abstractmethod
    def get_history(
        self,
        symbol: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        include_chain: bool = True
    ) -> List[GexHistoryRecord]:
        """
        History for a symbol, newest first

        With include_chain=False the raw chain is not read and option_chain
        comes back empty.
        """

    @abstractmethod
    def get_history_since(self, since: datetime, include_chain: bool = True) -> List[GexHistoryRecord]:
        """History for all symbols recorded at or after since, newest first"""

    @abstractmethod
    def _save_snapshot(self, snapshot: OptionChainSnapshot):
        pass

    @abstractmethod
    def _load_expiry_dates(self, symbol: str) -> Optional[ExpiryDateSet]:
        pass

    @abstractmethod
    def _save_expiry_dates(self, expiry_set: ExpiryDateSet):
        pass

    @abstractmethod
    def _insert_history(self, record: GexHistoryRecord):
        pass


class PostgresSnapshotStore(SnapshotStore):
    """Snapshot store backed by PostgreSQL through a shared connection pool"""

    HISTORY_COLUMNS = """
        id, symbol, expiry_date, expiry_type, option_chain::text,
        gex_value, spot_price, recorded_at
    """

    # Scanner reads only need the numbers
    HISTORY_SUMMARY_COLUMNS = """
        id, symbol, expiry_date, expiry_type, '',
        gex_value, spot_price, recorded_at
    """

    def __init__(self, db_pool: ConnectionPool, **kwargs):
        super().__init__(**kwargs)
        self.db_pool = db_pool

    @classmethod
    def from_config(
        cls,
        db_pool: ConnectionPool,
        config: CollectorConfig,
        clock: Optional[Clock] = None
    ) -> "PostgresSnapshotStore":
        return cls(
            db_pool,
            snapshot_freshness=timedelta(seconds=config.snapshot_freshness),
            expiry_dates_freshness=timedelta(seconds=config.expiry_dates_freshness),
            expiry_guard_window=timedelta(seconds=config.expiry_guard_window),
            clock=clock,
        )

    @contextmanager
    def _cursor(self):
        """Cursor inside a transaction that commits on success, rolls back on error"""
        try:
            with self.db_pool.connection() as conn:
                try:
                    with conn.cursor() as cursor:
                        yield cursor
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except psycopg2.Error as e:
            logger.error(f"Database error: {e}")
            raise PersistenceError(str(e)) from e

    def initialize_schema(self):
        """Create tables and indexes if they do not exist"""
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)
        logger.info(f"Schema ready: {', '.join(TABLES)}")

    # =========================================================================
    # OPTION CHAIN
    # =========================================================================

    def get_snapshot(self, symbol: str, expiry_date: date) -> Optional[OptionChainSnapshot]:
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT symbol, expiry_date, expiry_type, option_chain::text,
                       spot_price, gex_value, updated_at
                FROM option_chain
                WHERE symbol = %s AND expiry_date = %s
            """, (symbol, expiry_date))
            row = cursor.fetchone()

        if not row:
            return None

        return OptionChainSnapshot(
            symbol=row[0],
            expiry_date=row[1],
            expiry_type=row[2],
            option_chain=row[3],
            spot_price=float(row[4]),
            gex_value=float(row[5]) if row[5] is not None else None,
            updated_at=row[6],
        )

    def _save_snapshot(self, snapshot: OptionChainSnapshot):
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO option_chain
                (symbol, expiry_date, expiry_type, option_chain, spot_price, gex_value, updated_at)
                VALUES (%s, %s, %s, %s::jsonb, %s, %s, %s)
                ON CONFLICT (symbol, expiry_date) DO UPDATE SET
                    expiry_type = EXCLUDED.expiry_type,
                    option_chain = EXCLUDED.option_chain,
                    spot_price = EXCLUDED.spot_price,
                    gex_value = EXCLUDED.gex_value,
                    updated_at = EXCLUDED.updated_at
            """, (
                snapshot.symbol,
                snapshot.expiry_date,
                snapshot.expiry_type,
                snapshot.option_chain,
                snapshot.spot_price,
                snapshot.gex_value,
                snapshot.updated_at,
            ))
        logger.debug(f"Upserted option chain {snapshot.symbol} {snapshot.expiry_date}")

    # =========================================================================
    # EXPIRY DATES
    # =========================================================================

    def _load_expiry_dates(self, symbol: str) -> Optional[ExpiryDateSet]:
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT symbol, expiry_dates::text, updated_at
                FROM option_expiry_dates
                WHERE symbol = %s
            """, (symbol,))
            row = cursor.fetchone()

        if not row:
            return None

        raw_dates = json.loads(row[1])
        dates = [d for d in (safe_date(v, field_name="expiry_dates") for v in raw_dates) if d]
        return ExpiryDateSet(symbol=row[0], dates=sorted(dates), updated_at=row[2])

    def _save_expiry_dates(self, expiry_set: ExpiryDateSet):
        payload = json.dumps([d.isoformat() for d in expiry_set.dates])
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO option_expiry_dates (symbol, expiry_dates, updated_at)
                VALUES (%s, %s::jsonb, %s)
                ON CONFLICT (symbol) DO UPDATE SET
                    expiry_dates = EXCLUDED.expiry_dates,
                    updated_at = EXCLUDED.updated_at
            """, (expiry_set.symbol, payload, expiry_set.updated_at))
        logger.debug(f"Stored {len(expiry_set.dates)} expiry dates for {expiry_set.symbol}")

    # =========================================================================
    # GEX HISTORY
    # =========================================================================

    def _insert_history(self, record: GexHistoryRecord):
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO gex_history
                (id, symbol, expiry_date, expiry_type, option_chain, gex_value, spot_price, recorded_at)
                VALUES (%s::uuid, %s, %s, %s, %s::jsonb, %s, %s, %s)
            """, (
                str(record.id),
                record.symbol,
                record.expiry_date,
                record.expiry_type,
                record.option_chain,
                record.gex_value,
                record.spot_price,
                record.recorded_at,
            ))
        logger.debug(f"Appended GEX history for {record.symbol}: {record.gex_value:,.0f}")

    def _history_columns(self, include_chain: bool) -> str:
        return self.HISTORY_COLUMNS if include_chain else self.HISTORY_SUMMARY_COLUMNS

    @staticmethod
    def _history_from_row(row) -> GexHistoryRecord:
        return GexHistoryRecord(
            id=row[0],
            symbol=row[1],
            expiry_date=row[2],
            expiry_type=row[3],
            option_chain=row[4],
            gex_value=float(row[5]),
            spot_price=float(row[6]),
            recorded_at=row[7],
        )

    def get_history(
        self,
        symbol: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        include_chain: bool = True
    ) -> List[GexHistoryRecord]:
        query = f"SELECT {self._history_columns(include_chain)} FROM gex_history WHERE symbol = %s"
        params: list = [symbol]
        if since is not None:
            query += " AND recorded_at >= %s"
            params.append(since)
        query += " ORDER BY recorded_at DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)

        with self._cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()

        return [self._history_from_row(row) for row in rows]

    def get_history_since(self, since: datetime, include_chain: bool = True) -> List[GexHistoryRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {self._history_columns(include_chain)} FROM gex_history "
                "WHERE recorded_at >= %s ORDER BY recorded_at DESC",
                (since,)
            )
            rows = cursor.fetchall()

        return [self._history_from_row(row) for row in rows]
