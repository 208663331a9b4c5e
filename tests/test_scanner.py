"""
Tests for the GEX scanner (changes, fallbacks, z-scores and sorting)
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from gexwatch.analytics.scanner import GexScanner, build_scan_item, sort_items, z_score
from gexwatch.database.snapshot_store import PostgresSnapshotStore
from gexwatch.models import GexHistoryRecord

from conftest import MARKET_OPEN_UTC


def add_record(store, clock, symbol, gex_value, minutes_ago, spot_price=500.0):
    """Append a history record as if collected minutes_ago before MARKET_OPEN_UTC"""
    clock.set(MARKET_OPEN_UTC - timedelta(minutes=minutes_ago))
    store.append_history(GexHistoryRecord(
        symbol=symbol,
        expiry_date=date(2024, 6, 14),
        option_chain="{}",
        gex_value=gex_value,
        spot_price=spot_price,
    ))
    clock.set(MARKET_OPEN_UTC)


@pytest.fixture
def scanner(store):
    return GexScanner(store, ["SPY", "QQQ", "IWM"], market_open=lambda now: True)


class TestGexChanges:
    """Latest in the current window vs latest in the previous window"""

    def test_change_between_windows(self, scanner, store, clock):
        add_record(store, clock, "SPY", 80.0, minutes_ago=55)
        add_record(store, clock, "SPY", 100.0, minutes_ago=40)
        add_record(store, clock, "SPY", 120.0, minutes_ago=20)
        add_record(store, clock, "SPY", 150.0, minutes_ago=5, spot_price=505.0)

        items = scanner.gex_changes()

        assert len(items) == 1
        item = items[0]
        assert item.symbol == "SPY"
        assert item.current_gex == 150.0
        assert item.previous_gex == 100.0
        assert item.gex_change == 50.0
        assert item.gex_change_pct == pytest.approx(50.0)
        assert item.current_price == 505.0
        assert item.direction == "up"

    def test_symbol_missing_previous_window_is_skipped(self, scanner, store, clock):
        add_record(store, clock, "QQQ", 10.0, minutes_ago=5)
        assert scanner.gex_changes() == []

    def test_records_older_than_two_windows_ignored(self, scanner, store, clock):
        add_record(store, clock, "SPY", 10.0, minutes_ago=90)
        add_record(store, clock, "SPY", 20.0, minutes_ago=5)
        assert scanner.gex_changes() == []

    def test_disallowed_symbols_filtered(self, scanner, store, clock):
        add_record(store, clock, "TSLA", 1.0, minutes_ago=45)
        add_record(store, clock, "TSLA", 2.0, minutes_ago=5)
        assert scanner.gex_changes() == []


class TestLatestGexChanges:

    def test_last_two_records_regardless_of_age(self, scanner, store, clock):
        add_record(store, clock, "IWM", -50.0, minutes_ago=60 * 24 * 3)
        add_record(store, clock, "IWM", -100.0, minutes_ago=60 * 24 * 2)
        add_record(store, clock, "IWM", -80.0, minutes_ago=60 * 24)

        items = scanner.latest_gex_changes()

        assert len(items) == 1
        assert items[0].current_gex == -80.0
        assert items[0].previous_gex == -100.0
        assert items[0].gex_change == 20.0
        assert items[0].gex_change_pct == pytest.approx(20.0)
        assert items[0].direction == "up"

    def test_single_record_skipped(self, scanner, store, clock):
        add_record(store, clock, "SPY", 1.0, minutes_ago=10)
        assert scanner.latest_gex_changes() == []


class TestZScore:

    def test_latest_value_against_series(self):
        assert z_score([10.0, 10.0, 10.0, 40.0]) == pytest.approx(1.5)

    def test_too_few_points(self):
        assert z_score([1.0, 100.0]) == 0.0

    def test_flat_series(self):
        assert z_score([5.0, 5.0, 5.0, 5.0]) == 0.0

    def test_anomalies_use_lookback(self, scanner, store, clock):
        add_record(store, clock, "SPY", 1000.0, minutes_ago=60 * 24 * 10)  # outside 5 days
        for minutes_ago, value in ((300, 10.0), (200, 10.0), (100, 10.0), (10, 40.0)):
            add_record(store, clock, "SPY", value, minutes_ago=minutes_ago)

        anomalies = scanner.gex_anomalies()

        assert anomalies["SPY"] == pytest.approx(1.5)


class TestScan:

    def test_open_market_falls_back_to_latest(self, scanner, store, clock):
        add_record(store, clock, "SPY", 100.0, minutes_ago=600)
        add_record(store, clock, "SPY", 90.0, minutes_ago=500)

        items = scanner.scan()

        assert [i.symbol for i in items] == ["SPY"]
        assert items[0].direction == "down"

    def test_closed_market_uses_latest(self, store, clock):
        scanner = GexScanner(store, ["SPY"], market_open=lambda now: False)
        add_record(store, clock, "SPY", 100.0, minutes_ago=45)
        add_record(store, clock, "SPY", 100.0, minutes_ago=5)

        items = scanner.scan()

        assert items[0].direction == "neutral"
        assert items[0].gex_change_pct == 0.0

    def test_z_scores_attached_and_sorted(self, scanner, store, clock):
        for minutes_ago, value in ((300, 10.0), (200, 10.0), (100, 10.0), (10, 40.0)):
            add_record(store, clock, "SPY", value, minutes_ago=minutes_ago)
        add_record(store, clock, "QQQ", 500.0, minutes_ago=100)
        add_record(store, clock, "QQQ", 600.0, minutes_ago=10)

        by_gex = scanner.scan(sort="gex_desc")
        by_z = scanner.scan(sort="zscore_abs_desc")

        assert [i.symbol for i in by_gex] == ["QQQ", "SPY"]
        assert [i.symbol for i in by_z] == ["SPY", "QQQ"]
        assert by_z[0].z_score == pytest.approx(1.5)
        assert by_z[1].z_score == 0.0


class TestHelpers:

    def test_pct_change_zero_previous(self):
        current = GexHistoryRecord(symbol="SPY", expiry_date=date(2024, 6, 14), option_chain="{}",
                                   gex_value=10.0, spot_price=500.0)
        previous = current.model_copy(update={"gex_value": 0.0})

        item = build_scan_item(current, previous)

        assert item.gex_change == 10.0
        assert item.gex_change_pct == 0.0

    def test_pct_change_negative_previous(self):
        current = GexHistoryRecord(symbol="SPY", expiry_date=date(2024, 6, 14), option_chain="{}",
                                   gex_value=-50.0, spot_price=500.0)
        previous = current.model_copy(update={"gex_value": -100.0})

        assert build_scan_item(current, previous).gex_change_pct == pytest.approx(50.0)

    def test_sort_items_unknown_key_keeps_order(self):
        current = GexHistoryRecord(symbol="SPY", expiry_date=date(2024, 6, 14), option_chain="{}",
                                   gex_value=1.0, spot_price=500.0)
        items = [build_scan_item(current, current), build_scan_item(current, current)]
        assert sort_items(items, "bogus") == items
        assert sort_items(items, "gex_asc") == items


class TestPostgresReads:
    """Scanner queries against the Postgres store leave the raw chain behind"""

    def test_scan_never_selects_option_chain(self, mock_db_pool, clock):
        mock_db_pool.cursor.fetchall.return_value = [
            ("6f1c1b0e-7a43-4a43-9a53-0b0f2f1f2b11", "SPY", date(2024, 6, 14), "standard", "",
             10.0, Decimal("500.00"), MARKET_OPEN_UTC - timedelta(minutes=5)),
        ]
        scanner = GexScanner(PostgresSnapshotStore(mock_db_pool, clock=clock), ["SPY"],
                             market_open=lambda now: True)

        scanner.scan()

        statements = [c[0][0] for c in mock_db_pool.cursor.execute.call_args_list]
        assert len(statements) == 3
        for sql in statements:
            assert "FROM gex_history" in sql
            assert "option_chain" not in sql

    def test_full_history_still_reads_chain(self, mock_db_pool, clock):
        mock_db_pool.cursor.fetchall.return_value = []

        PostgresSnapshotStore(mock_db_pool, clock=clock).get_history("SPY")

        assert "option_chain::text" in mock_db_pool.cursor.execute.call_args[0][0]
