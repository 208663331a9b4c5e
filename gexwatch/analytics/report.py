"""
GEX report - combined GEX by strike and gamma flip level for one symbol

Uses the engine read path, so cached chains are reused and missing ones are
fetched and written through.
"""

from gexwatch.analytics.gex_calculator import (
    GexByStrike,
    calculate_gamma_flip_level,
    top_strikes,
    total_gex,
)
from gexwatch.utils import get_logger

logger = get_logger(__name__)


def print_report(symbol: str, gex_by_strike: GexByStrike, limit: int = 20):
    """Print total GEX, flip level and the largest strikes"""
    flip = calculate_gamma_flip_level(gex_by_strike)

    print("\n" + "=" * 80)
    print(f"GEX REPORT: {symbol}")
    print("=" * 80)
    print(f"Strikes:     {len(gex_by_strike)}")
    print(f"Total GEX:   {total_gex(gex_by_strike):,.0f}")
    print(f"Gamma flip:  {f'${flip:.2f}' if flip is not None else 'n/a'}")
    print("-" * 80)
    for strike, gex in sorted(top_strikes(gex_by_strike, limit=limit)):
        marker = "+" if gex >= 0 else "-"
        print(f"  {strike:>10.2f}  {marker} {abs(gex):>20,.0f}")
    print("=" * 80 + "\n")


def main():
    """Combined GEX across all expiries for a symbol"""
    import argparse
    from gexwatch.config import load_config
    from gexwatch.database import ConnectionPool, PostgresSnapshotStore
    from gexwatch.ingestion import CollectionEngine, TradierClient
    from gexwatch.utils import configure_logging

    parser = argparse.ArgumentParser(description="gexwatch GEX report")
    parser.add_argument("--symbol", default="SPY", help="Underlying symbol (default: SPY)")
    parser.add_argument("--top", type=int, default=20, help="Number of strikes to list (default: 20)")
    args = parser.parse_args()

    config = load_config()
    configure_logging(config.log_level)

    db_pool = ConnectionPool(config.database)
    try:
        store = PostgresSnapshotStore.from_config(db_pool, config.collector)
        engine = CollectionEngine(TradierClient.from_config(config.tradier), store, config.collector)

        symbol = args.symbol.upper()
        gex_by_strike = engine.calculate_gex_for_all_expiries(symbol)
        if not gex_by_strike:
            print(f"No GEX data for {symbol}")
            return
        print_report(symbol, gex_by_strike, limit=args.top)
    finally:
        db_pool.close()


if __name__ == "__main__":
    main()
