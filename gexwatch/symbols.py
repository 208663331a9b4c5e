"""
Default symbol allow-list for GEX collection

Index ETFs first, then the most heavily weighted S&P 500 names. Override
with the GEX_SYMBOLS environment variable (comma-separated).
"""

from typing import Iterable, List

INDEX_ETFS = ["SPY", "QQQ", "IWM", "DIA"]

SP500_LEADERS = [
    "AAPL", "MSFT", "NVDA", "AMZN", "GOOGL", "META", "TSLA", "BRK.B",
    "AVGO", "LLY", "JPM", "UNH", "XOM", "V", "MA", "PG",
    "COST", "JNJ", "HD", "ABBV", "NFLX", "CRM", "BAC", "CVX",
    "KO", "WMT", "MRK", "ORCL", "AMD", "PEP", "TMO", "ADBE",
    "ACN", "LIN", "CSCO", "MCD", "ABT", "DHR", "INTC", "TXN",
    "MU", "PANW", "PLTR", "CRWD", "SHOP", "SNOW", "NOW", "UBER",
]

DEFAULT_SYMBOLS = INDEX_ETFS + SP500_LEADERS


def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    """Upper-case, strip and de-duplicate symbols, preserving order"""
    seen = set()
    result = []
    for symbol in symbols:
        symbol = symbol.strip().upper()
        if symbol and symbol not in seen:
            seen.add(symbol)
            result.append(symbol)
    return result
