"""
Tradier Market Data Client

Thin, stateless adapter for the three read-only endpoints the collector
needs: quotes, option expirations and option chains. Every call is a
single request with no internal retry; rate limiting is surfaced as
RateLimitedError so the caller decides how to back off.
"""

import json
from datetime import date
from typing import Optional, List, Dict, Any, Tuple
import requests
from pydantic import ValidationError

from gexwatch.config import TradierConfig
from gexwatch.errors import ConfigurationError, RateLimitedError, UpstreamError
from gexwatch.models import Option
from gexwatch.utils import get_logger
from gexwatch.validation import safe_float, safe_int, safe_date

logger = get_logger(__name__)


class TradierClient:
    """Market data client for the Tradier v1 REST API"""

    BASE_URL = "https://api.tradier.com/v1"
    SANDBOX_URL = "https://sandbox.tradier.com/v1"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = BASE_URL,
        request_timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        """Initialize Tradier client"""
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.session = session or requests.Session()

        logger.debug(f"Initialized TradierClient [{self.base_url}]")

    @classmethod
    def from_config(cls, config: TradierConfig, session: Optional[requests.Session] = None) -> "TradierClient":
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            request_timeout=config.request_timeout,
            session=session,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def ensure_configured(self):
        """Raise ConfigurationError if no API key is set"""
        if not self.api_key:
            raise ConfigurationError("TRADIER_API_KEY is not set")

    def _request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Tuple[Dict[str, Any], str]:
        """
        Make a single GET request

        Args:
            endpoint: API endpoint relative to the base URL
            params: Query parameters
            timeout: Override for the request timeout in seconds

        Returns:
            Tuple of (decoded JSON, raw response text)

        Raises:
            ConfigurationError: If no API key is configured
            RateLimitedError: On HTTP 429
            UpstreamError: On transport errors, other non-2xx or bad JSON
        """
        self.ensure_configured()

        url = f"{self.base_url}/{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

        logger.debug(f"GET {endpoint} {params or {}}")

        try:
            response = self.session.get(
                url,
                headers=headers,
                params=params,
                timeout=timeout if timeout is not None else self.request_timeout
            )
        except requests.exceptions.Timeout as e:
            raise UpstreamError(f"Request to {endpoint} timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Request to {endpoint} failed: {e}") from e

        if response.status_code == 429:
            retry_after = safe_float(response.headers.get("Retry-After"), default=None, field_name="Retry-After")
            logger.warning(f"Rate limited (429) on {endpoint}")
            raise RateLimitedError(f"Rate limited on {endpoint}", retry_after=retry_after)

        if not 200 <= response.status_code < 300:
            raise UpstreamError(
                f"{endpoint} failed with status {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )

        text = response.text
        try:
            data = json.loads(text)
        except ValueError as e:
            raise UpstreamError(f"Malformed JSON from {endpoint}: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected response shape from {endpoint}")

        return data, text

    # =========================================================================
    # QUOTE ENDPOINTS
    # =========================================================================

    def get_spot_price(self, symbol: str, timeout: Optional[float] = None) -> float:
        """Get last traded price for an underlying"""
        data, _ = self._request("markets/quotes", params={"symbols": symbol}, timeout=timeout)

        quotes = data.get("quotes")
        if not isinstance(quotes, dict):
            raise UpstreamError(f"No quote returned for {symbol}")

        quote = quotes.get("quote")
        if isinstance(quote, list):
            quote = next((q for q in quote if q.get("symbol") == symbol), quote[0] if quote else None)
        if not isinstance(quote, dict):
            raise UpstreamError(f"No quote returned for {symbol}")

        price = safe_float(quote.get("last"), field_name="last")
        if price <= 0:
            # Before the first print of the day fall back to the previous close
            price = safe_float(quote.get("prevclose"), field_name="prevclose")
        if price <= 0:
            raise UpstreamError(f"Quote for {symbol} has no usable price")

        logger.debug(f"{symbol} spot price: ${price:.2f}")
        return price

    # =========================================================================
    # OPTIONS ENDPOINTS
    # =========================================================================

    def get_expiration_dates(self, symbol: str, timeout: Optional[float] = None) -> List[date]:
        """Get available option expiration dates, ascending"""
        data, _ = self._request(
            "markets/options/expirations",
            params={"symbol": symbol, "expirationType": "true"},
            timeout=timeout
        )

        expirations = data.get("expirations")
        if expirations is None:
            logger.info(f"No expirations listed for {symbol}")
            return []
        if not isinstance(expirations, dict):
            raise UpstreamError(f"Unexpected expirations payload for {symbol}")

        entries = expirations.get("expiration") or expirations.get("date") or []
        if not isinstance(entries, list):
            entries = [entries]

        dates = []
        for entry in entries:
            raw = entry.get("date") if isinstance(entry, dict) else entry
            parsed = safe_date(raw, field_name="expiration")
            if parsed is None:
                raise UpstreamError(f"Malformed expiration '{raw}' for {symbol}")
            dates.append(parsed)

        logger.debug(f"Found {len(dates)} expirations for {symbol}")
        return sorted(set(dates))

    def fetch_options_chain(
        self,
        symbol: str,
        expiry_date: date,
        timeout: Optional[float] = None
    ) -> Tuple[List[Option], str]:
        """
        Fetch the option chain (with greeks) for one expiry

        Returns:
            Tuple of (parsed options, raw response text). The raw text is
            what gets persisted so GEX can be recomputed later.
        """
        _, raw = self._request(
            "markets/options/chains",
            params={"symbol": symbol, "expiration": expiry_date.isoformat(), "greeks": "true"},
            timeout=timeout
        )

        options = self.parse_option_chain(raw)
        logger.debug(f"Fetched {len(options)} options for {symbol} {expiry_date}")
        return options, raw

    @staticmethod
    def parse_option_chain(raw: str) -> List[Option]:
        """
        Parse a raw option chain response

        Raises:
            UpstreamError: If the payload is not a valid chain
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed option chain JSON: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamError("Unexpected option chain payload")

        container = data.get("options")
        if container is None:
            return []
        if not isinstance(container, dict):
            raise UpstreamError("Unexpected option chain payload")

        entries = container.get("option") or []
        if isinstance(entries, dict):
            entries = [entries]

        options = []
        try:
            for entry in entries:
                greeks = entry.get("greeks") or {}
                options.append(Option(
                    strike=safe_float(entry.get("strike"), field_name="strike"),
                    option_type=str(entry.get("option_type", "")).lower(),
                    open_interest=safe_int(entry.get("open_interest"), field_name="open_interest"),
                    gamma=safe_float(greeks.get("gamma"), field_name="gamma", allow_negative=True),
                    expiration_date=safe_date(entry.get("expiration_date"), field_name="expiration_date"),
                    expiration_type=entry.get("expiration_type"),
                ))
        except (AttributeError, ValidationError) as e:
            raise UpstreamError(f"Malformed option in chain: {e}") from e

        return options


def main():
    """Fetch a quote, expirations and the nearest chain for a symbol"""
    import argparse
    from gexwatch.config import load_config
    from gexwatch.analytics.gex_calculator import (
        calculate_gex_per_strike,
        calculate_gamma_flip_level,
        total_gex,
    )

    parser = argparse.ArgumentParser(description="Tradier client smoke test")
    parser.add_argument("--symbol", default="SPY", help="Underlying symbol (default: SPY)")
    args = parser.parse_args()

    config = load_config()
    client = TradierClient.from_config(config.tradier)
    symbol = args.symbol.upper()

    price = client.get_spot_price(symbol)
    print(f"{symbol}: ${price:.2f}")

    expirations = client.get_expiration_dates(symbol)
    print(f"Expirations: {[str(d) for d in expirations[:5]]}")
    if not expirations:
        return

    options, _ = client.fetch_options_chain(symbol, expirations[0])
    gex_by_strike = calculate_gex_per_strike(options, price)
    flip = calculate_gamma_flip_level(gex_by_strike)
    print(f"Options: {len(options)}, strikes with GEX: {len(gex_by_strike)}")
    print(f"Total GEX: {total_gex(gex_by_strike):,.0f}")
    if flip is not None:
        print(f"Gamma flip: ${flip:.2f}")


if __name__ == "__main__":
    main()
