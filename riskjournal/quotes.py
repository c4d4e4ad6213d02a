"""
quotes.py
---------

Market data for the journal: last prices, daily candles for the charts
and company names for CN tickers.

US data comes from Stooq (free CSV endpoints, no key). CN data comes from
Alpha Vantage, whose free tier allows only a handful of calls per minute,
so daily candles are cached in the journal database for a day.
"""

import io
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd
import requests

from .errors import QuoteError
from .markets import CN_STOCK_NAMES, cn_exchange_suffix
from .models import CN, US

logger = logging.getLogger(__name__)

STOOQ_BASE_URL = "https://stooq.com"
ALPHAVANTAGE_BASE_URL = "https://www.alphavantage.co"
DEFAULT_TIMEOUT = 10
CHART_CACHE_TTL = 24 * 60 * 60

SymbolMarket = Tuple[str, str]


class QuoteClient:
    """Fetches quotes over a shared ``requests.Session``.

    ``db`` is an optional :class:`~riskjournal.database.TradeJournalDB`
    used as the chart cache; without it every chart request goes out.
    """

    def __init__(
        self,
        api_key: str = "",
        session: Optional[requests.Session] = None,
        db=None,
        cache_ttl: float = CHART_CACHE_TTL,
        timeout: float = DEFAULT_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.session = session or requests.Session()
        self.db = db
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self._sleep = sleep
        self._names: Dict[str, str] = {}

    # ---------- http ----------
    def _get(self, url: str, params: Dict[str, Any]) -> requests.Response:
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise QuoteError(0, "timeout", f"Timeout calling {url}") from e
        except requests.ConnectionError as e:
            raise QuoteError(0, "connection_error", f"Network error calling {url}") from e
        except requests.RequestException as e:
            raise QuoteError(0, "request_error", f"Request to {url} failed: {e}") from e
        if r.status_code >= 400:
            raise QuoteError(r.status_code, "http_error", f"{url} returned {r.status_code}")
        return r

    def _alphavantage(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise QuoteError(0, "no_api_key", "Alpha Vantage API key not configured")
        r = self._get(f"{ALPHAVANTAGE_BASE_URL}/query", {**params, "apikey": self.api_key})
        try:
            data = r.json()
        except ValueError as e:
            raise QuoteError(r.status_code, "bad_json", "Response not JSON", {"text": r.text[:200]}) from e
        if not isinstance(data, dict):
            raise QuoteError(r.status_code, "bad_json", "Unexpected response shape")
        if data.get("Error Message"):
            raise QuoteError(r.status_code, "api_error", data["Error Message"], data)
        if data.get("Note") or data.get("Information"):
            raise QuoteError(
                429, "rate_limited", "Alpha Vantage rate limit exceeded. Please try again later.", data
            )
        return data

    @staticmethod
    def _cn_query_symbol(symbol: str) -> str:
        suffix = cn_exchange_suffix(symbol)
        if not suffix:
            raise QuoteError(0, "bad_symbol", f"Invalid Chinese stock symbol: {symbol}")
        return f"{symbol}{suffix}"

    # ---------- prices ----------
    def fetch_current_price(self, symbol: str, market: str) -> Optional[float]:
        """Last price, or None when the feed has nothing usable."""
        try:
            if market == CN:
                data = self._alphavantage(
                    {"function": "GLOBAL_QUOTE", "symbol": self._cn_query_symbol(symbol)}
                )
                raw = (data.get("Global Quote") or {}).get("05. price")
                price = float(raw) if raw not in (None, "") else None
            else:
                r = self._get(
                    f"{STOOQ_BASE_URL}/q/l/",
                    {"s": f"{symbol}.US", "f": "sd2t2ohlcv", "h": "", "e": "csv"},
                )
                df = _read_csv(r.text)
                close = _column(df, "close")
                if df.empty or close is None:
                    return None
                price = pd.to_numeric(df[close], errors="coerce").iloc[0]
                price = None if pd.isna(price) else float(price)
        except (QuoteError, ValueError) as e:
            logger.warning("Failed to fetch price for %s: %s", symbol, e)
            return None

        if price is None or price <= 0:
            return None
        return price

    def fetch_current_prices(
        self, items: Iterable[SymbolMarket], batch_size: int = 5, delay: float = 0.2
    ) -> Dict[str, float]:
        """Prices for many symbols, a batch at a time; misses are left out."""
        items = list(items)
        prices: Dict[str, float] = {}
        for i in range(0, len(items), batch_size):
            for symbol, market in items[i : i + batch_size]:
                price = self.fetch_current_price(symbol, market)
                if price is not None:
                    prices[symbol] = price
            if i + batch_size < len(items):
                self._sleep(delay)
        return prices

    # ---------- charts ----------
    def fetch_chart_data(self, symbol: str, market: str, days: int = 90) -> List[Dict[str, Any]]:
        """Daily candles, oldest first, at most ``days`` of them."""
        symbol = symbol.strip().upper()
        if self.db is not None:
            cached = self.db.get_cached_chart(symbol, market, self.cache_ttl)
            if cached:
                logger.debug("Chart cache hit for %s/%s", market, symbol)
                return cached[-days:]
            logger.debug("Chart cache miss for %s/%s", market, symbol)

        if market == US:
            rows = self._fetch_us_chart(symbol, days)
        else:
            rows = self._fetch_cn_chart(symbol, days)

        if rows and self.db is not None:
            self.db.save_chart(symbol, market, rows)
        return rows

    def _fetch_us_chart(self, symbol: str, days: int) -> List[Dict[str, Any]]:
        r = self._get(
            f"{STOOQ_BASE_URL}/q/d/l/",
            {"s": f"{symbol}.US", "i": "d", "f": "sd2t2ohlcv", "h": "", "e": "csv"},
        )
        df = _read_csv(r.text)
        if df.empty:
            raise QuoteError(r.status_code, "no_data", "No data returned from Stooq")

        cols = {name: _column(df, name) for name in ("date", "open", "high", "low", "close", "volume")}
        if any(cols[name] is None for name in ("date", "open", "high", "low", "close")):
            raise QuoteError(r.status_code, "bad_csv", "Invalid CSV format from Stooq")

        out = pd.DataFrame({"time": df[cols["date"]].astype(str).str.strip().map(_iso_date)})
        for name in ("open", "high", "low", "close"):
            out[name] = pd.to_numeric(df[cols[name]], errors="coerce")
        if cols["volume"] is not None:
            out["volume"] = pd.to_numeric(df[cols["volume"]], errors="coerce")
        else:
            out["volume"] = float("nan")

        out = out[out["time"] != ""].dropna(subset=["open", "high", "low", "close"])
        return _records(out.tail(days))

    def _fetch_cn_chart(self, symbol: str, days: int) -> List[Dict[str, Any]]:
        data = self._alphavantage(
            {
                "function": "TIME_SERIES_DAILY_ADJUSTED",
                "symbol": self._cn_query_symbol(symbol),
                "outputsize": "compact",
            }
        )
        series = data.get("Time Series (Daily)")
        if not series:
            raise QuoteError(200, "no_data", "No time series data in response")

        # most recent first, then keep ``days`` and flip to chronological
        dates = sorted(series, reverse=True)[:days]
        rows = []
        for d in reversed(dates):
            bar = series[d]
            volume = bar.get("6. volume")
            rows.append(
                {
                    "time": d,
                    "open": float(bar["1. open"]),
                    "high": float(bar["2. high"]),
                    "low": float(bar["3. low"]),
                    "close": float(bar["4. close"]),
                    "volume": float(volume) if volume not in (None, "") else None,
                }
            )
        return rows

    # ---------- names ----------
    def stock_name_cached(self, symbol: str, market: str) -> str:
        """Company name without touching the network; falls back to the symbol."""
        if market == US or symbol.isalpha():
            return symbol
        if symbol in self._names:
            return self._names[symbol]
        return CN_STOCK_NAMES.get(symbol, symbol)

    def stock_name(self, symbol: str, market: str) -> str:
        """Company name for CN tickers; US tickers are already readable."""
        if market == US or symbol.isalpha():
            return symbol
        if symbol in self._names:
            return self._names[symbol]
        if symbol in CN_STOCK_NAMES:
            self._names[symbol] = CN_STOCK_NAMES[symbol]
            return self._names[symbol]

        if cn_exchange_suffix(symbol):
            try:
                data = self._alphavantage(
                    {"function": "OVERVIEW", "symbol": self._cn_query_symbol(symbol)}
                )
            except QuoteError as e:
                logger.warning("Failed to fetch company name for %s: %s", symbol, e)
            else:
                name = data.get("Name")
                if isinstance(name, str) and name.strip():
                    self._names[symbol] = name
                    return name
        return symbol

    def stock_names(
        self, items: Iterable[SymbolMarket], batch_size: int = 3, delay: float = 0.5
    ) -> Dict[str, str]:
        items = list(items)
        names: Dict[str, str] = {}
        for i in range(0, len(items), batch_size):
            for symbol, market in items[i : i + batch_size]:
                names[symbol] = self.stock_name(symbol, market)
            if i + batch_size < len(items):
                self._sleep(delay)
        return names


def _read_csv(text: str) -> pd.DataFrame:
    try:
        return pd.read_csv(io.StringIO(text.strip()))
    except (pd.errors.EmptyDataError, pd.errors.ParserError):
        return pd.DataFrame()


def _column(df: pd.DataFrame, name: str) -> Optional[str]:
    for col in df.columns:
        if str(col).strip().lower() == name:
            return col
    return None


def _iso_date(value: str) -> str:
    """Stooq dates are YYYY-MM-DD, but some mirrors send MM/DD/YYYY."""
    if "/" in value:
        month, day, year = value.split("/")
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return value


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    rows = []
    for rec in df.to_dict(orient="records"):
        volume = rec.get("volume")
        rows.append(
            {
                "time": rec["time"],
                "open": float(rec["open"]),
                "high": float(rec["high"]),
                "low": float(rec["low"]),
                "close": float(rec["close"]),
                "volume": None if volume is None or pd.isna(volume) else float(volume),
            }
        )
    return rows
