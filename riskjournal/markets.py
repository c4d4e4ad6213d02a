"""
markets.py
----------

Market rules that the calculator and the quote feeds depend on: lot
sizes, currency symbols, how a ticker maps to a market and which exchange
suffix the CN quote feed expects.
"""

import math
import re
from datetime import datetime
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from .models import CN, US

LOT_SIZE: Dict[str, int] = {US: 1, CN: 100}

CURRENCY_SYMBOLS: Dict[str, str] = {US: "$", CN: "¥"}

CHINA_TIMEZONES = {
    "Asia/Shanghai",
    "Asia/Chongqing",
    "Asia/Harbin",
    "Asia/Urumqi",
    "PRC",
}

SHANGHAI = ZoneInfo("Asia/Shanghai")

# Well-known A-share / ETF names, used before asking the quote feed.
CN_STOCK_NAMES: Dict[str, str] = {
    "600519": "贵州茅台",
    "601318": "中国平安",
    "600036": "招商银行",
    "601398": "工商银行",
    "600900": "长江电力",
    "600301": "华锡有色",
    "000001": "平安银行",
    "000333": "美的集团",
    "000858": "五粮液",
    "002594": "比亚迪",
    "300750": "宁德时代",
    "510300": "沪深300ETF",
    "510500": "中证500ETF",
    "159915": "创业板ETF",
}


def lot_size(market: Optional[str]) -> int:
    return LOT_SIZE.get((market or US).upper(), 1)


def currency_symbol(market: Optional[str]) -> str:
    return CURRENCY_SYMBOLS.get((market or US).upper(), "$")


def round_half_up(x: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(x + 0.5))


def floor_to_lot(shares: float, market: Optional[str]) -> float:
    """Round a share count down to a whole number of lots."""
    lot = lot_size(market)
    return math.floor(shares / lot) * lot


def round_to_lot(shares: float, market: Optional[str]) -> float:
    """Round a share count to the nearest whole lot (CN) or leave it (US)."""
    lot = lot_size(market)
    if lot == 1:
        return shares
    return round_half_up(shares / lot) * lot


def is_whole_lot(shares: float, market: Optional[str]) -> bool:
    lot = lot_size(market)
    return lot == 1 or float(shares) % lot == 0


def detect_market_from_symbol(symbol: str) -> Optional[str]:
    """Tickers starting with a letter trade in the US, digits in CN."""
    s = (symbol or "").strip()
    if not s:
        return None
    if re.match(r"^[a-zA-Z]", s):
        return US
    if re.match(r"^\d", s):
        return CN
    return None


def cn_exchange_suffix(symbol: str) -> str:
    """Alpha Vantage suffix for an A-share code, or '' if unsupported.

    Codes starting with 5 or 6 list in Shanghai; other numeric codes list
    in Shenzhen, except the 920xxx Beijing codes which the feed lacks.
    """
    s = (symbol or "").strip()
    if re.match(r"^[56]", s):
        return ".SHH"
    if re.match(r"^\d+$", s) and not s.startswith("920"):
        return ".SHZ"
    return ""


def default_market(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> str:
    """Pick CN for users in a China time zone during Beijing trading hours."""
    if tz_name not in CHINA_TIMEZONES:
        return US
    now = now or datetime.now(SHANGHAI)
    if now.tzinfo is None:
        now = now.replace(tzinfo=SHANGHAI)
    hour = now.astimezone(SHANGHAI).hour
    return CN if 9 <= hour < 16 else US


def language_for_market(market: str) -> str:
    return "zh" if market == CN else "en"
