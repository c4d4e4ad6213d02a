"""
sessions.py
-----------

Whether a market is open right now. US sessions follow the NYSE calendar
(regular hours plus pre-market and after-hours); CN sessions follow the
Shanghai exchange's morning and afternoon blocks.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import FrozenSet, Optional
from zoneinfo import ZoneInfo

from .models import US

NEW_YORK = ZoneInfo("America/New_York")
SHANGHAI = ZoneInfo("Asia/Shanghai")

OPEN = "OPEN"
EXT = "EXT"
CLOSED = "CLOSED"

PRE = "PRE"
AFTER = "AFTER"

OVERNIGHT = "OVERNIGHT"
LUNCH = "LUNCH"
WEEKEND = "WEEKEND"
HOLIDAY = "HOLIDAY"


@dataclass(frozen=True)
class MarketSessionStatus:
    market: str
    session: str
    extended_session: Optional[str] = None
    closed_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "market": self.market,
            "session": self.session,
            "extended_session": self.extended_session,
            "closed_reason": self.closed_reason,
        }


def _minutes(h: int, m: int = 0) -> int:
    return h * 60 + m


def nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    """n-th ``weekday`` (Mon=0) of a month."""
    first = date(year, month, 1)
    delta = (weekday - first.weekday()) % 7
    return first + timedelta(days=delta + (n - 1) * 7)


def last_weekday(year: int, month: int, weekday: int) -> date:
    nxt = date(year + (month == 12), month % 12 + 1, 1)
    last = nxt - timedelta(days=1)
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def easter_sunday(year: int) -> date:
    # Meeus/Jones/Butcher Gregorian algorithm
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def observed(d: date) -> date:
    """Saturday holidays are observed Friday, Sunday holidays Monday."""
    if d.weekday() == 5:
        return d - timedelta(days=1)
    if d.weekday() == 6:
        return d + timedelta(days=1)
    return d


@lru_cache(maxsize=32)
def nyse_holidays(year: int) -> FrozenSet[date]:
    return frozenset(
        {
            observed(date(year, 1, 1)),
            nth_weekday(year, 1, 0, 3),  # Martin Luther King Jr. Day
            nth_weekday(year, 2, 0, 3),  # Presidents Day
            easter_sunday(year) - timedelta(days=2),  # Good Friday
            last_weekday(year, 5, 0),  # Memorial Day
            observed(date(year, 6, 19)),
            observed(date(year, 7, 4)),
            nth_weekday(year, 9, 0, 1),  # Labor Day
            nth_weekday(year, 11, 3, 4),  # Thanksgiving
            observed(date(year, 12, 25)),
        }
    )


def is_nyse_holiday(d: date) -> bool:
    # next year's set catches New Year's Day observed on Dec 31
    return d in nyse_holidays(d.year) or d in nyse_holidays(d.year + 1)


def market_session_status(market: str, now: Optional[datetime] = None) -> MarketSessionStatus:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if market == US:
        local = now.astimezone(NEW_YORK)
        if local.weekday() >= 5:
            return MarketSessionStatus(market, CLOSED, closed_reason=WEEKEND)
        if is_nyse_holiday(local.date()):
            return MarketSessionStatus(market, CLOSED, closed_reason=HOLIDAY)

        minutes = _minutes(local.hour, local.minute)
        if _minutes(9, 30) <= minutes < _minutes(16):
            return MarketSessionStatus(market, OPEN)
        if _minutes(4) <= minutes < _minutes(9, 30):
            return MarketSessionStatus(market, EXT, extended_session=PRE)
        if _minutes(16) <= minutes < _minutes(20):
            return MarketSessionStatus(market, EXT, extended_session=AFTER)
        return MarketSessionStatus(market, CLOSED, closed_reason=OVERNIGHT)

    local = now.astimezone(SHANGHAI)
    if local.weekday() >= 5:
        return MarketSessionStatus(market, CLOSED, closed_reason=WEEKEND)

    minutes = _minutes(local.hour, local.minute)
    morning = _minutes(9, 30) <= minutes < _minutes(11, 30)
    afternoon = _minutes(13) <= minutes < _minutes(15)
    if morning or afternoon:
        return MarketSessionStatus(market, OPEN)

    lunch = _minutes(11, 30) <= minutes < _minutes(13)
    return MarketSessionStatus(market, CLOSED, closed_reason=LUNCH if lunch else OVERNIGHT)
