from datetime import date, datetime, timezone

import pytest

from riskjournal.sessions import (
    easter_sunday,
    is_nyse_holiday,
    market_session_status,
    nth_weekday,
    nyse_holidays,
)


def _utc(s):
    return datetime.fromisoformat(s).replace(tzinfo=timezone.utc)


def test_cn_open_during_morning_session():
    # 11:00 Shanghai, Wednesday
    s = market_session_status("CN", _utc("2026-01-28T03:00:00"))
    assert s.session == "OPEN"


def test_cn_closed_for_lunch():
    s = market_session_status("CN", _utc("2026-01-28T04:00:00"))
    assert s.session == "CLOSED"
    assert s.closed_reason == "LUNCH"


def test_cn_afternoon_and_overnight():
    assert market_session_status("CN", _utc("2026-01-28T06:00:00")).session == "OPEN"
    s = market_session_status("CN", _utc("2026-01-28T08:00:00"))
    assert s.closed_reason == "OVERNIGHT"


def test_us_pre_market():
    # 08:00 New York
    s = market_session_status("US", _utc("2026-01-28T13:00:00"))
    assert s.session == "EXT"
    assert s.extended_session == "PRE"


@pytest.mark.parametrize(
    "when,session,extended,reason",
    [
        ("2026-01-28T15:00:00", "OPEN", None, None),
        ("2026-01-28T22:00:00", "EXT", "AFTER", None),
        ("2026-01-29T03:00:00", "CLOSED", None, "OVERNIGHT"),
        ("2026-01-31T15:00:00", "CLOSED", None, "WEEKEND"),
    ],
)
def test_us_sessions(when, session, extended, reason):
    s = market_session_status("US", _utc(when))
    assert s.session == session
    assert s.extended_session == extended
    assert s.closed_reason == reason


def test_us_closed_on_new_years_day():
    s = market_session_status("US", _utc("2026-01-01T15:00:00"))
    assert s.session == "CLOSED"
    assert s.closed_reason == "HOLIDAY"


def test_us_closed_on_thanksgiving():
    s = market_session_status("US", _utc("2026-11-26T16:00:00"))
    assert s.closed_reason == "HOLIDAY"


def test_naive_datetime_is_utc():
    assert market_session_status("CN", datetime(2026, 1, 28, 3, 0)).session == "OPEN"


def test_holiday_calendar():
    assert easter_sunday(2026) == date(2026, 4, 5)
    assert nth_weekday(2026, 11, 3, 4) == date(2026, 11, 26)
    holidays = nyse_holidays(2026)
    assert date(2026, 4, 3) in holidays  # Good Friday
    assert date(2026, 5, 25) in holidays  # Memorial Day
    assert date(2026, 7, 3) in holidays  # July 4th on a Saturday
    assert not is_nyse_holiday(date(2026, 1, 28))


def test_status_to_dict():
    d = market_session_status("CN", _utc("2026-01-28T04:00:00")).to_dict()
    assert d == {"market": "CN", "session": "CLOSED", "extended_session": None, "closed_reason": "LUNCH"}
