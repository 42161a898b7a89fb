"""
Unit tests for the market calendar.

Dates are chosen around known NYSE events in 2024 (DST began March 10).
"""

from datetime import date, datetime, timezone

import pytest

from tickdash.core.constants import InstrumentClass, SessionState
from tickdash.data.market_calendar import MarketCalendar

EQUITY = InstrumentClass.EQUITY
CRYPTO = InstrumentClass.CRYPTO


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def calendar():
    return MarketCalendar()


def test_regular_weekday_window(calendar):
    """Friday during daylight saving time: ET is UTC-4."""
    window = calendar.session_window(date(2024, 3, 15), EQUITY)

    assert not window.is_closed
    assert window.pre_market_start == utc(2024, 3, 15, 8, 0)
    assert window.regular_start == utc(2024, 3, 15, 13, 30)
    assert window.regular_end == utc(2024, 3, 15, 20, 0)
    assert window.post_market_end == utc(2024, 3, 16, 0, 0)


def test_winter_window_uses_standard_time(calendar):
    window = calendar.session_window(date(2024, 1, 16), EQUITY)
    assert window.regular_start == utc(2024, 1, 16, 14, 30)
    assert window.regular_end == utc(2024, 1, 16, 21, 0)


def test_weekend_is_closed(calendar):
    assert calendar.session_window(date(2024, 3, 16), EQUITY).is_closed
    assert calendar.session_window(date(2024, 3, 17), EQUITY).is_closed


@pytest.mark.parametrize("day", [
    date(2024, 1, 1),    # New Year
    date(2024, 1, 15),   # MLK
    date(2024, 3, 29),   # Good Friday
    date(2024, 7, 4),    # Independence Day
    date(2024, 11, 28),  # Thanksgiving
    date(2024, 12, 25),  # Christmas
    date(2022, 6, 20),   # Juneteenth observed on Monday
])
def test_holidays_are_closed(calendar, day):
    assert calendar.is_holiday(day)
    assert calendar.session_window(day, EQUITY).is_closed


def test_juneteenth_not_observed_before_2022(calendar):
    assert not calendar.is_holiday(date(2021, 6, 18))
    assert calendar.is_trading_day(date(2021, 6, 18), EQUITY)


def test_early_close_day_after_thanksgiving(calendar):
    """Half day ends regular trading at 13:00 and post-market at 17:00 (EST)."""
    day = date(2024, 11, 29)
    assert calendar.is_early_close(day)

    window = calendar.session_window(day, EQUITY)
    assert window.regular_end == utc(2024, 11, 29, 18, 0)
    assert window.post_market_end == utc(2024, 11, 29, 22, 0)


def test_christmas_eve_and_july_third_are_half_days(calendar):
    assert calendar.is_early_close(date(2024, 12, 24))
    assert calendar.is_early_close(date(2024, 7, 3))
    assert not calendar.is_early_close(date(2024, 7, 5))


def test_crypto_is_always_open(calendar):
    window = calendar.session_window(date(2024, 3, 16), CRYPTO)

    assert not window.is_closed
    assert window.regular_start == utc(2024, 3, 16, 0, 0)
    assert window.regular_end == utc(2024, 3, 17, 0, 0)
    assert calendar.session_state(utc(2024, 12, 25, 3, 0), CRYPTO) == SessionState.REGULAR


@pytest.mark.parametrize("instant, expected", [
    (utc(2024, 3, 15, 14, 0), SessionState.REGULAR),      # 10:00 ET
    (utc(2024, 3, 15, 9, 0), SessionState.PRE_MARKET),    # 05:00 ET
    (utc(2024, 3, 15, 21, 0), SessionState.POST_MARKET),  # 17:00 ET
    (utc(2024, 3, 15, 5, 0), SessionState.CLOSED),        # 01:00 ET
    (utc(2024, 3, 16, 15, 0), SessionState.CLOSED),       # Saturday
])
def test_session_state(calendar, instant, expected):
    assert calendar.session_state(instant, EQUITY) == expected


def test_is_trading_hours(calendar):
    pre = utc(2024, 3, 15, 9, 0)
    assert not calendar.is_trading_hours(pre, EQUITY)
    assert calendar.is_trading_hours(pre, EQUITY, include_pre_post=True)


def test_active_session_before_premarket_falls_back(calendar):
    """Monday 02:00 ET: no session has started today, use Friday's."""
    window = calendar.active_session(utc(2024, 3, 18, 6, 0), EQUITY, include_pre_post=True)

    assert window is not None
    assert window.day == date(2024, 3, 15)


def test_active_session_on_weekend_returns_friday(calendar):
    window = calendar.active_session(utc(2024, 3, 17, 15, 0), EQUITY)
    assert window.day == date(2024, 3, 15)


def test_active_session_during_premarket(calendar):
    instant = utc(2024, 3, 15, 9, 0)
    assert calendar.active_session(instant, EQUITY, include_pre_post=True).day == date(2024, 3, 15)
    # Regular-only view has not opened yet today
    assert calendar.active_session(instant, EQUITY, include_pre_post=False).day == date(2024, 3, 14)


def test_active_session_after_good_friday_weekend(calendar):
    """Three closed days in a row still resolve to the last session."""
    window = calendar.active_session(utc(2024, 3, 31, 12, 0), EQUITY)
    assert window.day == date(2024, 3, 28)


def test_previous_session_skips_holiday(calendar):
    assert calendar.previous_session(date(2024, 7, 5), EQUITY).day == date(2024, 7, 3)


def test_trading_days(calendar):
    days = calendar.trading_days(date(2024, 3, 11), date(2024, 3, 17), EQUITY)
    assert days == [date(2024, 3, d) for d in (11, 12, 13, 14, 15)]

    assert len(calendar.trading_days(date(2024, 3, 11), date(2024, 3, 17), CRYPTO)) == 7


def test_truncated_premarket(calendar):
    truncated = MarketCalendar(truncate_pre_market=True)
    window = truncated.session_window(date(2024, 3, 15), EQUITY)
    assert window.pre_market_start == utc(2024, 3, 15, 13, 0)
