"""
Market Calendar - Maps wall-clock instants to exchange sessions.

Pure and deterministic: no I/O, no waiting. Equity sessions follow the NYSE
schedule (pre-market 04:00, regular 09:30-16:00, post-market until 20:00
America/New_York, holidays and half days). Crypto trades around the clock.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import FrozenSet, List, Optional

import pandas as pd
import pytz
from pandas.tseries.holiday import (
    AbstractHolidayCalendar,
    GoodFriday,
    Holiday,
    USLaborDay,
    USMartinLutherKingJr,
    USMemorialDay,
    USPresidentsDay,
    USThanksgivingDay,
    nearest_workday,
    sunday_to_monday,
)

from ..core.constants import (
    EARLY_CLOSE_POST_MARKET_END,
    EARLY_CLOSE_REGULAR_END,
    EQUITY_TIMEZONE,
    MAX_SESSION_LOOKBACK_DAYS,
    POST_MARKET_END,
    PRE_MARKET_START,
    PRE_MARKET_TRUNCATE_MINUTES,
    REGULAR_END,
    REGULAR_START,
    InstrumentClass,
    SessionState,
)
from ..core.types import SessionWindow, ensure_utc


class NYSEHolidayCalendar(AbstractHolidayCalendar):
    """Full-day NYSE closures."""
    rules = [
        Holiday("New Years Day", month=1, day=1, observance=sunday_to_monday),
        USMartinLutherKingJr,
        USPresidentsDay,
        GoodFriday,
        USMemorialDay,
        Holiday("Juneteenth", month=6, day=19, start_date="2022-01-01",
                observance=nearest_workday),
        Holiday("Independence Day", month=7, day=4, observance=nearest_workday),
        USLaborDay,
        USThanksgivingDay,
        Holiday("Christmas", month=12, day=25, observance=nearest_workday),
    ]


@lru_cache(maxsize=64)
def _holidays_for_year(year: int) -> FrozenSet[date]:
    days = NYSEHolidayCalendar().holidays(
        start=pd.Timestamp(year, 1, 1), end=pd.Timestamp(year, 12, 31)
    )
    return frozenset(d.date() for d in days)


def _parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


class MarketCalendar:
    """
    Session calendar for equities and crypto.

    Session windows are immutable once computed for a date and are cached.
    """

    def __init__(self, timezone_name: str = EQUITY_TIMEZONE, truncate_pre_market: bool = False):
        """
        Initialize calendar.

        Args:
            timezone_name: Exchange timezone for equity sessions
            truncate_pre_market: Start pre-market 30 minutes before the open
        """
        self.tz = pytz.timezone(timezone_name)
        self.truncate_pre_market = truncate_pre_market

        self._pre_start = _parse_hhmm(PRE_MARKET_START)
        self._reg_start = _parse_hhmm(REGULAR_START)
        self._reg_end = _parse_hhmm(REGULAR_END)
        self._post_end = _parse_hhmm(POST_MARKET_END)
        self._early_reg_end = _parse_hhmm(EARLY_CLOSE_REGULAR_END)
        self._early_post_end = _parse_hhmm(EARLY_CLOSE_POST_MARKET_END)

        self._windows = {}

    # ------------------------------------------------------------------
    # Day classification
    # ------------------------------------------------------------------

    def is_holiday(self, day: date) -> bool:
        return day in _holidays_for_year(day.year)

    def is_trading_day(self, day: date, instrument_class: InstrumentClass) -> bool:
        if instrument_class is InstrumentClass.CRYPTO:
            return True
        return day.weekday() < 5 and not self.is_holiday(day)

    def is_early_close(self, day: date) -> bool:
        """Half days: July 3, the day after Thanksgiving, Christmas Eve."""
        if not self.is_trading_day(day, InstrumentClass.EQUITY):
            return False
        if (day.month, day.day) in ((7, 3), (12, 24)):
            return True
        thanksgiving = day - timedelta(days=1)
        return thanksgiving.month == 11 and self.is_holiday(thanksgiving) and day.weekday() == 4

    # ------------------------------------------------------------------
    # Session windows
    # ------------------------------------------------------------------

    def session_window(self, day: date, instrument_class: InstrumentClass) -> SessionWindow:
        """
        Session boundaries for a calendar day.

        Args:
            day: Calendar date in the exchange timezone (UTC for crypto)
            instrument_class: Equity or crypto

        Returns:
            SessionWindow with UTC boundaries, or a closed window
        """
        key = (day, instrument_class)
        window = self._windows.get(key)
        if window is None:
            window = self._build_window(day, instrument_class)
            self._windows[key] = window
        return window

    def _build_window(self, day: date, instrument_class: InstrumentClass) -> SessionWindow:
        if instrument_class is InstrumentClass.CRYPTO:
            start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
            end = start + timedelta(days=1)
            return SessionWindow(
                day=day,
                pre_market_start=start,
                regular_start=start,
                regular_end=end,
                post_market_end=end,
            )

        if not self.is_trading_day(day, instrument_class):
            return SessionWindow.closed(day)

        early = self.is_early_close(day)
        regular_start = self._localize(day, self._reg_start)
        pre_start = self._localize(day, self._pre_start)
        if self.truncate_pre_market:
            pre_start = regular_start - timedelta(minutes=PRE_MARKET_TRUNCATE_MINUTES)

        return SessionWindow(
            day=day,
            pre_market_start=pre_start,
            regular_start=regular_start,
            regular_end=self._localize(day, self._early_reg_end if early else self._reg_end),
            post_market_end=self._localize(day, self._early_post_end if early else self._post_end),
        )

    def _localize(self, day: date, at: time) -> datetime:
        local = self.tz.localize(datetime.combine(day, at))
        return local.astimezone(timezone.utc)

    def local_date(self, instant: datetime, instrument_class: InstrumentClass) -> date:
        """Calendar date of ``instant`` in the session's timezone."""
        instant = ensure_utc(instant)
        if instrument_class is InstrumentClass.CRYPTO:
            return instant.date()
        return instant.astimezone(self.tz).date()

    # ------------------------------------------------------------------
    # Instants
    # ------------------------------------------------------------------

    def session_state(self, instant: datetime, instrument_class: InstrumentClass) -> SessionState:
        """Determine session state for an instant."""
        day = self.local_date(instant, instrument_class)
        return self.session_window(day, instrument_class).state_at(instant)

    def is_trading_hours(
        self,
        instant: datetime,
        instrument_class: InstrumentClass,
        include_pre_post: bool = False,
    ) -> bool:
        """Check if the instant falls inside a session."""
        state = self.session_state(instant, instrument_class)
        if state is SessionState.CLOSED:
            return False
        return include_pre_post or state is SessionState.REGULAR

    def active_session(
        self,
        instant: datetime,
        instrument_class: InstrumentClass,
        include_pre_post: bool = False,
    ) -> Optional[SessionWindow]:
        """
        Session to chart for an intraday view at ``instant``.

        Returns today's window once it has started, otherwise the most
        recent session. The search is bounded, so hours with no session
        (overnight, weekends, holidays) resolve immediately.

        Returns:
            SessionWindow, or None if no session exists in the lookback
        """
        instant = ensure_utc(instant)
        day = self.local_date(instant, instrument_class)

        for offset in range(MAX_SESSION_LOOKBACK_DAYS + 1):
            window = self.session_window(day - timedelta(days=offset), instrument_class)
            if window.is_closed:
                continue
            if window.start(include_pre_post) <= instant:
                return window
        return None

    def previous_session(self, day: date, instrument_class: InstrumentClass) -> Optional[SessionWindow]:
        """Most recent open session strictly before ``day``."""
        for offset in range(1, MAX_SESSION_LOOKBACK_DAYS + 1):
            window = self.session_window(day - timedelta(days=offset), instrument_class)
            if not window.is_closed:
                return window
        return None

    def trading_days(self, start: date, end: date, instrument_class: InstrumentClass) -> List[date]:
        """Open dates in ``[start, end]``."""
        days = []
        current = start
        while current <= end:
            if self.is_trading_day(current, instrument_class):
                days.append(current)
            current += timedelta(days=1)
        return days
