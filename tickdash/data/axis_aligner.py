"""
Axis Aligner - Expected x-axis slots for a ticker and timeframe.

The axis spans from max(timeframe start, listing date) to now and contains
every slot the source could report a bar for, whether or not the Bar Store
holds one. Charts map bars onto these slots, so a young listing starts at
its first trading day instead of being stretched across the full window.
"""

from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

import pytz

from ..core.constants import InstrumentClass, TimeFrame, TradingPeriod
from ..core.timeframes import spec_for
from ..core.types import SessionWindow, Ticker, ensure_utc
from .market_calendar import MarketCalendar

import logging
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Axis:
    """
    Ordered slot grid of one chart.

    Attributes:
        timeframe: Timeframe the axis was built for
        slots: Slot start instants (UTC, strictly increasing)
        now: Instant the axis was aligned at
        label_format: strftime pattern for labels
        tz_name: Timezone labels are rendered in
        session: Session window of a 1D axis
        slot_period: Duration covered by each slot
    """
    timeframe: TimeFrame
    slots: Tuple[datetime, ...] = field(default_factory=tuple)
    now: Optional[datetime] = None
    label_format: str = "%Y-%m-%d"
    tz_name: str = "UTC"
    session: Optional[SessionWindow] = None
    slot_period: Optional[timedelta] = None

    @property
    def slot_count(self) -> int:
        return len(self.slots)

    @property
    def is_empty(self) -> bool:
        return not self.slots

    @property
    def start(self) -> Optional[datetime]:
        return self.slots[0] if self.slots else None

    @property
    def end(self) -> Optional[datetime]:
        return self.slots[-1] if self.slots else None

    def slot_index(self, ts: datetime) -> Optional[int]:
        """
        Index of the slot containing ``ts``.

        Instants before the first slot, or past the end of the last slot
        when ``slot_period`` is known, map to None.
        """
        if not self.slots:
            return None
        ts = ensure_utc(ts)
        if self.slot_period is not None and ts >= self.slots[-1] + self.slot_period:
            return None
        idx = bisect_right(self.slots, ts) - 1
        return idx if idx >= 0 else None

    @property
    def now_index(self) -> Optional[int]:
        """Slot of ``now``, clamped to the axis end."""
        if not self.slots:
            return None
        if self.now is None or self.now >= self.slots[-1]:
            return len(self.slots) - 1
        return max(bisect_right(self.slots, self.now) - 1, 0)

    def period_at(self, ts: datetime) -> TradingPeriod:
        """Session period of an instant (always REGULAR outside 1D)."""
        if self.session is None or self.session.is_closed:
            return TradingPeriod.REGULAR
        ts = ensure_utc(ts)
        if ts < self.session.regular_start:
            return TradingPeriod.PRE
        if ts >= self.session.regular_end:
            return TradingPeriod.POST
        return TradingPeriod.REGULAR

    def label(self, index: int) -> str:
        tz = pytz.timezone(self.tz_name)
        return self.slots[index].astimezone(tz).strftime(self.label_format)

    def labels(self, max_labels: int = 5) -> List[Tuple[int, str]]:
        """
        Evenly spaced ``(slot_index, text)`` labels, first and last included.
        """
        if not self.slots or max_labels <= 0:
            return []
        if max_labels == 1 or len(self.slots) == 1:
            return [(0, self.label(0))]

        count = min(max_labels, len(self.slots))
        step = (len(self.slots) - 1) / (count - 1)
        indices = sorted({round(i * step) for i in range(count)})
        return [(i, self.label(i)) for i in indices]


class AxisAligner:
    """
    Builds Axis objects from the market calendar.

    Slot granularity per timeframe:
        1D: one per minute of the active session, both ends included
        1W, 1M: one per hour of each regular session (every hour for crypto)
        3M, 6M, 1Y: one per trading day
        5Y: one per week, starting Monday
    """

    def __init__(self, calendar: Optional[MarketCalendar] = None):
        self.calendar = calendar or MarketCalendar()

    def align(
        self,
        ticker: Ticker,
        timeframe: TimeFrame,
        listing_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
        include_pre_post: bool = False,
    ) -> Axis:
        """
        Compute the expected slots of a chart.

        Args:
            ticker: Ticker being charted
            timeframe: Selected timeframe
            listing_date: First trade date, clamps the axis start
            now: Alignment instant (default: current time)
            include_pre_post: Include pre/post-market minutes on 1D

        Returns:
            Axis (empty when no session or no listing exists yet)
        """
        timeframe = TimeFrame(timeframe)
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        cls = ticker.instrument_class
        tf_spec = spec_for(timeframe)
        tz_name = "UTC" if cls is InstrumentClass.CRYPTO else self.calendar.tz.zone

        if timeframe is TimeFrame.DAY_1:
            return self._align_session(ticker, listing_date, now, include_pre_post, tf_spec.label_format, tz_name)

        start = now - tf_spec.span
        if listing_date is not None:
            start = max(start, ensure_utc(listing_date))

        if start > now:
            return Axis(timeframe=timeframe, now=now, label_format=tf_spec.label_format, tz_name=tz_name)

        if timeframe in (TimeFrame.WEEK_1, TimeFrame.MONTH_1):
            candidates = self._hourly_slots(start, now, cls)
        elif timeframe is TimeFrame.YEAR_5:
            candidates = self._weekly_slots(start, now, cls)
        else:
            candidates = self._daily_slots(start, now, cls)

        period = tf_spec.bar_period
        slots = tuple(s for s in candidates if s + period > start and s <= now)

        logger.debug("Aligned axis: %s %s slots=%d", ticker.symbol, timeframe.value, len(slots))
        return Axis(
            timeframe=timeframe,
            slots=slots,
            now=now,
            label_format=tf_spec.label_format,
            tz_name=tz_name,
            slot_period=period,
        )

    # ------------------------------------------------------------------
    # Slot generators
    # ------------------------------------------------------------------

    def _align_session(
        self,
        ticker: Ticker,
        listing_date: Optional[datetime],
        now: datetime,
        include_pre_post: bool,
        label_format: str,
        tz_name: str,
    ) -> Axis:
        session = self.calendar.active_session(now, ticker.instrument_class, include_pre_post)
        if session is None:
            logger.warning("No session in lookback window: %s", ticker.symbol)
            return Axis(timeframe=TimeFrame.DAY_1, now=now, label_format=label_format, tz_name=tz_name)

        start = session.start(include_pre_post)
        end = session.end(include_pre_post)
        if listing_date is not None:
            start = max(start, ensure_utc(listing_date).replace(second=0, microsecond=0))

        slots = []
        current = start
        while current <= end:
            slots.append(current)
            current += timedelta(minutes=1)

        return Axis(
            timeframe=TimeFrame.DAY_1,
            slots=tuple(slots),
            now=now,
            label_format=label_format,
            tz_name=tz_name,
            session=session,
            slot_period=timedelta(minutes=1),
        )

    def _local_midnight(self, day: date, cls: InstrumentClass) -> datetime:
        if cls is InstrumentClass.CRYPTO:
            return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        local = self.calendar.tz.localize(datetime.combine(day, time(0, 0)))
        return local.astimezone(timezone.utc)

    def _days(self, start: datetime, now: datetime, cls: InstrumentClass) -> List[date]:
        return self.calendar.trading_days(
            self.calendar.local_date(start, cls),
            self.calendar.local_date(now, cls),
            cls,
        )

    def _daily_slots(self, start: datetime, now: datetime, cls: InstrumentClass) -> List[datetime]:
        return [self._local_midnight(d, cls) for d in self._days(start, now, cls)]

    def _hourly_slots(self, start: datetime, now: datetime, cls: InstrumentClass) -> List[datetime]:
        slots = []
        for day in self._days(start, now, cls):
            window = self.calendar.session_window(day, cls)
            current = window.regular_start
            while current < window.regular_end:
                slots.append(current)
                current += timedelta(hours=1)
        return slots

    def _weekly_slots(self, start: datetime, now: datetime, cls: InstrumentClass) -> List[datetime]:
        first = self.calendar.local_date(start, cls)
        last = self.calendar.local_date(now, cls)
        monday = first - timedelta(days=first.weekday())
        slots = []
        while monday <= last:
            slots.append(self._local_midnight(monday, cls))
            monday += timedelta(weeks=1)
        return slots
