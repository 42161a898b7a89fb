"""
Static timeframe table.

Maps every TimeFrame to its bar granularity, source range, axis span,
refresh cadence and retention. This is configuration, not computation:
changing a row changes what is requested and kept, nothing else.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict

from .constants import TimeFrame


@dataclass(frozen=True)
class TimeFrameSpec:
    """
    Static properties of one timeframe.

    Attributes:
        interval: Source bar granularity code (e.g., "1m", "60m", "1d")
        bar_period: Bar granularity as timedelta
        source_range: Source range code requested per fetch
        span: How far back the axis reaches from now (intraday uses the session)
        refresh: Minimum time between refetches while displayed
        retention: How much history the Bar Store keeps
        label_format: strftime pattern for axis labels
        include_pre_post: Whether pre/post-market bars are requested
    """
    interval: str
    bar_period: timedelta
    source_range: str
    span: timedelta
    refresh: timedelta
    retention: timedelta
    label_format: str
    include_pre_post: bool = False


TIMEFRAME_SPECS: Dict[TimeFrame, TimeFrameSpec] = {
    TimeFrame.DAY_1: TimeFrameSpec(
        interval="1m",
        bar_period=timedelta(minutes=1),
        source_range="1d",
        span=timedelta(days=1),
        refresh=timedelta(0),
        retention=timedelta(days=2),
        label_format="%H:%M",
        include_pre_post=True,
    ),
    TimeFrame.WEEK_1: TimeFrameSpec(
        interval="60m",
        bar_period=timedelta(hours=1),
        source_range="5d",
        span=timedelta(days=6),
        refresh=timedelta(minutes=5),
        retention=timedelta(days=8),
        label_format="%m-%d %H:%M",
    ),
    TimeFrame.MONTH_1: TimeFrameSpec(
        interval="60m",
        bar_period=timedelta(hours=1),
        source_range="1mo",
        span=timedelta(days=30),
        refresh=timedelta(minutes=30),
        retention=timedelta(days=32),
        label_format="%m-%d %H:%M",
    ),
    TimeFrame.MONTH_3: TimeFrameSpec(
        interval="1d",
        bar_period=timedelta(days=1),
        source_range="3mo",
        span=timedelta(days=90),
        refresh=timedelta(hours=1),
        retention=timedelta(days=95),
        label_format="%Y-%m-%d",
    ),
    TimeFrame.MONTH_6: TimeFrameSpec(
        interval="1d",
        bar_period=timedelta(days=1),
        source_range="6mo",
        span=timedelta(days=180),
        refresh=timedelta(hours=1),
        retention=timedelta(days=185),
        label_format="%Y-%m-%d",
    ),
    TimeFrame.YEAR_1: TimeFrameSpec(
        interval="1d",
        bar_period=timedelta(days=1),
        source_range="1y",
        span=timedelta(days=365),
        refresh=timedelta(days=1),
        retention=timedelta(days=370),
        label_format="%Y-%m-%d",
    ),
    TimeFrame.YEAR_5: TimeFrameSpec(
        interval="1wk",
        bar_period=timedelta(weeks=1),
        source_range="5y",
        span=timedelta(days=365 * 5),
        refresh=timedelta(days=1),
        retention=timedelta(days=365 * 5 + 10),
        label_format="%Y-%m-%d",
    ),
}


def spec_for(timeframe: TimeFrame) -> TimeFrameSpec:
    """Look up the static spec of a timeframe."""
    return TIMEFRAME_SPECS[TimeFrame(timeframe)]
