"""Core types, constants and exceptions shared by every layer."""

from .constants import (
    InstrumentClass,
    SessionState,
    TimeFrame,
    ChartType,
    TradingPeriod,
    ReversalKind,
    PriceType,
    TrendDirection,
    LineStyle,
    TickerHealth,
)
from .types import Ticker, PriceBar, SessionWindow, BarSeries, ChartMeta
from .timeframes import TimeFrameSpec, TIMEFRAME_SPECS, spec_for

__all__ = [
    "InstrumentClass",
    "SessionState",
    "TimeFrame",
    "ChartType",
    "TradingPeriod",
    "ReversalKind",
    "PriceType",
    "TrendDirection",
    "LineStyle",
    "TickerHealth",
    "Ticker",
    "PriceBar",
    "SessionWindow",
    "BarSeries",
    "ChartMeta",
    "TimeFrameSpec",
    "TIMEFRAME_SPECS",
    "spec_for",
]
