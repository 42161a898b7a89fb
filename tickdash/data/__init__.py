"""
Data Layer - Acquisition, storage and time alignment.

Main Components:
    MarketCalendar: Exchange session windows for equities and crypto
    BarStore: Per-ticker, per-timeframe bar cache with atomic snapshots
    AxisAligner: Expected x-axis slots for a timeframe
    AcquisitionScheduler: Independent polling task per ticker
"""

from .market_calendar import MarketCalendar
from .candle_store import BarStore, CandleStore
from .axis_aligner import Axis, AxisAligner
from .scheduler import AcquisitionScheduler, Backoff, FetchOutcome, PollingUnit, TickerStatus

__all__ = [
    "MarketCalendar",
    "BarStore",
    "CandleStore",
    "Axis",
    "AxisAligner",
    "AcquisitionScheduler",
    "Backoff",
    "FetchOutcome",
    "PollingUnit",
    "TickerStatus",
]
