"""Core data types for the dashboard engine.

This module defines the fundamental data structures shared by every layer
using dataclasses. All types follow a few rules:
- datetime for all timestamps (UTC-aware, naive values are assumed UTC)
- float for prices (the source reports binary floats, 0 marks a missing price)
- Validation in __post_init__ where needed
- Value types are frozen
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterator, Optional, Sequence, Tuple

import pandas as pd

from .constants import InstrumentClass, SessionState
from .exceptions import InvalidBarError


def ensure_utc(ts: datetime) -> datetime:
    """Return ``ts`` as an aware UTC datetime (naive values are taken as UTC)."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# ============================================================================
# Market Data Types
# ============================================================================

@dataclass(frozen=True)
class Ticker:
    """
    Instrument key handed to the engine by the application.

    Attributes:
        symbol: Source symbol (e.g., "AAPL", "BTC-USD")
        instrument_class: Equity or crypto, decides session rules
    """
    symbol: str
    instrument_class: InstrumentClass = InstrumentClass.EQUITY

    def __post_init__(self):
        object.__setattr__(self, 'symbol', self.symbol.strip().upper())

    def __str__(self) -> str:
        return self.symbol

    @property
    def is_crypto(self) -> bool:
        return self.instrument_class is InstrumentClass.CRYPTO


@dataclass(frozen=True)
class PriceBar:
    """
    OHLCV bar at a fixed granularity.

    Validates OHLC integrity on creation. A bar whose prices are all zero is
    an empty observation (the source had no trade in that slot); it is kept
    so the slot is accounted for, but charts skip it.
    """
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self):
        """Validate bar integrity."""
        object.__setattr__(self, 'timestamp', ensure_utc(self.timestamp))

        if self.is_empty:
            return

        # High must be >= max(open, close)
        if self.high < max(self.open, self.close):
            raise InvalidBarError(
                f"Invalid bar: high ({self.high}) < max(open, close)",
                timestamp=self.timestamp.isoformat()
            )

        # Low must be <= min(open, close), zero lows are missing values
        if self.low > 0 and self.low > min(self.open, self.close):
            raise InvalidBarError(
                f"Invalid bar: low ({self.low}) > min(open, close)",
                timestamp=self.timestamp.isoformat()
            )

        if self.volume < 0:
            raise InvalidBarError(
                f"Invalid bar: negative volume ({self.volume})",
                timestamp=self.timestamp.isoformat()
            )

    @property
    def is_empty(self) -> bool:
        """True when the source reported no price for this slot."""
        return self.close <= 0

    @property
    def range(self) -> float:
        """High - Low"""
        return self.high - self.low


@dataclass(frozen=True)
class SessionWindow:
    """
    Session boundaries of one calendar day.

    All boundaries are aware UTC datetimes. A closed day (weekend, holiday)
    has no boundaries; use ``SessionWindow.closed(day)`` to build one.
    """
    day: date
    pre_market_start: Optional[datetime] = None
    regular_start: Optional[datetime] = None
    regular_end: Optional[datetime] = None
    post_market_end: Optional[datetime] = None

    @classmethod
    def closed(cls, day: date) -> "SessionWindow":
        return cls(day=day)

    @property
    def is_closed(self) -> bool:
        return self.regular_start is None

    def start(self, include_pre_post: bool = False) -> Optional[datetime]:
        """First instant of the window."""
        return self.pre_market_start if include_pre_post else self.regular_start

    def end(self, include_pre_post: bool = False) -> Optional[datetime]:
        """Last instant of the window."""
        return self.post_market_end if include_pre_post else self.regular_end

    def state_at(self, instant: datetime) -> SessionState:
        """Session state of ``instant`` within this day."""
        if self.is_closed:
            return SessionState.CLOSED

        instant = ensure_utc(instant)
        if self.pre_market_start <= instant < self.regular_start:
            return SessionState.PRE_MARKET
        if self.regular_start <= instant < self.regular_end:
            return SessionState.REGULAR
        if self.regular_end <= instant < self.post_market_end:
            return SessionState.POST_MARKET
        return SessionState.CLOSED


@dataclass(frozen=True)
class ChartMeta:
    """
    Instrument metadata reported by the source alongside price history.

    Attributes:
        symbol: Source symbol
        instrument_class: Equity or crypto as reported by the source
        listing_date: First trade date, used to start the axis of young listings
        previous_close: Prior session close, baseline for 1D % change
        current_price: Latest regular-market price at fetch time
        currency: Quote currency
        exchange_timezone: IANA timezone of the listing exchange
    """
    symbol: str
    instrument_class: InstrumentClass = InstrumentClass.EQUITY
    listing_date: Optional[datetime] = None
    previous_close: Optional[float] = None
    current_price: Optional[float] = None
    currency: str = "USD"
    exchange_timezone: str = "America/New_York"


# ============================================================================
# Series
# ============================================================================

@dataclass(frozen=True)
class BarSeries:
    """
    Immutable snapshot of one ``(ticker, timeframe)`` series.

    Bars are strictly increasing by timestamp. Gaps are never synthesized
    into the series; filling them is a rendering concern.
    """
    bars: Tuple[PriceBar, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls) -> "BarSeries":
        return cls(())

    @classmethod
    def from_bars(cls, bars: Sequence[PriceBar]) -> "BarSeries":
        return cls(tuple(bars))

    def __len__(self) -> int:
        return len(self.bars)

    def __iter__(self) -> Iterator[PriceBar]:
        return iter(self.bars)

    def __getitem__(self, idx):
        return self.bars[idx]

    @property
    def is_empty(self) -> bool:
        return not self.bars

    @property
    def first(self) -> Optional[PriceBar]:
        return self.bars[0] if self.bars else None

    @property
    def last(self) -> Optional[PriceBar]:
        return self.bars[-1] if self.bars else None

    def closes(self) -> list:
        return [b.close for b in self.bars]

    def to_frame(self) -> pd.DataFrame:
        """DataFrame with OHLCV columns and a UTC DatetimeIndex."""
        idx = pd.DatetimeIndex([b.timestamp for b in self.bars], name='timestamp')
        return pd.DataFrame(
            {
                'open': [b.open for b in self.bars],
                'high': [b.high for b in self.bars],
                'low': [b.low for b in self.bars],
                'close': [b.close for b in self.bars],
                'volume': [b.volume for b in self.bars],
            },
            index=idx,
            dtype='float64',
        )
