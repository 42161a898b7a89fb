"""System-wide constants and enumerations for the dashboard engine.

This module defines the enumerations and default values shared by the
acquisition, storage and charting layers. String-valued enums keep config
files and log lines readable.
"""

from enum import Enum


# ============================================================================
# Enumerations
# ============================================================================

class InstrumentClass(str, Enum):
    """Enumeration of instrument classes.

    - EQUITY: Follows exchange sessions (pre-market, regular, post-market)
    - CRYPTO: Trades continuously, every day
    """
    EQUITY = "EQUITY"
    CRYPTO = "CRYPTO"


class SessionState(str, Enum):
    """Enumeration of market session states for a wall-clock instant."""
    PRE_MARKET = "PRE_MARKET"
    REGULAR = "REGULAR"
    POST_MARKET = "POST_MARKET"
    CLOSED = "CLOSED"


class TimeFrame(str, Enum):
    """Enumeration of selectable chart timeframes.

    Each value is the tab label shown to the user. The bar granularity and
    axis span of every timeframe live in ``core.timeframes``.
    """
    DAY_1 = "1D"
    WEEK_1 = "1W"
    MONTH_1 = "1M"
    MONTH_3 = "3M"
    MONTH_6 = "6M"
    YEAR_1 = "1Y"
    YEAR_5 = "5Y"

    def up(self) -> "TimeFrame":
        """Next timeframe, wrapping from 5Y back to 1D."""
        members = list(TimeFrame)
        return members[(members.index(self) + 1) % len(members)]

    def down(self) -> "TimeFrame":
        """Previous timeframe, wrapping from 1D to 5Y."""
        members = list(TimeFrame)
        return members[(members.index(self) - 1) % len(members)]

    @property
    def is_intraday(self) -> bool:
        return self is TimeFrame.DAY_1


class ChartType(str, Enum):
    """Enumeration of chart encodings."""
    LINE = "LINE"
    CANDLESTICK = "CANDLESTICK"
    KAGI = "KAGI"

    def toggle(self) -> "ChartType":
        members = list(ChartType)
        return members[(members.index(self) + 1) % len(members)]


class TradingPeriod(str, Enum):
    """Session period a plotted point belongs to (1D split datasets)."""
    PRE = "PRE"
    REGULAR = "REGULAR"
    POST = "POST"


class ReversalKind(str, Enum):
    """How a Kagi reversal threshold is expressed.

    - PERCENTAGE: Fraction of the current extreme (0.04 = 4%)
    - AMOUNT: Absolute price distance
    """
    PERCENTAGE = "pct"
    AMOUNT = "amount"


class PriceType(str, Enum):
    """Which bar prices drive the Kagi engine."""
    CLOSE = "close"
    HIGH_LOW = "high_low"


class TrendDirection(str, Enum):
    """Direction of a Kagi line."""
    UP = "UP"
    DOWN = "DOWN"

    def reverse(self) -> "TrendDirection":
        return TrendDirection.DOWN if self is TrendDirection.UP else TrendDirection.UP


class LineStyle(str, Enum):
    """Derived Kagi line style.

    - YANG: Thick line, price broke above the prior shoulder
    - YIN: Thin line, price broke below the prior waist
    """
    YANG = "YANG"
    YIN = "YIN"


class TickerHealth(str, Enum):
    """Display health of a ticker's data feed.

    - LOADING: No successful fetch yet
    - FRESH: Last fetch succeeded
    - STALE: Recent fetches failed, last-known data is shown
    - NOT_FOUND: Source reports the symbol as unknown or delisted
    """
    LOADING = "LOADING"
    FRESH = "FRESH"
    STALE = "STALE"
    NOT_FOUND = "NOT_FOUND"


# ============================================================================
# Exchange Session Times (America/New_York)
# ============================================================================

EQUITY_TIMEZONE: str = "America/New_York"
"""Timezone in which US equity session boundaries are defined."""

PRE_MARKET_START: str = "04:00"
REGULAR_START: str = "09:30"
REGULAR_END: str = "16:00"
POST_MARKET_END: str = "20:00"

EARLY_CLOSE_REGULAR_END: str = "13:00"
"""Regular session end on half days (July 3, Black Friday, Christmas Eve)."""

EARLY_CLOSE_POST_MARKET_END: str = "17:00"

PRE_MARKET_TRUNCATE_MINUTES: int = 30
"""Pre-market only has meaningful activity shortly before the open.

When truncation is enabled the 1D axis starts this many minutes before the
regular open instead of at 04:00.
"""

MAX_SESSION_LOOKBACK_DAYS: int = 14
"""Upper bound on days searched backwards for the most recent session.

Queries for hours without a session fall back to the last completed session
instead of waiting for the next one.
"""


# ============================================================================
# Scheduling Constants
# ============================================================================

DEFAULT_UPDATE_INTERVAL_SECONDS: float = 1.0
"""Default polling interval for each ticker."""

MIN_UPDATE_INTERVAL_SECONDS: float = 1.0
"""Lower bound on the polling interval; smaller values are clamped."""

MAX_BACKOFF_SECONDS: float = 60.0
"""Upper bound on the retry delay after consecutive fetch failures."""

RATE_LIMIT_BACKOFF_FACTOR: float = 4.0
"""Backoff growth factor after a rate-limit response (regular failures use 2)."""

NOT_FOUND_POLL_SECONDS: float = 300.0
"""Reduced polling interval for symbols the source reports as not found."""

FETCH_TIMEOUT_SECONDS: float = 10.0
"""Upper bound on a single fetch call; a timeout counts as a network failure."""

DEFAULT_MAX_CONNECTIONS: int = 10
"""Connection pool size of the shared network client."""

RENDER_TICK_SECONDS: float = 0.25
"""Default period of the render/update loop."""


# ============================================================================
# Charting Constants
# ============================================================================

KAGI_COLUMNS_PER_SEGMENT: float = 1.5
"""Terminal columns consumed by one Kagi segment."""

KAGI_SCROLL_STEP: int = 2
"""Segments moved per scroll request."""

KAGI_DEFAULT_INTRADAY_REVERSAL: float = 0.01
"""Default 1D reversal threshold (1%)."""

KAGI_DEFAULT_REVERSAL: float = 0.04
"""Default reversal threshold for all other timeframes (4%)."""

CANDLE_MIN_COLUMNS: int = 2
"""Minimum terminal columns per candlestick glyph, gap included."""

Y_AXIS_PADDING: float = 0.05
"""Padding added above and below the visible price range."""
