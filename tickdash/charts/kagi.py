"""
Kagi Engine - Reversal-based chart state machine.

A Kagi line keeps its direction until price moves against the current
extreme by at least the reversal threshold; then a new segment starts at
that extreme. The x-axis counts segments, not time.

The core is a pure step function ``kagi_step(state, bar, params)`` plus the
full recompute ``compute_kagi(bars, params)``. KagiEngine wraps both with
incremental updates, reconfiguration and a scrollable viewport.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from ..core.constants import (
    KAGI_COLUMNS_PER_SEGMENT,
    KAGI_DEFAULT_INTRADAY_REVERSAL,
    KAGI_DEFAULT_REVERSAL,
    KAGI_SCROLL_STEP,
    LineStyle,
    PriceType,
    ReversalKind,
    TimeFrame,
    TrendDirection,
)
from ..core.exceptions import InvalidConfigError
from ..core.types import BarSeries, PriceBar

import logging
logger = logging.getLogger(__name__)


# ============================================================================
# Parameters and state
# ============================================================================

@dataclass(frozen=True)
class KagiParams:
    """
    Reversal configuration.

    Attributes:
        reversal_kind: Percentage of the extreme or absolute amount
        reversal_value: Fraction for percentage (0.04 = 4%), price for amount
        price_type: Close prices, or highs to extend up-lines and lows to
            reverse them (mirrored for down-lines)
    """
    reversal_kind: ReversalKind = ReversalKind.PERCENTAGE
    reversal_value: float = KAGI_DEFAULT_REVERSAL
    price_type: PriceType = PriceType.CLOSE

    def __post_init__(self):
        try:
            object.__setattr__(self, 'reversal_kind', ReversalKind(self.reversal_kind))
            object.__setattr__(self, 'price_type', PriceType(self.price_type))
            object.__setattr__(self, 'reversal_value', float(self.reversal_value))
        except (TypeError, ValueError) as e:
            raise InvalidConfigError(f"Invalid Kagi parameters: {e}") from e

        if not self.reversal_value > 0:
            raise InvalidConfigError(
                "Kagi reversal value must be positive",
                reversal_value=self.reversal_value,
            )

    @classmethod
    def default_for(cls, timeframe: TimeFrame) -> "KagiParams":
        value = KAGI_DEFAULT_INTRADAY_REVERSAL if TimeFrame(timeframe).is_intraday else KAGI_DEFAULT_REVERSAL
        return cls(reversal_kind=ReversalKind.PERCENTAGE, reversal_value=value)

    def threshold(self, extreme: float) -> float:
        """Minimum adverse move from ``extreme`` that reverses the line."""
        if self.reversal_kind is ReversalKind.PERCENTAGE:
            return abs(extreme) * self.reversal_value
        return self.reversal_value


@dataclass(frozen=True)
class KagiSegment:
    """One vertical Kagi line from ``start_price`` to ``end_price``."""
    direction: TrendDirection
    start_price: float
    end_price: float
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def high(self) -> float:
        return max(self.start_price, self.end_price)

    @property
    def low(self) -> float:
        return min(self.start_price, self.end_price)


@dataclass(frozen=True)
class KagiState:
    """
    Engine state after consuming a bar stream.

    Uninitialized when ``extreme`` is None. Seeded (direction pending) when
    ``extreme`` is set but ``direction`` is None. Tracking otherwise; the last
    segment is the line in progress.
    """
    direction: Optional[TrendDirection] = None
    extreme: Optional[float] = None
    segments: Tuple[KagiSegment, ...] = field(default_factory=tuple)
    seed: Optional[PriceBar] = None

    @property
    def is_initialized(self) -> bool:
        return self.extreme is not None

    @property
    def is_tracking(self) -> bool:
        return self.direction is not None


# ============================================================================
# Pure transition
# ============================================================================

def _extend_price(bar: PriceBar, direction: TrendDirection, params: KagiParams) -> float:
    if params.price_type is PriceType.HIGH_LOW:
        price = bar.high if direction is TrendDirection.UP else bar.low
        if price > 0:
            return price
    return bar.close


def _reverse_price(bar: PriceBar, direction: TrendDirection, params: KagiParams) -> float:
    if params.price_type is PriceType.HIGH_LOW:
        price = bar.low if direction is TrendDirection.UP else bar.high
        if price > 0:
            return price
    return bar.close


def kagi_step(state: KagiState, bar: PriceBar, params: KagiParams) -> KagiState:
    """
    Advance ``state`` by one bar.

    Bars without a price are ignored. ``price_type`` selects the comparison
    prices throughout: with ``high_low`` the initial direction is the first
    bar whose high exceeds the seed's high (up) or whose low undercuts the
    seed's low (down).

    Returns:
        New state (``state`` itself when the bar changes nothing)
    """
    if bar.is_empty:
        return state

    if not state.is_initialized:
        return KagiState(extreme=bar.close, seed=bar)

    if not state.is_tracking:
        seed = state.seed
        if _extend_price(bar, TrendDirection.UP, params) > _extend_price(seed, TrendDirection.UP, params):
            direction = TrendDirection.UP
        elif _extend_price(bar, TrendDirection.DOWN, params) < _extend_price(seed, TrendDirection.DOWN, params):
            direction = TrendDirection.DOWN
        else:
            return state
        end_price = _extend_price(bar, direction, params)
        segment = KagiSegment(
            direction=direction,
            start_price=_reverse_price(seed, direction, params),
            end_price=end_price,
            start_time=seed.timestamp,
            end_time=bar.timestamp,
        )
        return replace(state, direction=direction, extreme=end_price, segments=(segment,))

    direction = state.direction
    extreme = state.extreme
    current = state.segments[-1]

    extend = _extend_price(bar, direction, params)
    extends = extend > extreme if direction is TrendDirection.UP else extend < extreme
    if extends:
        current = replace(current, end_price=extend, end_time=bar.timestamp)
        return replace(state, extreme=extend, segments=state.segments[:-1] + (current,))

    reverse = _reverse_price(bar, direction, params)
    move = extreme - reverse if direction is TrendDirection.UP else reverse - extreme
    if move >= params.threshold(extreme):
        new_direction = direction.reverse()
        segment = KagiSegment(
            direction=new_direction,
            start_price=extreme,
            end_price=reverse,
            start_time=current.end_time,
            end_time=bar.timestamp,
        )
        return replace(state, direction=new_direction, extreme=reverse, segments=state.segments + (segment,))

    return state


def compute_kagi(bars: Iterable[PriceBar], params: KagiParams) -> KagiState:
    """Full recompute over a bar history."""
    state = KagiState()
    for bar in bars:
        state = kagi_step(state, bar, params)
    return state


# ============================================================================
# Derived style
# ============================================================================

@dataclass(frozen=True)
class StyledSegment:
    """
    Segment with its display style.

    When ``breakpoint`` is set the line changes from ``style_start`` to
    ``style_end`` at that price (a shoulder or waist crossing).
    """
    segment: KagiSegment
    style_start: LineStyle
    style_end: LineStyle
    breakpoint: Optional[float] = None


def styled_segments(segments: Sequence[KagiSegment]) -> List[StyledSegment]:
    """
    Derive Yang/Yin styles.

    An up line that rises above the previous shoulder (the top of the prior
    up line) turns Yang at that price. A down line that falls below the
    previous waist (the bottom of the prior down line) turns Yin.
    """
    styled: List[StyledSegment] = []
    style: Optional[LineStyle] = None

    for i, seg in enumerate(segments):
        if style is None:
            style = LineStyle.YANG if seg.direction is TrendDirection.UP else LineStyle.YIN
            styled.append(StyledSegment(seg, style, style))
            continue

        # The previous line starts at the prior extreme of this line's direction
        pivot = segments[i - 1].start_price if i >= 2 else None
        start_style = style
        point = None

        if pivot is not None:
            if seg.direction is TrendDirection.UP and style is LineStyle.YIN and seg.end_price > pivot:
                style, point = LineStyle.YANG, pivot
            elif seg.direction is TrendDirection.DOWN and style is LineStyle.YANG and seg.end_price < pivot:
                style, point = LineStyle.YIN, pivot

        styled.append(StyledSegment(seg, start_style, style, point))

    return styled


# ============================================================================
# Engine
# ============================================================================

@dataclass(frozen=True)
class KagiViewport:
    """Visible window over the segment sequence."""
    offset: int
    width: int
    segments: Tuple[StyledSegment, ...]
    total: int
    has_left: bool
    has_right: bool


def segments_per_view(columns: int) -> int:
    """Segments that fit in ``columns`` terminal columns."""
    return max(0, int(columns // KAGI_COLUMNS_PER_SEGMENT))


class KagiEngine:
    """
    Incremental Kagi computation for one ticker.

    ``update`` steps only over bars it has not consumed. When the last
    consumed bar was replaced (a forming bar updated in place) it replays
    from the cached state before that bar. Any other change to history, such
    as a revised earlier bar or trimmed head, or new parameters, triggers a
    full recompute.
    """

    def __init__(self, params: Optional[KagiParams] = None):
        self.params = params or KagiParams()
        self._state = KagiState()
        self._before_last = KagiState()
        self._consumed: Tuple[PriceBar, ...] = ()
        self._offset: Optional[int] = None

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    @property
    def state(self) -> KagiState:
        return self._state

    @property
    def segments(self) -> Tuple[KagiSegment, ...]:
        return self._state.segments

    def reset(self):
        self._state = KagiState()
        self._before_last = KagiState()
        self._consumed = ()
        self._offset = None

    def _consume(self, state: KagiState, bars: Sequence[PriceBar]):
        before_last = state
        for bar in bars:
            before_last = state
            state = kagi_step(state, bar, self.params)
        return state, before_last

    def update(self, series: BarSeries) -> KagiState:
        """
        Bring the state up to date with ``series``.

        Args:
            series: Full retained history of the charted timeframe

        Returns:
            Current state
        """
        bars = tuple(series.bars)
        consumed = self._consumed
        n = len(consumed)

        diverged = (
            n == 0
            or len(bars) < n
            or bars[n - 1].timestamp != consumed[-1].timestamp
            or bars[:n - 1] != consumed[:n - 1]
        )
        if diverged:
            if n:
                logger.debug("Kagi history diverged, recomputing (%d bars)", len(bars))
            self._state, self._before_last = self._consume(KagiState(), bars)
        elif bars[n - 1] != consumed[-1]:
            self._state, self._before_last = self._consume(self._before_last, bars[n - 1:])
        elif len(bars) > n:
            self._state, self._before_last = self._consume(self._state, bars[n:])

        self._consumed = bars
        return self._state

    def reconfigure(self, params: KagiParams, series: Optional[BarSeries] = None) -> KagiState:
        """
        Switch parameters and recompute from the full history.

        Raises:
            InvalidConfigError: If ``params`` is not valid; prior state is kept
        """
        if not isinstance(params, KagiParams):
            raise InvalidConfigError("Kagi parameters required", got=type(params).__name__)

        if params == self.params:
            return self._state

        logger.info(
            "Kagi reconfigured: %s %s %s",
            params.reversal_kind.value, params.reversal_value, params.price_type.value,
        )
        self.params = params
        self.reset()
        if series is not None:
            self.update(series)
        return self._state

    def styled(self) -> List[StyledSegment]:
        return styled_segments(self._state.segments)

    # ------------------------------------------------------------------
    # Viewport
    # ------------------------------------------------------------------

    def _max_offset(self, width: int) -> int:
        return max(0, len(self._state.segments) - width)

    def offset(self, columns: int) -> int:
        """Effective offset; follows the newest segments until scrolled."""
        max_offset = self._max_offset(segments_per_view(columns))
        if self._offset is None:
            return max_offset
        return min(max(self._offset, 0), max_offset)

    def scroll_left(self, columns: int, step: int = KAGI_SCROLL_STEP) -> int:
        """Move the viewport towards older segments."""
        self._offset = max(0, self.offset(columns) - step)
        return self._offset

    def scroll_right(self, columns: int, step: int = KAGI_SCROLL_STEP) -> int:
        """Move the viewport towards newer segments; at the right edge it follows again."""
        max_offset = self._max_offset(segments_per_view(columns))
        target = min(max_offset, self.offset(columns) + step)
        self._offset = None if target >= max_offset else target
        return target

    def viewport(self, columns: int) -> KagiViewport:
        width = segments_per_view(columns)
        offset = self.offset(columns)
        styled = self.styled()
        total = len(styled)
        return KagiViewport(
            offset=offset,
            width=width,
            segments=tuple(styled[offset:offset + width]),
            total=total,
            has_left=offset > 0,
            has_right=offset + width < total,
        )
