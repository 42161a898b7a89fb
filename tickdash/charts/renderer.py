"""
Chart Renderer - Projects a bar series onto an aligned axis.

Produces plain data for the drawing layer: line points, candlestick glyphs,
volume bars, axis labels and price bounds. Rendering never fetches; toggling
the chart type re-projects the same snapshot.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..core.constants import (
    CANDLE_MIN_COLUMNS,
    Y_AXIS_PADDING,
    ChartType,
    TimeFrame,
    TradingPeriod,
)
from ..core.types import BarSeries
from ..data.axis_aligner import Axis


@dataclass(frozen=True)
class LinePoint:
    """Line vertex at slot ``x``."""
    x: int
    price: float
    period: TradingPeriod = TradingPeriod.REGULAR


@dataclass(frozen=True)
class Candle:
    """
    Candlestick glyph.

    ``x`` is the glyph index, ``width`` the columns each glyph may use.
    """
    x: int
    open: float
    high: float
    low: float
    close: float
    width: float

    @property
    def is_rising(self) -> bool:
        return self.close >= self.open


@dataclass(frozen=True)
class VolumePoint:
    x: int
    volume: float
    rising: bool = True


@dataclass(frozen=True)
class RenderableSeries:
    """Everything the drawing layer needs for one chart."""
    chart_type: ChartType
    line_points: Tuple[LinePoint, ...] = field(default_factory=tuple)
    candles: Tuple[Candle, ...] = field(default_factory=tuple)
    volume_points: Tuple[VolumePoint, ...] = field(default_factory=tuple)
    axis_labels: Tuple[Tuple[int, str], ...] = field(default_factory=tuple)
    y_bounds: Optional[Tuple[float, float]] = None
    y_labels: Tuple[float, ...] = field(default_factory=tuple)
    last_price: Optional[float] = None
    pct_change: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not (self.line_points or self.candles)


class ChartRenderer:
    """Stateless projection of BarSeries onto an Axis."""

    def __init__(self, max_labels: int = 5):
        self.max_labels = max_labels

    def render(
        self,
        series: BarSeries,
        axis: Axis,
        chart_type: ChartType = ChartType.LINE,
        width: int = 80,
        show_volume: bool = False,
        interpolate: bool = False,
        current_price: Optional[float] = None,
        previous_close: Optional[float] = None,
    ) -> RenderableSeries:
        """
        Build the renderable series for one chart.

        Args:
            series: Bar Store snapshot
            axis: Aligned axis for the same timeframe
            chart_type: LINE or CANDLESTICK (Kagi is rendered by KagiEngine)
            width: Horizontal resolution in terminal columns
            show_volume: Also build volume points
            interpolate: One line point per slot instead of per bar
            current_price: Live price for the terminal point
            previous_close: Baseline for the 1D percent change

        Returns:
            RenderableSeries (empty when the series or axis is empty)
        """
        chart_type = ChartType(chart_type)
        labels = tuple(axis.labels(self.max_labels))

        if series.is_empty or axis.is_empty:
            return RenderableSeries(chart_type=chart_type, axis_labels=labels)

        line_points: Tuple[LinePoint, ...] = ()
        candles: Tuple[Candle, ...] = ()
        volume_points: Tuple[VolumePoint, ...] = ()

        if chart_type is ChartType.CANDLESTICK:
            candles = tuple(self.candles(series, axis, width))
            prices = [c.high for c in candles] + [c.low for c in candles if c.low > 0]
            if show_volume:
                volume_points = tuple(self.volume_points(series, axis, self.bucket_size(axis, width)))
        else:
            line_points = tuple(self.line_points(series, axis, interpolate, current_price))
            prices = [p.price for p in line_points]
            if show_volume:
                volume_points = tuple(self.volume_points(series, axis, 1))

        last_price = current_price if current_price and current_price > 0 else self._last_close(series)
        y_bounds = self.y_bounds(prices)

        return RenderableSeries(
            chart_type=chart_type,
            line_points=line_points,
            candles=candles,
            volume_points=volume_points,
            axis_labels=labels,
            y_bounds=y_bounds,
            y_labels=self.y_labels(y_bounds),
            last_price=last_price,
            pct_change=self.pct_change(series, axis.timeframe, last_price, previous_close),
        )

    # ------------------------------------------------------------------
    # Line
    # ------------------------------------------------------------------

    def line_points(
        self,
        series: BarSeries,
        axis: Axis,
        interpolate: bool = False,
        current_price: Optional[float] = None,
    ) -> List[LinePoint]:
        """
        One point per bar close, keyed by slot.

        Missing prices carry the previous price forward. Only the terminal
        gap is closed: the last point is extended to the slot of now.
        """
        by_slot: Dict[int, float] = {}
        last_price = None

        for bar in series:
            x = axis.slot_index(bar.timestamp)
            if x is None:
                continue
            price = bar.close if not bar.is_empty else last_price
            if price is None:
                continue
            by_slot[x] = price
            last_price = price

        if not by_slot:
            return []

        if interpolate:
            filled = {}
            price = None
            for x in range(min(by_slot), max(by_slot) + 1):
                price = by_slot.get(x, price)
                filled[x] = price
            by_slot = filled

        now_index = axis.now_index
        last_x = max(by_slot)
        live = current_price if current_price and current_price > 0 else None

        if now_index is not None and now_index > last_x:
            if interpolate:
                for x in range(last_x + 1, now_index):
                    by_slot[x] = by_slot[last_x]
            by_slot[now_index] = live if live is not None else by_slot[last_x]
        elif live is not None:
            by_slot[last_x] = live

        return [
            LinePoint(x=x, price=price, period=axis.period_at(axis.slots[x]))
            for x, price in sorted(by_slot.items())
        ]

    # ------------------------------------------------------------------
    # Candlestick
    # ------------------------------------------------------------------

    @staticmethod
    def bucket_size(axis: Axis, width: int) -> int:
        """Axis slots per glyph, from the aligned slot count."""
        glyph_columns = max(1, width // CANDLE_MIN_COLUMNS)
        return max(1, math.ceil(axis.slot_count / glyph_columns))

    @staticmethod
    def _slotted_frame(series: BarSeries, axis: Axis, bucket: int) -> pd.DataFrame:
        """Bars as a DataFrame with an ``x`` column (bucket index); bars before the axis dropped."""
        df = series.to_frame()
        if df.empty or axis.is_empty:
            return df.assign(x=pd.Series(dtype='int64'))

        slots = pd.DatetimeIndex(axis.slots)
        positions = np.asarray(slots.searchsorted(df.index, side='right')) - 1
        valid = positions >= 0
        if axis.slot_period is not None:
            valid &= np.asarray(df.index < axis.end + axis.slot_period)
        df = df[valid].copy()
        df['x'] = positions[valid] // bucket
        return df

    def candles(self, series: BarSeries, axis: Axis, width: int) -> List[Candle]:
        """
        OHLC glyphs, one per bucket of slots.

        Empty bars are skipped; a bucket with no priced bar has no glyph.
        """
        size = self.bucket_size(axis, width)
        glyph_count = math.ceil(axis.slot_count / size)
        glyph_width = width / glyph_count if glyph_count else 0.0

        df = self._slotted_frame(series, axis, size)
        df = df[df['close'] > 0].copy()
        if df.empty:
            return []

        # Zero open/low are missing values
        df['open'] = np.where(df['open'] > 0, df['open'], df['close'])
        df['low'] = np.where(df['low'] > 0, df['low'], df[['open', 'close']].min(axis=1))

        grouped = df.groupby('x', sort=True).agg(
            open=('open', 'first'),
            high=('high', 'max'),
            low=('low', 'min'),
            close=('close', 'last'),
        )

        return [
            Candle(
                x=int(x),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                width=glyph_width,
            )
            for x, row in zip(grouped.index, grouped.itertuples(index=False))
        ]

    # ------------------------------------------------------------------
    # Volume
    # ------------------------------------------------------------------

    def volume_points(self, series: BarSeries, axis: Axis, bucket: int = 1) -> List[VolumePoint]:
        """Volume summed per x position, keyed like the price series."""
        df = self._slotted_frame(series, axis, bucket)
        if df.empty:
            return []

        priced = df[df['close'] > 0]
        totals = df.groupby('x', sort=True)['volume'].sum()
        first_open = priced.groupby('x')['open'].first()
        last_close = priced.groupby('x')['close'].last()

        return [
            VolumePoint(
                x=int(x),
                volume=float(v),
                rising=bool(last_close.get(x, 0.0) >= first_open.get(x, 0.0)),
            )
            for x, v in totals.items()
        ]

    # ------------------------------------------------------------------
    # Price axis
    # ------------------------------------------------------------------

    @staticmethod
    def y_bounds(prices: List[float]) -> Optional[Tuple[float, float]]:
        """Visible price range padded on both sides."""
        prices = [p for p in prices if p is not None and p > 0]
        if not prices:
            return None
        lo, hi = min(prices), max(prices)
        pad = (hi - lo) * Y_AXIS_PADDING
        if pad == 0:
            pad = abs(hi) * Y_AXIS_PADDING or 1.0
        return lo - pad, hi + pad

    @staticmethod
    def y_labels(bounds: Optional[Tuple[float, float]]) -> Tuple[float, ...]:
        """Top, middle and bottom price labels."""
        if bounds is None:
            return ()
        lo, hi = bounds
        return hi, (hi + lo) / 2, lo

    @staticmethod
    def _last_close(series: BarSeries) -> Optional[float]:
        for bar in reversed(series.bars):
            if not bar.is_empty:
                return bar.close
        return None

    @staticmethod
    def pct_change(
        series: BarSeries,
        timeframe: TimeFrame,
        last_price: Optional[float],
        previous_close: Optional[float] = None,
    ) -> Optional[float]:
        """Percent change against the previous close (1D) or the first close."""
        if last_price is None:
            return None
        base = None
        if TimeFrame(timeframe).is_intraday and previous_close:
            base = previous_close
        else:
            base = next((b.close for b in series if not b.is_empty), None)
        if not base:
            return None
        return (last_price - base) / base * 100.0
