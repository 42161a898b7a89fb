"""Chart encodings: line, candlestick, volume and Kagi."""

from .renderer import ChartRenderer, RenderableSeries, LinePoint, Candle, VolumePoint
from .kagi import (
    KagiEngine,
    KagiParams,
    KagiSegment,
    KagiState,
    KagiViewport,
    StyledSegment,
    compute_kagi,
    kagi_step,
    styled_segments,
)

__all__ = [
    "ChartRenderer",
    "RenderableSeries",
    "LinePoint",
    "Candle",
    "VolumePoint",
    "KagiEngine",
    "KagiParams",
    "KagiSegment",
    "KagiState",
    "KagiViewport",
    "StyledSegment",
    "compute_kagi",
    "kagi_step",
    "styled_segments",
]
