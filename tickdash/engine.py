"""
Dashboard Engine - Per-ticker lifecycle and the render tick.

Responsibilities:
1. Open and close ticker views (polling, bar store entries, Kagi state)
2. Apply acquisition outcomes on a fixed tick
3. Align, project and package every visible chart as a RenderFrame
4. Route user settings (timeframe, chart type, Kagi parameters, scrolling)
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, Tuple, Union

from .core.constants import (
    RENDER_TICK_SECONDS,
    ChartType,
    InstrumentClass,
    TickerHealth,
    TimeFrame,
)
from .core.exceptions import ConfigurationError, InvalidConfigError
from .core.types import Ticker, ensure_utc
from .charts.kagi import KagiEngine, KagiParams, KagiViewport, StyledSegment
from .charts.renderer import Candle, ChartRenderer, LinePoint, VolumePoint
from .config.settings import DashboardConfig
from .connectors.yahoo_client import MarketDataClient, SharedClient
from .data.axis_aligner import AxisAligner
from .data.candle_store import BarStore
from .data.market_calendar import MarketCalendar
from .data.scheduler import AcquisitionScheduler
from .monitoring.logger import get_logger

logger = get_logger(__name__)


@dataclass
class TickerView:
    """User-facing settings and derived state of one open ticker."""
    ticker: Ticker
    timeframe: TimeFrame
    chart_type: ChartType
    show_volume: bool
    kagi: KagiEngine
    kagi_override: Optional[KagiParams] = None


@dataclass(frozen=True)
class RenderFrame:
    """Plain data handed to the drawing layer for one ticker."""
    symbol: str
    timeframe: TimeFrame
    chart_type: ChartType
    line_points: Tuple[LinePoint, ...] = field(default_factory=tuple)
    candles: Tuple[Candle, ...] = field(default_factory=tuple)
    volume_points: Tuple[VolumePoint, ...] = field(default_factory=tuple)
    axis_labels: Tuple[Tuple[int, str], ...] = field(default_factory=tuple)
    slot_count: int = 0
    y_bounds: Optional[Tuple[float, float]] = None
    y_labels: Tuple[float, ...] = field(default_factory=tuple)
    last_price: Optional[float] = None
    pct_change: Optional[float] = None
    kagi_segments: Tuple[StyledSegment, ...] = field(default_factory=tuple)
    kagi_viewport: Optional[KagiViewport] = None
    status: TickerHealth = TickerHealth.LOADING
    stale: bool = False
    last_error: Optional[str] = None


FrameCallback = Callable[[Dict[str, RenderFrame]], Union[None, Awaitable[None]]]


class DashboardEngine:
    """
    Core of the terminal dashboard.

    Owns the bar store, calendar, aligner, renderer and acquisition
    scheduler. All methods except the async ones run on the render loop.
    """

    def __init__(
        self,
        config: Optional[DashboardConfig] = None,
        client: Optional[MarketDataClient] = None,
        shared_client: Optional[SharedClient] = None,
    ):
        """
        Initialize dashboard engine.

        Args:
            config: Dashboard configuration (defaults when None)
            client: Market data client; when None one is acquired from
                ``shared_client`` in ``start()``
            shared_client: Process-wide network client owner
        """
        self.config = config or DashboardConfig()

        self.calendar = MarketCalendar(truncate_pre_market=self.config.truncate_pre)
        self.store = BarStore()
        self.aligner = AxisAligner(self.calendar)
        self.renderer = ChartRenderer()

        self._client = client
        self._shared = shared_client
        self._acquired = False
        self.scheduler: Optional[AcquisitionScheduler] = None
        if client is not None:
            self.scheduler = self._build_scheduler(client)

        self._views: Dict[str, TickerView] = {}
        self._columns = 80
        self.running = False

    def _build_scheduler(self, client: MarketDataClient) -> AcquisitionScheduler:
        return AcquisitionScheduler(
            store=self.store,
            client=client,
            calendar=self.calendar,
            update_interval=self.config.update_interval,
            fetch_timeout=self.config.network.timeout_seconds,
            include_pre_post=True,
        )

    async def start(self) -> None:
        """Acquire the shared network client if none was injected."""
        if self.scheduler is not None:
            return
        if self._shared is None:
            self._shared = SharedClient(
                max_connections=self.config.network.max_connections,
                timeout_seconds=self.config.network.timeout_seconds,
            )
        self._client = await self._shared.acquire()
        self._acquired = True
        self.scheduler = self._build_scheduler(self._client)

    def _require_scheduler(self) -> AcquisitionScheduler:
        if self.scheduler is None:
            raise ConfigurationError("Engine not started: no market data client")
        return self.scheduler

    # ------------------------------------------------------------------
    # Ticker lifecycle
    # ------------------------------------------------------------------

    @property
    def symbols(self):
        return list(self._views)

    def view(self, symbol: str) -> TickerView:
        try:
            return self._views[symbol.upper()]
        except KeyError:
            raise InvalidConfigError("Ticker not open", symbol=symbol) from None

    def open_ticker(
        self,
        symbol: str,
        instrument_class: InstrumentClass = InstrumentClass.EQUITY,
        start: bool = True,
    ) -> TickerView:
        """
        Open a ticker tab.

        Args:
            symbol: Source symbol
            instrument_class: Equity or crypto (corrected from source metadata)
            start: Launch the polling task
        """
        scheduler = self._require_scheduler()
        ticker = Ticker(symbol, instrument_class)
        if ticker.symbol in self._views:
            return self._views[ticker.symbol]

        timeframe = TimeFrame(self.config.time_frame)
        view = TickerView(
            ticker=ticker,
            timeframe=timeframe,
            chart_type=ChartType(self.config.chart_type),
            show_volume=self.config.show_volumes,
            kagi=KagiEngine(self.config.kagi.params_for(timeframe)),
        )
        self._views[ticker.symbol] = view
        scheduler.open_ticker(ticker, timeframe, start=start)
        return view

    async def close_ticker(self, symbol: str) -> None:
        """Close a tab: stop polling and release its data immediately."""
        symbol = symbol.upper()
        view = self._views.pop(symbol, None)
        if self.scheduler is not None:
            await self.scheduler.close_ticker(symbol)
        self.store.drop_ticker(symbol)
        if view is not None:
            view.kagi.reset()
        logger.info("Ticker view closed", symbol=symbol)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_timeframe(self, symbol: str, timeframe: TimeFrame) -> None:
        view = self.view(symbol)
        timeframe = TimeFrame(timeframe)
        if timeframe is view.timeframe:
            return
        view.timeframe = timeframe
        view.kagi.reconfigure(view.kagi_override or self.config.kagi.params_for(timeframe))
        view.kagi.reset()
        self._require_scheduler().set_timeframe(view.ticker, timeframe)

    def set_chart_type(self, symbol: str, chart_type: ChartType) -> None:
        """Pure re-projection; never triggers a fetch."""
        self.view(symbol).chart_type = ChartType(chart_type)

    def toggle_chart_type(self, symbol: str) -> ChartType:
        view = self.view(symbol)
        view.chart_type = view.chart_type.toggle()
        return view.chart_type

    def cycle_timeframe(self, symbol: str, forward: bool = True) -> TimeFrame:
        """Step to the next (or previous) timeframe tab, wrapping around."""
        current = self.view(symbol).timeframe
        timeframe = current.up() if forward else current.down()
        self.set_timeframe(symbol, timeframe)
        return timeframe

    def toggle_volume(self, symbol: str) -> bool:
        view = self.view(symbol)
        view.show_volume = not view.show_volume
        return view.show_volume

    def configure_kagi(self, symbol: str, params: KagiParams) -> None:
        """
        Apply Kagi parameters to a ticker.

        Raises:
            ConfigurationError: If the parameters are invalid; the previous
                Kagi state stays in effect
        """
        view = self.view(symbol)
        view.kagi.reconfigure(params, self.store.read(view.ticker, view.timeframe))
        view.kagi_override = params

    def scroll_kagi(self, symbol: str, direction: str, columns: Optional[int] = None) -> int:
        """Scroll the Kagi viewport ``left`` or ``right``; returns the new offset."""
        view = self.view(symbol)
        columns = columns or self._columns
        if direction == "left":
            return view.kagi.scroll_left(columns)
        if direction == "right":
            return view.kagi.scroll_right(columns)
        raise InvalidConfigError("Scroll direction must be 'left' or 'right'", direction=direction)

    # ------------------------------------------------------------------
    # Render tick
    # ------------------------------------------------------------------

    def _sync_instrument_class(self, view: TickerView) -> None:
        meta = self._require_scheduler().meta(view.ticker)
        if meta is None or meta.instrument_class is view.ticker.instrument_class:
            return
        view.ticker = Ticker(view.ticker.symbol, meta.instrument_class)
        unit = self._require_scheduler().unit(view.ticker)
        if unit is not None:
            unit.ticker = view.ticker
        logger.info("Instrument class updated", symbol=view.ticker.symbol, cls=meta.instrument_class.value)

    def render(self, symbol: str, columns: int, now: Optional[datetime] = None) -> RenderFrame:
        """Build the frame of one ticker from the current bar store snapshot."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        view = self.view(symbol)
        scheduler = self._require_scheduler()
        self._sync_instrument_class(view)

        meta = scheduler.meta(view.ticker)
        status = scheduler.status(view.ticker)
        series = self.store.read(view.ticker, view.timeframe)
        axis = self.aligner.align(
            view.ticker,
            view.timeframe,
            listing_date=meta.listing_date if meta else None,
            now=now,
            include_pre_post=self.config.enable_pre_post,
        )

        is_kagi = view.chart_type is ChartType.KAGI
        projected = self.renderer.render(
            series,
            axis,
            chart_type=ChartType.LINE if is_kagi else view.chart_type,
            width=columns,
            show_volume=view.show_volume and not is_kagi,
            interpolate=self.config.interpolate,
            current_price=meta.current_price if meta else None,
            previous_close=meta.previous_close if meta else None,
        )

        kagi_segments: Tuple[StyledSegment, ...] = ()
        viewport = None
        y_bounds, y_labels = projected.y_bounds, projected.y_labels
        if is_kagi:
            view.kagi.update(series)
            viewport = view.kagi.viewport(columns)
            kagi_segments = tuple(view.kagi.styled())
            prices = [p for s in viewport.segments for p in (s.segment.high, s.segment.low)]
            y_bounds = self.renderer.y_bounds(prices)
            y_labels = self.renderer.y_labels(y_bounds)

        return RenderFrame(
            symbol=view.ticker.symbol,
            timeframe=view.timeframe,
            chart_type=view.chart_type,
            line_points=() if is_kagi else projected.line_points,
            candles=projected.candles,
            volume_points=projected.volume_points,
            axis_labels=projected.axis_labels if self.config.show_x_labels else (),
            slot_count=axis.slot_count,
            y_bounds=y_bounds,
            y_labels=y_labels,
            last_price=projected.last_price,
            pct_change=projected.pct_change,
            kagi_segments=kagi_segments,
            kagi_viewport=viewport,
            status=status.health if status else TickerHealth.LOADING,
            stale=status.stale if status else False,
            last_error=status.last_error if status else None,
        )

    def tick(self, columns: int = 80, now: Optional[datetime] = None) -> Dict[str, RenderFrame]:
        """
        One render/update step.

        Applies pending acquisition outcomes, then renders every open ticker.
        Never waits on the network.
        """
        self._columns = columns
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        self._require_scheduler().apply_updates(now)
        return {symbol: self.render(symbol, columns, now) for symbol in list(self._views)}

    async def run(
        self,
        on_frame: Optional[FrameCallback] = None,
        tick_seconds: float = RENDER_TICK_SECONDS,
        columns: int = 80,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Render loop on a fixed tick, independent of network latency.

        Args:
            on_frame: Receives the frames of each tick (may be async)
            tick_seconds: Tick period
            columns: Horizontal resolution
            stop_event: Ends the loop when set
        """
        await self.start()
        self.running = True
        logger.info("Render loop started", tick_seconds=tick_seconds, tickers=len(self._views))

        try:
            while self.running and not (stop_event and stop_event.is_set()):
                frames = self.tick(columns)
                if on_frame is not None:
                    result = on_frame(frames)
                    if asyncio.iscoroutine(result):
                        await result
                await asyncio.sleep(tick_seconds)
        finally:
            self.running = False

    def stop(self) -> None:
        self.running = False

    async def shutdown(self) -> None:
        """Stop polling and release the network client."""
        self.running = False
        if self.scheduler is not None:
            await self.scheduler.shutdown()
        self._views.clear()
        if self._acquired:
            await self._shared.release()
            self._acquired = False
        logger.info("Engine shut down")
