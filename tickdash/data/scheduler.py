"""
Acquisition Scheduler - Per-ticker polling with local backoff.

Each active ticker gets one PollingUnit running as its own asyncio task.
Units only suspend on network I/O and never touch shared state: results are
posted as FetchOutcome messages to a queue that the render loop drains with
``apply_updates()``, merging into the Bar Store synchronously.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..core.constants import (
    DEFAULT_UPDATE_INTERVAL_SECONDS,
    FETCH_TIMEOUT_SECONDS,
    MAX_BACKOFF_SECONDS,
    MIN_UPDATE_INTERVAL_SECONDS,
    NOT_FOUND_POLL_SECONDS,
    RATE_LIMIT_BACKOFF_FACTOR,
    TickerHealth,
    TimeFrame,
)
from ..core.exceptions import (
    FetchError,
    FetchTimeoutError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)
from ..core.timeframes import spec_for
from ..core.types import ChartMeta, PriceBar, SessionWindow, Ticker, ensure_utc
from ..connectors.yahoo_client import MarketDataClient
from ..monitoring.logger import get_logger
from .candle_store import BarStore
from .market_calendar import MarketCalendar

logger = get_logger(__name__)

SESSION_RETENTION_PADDING = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_interval(seconds: float) -> float:
    """Enforce the minimum update interval."""
    if seconds < MIN_UPDATE_INTERVAL_SECONDS:
        logger.warning(
            "Update interval below minimum, clamping",
            requested=seconds, minimum=MIN_UPDATE_INTERVAL_SECONDS,
        )
        return MIN_UPDATE_INTERVAL_SECONDS
    return float(seconds)


class Backoff:
    """
    Retry delay policy of one polling unit.

    Exponential from the update interval, capped at ``max_delay``. Rate-limit
    responses grow the delay by ``rate_limit_factor`` instead of ``factor``.
    A not-found symbol switches to the reduced polling rate.
    """

    def __init__(
        self,
        base: float = DEFAULT_UPDATE_INTERVAL_SECONDS,
        max_delay: float = MAX_BACKOFF_SECONDS,
        factor: float = 2.0,
        rate_limit_factor: float = RATE_LIMIT_BACKOFF_FACTOR,
        not_found_delay: float = NOT_FOUND_POLL_SECONDS,
    ):
        self.base = base
        self.max_delay = max_delay
        self.factor = factor
        self.rate_limit_factor = rate_limit_factor
        self.not_found_delay = not_found_delay

        self.failures = 0
        self.delay = base

    def reset(self) -> float:
        self.failures = 0
        self.delay = self.base
        return self.delay

    def fail(self, error: FetchError) -> float:
        """Register a failure and return the delay before the next attempt."""
        self.failures += 1
        if isinstance(error, NotFoundError):
            self.delay = self.not_found_delay
            return self.delay

        factor = self.rate_limit_factor if isinstance(error, RateLimitedError) else self.factor
        self.delay = min(self.max_delay, max(self.delay, self.base) * factor)
        return self.delay


@dataclass(frozen=True)
class FetchOutcome:
    """Result message from a polling unit."""
    symbol: str
    timeframe: Optional[TimeFrame]
    fetched_at: datetime
    bars: Tuple[PriceBar, ...] = field(default_factory=tuple)
    meta: Optional[ChartMeta] = None
    error: Optional[FetchError] = None
    retry_in: float = 0.0
    # Producing unit; outcomes of a closed unit are dropped even if the
    # symbol was reopened before the queue was drained
    source: Optional["PollingUnit"] = field(default=None, compare=False, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TickerStatus:
    """Display health of one ticker, updated on the render path."""
    symbol: str
    health: TickerHealth = TickerHealth.LOADING
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_success: Optional[datetime] = None
    retry_in: float = 0.0

    @property
    def stale(self) -> bool:
        return self.health in (TickerHealth.STALE, TickerHealth.NOT_FOUND)


class PollingUnit:
    """
    Polling loop of one ticker.

    Owns its backoff and refresh bookkeeping; communicates only through the
    outcome queue.
    """

    def __init__(
        self,
        ticker: Ticker,
        client: MarketDataClient,
        queue: asyncio.Queue,
        calendar: MarketCalendar,
        timeframe: TimeFrame = TimeFrame.DAY_1,
        interval: float = DEFAULT_UPDATE_INTERVAL_SECONDS,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        prefetch: Iterable[TimeFrame] = (),
        include_pre_post: bool = True,
    ):
        """
        Initialize polling unit.

        Args:
            ticker: Ticker to poll
            client: Shared market data client
            queue: Outcome channel drained by the scheduler
            calendar: Market calendar for session hints
            timeframe: Displayed timeframe (fetched every cycle)
            interval: Seconds between cycles when healthy
            fetch_timeout: Upper bound on one fetch call
            prefetch: Extra timeframes refreshed at their own cadence
            include_pre_post: Fetch the extended session on 1D
        """
        self.ticker = ticker
        self.client = client
        self.queue = queue
        self.calendar = calendar
        self.timeframe = TimeFrame(timeframe)
        self.interval = interval
        self.fetch_timeout = fetch_timeout
        self.prefetch = tuple(TimeFrame(tf) for tf in prefetch)
        self.include_pre_post = include_pre_post

        self.backoff = Backoff(base=interval)
        self.meta: Optional[ChartMeta] = None
        self.not_found = False
        self.retry_in = interval

        self._last_fetch: Dict[TimeFrame, datetime] = {}
        self._wake = asyncio.Event()

    @property
    def symbol(self) -> str:
        return self.ticker.symbol

    def set_timeframe(self, timeframe: TimeFrame) -> None:
        """Switch the displayed timeframe and poll immediately."""
        self.timeframe = TimeFrame(timeframe)
        self._wake.set()

    def due_timeframes(self, now: datetime) -> List[TimeFrame]:
        """Displayed timeframe, plus prefetch timeframes whose refresh elapsed."""
        due = [self.timeframe]
        for tf in self.prefetch:
            if tf in due:
                continue
            last = self._last_fetch.get(tf)
            if last is None or now - last >= spec_for(tf).refresh:
                due.append(tf)
        return due

    def session_hint(self, timeframe: TimeFrame, now: datetime) -> Optional[SessionWindow]:
        if not timeframe.is_intraday:
            return None
        return self.calendar.active_session(now, self.ticker.instrument_class, self.include_pre_post)

    async def _call(self, coro, timeframe: Optional[TimeFrame]):
        try:
            return await asyncio.wait_for(coro, timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(
                "Fetch timed out",
                symbol=self.symbol,
                timeframe=timeframe.value if timeframe else None,
                timeout=self.fetch_timeout,
            ) from e

    async def poll_once(self, now: Optional[datetime] = None) -> List[FetchOutcome]:
        """
        Run one acquisition cycle.

        Returns:
            Outcomes posted to the queue (also returned for callers and tests)
        """
        now = ensure_utc(now) if now is not None else _utcnow()
        outcomes: List[FetchOutcome] = []
        failure: Optional[FetchError] = None

        # Metadata carries the live price, so it is refreshed every cycle
        try:
            meta = await self._call(self.client.fetch_meta(self.ticker), None)
        except NotFoundError as e:
            failure = e
        except FetchError as e:
            # Bars may still load; the last known metadata stays in use
            logger.warning("Metadata fetch failed", symbol=self.symbol, error=e)
        else:
            self.meta = meta
            outcomes.append(FetchOutcome(self.symbol, None, now, meta=meta))

        if failure is None:
            for tf in self.due_timeframes(now):
                try:
                    bars = await self._call(
                        self.client.fetch_bars(self.ticker, tf, self.session_hint(tf, now)), tf,
                    )
                except FetchError as e:
                    failure = e
                    outcomes.append(FetchOutcome(self.symbol, tf, now, error=e))
                    break
                self._last_fetch[tf] = now
                outcomes.append(FetchOutcome(self.symbol, tf, now, bars=tuple(bars)))
        else:
            outcomes.append(FetchOutcome(self.symbol, None, now, error=failure))

        if failure is None:
            self.not_found = False
            retry_in = self.backoff.reset()
        else:
            self.not_found = self.not_found or isinstance(failure, NotFoundError)
            retry_in = self.backoff.fail(failure)
            if self.not_found:
                retry_in = max(retry_in, self.backoff.not_found_delay)
            logger.warning(
                "Fetch failed",
                symbol=self.symbol,
                error=type(failure).__name__,
                failures=self.backoff.failures,
                retry_in=retry_in,
            )

        self.retry_in = retry_in
        outcomes = [replace(o, retry_in=retry_in, source=self) for o in outcomes]
        for outcome in outcomes:
            self.queue.put_nowait(outcome)
        return outcomes

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """Poll until cancelled."""
        logger.info("Polling started", symbol=self.symbol, interval=self.interval)
        while True:
            self._wake.clear()
            try:
                await self.poll_once()
                delay = self.retry_in
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Polling cycle error", exc_info=True, symbol=self.symbol)
                delay = self.backoff.fail(NetworkError(str(e), symbol=self.symbol))
            await self._sleep(delay)


class AcquisitionScheduler:
    """
    Owns the polling units and applies their outcomes.

    Tasks are independent; a slow or failing ticker never delays another.
    """

    def __init__(
        self,
        store: BarStore,
        client: MarketDataClient,
        calendar: Optional[MarketCalendar] = None,
        update_interval: float = DEFAULT_UPDATE_INTERVAL_SECONDS,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        prefetch: Iterable[TimeFrame] = (),
        include_pre_post: bool = True,
    ):
        self.store = store
        self.client = client
        self.calendar = calendar or MarketCalendar()
        self.update_interval = clamp_interval(update_interval)
        self.fetch_timeout = fetch_timeout
        self.prefetch = tuple(prefetch)
        self.include_pre_post = include_pre_post

        self._queue: asyncio.Queue = asyncio.Queue()
        self._units: Dict[str, PollingUnit] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._status: Dict[str, TickerStatus] = {}

    @staticmethod
    def _symbol(ticker: Union[Ticker, str]) -> str:
        return ticker.symbol if isinstance(ticker, Ticker) else str(ticker).upper()

    @property
    def symbols(self) -> List[str]:
        return list(self._units)

    def open_ticker(self, ticker: Ticker, timeframe: TimeFrame = TimeFrame.DAY_1, start: bool = True) -> PollingUnit:
        """
        Create the polling unit of a ticker.

        Args:
            ticker: Ticker to poll
            timeframe: Initially displayed timeframe
            start: Launch the polling task (requires a running event loop)
        """
        if ticker.symbol in self._units:
            return self._units[ticker.symbol]

        unit = PollingUnit(
            ticker=ticker,
            client=self.client,
            queue=self._queue,
            calendar=self.calendar,
            timeframe=timeframe,
            interval=self.update_interval,
            fetch_timeout=self.fetch_timeout,
            prefetch=self.prefetch,
            include_pre_post=self.include_pre_post,
        )
        self._units[ticker.symbol] = unit
        self._status[ticker.symbol] = TickerStatus(symbol=ticker.symbol)

        if start:
            self._tasks[ticker.symbol] = asyncio.create_task(unit.run(), name=f"poll-{ticker.symbol}")

        logger.info("Ticker opened", symbol=ticker.symbol, timeframe=TimeFrame(timeframe).value)
        return unit

    async def close_ticker(self, ticker: Union[Ticker, str]) -> None:
        """Cancel the ticker's task and wait for it to exit."""
        symbol = self._symbol(ticker)
        task = self._tasks.pop(symbol, None)
        self._units.pop(symbol, None)
        self._status.pop(symbol, None)

        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info("Ticker closed", symbol=symbol)

    def set_timeframe(self, ticker: Union[Ticker, str], timeframe: TimeFrame) -> None:
        unit = self._units.get(self._symbol(ticker))
        if unit is not None:
            unit.set_timeframe(timeframe)

    async def poll_once(self, ticker: Union[Ticker, str], now: Optional[datetime] = None) -> List[FetchOutcome]:
        """Run one cycle of a ticker's unit outside its task."""
        unit = self._units[self._symbol(ticker)]
        return await unit.poll_once(now)

    def unit(self, ticker: Union[Ticker, str]) -> Optional[PollingUnit]:
        return self._units.get(self._symbol(ticker))

    def status(self, ticker: Union[Ticker, str]) -> Optional[TickerStatus]:
        return self._status.get(self._symbol(ticker))

    def meta(self, ticker: Union[Ticker, str]) -> Optional[ChartMeta]:
        unit = self._units.get(self._symbol(ticker))
        return unit.meta if unit else None

    def _retention(self, unit: PollingUnit, timeframe: TimeFrame, now: datetime) -> timedelta:
        if timeframe.is_intraday:
            session = unit.session_hint(timeframe, now)
            if session is not None:
                return now - session.start(unit.include_pre_post) + SESSION_RETENTION_PADDING
        return spec_for(timeframe).retention

    def apply_updates(self, now: Optional[datetime] = None) -> int:
        """
        Drain the outcome queue into the Bar Store.

        Called on the render tick; never waits.

        Returns:
            Number of outcomes applied
        """
        applied = 0
        while True:
            try:
                outcome = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

            unit = self._units.get(outcome.symbol)
            status = self._status.get(outcome.symbol)
            if unit is None or status is None or outcome.source is not unit:
                continue

            status.retry_in = outcome.retry_in
            if outcome.ok:
                if outcome.timeframe is not None:
                    self.store.merge(unit.ticker, outcome.timeframe, outcome.bars)
                    self.store.trim(
                        unit.ticker,
                        outcome.timeframe,
                        self._retention(unit, outcome.timeframe, outcome.fetched_at),
                        now=outcome.fetched_at,
                    )
                    status.health = TickerHealth.FRESH
                    status.consecutive_failures = 0
                    status.last_error = None
                    status.last_success = outcome.fetched_at
            else:
                status.consecutive_failures += 1
                status.last_error = str(outcome.error)
                if isinstance(outcome.error, NotFoundError):
                    status.health = TickerHealth.NOT_FOUND
                else:
                    status.health = TickerHealth.STALE
            applied += 1

        return applied

    async def shutdown(self) -> None:
        """Cancel every polling task."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._tasks.clear()
        self._units.clear()
        self._status.clear()
        logger.info("Scheduler stopped", tasks=len(tasks))
