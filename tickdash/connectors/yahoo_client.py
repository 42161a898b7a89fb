"""
Market data client for Yahoo's v8 chart endpoint.

This module provides the fetch contract used by the acquisition scheduler
and its aiohttp implementation. One ClientSession with a bounded connection
pool is shared by every polling unit.

Usage:
    shared = SharedClient(max_connections=10)
    client = await shared.acquire()

    bars = await client.fetch_bars(Ticker("AAPL"), TimeFrame.DAY_1, session)

    await shared.release()
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..core.constants import DEFAULT_MAX_CONNECTIONS, FETCH_TIMEOUT_SECONDS, InstrumentClass, TimeFrame
from ..core.exceptions import (
    InvalidBarError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)
from ..core.timeframes import spec_for
from ..core.types import ChartMeta, PriceBar, SessionWindow, Ticker
from ..monitoring.logger import get_logger

logger = get_logger(__name__)

CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (X11; Linux x86_64) tickdash',
    'Accept': 'application/json',
}

_CRYPTO_TYPES = {"CRYPTOCURRENCY"}


class MarketDataClient(ABC):
    """
    Fetch contract consumed by the acquisition scheduler.

    Implementations raise FetchError subclasses (NetworkError, RateLimitedError,
    MalformedResponseError, NotFoundError) and nothing else.
    """

    @abstractmethod
    async def fetch_bars(
        self,
        ticker: Ticker,
        timeframe: TimeFrame,
        session_hint: Optional[SessionWindow] = None,
    ) -> List[PriceBar]:
        """
        Fetch bars of one timeframe.

        Args:
            ticker: Instrument to fetch
            timeframe: Timeframe whose granularity and range are requested
            session_hint: Session to fetch for intraday timeframes

        Returns:
            Bars ordered by timestamp
        """
        pass

    @abstractmethod
    async def fetch_meta(self, ticker: Ticker) -> ChartMeta:
        """Fetch instrument metadata (listing date, previous close, current price)."""
        pass


# ============================================================================
# Payload parsing
# ============================================================================

def _price(values: List[Any], i: int) -> float:
    value = values[i]
    return float(value) if value is not None else 0.0


def parse_meta(meta: Dict[str, Any]) -> ChartMeta:
    """Build ChartMeta from the ``meta`` object of a chart result."""
    if not isinstance(meta, dict):
        raise MalformedResponseError("Chart meta is not an object")

    first_trade = meta.get('firstTradeDate')
    listing = datetime.fromtimestamp(first_trade, tz=timezone.utc) if first_trade else None

    instrument_type = str(meta.get('instrumentType', '')).upper()
    previous_close = meta.get('chartPreviousClose', meta.get('previousClose'))
    current_price = meta.get('regularMarketPrice')

    return ChartMeta(
        symbol=str(meta.get('symbol', '')).upper(),
        instrument_class=InstrumentClass.CRYPTO if instrument_type in _CRYPTO_TYPES else InstrumentClass.EQUITY,
        listing_date=listing,
        previous_close=float(previous_close) if previous_close is not None else None,
        current_price=float(current_price) if current_price is not None else None,
        currency=meta.get('currency') or "USD",
        exchange_timezone=meta.get('exchangeTimezoneName') or "America/New_York",
    )


def parse_chart_payload(payload: Dict[str, Any]) -> Tuple[List[PriceBar], ChartMeta]:
    """
    Decode a v8 chart response.

    Null quote entries become 0 (an empty bar). A batch with any structural
    problem is rejected as a whole.

    Raises:
        NotFoundError: API reports an unknown symbol
        MalformedResponseError: Payload cannot be decoded into bars
    """
    try:
        chart = payload['chart']
    except (KeyError, TypeError) as e:
        raise MalformedResponseError("Missing 'chart' object") from e

    error = chart.get('error') if isinstance(chart, dict) else None
    if error:
        code = str(error.get('code', '')) if isinstance(error, dict) else str(error)
        description = error.get('description', '') if isinstance(error, dict) else ''
        if code.lower().replace(' ', '') == 'notfound':
            raise NotFoundError(description or "Symbol not found")
        raise MalformedResponseError(f"API error: {code}", description=description)

    try:
        result = chart['result'][0]
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedResponseError("Missing chart result") from e

    meta = parse_meta(result.get('meta', {}))
    timestamps = result.get('timestamp') or []

    if not timestamps:
        return [], meta

    try:
        quote = result['indicators']['quote'][0]
        opens, highs, lows = quote['open'], quote['high'], quote['low']
        closes, volumes = quote['close'], quote.get('volume') or [0] * len(timestamps)
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedResponseError("Missing quote arrays") from e

    columns = (opens, highs, lows, closes, volumes)
    if any(len(col) != len(timestamps) for col in columns):
        raise MalformedResponseError(
            "Quote arrays do not match timestamps",
            timestamps=len(timestamps),
        )

    bars = {}
    try:
        for i, ts in enumerate(timestamps):
            bar = PriceBar(
                timestamp=datetime.fromtimestamp(int(ts), tz=timezone.utc),
                open=_price(opens, i),
                high=_price(highs, i),
                low=_price(lows, i),
                close=_price(closes, i),
                volume=_price(volumes, i),
            )
            bars[bar.timestamp] = bar
    except (TypeError, ValueError, InvalidBarError) as e:
        raise MalformedResponseError(f"Undecodable bar: {e}") from e

    return [bars[ts] for ts in sorted(bars)], meta


# ============================================================================
# aiohttp implementation
# ============================================================================

class YahooChartClient(MarketDataClient):
    """
    MarketDataClient over one shared aiohttp session.

    The session is created by SharedClient and never per request.
    """

    def __init__(self, session: aiohttp.ClientSession, base_url: str = CHART_URL):
        self._session = session
        self.base_url = base_url

    def _params(self, timeframe: TimeFrame, session_hint: Optional[SessionWindow]) -> Dict[str, str]:
        tf_spec = spec_for(timeframe)
        params = {
            'interval': tf_spec.interval,
            'includePrePost': 'true' if tf_spec.include_pre_post else 'false',
        }
        if session_hint is not None and not session_hint.is_closed:
            params['period1'] = str(int(session_hint.start(True).timestamp()))
            params['period2'] = str(int(session_hint.end(True).timestamp()))
        else:
            params['range'] = tf_spec.source_range
        return params

    async def _get_chart(self, symbol: str, params: Dict[str, str]) -> Dict[str, Any]:
        url = self.base_url.format(symbol=symbol)
        try:
            async with self._session.get(url, params=params) as response:
                if response.status == 429:
                    raise RateLimitedError("Rate limited", symbol=symbol)
                if response.status == 404:
                    raise NotFoundError("Symbol not found", symbol=symbol)
                if response.status != 200:
                    raise NetworkError(f"HTTP {response.status}", symbol=symbol)
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise MalformedResponseError("Response is not JSON", symbol=symbol) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Network error: {e}", symbol=symbol) from e

    async def fetch_bars(
        self,
        ticker: Ticker,
        timeframe: TimeFrame,
        session_hint: Optional[SessionWindow] = None,
    ) -> List[PriceBar]:
        payload = await self._get_chart(ticker.symbol, self._params(timeframe, session_hint))
        bars, _ = parse_chart_payload(payload)
        logger.debug("Fetched bars", symbol=ticker.symbol, timeframe=timeframe.value, bars=len(bars))
        return bars

    async def fetch_meta(self, ticker: Ticker) -> ChartMeta:
        payload = await self._get_chart(ticker.symbol, {'interval': '1d', 'range': '1d'})
        _, meta = parse_chart_payload(payload)
        return meta


class SharedClient:
    """
    Process-wide, reference-counted owner of the aiohttp session.

    The first ``acquire`` creates the session with a bounded connection pool;
    the last ``release`` closes it.
    """

    def __init__(
        self,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        timeout_seconds: float = FETCH_TIMEOUT_SECONDS,
        base_url: str = CHART_URL,
    ):
        self.max_connections = max_connections
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url

        self._session: Optional[aiohttp.ClientSession] = None
        self._client: Optional[YahooChartClient] = None
        self._refs = 0

    @property
    def ref_count(self) -> int:
        return self._refs

    @property
    def is_open(self) -> bool:
        return self._session is not None and not self._session.closed

    async def acquire(self) -> YahooChartClient:
        """Get the shared client, creating the session on first use."""
        if not self.is_open:
            connector = aiohttp.TCPConnector(limit=self.max_connections)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers=DEFAULT_HEADERS,
            )
            self._client = YahooChartClient(self._session, base_url=self.base_url)
            logger.info("Network client created", max_connections=self.max_connections)

        self._refs += 1
        return self._client

    async def release(self) -> None:
        """Drop one reference; closes the session when none remain."""
        if self._refs == 0:
            return
        self._refs -= 1
        if self._refs == 0 and self._session is not None:
            await self._session.close()
            self._session = None
            self._client = None
            logger.info("Network client closed")

    async def __aenter__(self) -> YahooChartClient:
        return await self.acquire()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
