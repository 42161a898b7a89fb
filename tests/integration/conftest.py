"""
Pytest configuration and fixtures for integration tests.

Integration tests drive the asyncio acquisition path end to end against an
in-memory market data client, so no network access is needed.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from tickdash.connectors.yahoo_client import MarketDataClient
from tickdash.core.constants import InstrumentClass, TimeFrame
from tickdash.core.types import ChartMeta, PriceBar, SessionWindow, Ticker


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: Integration tests that run the asyncio acquisition path"
    )


@pytest.fixture(autouse=True)
def setup_logging(caplog):
    """
    Setup logging for all tests.

    This fixture runs automatically for all tests and ensures
    log output is captured and displayed.
    """
    caplog.set_level(logging.INFO)

    # Set specific loggers to appropriate levels
    logging.getLogger('tickdash.data.scheduler').setLevel(logging.INFO)
    logging.getLogger('tickdash.data.candle_store').setLevel(logging.WARNING)


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to handle integration test markers.

    This automatically marks all tests in the integration directory
    as 'integration' tests.
    """
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def minute_bars(start: datetime, count: int, price: float = 100.0, step: float = 0.1) -> List[PriceBar]:
    """Consecutive one-minute bars with a steady drift."""
    bars = []
    for i in range(count):
        close = price + i * step
        bars.append(PriceBar(
            timestamp=start + timedelta(minutes=i),
            open=close - step / 2,
            high=close + step,
            low=close - step,
            close=close,
            volume=1000.0 + i,
        ))
    return bars


def daily_bars(days: List[datetime], price: float = 100.0, step: float = 1.0) -> List[PriceBar]:
    return [
        PriceBar(
            timestamp=day,
            open=price + i * step - 0.5,
            high=price + i * step + 1.0,
            low=price + i * step - 1.0,
            close=price + i * step,
            volume=10000.0,
        )
        for i, day in enumerate(days)
    ]


class FakeClient(MarketDataClient):
    """
    In-memory MarketDataClient.

    ``responses`` maps a symbol to a list of bars, an exception instance to
    raise, or a float number of seconds to hang before answering. ``meta``
    maps a symbol to a ChartMeta or an exception instance to raise.
    """

    def __init__(self):
        self.responses: Dict[str, object] = {}
        self.meta: Dict[str, object] = {}
        self.calls: List[tuple] = []
        self.meta_calls: List[str] = []

    async def fetch_bars(
        self,
        ticker: Ticker,
        timeframe: TimeFrame,
        session_hint: Optional[SessionWindow] = None,
    ) -> List[PriceBar]:
        self.calls.append((ticker.symbol, timeframe, session_hint))
        response = self.responses.get(ticker.symbol, [])
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, float):
            await asyncio.sleep(response)
            return []
        return list(response)

    async def fetch_meta(self, ticker: Ticker) -> ChartMeta:
        self.meta_calls.append(ticker.symbol)
        meta = self.meta.get(ticker.symbol, ChartMeta(symbol=ticker.symbol))
        if isinstance(meta, BaseException):
            raise meta
        return meta

    def bar_calls(self, symbol: str) -> int:
        return sum(1 for call in self.calls if call[0] == symbol)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def make_minute_bars():
    return minute_bars


@pytest.fixture
def make_daily_bars():
    return daily_bars


@pytest.fixture
def session_close():
    """Friday 2024-03-15 16:00 America/New_York (EDT) in UTC."""
    return datetime(2024, 3, 15, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def regular_open():
    """Friday 2024-03-15 09:30 America/New_York (EDT) in UTC."""
    return datetime(2024, 3, 15, 13, 30, tzinfo=timezone.utc)


@pytest.fixture
def equity():
    return Ticker("AAPL", InstrumentClass.EQUITY)
