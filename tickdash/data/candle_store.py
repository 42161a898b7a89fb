"""
Candle Store - Per-ticker, per-timeframe bar cache.

Stores bars in pandas DataFrames with replace-by-timestamp merges and
publishes immutable BarSeries snapshots for the render path.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from ..core.constants import TimeFrame
from ..core.timeframes import spec_for
from ..core.types import BarSeries, PriceBar, Ticker, ensure_utc

import logging
logger = logging.getLogger(__name__)

_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


def _empty_frame() -> pd.DataFrame:
    df = pd.DataFrame(columns=_COLUMNS, dtype='float64')
    df.index = pd.DatetimeIndex([], tz='UTC', name='timestamp')
    return df


def _bars_to_frame(bars: Iterable[PriceBar]) -> pd.DataFrame:
    bars = list(bars)
    if not bars:
        return _empty_frame()
    return pd.DataFrame(
        {
            'open': [b.open for b in bars],
            'high': [b.high for b in bars],
            'low': [b.low for b in bars],
            'close': [b.close for b in bars],
            'volume': [b.volume for b in bars],
        },
        index=pd.DatetimeIndex([b.timestamp for b in bars], name='timestamp'),
        dtype='float64',
    )


def _frame_to_series(df: pd.DataFrame) -> BarSeries:
    bars = [
        PriceBar(
            timestamp=ts.to_pydatetime(),
            open=row.open,
            high=row.high,
            low=row.low,
            close=row.close,
            volume=row.volume,
        )
        for ts, row in zip(df.index, df.itertuples(index=False))
    ]
    return BarSeries.from_bars(bars)


class CandleStore:
    """
    Store for one ``(ticker, timeframe)`` series.

    Writers are serialized by the store's lock. Readers take the published
    snapshot reference and never observe a half-applied merge.
    """

    def __init__(self, symbol: str, timeframe: TimeFrame, max_bars: int = 20000):
        """
        Initialize candle store.

        Args:
            symbol: Symbol for this store
            timeframe: Timeframe of the stored bars
            max_bars: Maximum bars to keep in memory
        """
        self.symbol = symbol
        self.timeframe = timeframe
        self.max_bars = max_bars

        self._lock = threading.Lock()
        self.df = _empty_frame()
        self._snapshot = BarSeries.empty()

    def merge(self, bars: Iterable[PriceBar]) -> int:
        """
        Insert or replace bars by timestamp.

        Args:
            bars: Bars in any order; later duplicates win

        Returns:
            Number of timestamps that were not in the store before
        """
        rows = _bars_to_frame(bars)
        if rows.empty:
            return 0

        with self._lock:
            if self.df.empty:
                combined = rows
            else:
                combined = pd.concat([self.df, rows])

            # Remove duplicates (keep latest)
            combined = combined[~combined.index.duplicated(keep='last')]
            combined = combined.sort_index()

            # Trim to max_bars
            if len(combined) > self.max_bars:
                combined = combined.iloc[-self.max_bars:]

            added = len(combined) - len(self.df)
            snapshot = _frame_to_series(combined)

            self.df = combined
            self._snapshot = snapshot

        return max(added, 0)

    def trim(self, cutoff: datetime) -> int:
        """
        Drop bars older than ``cutoff``.

        Returns:
            Number of bars removed
        """
        cutoff = pd.Timestamp(ensure_utc(cutoff))

        with self._lock:
            kept = self.df[self.df.index >= cutoff]
            removed = len(self.df) - len(kept)
            if removed:
                self.df = kept
                self._snapshot = _frame_to_series(kept)

        return removed

    def snapshot(self) -> BarSeries:
        """Most recently published immutable series."""
        return self._snapshot

    def __len__(self) -> int:
        """Number of bars in store."""
        return len(self._snapshot)


Key = Tuple[str, TimeFrame]


class BarStore:
    """
    Keyed collection of candle stores, one per ``(ticker, timeframe)``.

    The only mutable structure shared between acquisition tasks (writers)
    and the render path (reader). Each key has its own lock; the registry
    lock is only held to look up or create an entry.
    """

    def __init__(self, max_bars: int = 20000):
        self.max_bars = max_bars
        self._stores: Dict[Key, CandleStore] = {}
        self._registry_lock = threading.Lock()

    @staticmethod
    def _key(ticker: Union[Ticker, str], timeframe: TimeFrame) -> Key:
        symbol = ticker.symbol if isinstance(ticker, Ticker) else str(ticker).upper()
        return symbol, TimeFrame(timeframe)

    def _store(self, key: Key, create: bool) -> Optional[CandleStore]:
        with self._registry_lock:
            store = self._stores.get(key)
            if store is None and create:
                store = CandleStore(symbol=key[0], timeframe=key[1], max_bars=self.max_bars)
                self._stores[key] = store
            return store

    def merge(self, ticker: Union[Ticker, str], timeframe: TimeFrame, new_bars: Iterable[PriceBar]) -> int:
        """
        Merge a batch into the series of ``(ticker, timeframe)``.

        Idempotent: merging the same batch twice leaves the same series.

        Returns:
            Number of new timestamps added
        """
        key = self._key(ticker, timeframe)
        added = self._store(key, create=True).merge(new_bars)
        logger.debug("Merged bars: %s %s (+%d)", key[0], key[1].value, added)
        return added

    def trim(
        self,
        ticker: Union[Ticker, str],
        timeframe: TimeFrame,
        retention_window: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Discard bars outside the retention window.

        Args:
            ticker: Ticker or symbol
            timeframe: Timeframe of the series
            retention_window: How far back to keep (default: timeframe retention)
            now: Reference instant (default: current time)

        Returns:
            Number of bars removed
        """
        store = self._store(self._key(ticker, timeframe), create=False)
        if store is None:
            return 0

        window = retention_window if retention_window is not None else spec_for(timeframe).retention
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        return store.trim(now - window)

    def read(self, ticker: Union[Ticker, str], timeframe: TimeFrame) -> BarSeries:
        """
        Immutable snapshot of a series.

        Returns an empty series when nothing was merged for the key yet.
        """
        store = self._store(self._key(ticker, timeframe), create=False)
        if store is None:
            return BarSeries.empty()
        return store.snapshot()

    def drop_ticker(self, ticker: Union[Ticker, str]) -> int:
        """
        Release every series of a ticker.

        Returns:
            Number of series dropped
        """
        symbol = self._key(ticker, TimeFrame.DAY_1)[0]
        with self._registry_lock:
            keys = [k for k in self._stores if k[0] == symbol]
            for k in keys:
                del self._stores[k]
        return len(keys)

    def keys(self) -> List[Key]:
        with self._registry_lock:
            return list(self._stores)

    def status(self) -> Dict[str, Dict[str, Dict]]:
        """
        Get status of data for all series.

        Returns:
            {
                'AAPL': {
                    '1D': {'bars': 390, 'latest': datetime},
                }
            }
        """
        status: Dict[str, Dict[str, Dict]] = {}
        for symbol, tf in self.keys():
            series = self.read(symbol, tf)
            status.setdefault(symbol, {})[tf.value] = {
                'bars': len(series),
                'latest': series.last.timestamp if series.last else None,
            }
        return status
