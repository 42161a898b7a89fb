"""
Integration tests for the acquisition scheduler.

Polling units run as real asyncio tasks against the in-memory client; time
is only faked where a cycle is driven directly with ``poll_once``.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tickdash.core.constants import TickerHealth, TimeFrame
from tickdash.core.exceptions import (
    FetchTimeoutError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)
from tickdash.core.types import ChartMeta, Ticker
from tickdash.data.candle_store import BarStore
from tickdash.data.market_calendar import MarketCalendar
from tickdash.data.scheduler import AcquisitionScheduler, Backoff, clamp_interval


def make_scheduler(client, **kwargs):
    return AcquisitionScheduler(store=BarStore(), client=client, calendar=MarketCalendar(), **kwargs)


# ============================================================================
# Backoff policy
# ============================================================================

def test_backoff_grows_exponentially_and_caps():
    backoff = Backoff(base=1.0, max_delay=60.0)
    delays = [backoff.fail(NetworkError("reset")) for _ in range(8)]

    assert delays == [2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0, 60.0]
    assert backoff.failures == 8
    assert backoff.reset() == 1.0


def test_rate_limit_backs_off_faster():
    backoff = Backoff(base=1.0, max_delay=60.0)
    delays = [backoff.fail(RateLimitedError("429")) for _ in range(3)]
    assert delays == [4.0, 16.0, 60.0]


def test_not_found_uses_reduced_polling_rate():
    backoff = Backoff(base=1.0)
    assert backoff.fail(NotFoundError("gone")) == 300.0


def test_interval_below_minimum_is_clamped(caplog, fake_client):
    assert clamp_interval(0.2) == 1.0
    assert clamp_interval(5) == 5.0

    scheduler = make_scheduler(fake_client, update_interval=0.1)
    assert scheduler.update_interval == 1.0
    assert "clamping" in caplog.text


# ============================================================================
# Polling cycles
# ============================================================================

def test_successful_cycle_merges_bars(fake_client, equity, make_minute_bars, regular_open, session_close):
    fake_client.responses["AAPL"] = make_minute_bars(regular_open, 30)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        outcomes = await scheduler.poll_once(equity, now=session_close)
        applied = scheduler.apply_updates(session_close)
        return scheduler, outcomes, applied

    scheduler, outcomes, applied = asyncio.run(scenario())

    assert applied == len(outcomes) == 2  # metadata, then 1D bars
    assert len(scheduler.store.read(equity, TimeFrame.DAY_1)) == 30
    status = scheduler.status(equity)
    assert status.health is TickerHealth.FRESH
    assert status.last_success == session_close
    assert not status.stale


def test_metadata_refreshed_every_cycle(fake_client, equity, session_close):
    fake_client.meta["AAPL"] = ChartMeta(symbol="AAPL", previous_close=170.0, current_price=171.0)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=session_close)
        first = scheduler.meta(equity).current_price

        fake_client.meta["AAPL"] = ChartMeta(symbol="AAPL", previous_close=170.0, current_price=172.5)
        await scheduler.poll_once(equity, now=session_close + timedelta(seconds=1))
        return scheduler, first

    scheduler, first = asyncio.run(scenario())

    assert fake_client.meta_calls == ["AAPL", "AAPL"]
    assert fake_client.bar_calls("AAPL") == 2
    assert first == 171.0
    assert scheduler.meta(equity).current_price == 172.5
    assert scheduler.meta(equity).previous_close == 170.0


def test_failed_metadata_refresh_keeps_last_known(fake_client, equity, make_minute_bars, regular_open, session_close):
    fake_client.meta["AAPL"] = ChartMeta(symbol="AAPL", current_price=171.0)
    fake_client.responses["AAPL"] = make_minute_bars(regular_open, 5)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=session_close)

        fake_client.meta["AAPL"] = NetworkError("reset")
        outcomes = await scheduler.poll_once(equity, now=session_close + timedelta(seconds=1))
        scheduler.apply_updates(session_close)
        return scheduler, outcomes

    scheduler, outcomes = asyncio.run(scenario())

    assert scheduler.meta(equity).current_price == 171.0
    assert all(o.ok for o in outcomes)
    assert scheduler.status(equity).health is TickerHealth.FRESH


def test_reopened_ticker_ignores_outcomes_of_closed_unit(
    fake_client, equity, make_minute_bars, regular_open, session_close
):
    fake_client.responses["AAPL"] = make_minute_bars(regular_open, 10)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=session_close)
        await scheduler.close_ticker(equity)

        fake_client.responses["AAPL"] = []
        scheduler.open_ticker(equity, start=False)
        applied = scheduler.apply_updates(session_close)
        return scheduler, applied

    scheduler, applied = asyncio.run(scenario())

    assert applied == 0
    assert scheduler.store.read(equity, TimeFrame.DAY_1).is_empty
    assert scheduler.status(equity).health is TickerHealth.LOADING


def test_intraday_fetch_carries_session_hint(fake_client, equity):
    """Monday 02:00 ET fetches Friday's session."""
    now = datetime(2024, 3, 18, 6, 0, tzinfo=timezone.utc)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=now)

    asyncio.run(scenario())

    symbol, timeframe, hint = fake_client.calls[0]
    assert timeframe is TimeFrame.DAY_1
    assert hint.day.isoformat() == "2024-03-15"


def test_failures_mark_ticker_stale_and_keep_data(fake_client, equity, make_minute_bars, regular_open, session_close):
    fake_client.responses["AAPL"] = make_minute_bars(regular_open, 10)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=session_close)
        scheduler.apply_updates(session_close)

        fake_client.responses["AAPL"] = NetworkError("connection reset")
        retries = []
        for i in range(3):
            outcomes = await scheduler.poll_once(equity, now=session_close + timedelta(seconds=i + 1))
            retries.append(outcomes[-1].retry_in)
        scheduler.apply_updates(session_close)
        return scheduler, retries

    scheduler, retries = asyncio.run(scenario())

    assert retries == [2.0, 4.0, 8.0]
    status = scheduler.status(equity)
    assert status.health is TickerHealth.STALE
    assert status.stale
    assert status.consecutive_failures == 3
    assert "connection reset" in status.last_error
    # Last-known data stays visible
    assert len(scheduler.store.read(equity, TimeFrame.DAY_1)) == 10


def test_recovery_resets_backoff(fake_client, equity, make_minute_bars, regular_open, session_close):
    fake_client.responses["AAPL"] = RateLimitedError("slow down")

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=session_close)

        fake_client.responses["AAPL"] = make_minute_bars(regular_open, 5)
        outcomes = await scheduler.poll_once(equity, now=session_close + timedelta(seconds=4))
        scheduler.apply_updates(session_close)
        return scheduler, outcomes

    scheduler, outcomes = asyncio.run(scenario())

    assert outcomes[-1].retry_in == 1.0
    assert scheduler.unit(equity).backoff.failures == 0
    status = scheduler.status(equity)
    assert status.health is TickerHealth.FRESH
    assert status.consecutive_failures == 0
    assert status.last_error is None


def test_malformed_batch_is_discarded(fake_client, equity, make_minute_bars, regular_open, session_close):
    fake_client.responses["AAPL"] = make_minute_bars(regular_open, 10)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=session_close)
        fake_client.responses["AAPL"] = MalformedResponseError("bad arrays")
        await scheduler.poll_once(equity, now=session_close + timedelta(seconds=1))
        scheduler.apply_updates(session_close)
        return scheduler

    scheduler = asyncio.run(scenario())

    assert len(scheduler.store.read(equity, TimeFrame.DAY_1)) == 10
    assert scheduler.status(equity).health is TickerHealth.STALE


def test_not_found_symbol(fake_client, session_close):
    ticker = Ticker("NOPE")
    fake_client.responses["NOPE"] = NotFoundError("No data found")

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(ticker, start=False)
        outcomes = await scheduler.poll_once(ticker, now=session_close)
        scheduler.apply_updates(session_close)
        return scheduler, outcomes

    scheduler, outcomes = asyncio.run(scenario())

    assert outcomes[-1].retry_in == 300.0
    status = scheduler.status(ticker)
    assert status.health is TickerHealth.NOT_FOUND
    assert status.stale
    assert scheduler.store.read(ticker, TimeFrame.DAY_1).is_empty


def test_prefetch_refreshes_at_own_cadence(fake_client, equity, session_close):
    async def scenario():
        scheduler = make_scheduler(fake_client, prefetch=(TimeFrame.YEAR_1,))
        unit = scheduler.open_ticker(equity, start=False)

        await scheduler.poll_once(equity, now=session_close)
        await scheduler.poll_once(equity, now=session_close + timedelta(seconds=10))
        unit.set_timeframe(TimeFrame.WEEK_1)
        await scheduler.poll_once(equity, now=session_close + timedelta(seconds=20))
        await scheduler.poll_once(equity, now=session_close + timedelta(days=1))

    asyncio.run(scenario())

    timeframes = [call[1] for call in fake_client.calls]
    assert timeframes == [
        TimeFrame.DAY_1, TimeFrame.YEAR_1,
        TimeFrame.DAY_1,
        TimeFrame.WEEK_1,
        TimeFrame.WEEK_1, TimeFrame.YEAR_1,
    ]


def test_intraday_retention_drops_previous_session(
    fake_client, equity, make_minute_bars, regular_open, session_close
):
    yesterday = regular_open - timedelta(days=1)
    fake_client.responses["AAPL"] = make_minute_bars(yesterday, 10) + make_minute_bars(regular_open, 10)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=session_close)
        scheduler.apply_updates(session_close)
        return scheduler

    scheduler = asyncio.run(scenario())

    series = scheduler.store.read(equity, TimeFrame.DAY_1)
    assert len(series) == 10
    assert series.first.timestamp == regular_open


# ============================================================================
# Task isolation
# ============================================================================

def recent_start():
    """Start of bars that survive 1D retention when polled on the wall clock."""
    return datetime.now(timezone.utc).replace(second=0, microsecond=0) - timedelta(minutes=10)


def test_failing_ticker_does_not_block_others(fake_client, make_minute_bars):
    fake_client.responses["AAA"] = NetworkError("unreachable")
    fake_client.responses["BBB"] = make_minute_bars(recent_start(), 5)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(Ticker("AAA"))
        scheduler.open_ticker(Ticker("BBB"))
        await asyncio.sleep(0.3)
        scheduler.apply_updates()
        result = (scheduler.status("AAA").health, scheduler.status("BBB").health,
                  len(scheduler.store.read("BBB", TimeFrame.DAY_1)))
        await scheduler.shutdown()
        return result

    health_a, health_b, bars_b = asyncio.run(scenario())

    assert health_a is TickerHealth.STALE
    assert health_b is TickerHealth.FRESH
    assert bars_b == 5


def test_hanging_fetch_times_out_without_delaying_others(fake_client, make_minute_bars):
    fake_client.responses["SLOW"] = 5.0
    fake_client.responses["FAST"] = make_minute_bars(recent_start(), 3)

    async def scenario():
        scheduler = make_scheduler(fake_client, fetch_timeout=0.2)
        scheduler.open_ticker(Ticker("SLOW"))
        scheduler.open_ticker(Ticker("FAST"))

        await asyncio.sleep(0.1)
        scheduler.apply_updates()
        early = (scheduler.status("SLOW").health, scheduler.status("FAST").health)

        await asyncio.sleep(0.4)
        scheduler.apply_updates()
        late = scheduler.status("SLOW")
        await scheduler.shutdown()
        return early, late

    early, late = asyncio.run(scenario())

    assert early == (TickerHealth.LOADING, TickerHealth.FRESH)
    assert late.health is TickerHealth.STALE
    assert "timed out" in late.last_error


def test_close_ticker_cancels_task(fake_client, make_minute_bars, regular_open):
    fake_client.responses["AAPL"] = make_minute_bars(regular_open, 5)

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(Ticker("AAPL"))
        await asyncio.sleep(0.05)
        task = scheduler._tasks["AAPL"]

        await scheduler.close_ticker("AAPL")
        # Outcomes still queued for the closed ticker are ignored
        scheduler.apply_updates()
        return scheduler, task

    scheduler, task = asyncio.run(scenario())

    assert task.cancelled()
    assert scheduler.symbols == []
    assert scheduler.status("AAPL") is None
    assert scheduler.store.read("AAPL", TimeFrame.DAY_1).is_empty


def test_set_timeframe_wakes_unit(fake_client):
    async def scenario():
        scheduler = make_scheduler(fake_client, update_interval=30)
        scheduler.open_ticker(Ticker("AAPL"))
        await asyncio.sleep(0.05)
        scheduler.set_timeframe("AAPL", TimeFrame.YEAR_1)
        await asyncio.sleep(0.05)
        await scheduler.shutdown()

    asyncio.run(scenario())

    assert [call[1] for call in fake_client.calls] == [TimeFrame.DAY_1, TimeFrame.YEAR_1]


def test_fetch_timeout_error_is_network_error():
    assert issubclass(FetchTimeoutError, NetworkError)
    assert str(FetchTimeoutError("slow", timeout=0.2)) == "slow [timeout=0.2]"


@pytest.mark.parametrize("error, health", [
    (NetworkError("reset"), TickerHealth.STALE),
    (RateLimitedError("429"), TickerHealth.STALE),
    (NotFoundError("gone"), TickerHealth.NOT_FOUND),
])
def test_error_to_health_mapping(fake_client, equity, session_close, error, health):
    fake_client.responses["AAPL"] = error

    async def scenario():
        scheduler = make_scheduler(fake_client)
        scheduler.open_ticker(equity, start=False)
        await scheduler.poll_once(equity, now=session_close)
        scheduler.apply_updates(session_close)
        return scheduler.status(equity).health

    assert asyncio.run(scenario()) is health
