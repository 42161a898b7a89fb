"""
Headless entry point.

Runs the engine without a drawing layer and prints a one-line summary per
ticker on every tick. Useful to check connectivity and configuration.
"""

import asyncio
import signal
import sys
from typing import Dict, List, Optional

from .config.settings import load_config
from .core.constants import InstrumentClass
from .core.exceptions import ConfigurationError
from .engine import DashboardEngine, RenderFrame
from .monitoring.logger import get_logger, setup_logger

logger = get_logger(__name__)


def format_frame(frame: RenderFrame) -> str:
    price = f"{frame.last_price:.2f}" if frame.last_price is not None else "-"
    change = f"{frame.pct_change:+.2f}%" if frame.pct_change is not None else ""
    flag = " [stale]" if frame.stale else ""
    return (
        f"{frame.symbol:<10} {frame.timeframe.value:<3} {frame.chart_type.value:<11} "
        f"{price:>12} {change:>8} slots={frame.slot_count}{flag}"
    )


async def run(config_file: Optional[str], symbols: List[str], crypto: List[str], ticks: int, tick_seconds: float) -> None:
    config = load_config(config_file)
    setup_logger(log_file=config.logging.file, level=config.logging.level)

    engine = DashboardEngine(config)
    await engine.start()

    for symbol in symbols or config.symbols:
        engine.open_ticker(symbol)
    for symbol in crypto:
        engine.open_ticker(symbol, InstrumentClass.CRYPTO)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    count = 0

    def on_frame(frames: Dict[str, RenderFrame]) -> None:
        nonlocal count
        for frame in frames.values():
            print(format_frame(frame))
        count += 1
        if ticks and count >= ticks:
            stop.set()

    try:
        await engine.run(on_frame=on_frame, tick_seconds=tick_seconds, stop_event=stop)
    finally:
        await engine.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Terminal price dashboard engine (headless)")
    parser.add_argument(
        '--config',
        default=None,
        help='Configuration file path'
    )
    parser.add_argument(
        '--symbols',
        nargs='*',
        default=[],
        help='Equity symbols to open (overrides config)'
    )
    parser.add_argument(
        '--crypto',
        nargs='*',
        default=[],
        help='Crypto symbols to open'
    )
    parser.add_argument(
        '--ticks',
        type=int,
        default=0,
        help='Stop after this many render ticks (0 runs until interrupted)'
    )
    parser.add_argument(
        '--tick-seconds',
        type=float,
        default=1.0,
        help='Render tick period'
    )

    args = parser.parse_args(argv)

    try:
        asyncio.run(run(args.config, args.symbols, args.crypto, args.ticks, args.tick_seconds))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
