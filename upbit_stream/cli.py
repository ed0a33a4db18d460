"""
Command-line runner for the Upbit stream client.

Connects, loads history for one market and logs every bar update.

Usage:
    python -m upbit_stream
    python -m upbit_stream --market KRW-ETH --interval 5 --channels ticker,trade
    python -m upbit_stream --list-markets
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from .client import MarketStreamClient
from .config import get_settings


logger = logging.getLogger("upbit_stream")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Upbit real-time market stream",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m upbit_stream --market KRW-BTC --interval 1
  python -m upbit_stream --market KRW-ETH --interval D --duration 120
  python -m upbit_stream --list-markets
        """
    )
    parser.add_argument(
        "--market",
        default=settings.default_market,
        help=f"Market code (default: {settings.default_market})"
    )
    parser.add_argument(
        "--interval",
        default=settings.default_interval,
        help=f"Bar interval: minute unit 1,3,5,10,15,30,60,240 or D/W (default: {settings.default_interval})"
    )
    parser.add_argument(
        "--channels",
        default=settings.channels,
        help=f"Comma-separated push channels: ticker,trade,orderbook (default: {settings.channels})"
    )
    parser.add_argument(
        "--list-markets",
        action="store_true",
        help="Print the market catalog and exit"
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Seconds to stream before exiting (default: 0 = until interrupted)"
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level})"
    )
    return parser.parse_args(argv)


async def _print_bars(client: MarketStreamClient) -> None:
    with client.series_updates.subscribe(maxsize=1) as updates:
        async for series in updates:
            if series:
                bar = series[-1]
                print(
                    f"{client.market} [{client.interval}] t={bar.time} "
                    f"O={bar.open} H={bar.high} L={bar.low} C={bar.close} V={bar.volume} "
                    f"({len(series)} bars)"
                )


async def _print_errors(client: MarketStreamClient) -> None:
    with client.errors.subscribe() as errors:
        async for message in errors:
            print(f"ERROR: {message}")


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    settings.default_market = args.market
    settings.default_interval = args.interval
    settings.channels = args.channels

    async with MarketStreamClient(settings) as client:
        if not await client.connect():
            print(f"Could not connect to {settings.ws_url}: {client.connection.last_error}")
            return 1

        if args.list_markets:
            markets = await client.load_markets()
            for info in markets:
                print(f"{info.market:<12} {info.local_name} / {info.display_name}")
            return 0

        printers = [
            asyncio.create_task(_print_bars(client)),
            asyncio.create_task(_print_errors(client)),
        ]
        try:
            if args.duration > 0:
                await asyncio.sleep(args.duration)
            else:
                await asyncio.Event().wait()
        finally:
            for task in printers:
                task.cancel()
            await asyncio.gather(*printers, return_exceptions=True)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down.")
        return 0
