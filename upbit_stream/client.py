"""Public client: connection, subscription intent and the live chart series."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Coroutine, Iterable

from .aggregator import LiveSeriesAggregator
from .catalog import MarketCatalog
from .codec import encode_subscriptions, parse_candles
from .config import Settings, get_settings
from .connection import ConnectionManager, Connector
from .correlator import RequestCorrelator
from .errors import RequestEncodingError, RequestError, TransportError
from .models import Bar, Channel, MarketInfo, OrderBookSnapshot, RequestKind, Tick, Ticker, Trade
from .pubsub import Broadcast
from .router import EventRouter
from .utils.timeframes import interval_to_seconds


logger = logging.getLogger(__name__)


class MarketStreamClient:
    """
    Streams one market from Upbit into an OHLCV series.

    Consumers drive it with `connect`, `disconnect`, `set_market` and
    `set_interval`, and read `series`, `last_price`, `connected` and
    `last_error` or subscribe to the `series_updates`, `prices` and `errors`
    streams.

    Every change to the series (live tick, history replace, reset) is queued
    and applied by one worker task, in order. History results are tagged with
    the generation of the intent that requested them and dropped if the market
    or interval has changed since.
    """

    def __init__(self, settings: Settings | None = None, *, connector: Connector | None = None):
        self.settings = settings or get_settings()
        self.market = self.settings.default_market
        self.interval = self.settings.default_interval
        self.channels = self.settings.get_channels()
        queue_size = self.settings.stream_queue_size

        self.router = EventRouter(queue_size=queue_size)
        self.connection = ConnectionManager(
            self.settings.ws_url,
            self.router.route,
            keepalive_interval=self.settings.keepalive_interval_seconds,
            open_timeout=self.settings.open_timeout_seconds,
            close_timeout=self.settings.close_timeout_seconds,
            auto_reconnect=self.settings.auto_reconnect,
            reconnect_initial_delay=self.settings.reconnect_initial_delay_seconds,
            reconnect_max_delay=self.settings.reconnect_max_delay_seconds,
            connector=connector,
        )
        self.correlator = RequestCorrelator(
            self.connection.send,
            self.router.messages,
            default_timeout=self.settings.request_timeout_seconds,
        )
        self.aggregator = LiveSeriesAggregator(interval_to_seconds(self.interval))
        self.catalog = MarketCatalog(self.settings.get_quote_prefix())

        self.errors: Broadcast[str] = Broadcast("errors", queue_size)
        self.series_updates: Broadcast[list[Bar]] = Broadcast("series", queue_size)
        self.prices: Broadcast[float] = Broadcast("price", queue_size)

        self.last_price = 0.0
        self.last_error: str | None = None
        self.is_loading = False

        self._generation = 0
        self._commands: asyncio.Queue = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._history_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

        self.router.add_ticker_sink(self._on_ticker)
        self.connection.connectivity.add_listener(self._on_connectivity)

    # State

    @property
    def connected(self) -> bool:
        return self.connection.connected

    @property
    def series(self) -> list[Bar]:
        """Copy of the current series."""
        return [replace(bar) for bar in self.aggregator.series]

    @property
    def markets(self) -> list[MarketInfo]:
        return list(self.catalog.markets)

    @property
    def connectivity(self) -> Broadcast[bool]:
        return self.connection.connectivity

    @property
    def tickers(self) -> Broadcast[Ticker]:
        return self.router.tickers

    @property
    def trades(self) -> Broadcast[Trade]:
        return self.router.trades

    @property
    def orderbooks(self) -> Broadcast[OrderBookSnapshot]:
        return self.router.orderbooks

    # Lifecycle

    async def start(self) -> None:
        """Start the series worker. Called implicitly by `connect`."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run_worker(), name="series-worker")

    async def connect(self) -> bool:
        """Open the connection. On success the subscription and history load follow."""
        await self.start()
        return await self.connection.connect()

    async def disconnect(self) -> None:
        """Close the connection and fail any in-flight call with `SendFailure`."""
        self.correlator.cancel_all("disconnected")
        await self.connection.disconnect()

    async def close(self) -> None:
        """Disconnect and stop every task owned by the client."""
        await self.disconnect()
        tasks = [t for t in (self._worker, self._history_task, *self._background) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._worker = None
        self._history_task = None

    async def __aenter__(self) -> "MarketStreamClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # Intent

    async def set_market(self, market: str) -> None:
        """Switch to another market. Same market is a no-op."""
        market = market.strip()
        if not market:
            raise ValueError("market must not be empty")
        if market == self.market:
            return
        logger.info(f"Switching market {self.market} -> {market}")
        self.market = market
        await self._restart(clear_price=True)

    async def set_interval(self, interval: str) -> None:
        """Switch bar interval (venue code like '1', '15', 'D'). Same interval is a no-op."""
        seconds = interval_to_seconds(interval)
        interval = interval.strip()
        if interval == self.interval:
            return
        logger.info(f"Switching interval {self.interval} -> {interval}")
        self.interval = interval
        await self._restart(interval_seconds=seconds)

    async def set_channels(self, channels: Iterable[Channel | str]) -> None:
        """Choose push channels for the current market. Ticker is always kept."""
        wanted = [Channel.TICKER]
        for channel in channels:
            channel = Channel(channel)
            if channel not in wanted:
                wanted.append(channel)
        self.channels = wanted
        if self.connected:
            await self._send_subscription()

    # One-shot calls

    async def fetch_history(self, market: str, interval: str) -> list[Bar]:
        """
        Request candle history without touching the series.

        Raises:
            RequestError: Timeout, send or parse failure of the call
            RequestEncodingError: The request could not be built
        """
        response = await self.correlator.call(
            RequestKind.HISTORY,
            {"market": market, "timeframe": interval, "count": self.settings.history_count},
        )
        return parse_candles(response.data, interval_to_seconds(interval))

    async def load_history(self) -> list[Bar] | None:
        """
        Reload history for the current market and interval into the series.

        Returns the loaded bars, or None if the call failed or was superseded.
        """
        await self.start()
        task = self._start_history()
        result, = await asyncio.gather(task, return_exceptions=True)
        if isinstance(result, BaseException):
            return None
        await self.wait_idle()
        return result

    async def load_markets(self) -> list[MarketInfo]:
        """Fetch the market catalog. On failure the error is reported and the current list returned."""
        try:
            return await self.catalog.load(self.correlator)
        except (RequestError, RequestEncodingError) as e:
            self._report(f"Failed to load markets: {e}")
            return self.markets

    async def wait_idle(self) -> None:
        """Wait until every queued series update has been applied."""
        await self._commands.join()

    # Internals

    async def _restart(self, interval_seconds: int | None = None, clear_price: bool = False) -> None:
        await self.start()
        self._generation += 1
        if self._history_task is not None and not self._history_task.done():
            self._history_task.cancel()
        self.is_loading = False
        self._commands.put_nowait(("reset", self._generation, interval_seconds, clear_price))

        if not self.connected:
            logger.info("Not connected; subscription will be sent on connect.")
            return
        if await self._send_subscription():
            self._start_history()

    async def _send_subscription(self) -> bool:
        try:
            frame = encode_subscriptions({channel: [self.market] for channel in self.channels})
            await self.connection.send(frame)
        except (TransportError, RequestEncodingError) as e:
            self._report(f"Subscription to {self.market} failed: {e}")
            return False
        logger.info(f"Subscribed to {[c.value for c in self.channels]} for {self.market}")
        return True

    def _start_history(self) -> asyncio.Task:
        if self._history_task is not None and not self._history_task.done():
            self._history_task.cancel()
        self._history_task = asyncio.create_task(
            self._load_history(self._generation, self.market, self.interval),
            name=f"history-{self.market}-{self.interval}",
        )
        return self._history_task

    async def _load_history(self, generation: int, market: str, interval: str) -> list[Bar] | None:
        self.is_loading = True
        try:
            bars = await self.fetch_history(market, interval)
        except (RequestError, RequestEncodingError) as e:
            if generation == self._generation:
                self._report(f"Failed to load {market} history: {e}")
            return None
        finally:
            if generation == self._generation:
                self.is_loading = False

        logger.info(f"Loaded {len(bars)} {market} bars ({interval})")
        self._commands.put_nowait(("history", generation, bars))
        return bars

    def _on_ticker(self, ticker: Ticker) -> None:
        self._commands.put_nowait(("tick", ticker))

    def _on_connectivity(self, connected: bool) -> None:
        if connected:
            self._spawn(self._on_connected())
        else:
            self.correlator.cancel_all("connection lost")

    async def _on_connected(self) -> None:
        if await self._send_subscription():
            self._start_history()

    async def _run_worker(self) -> None:
        while True:
            command = await self._commands.get()
            try:
                self._execute(command)
            except Exception as e:
                logger.error(f"Error applying series update {command[0]}: {e}", exc_info=True)
            finally:
                self._commands.task_done()

    def _execute(self, command: tuple[Any, ...]) -> None:
        kind = command[0]

        if kind == "tick":
            ticker: Ticker = command[1]
            if ticker.code != self.market:
                return
            self.aggregator.apply(Tick.from_ticker(ticker))
            self._set_price(ticker.trade_price)
            self._publish_series()

        elif kind == "history":
            _, generation, bars = command
            if generation != self._generation:
                logger.info(f"Discarding superseded history ({len(bars)} bars)")
                return
            self.aggregator.load_history(bars)
            if bars:
                self._set_price(bars[-1].close)
            self._publish_series()

        elif kind == "reset":
            _, generation, interval_seconds, clear_price = command
            self.aggregator.reset(interval_seconds)
            if clear_price:
                self.last_price = 0.0
            self._publish_series()

    def _set_price(self, price: float) -> None:
        self.last_price = price
        self.prices.publish(price)

    def _publish_series(self) -> None:
        if self.series_updates.subscriber_count:
            self.series_updates.publish(self.series)

    def _report(self, message: str) -> None:
        logger.warning(message)
        self.last_error = message
        self.errors.publish(message)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
