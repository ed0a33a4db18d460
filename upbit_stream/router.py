"""Fans decoded frames out to typed streams."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from .codec import decode
from .errors import DecodeError
from .models import Frame, OrderBookSnapshot, Ticker, Trade, Unrecognized
from .pubsub import Broadcast


logger = logging.getLogger(__name__)


class Destination(str, Enum):
    TICKER = "ticker"
    TRADE = "trade"
    ORDERBOOK = "orderbook"
    MESSAGE = "message"


def destination(frame: Frame) -> Destination | None:
    """Stream a frame belongs on. `None` means drop."""
    if isinstance(frame, Ticker):
        return Destination.TICKER
    if isinstance(frame, Trade):
        return Destination.TRADE
    if isinstance(frame, OrderBookSnapshot):
        return Destination.ORDERBOOK
    if isinstance(frame, Unrecognized):
        return Destination.MESSAGE
    return None


class EventRouter:
    """
    Decodes raw frames from the reader loop and publishes them.

    Tickers also go to every registered ticker sink (the live series owner).
    Raw text of unrecognized frames goes to `messages`, which is where
    one-shot responses arrive.
    """

    def __init__(self, queue_size: int = 0):
        self.tickers: Broadcast[Ticker] = Broadcast("ticker", queue_size)
        self.trades: Broadcast[Trade] = Broadcast("trade", queue_size)
        self.orderbooks: Broadcast[OrderBookSnapshot] = Broadcast("orderbook", queue_size)
        self.messages: Broadcast[str] = Broadcast("message", queue_size)
        self._ticker_sinks: list[Callable[[Ticker], None]] = []
        self.decode_errors = 0

    def add_ticker_sink(self, sink: Callable[[Ticker], None]) -> None:
        self._ticker_sinks.append(sink)

    def route(self, raw: str | bytes) -> Frame:
        frame = decode(raw)
        target = destination(frame)

        if target is Destination.TICKER:
            self.tickers.publish(frame)
            for sink in self._ticker_sinks:
                sink(frame)
        elif target is Destination.TRADE:
            self.trades.publish(frame)
        elif target is Destination.ORDERBOOK:
            self.orderbooks.publish(frame)
        elif target is Destination.MESSAGE:
            self.messages.publish(frame.raw)
        elif isinstance(frame, DecodeError):
            self.decode_errors += 1
            logger.warning(f"{frame} (dropped)")
            logger.debug(f"Malformed frame body: {frame.raw}")

        return frame
