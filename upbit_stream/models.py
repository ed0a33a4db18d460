"""Base types shared by the codec, aggregator and client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import DecodeError


class Channel(str, Enum):
    """Push channels offered by the venue."""
    TICKER = "ticker"
    TRADE = "trade"
    ORDERBOOK = "orderbook"


class RequestKind(str, Enum):
    """One-shot calls emulated over the streaming socket."""
    HISTORY = "candles"
    CATALOG = "market_all"


@dataclass
class Bar:
    """OHLCV bar. `time` is the bucket start in Unix seconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float | None = None


@dataclass(frozen=True)
class Tick:
    """Single price update fed to the live series."""
    time: int  # Unix seconds, not yet bucketed
    price: float
    cumulative_volume: float

    @classmethod
    def from_ticker(cls, ticker: "Ticker") -> "Tick":
        return cls(
            time=ticker.timestamp // 1000,
            price=ticker.trade_price,
            cumulative_volume=ticker.acc_trade_volume,
        )


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Ticker(_Event):
    type: str
    code: str
    opening_price: float
    high_price: float
    low_price: float
    trade_price: float
    prev_closing_price: float
    acc_trade_price: float
    change: str
    change_price: float
    signed_change_price: float
    change_rate: float
    signed_change_rate: float
    trade_volume: float
    acc_trade_volume: float
    trade_date: str
    trade_time: str
    trade_timestamp: int
    timestamp: int  # epoch milliseconds
    stream_type: str | None = None


class Trade(_Event):
    type: str
    code: str
    trade_price: float
    trade_volume: float
    ask_bid: str
    prev_closing_price: float
    change: str
    change_price: float
    trade_date: str
    trade_time: str
    trade_timestamp: int
    timestamp: int
    stream_type: str | None = None


class OrderBookUnit(_Event):
    ask_price: float
    bid_price: float
    ask_size: float
    bid_size: float


class OrderBookSnapshot(_Event):
    type: str
    code: str
    timestamp: int
    total_ask_size: float
    total_bid_size: float
    units: list[OrderBookUnit] = Field(alias="orderbook_units")
    stream_type: str | None = None
    level: float | None = None


class MarketInfo(_Event):
    """Catalog entry for one tradable market."""
    market: str
    local_name: str = Field(alias="korean_name")
    display_name: str = Field(alias="english_name")


@dataclass(frozen=True)
class Unrecognized:
    """Frame that belongs to no push channel; carries the raw text verbatim."""
    raw: str


@dataclass(frozen=True)
class Response:
    """Correlated answer to a one-shot request."""
    request_id: str
    kind: RequestKind
    data: list[dict[str, Any]]


Frame = Union[Ticker, Trade, OrderBookSnapshot, Unrecognized, DecodeError]


class Transport(Protocol):
    """The subset of a websockets client connection the manager relies on."""

    async def send(self, message: str) -> None:
        ...

    async def ping(self) -> Any:
        ...

    async def close(self) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[str | bytes]:
        ...
