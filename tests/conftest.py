"""Shared fixtures: in-memory transport and venue payload builders."""

import asyncio
import json

import pytest

from upbit_stream.config import Settings


_CLOSE = object()


class FakeTransport:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.pings = 0
        self.closed = False
        self.fail_send = False
        self.fail_ping = False
        self.responder = None
        self._inbox = asyncio.Queue()

    async def send(self, message):
        if self.closed or self.fail_send:
            raise ConnectionResetError("send failed")
        self.sent.append(message)
        if self.responder is not None:
            self.responder(self, message)

    async def ping(self):
        if self.closed or self.fail_ping:
            raise ConnectionResetError("ping failed")
        self.pings += 1

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSE)

    def push(self, message):
        """Queue an inbound frame. Dicts are JSON-encoded."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def server_close(self):
        self._inbox.put_nowait(_CLOSE)

    def sent_json(self):
        return [json.loads(m) for m in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            self.closed = True
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connector that hands out FakeTransports and can refuse attempts."""

    def __init__(self):
        self.transports = []
        self.failures = 0
        self.responder = None

    async def __call__(self, url):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("connection refused")
        transport = FakeTransport()
        transport.responder = self.responder
        self.transports.append(transport)
        return transport

    @property
    def latest(self):
        return self.transports[-1]

    @property
    def open_transports(self):
        return [t for t in self.transports if not t.closed]


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def settings():
    """Settings tuned for fast tests."""
    return Settings(
        keepalive_interval_seconds=30.0,
        request_timeout_seconds=1.0,
        reconnect_initial_delay_seconds=0.01,
        reconnect_max_delay_seconds=0.05,
        open_timeout_seconds=1.0,
        close_timeout_seconds=1.0,
        default_market="KRW-BTC",
        default_interval="1",
        channels="ticker",
        stream_queue_size=100,
    )


@pytest.fixture
def eventually():
    """Wait until `predicate()` is true or fail after `timeout` seconds."""
    async def _eventually(predicate, timeout=1.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)
    return _eventually


@pytest.fixture
def make_ticker():
    """Build an Upbit ticker payload."""
    def _make(code="KRW-BTC", price=100.0, ts_ms=1_700_000_000_000, acc_volume=1.0, **overrides):
        payload = {
            "type": "ticker",
            "code": code,
            "opening_price": price,
            "high_price": price,
            "low_price": price,
            "trade_price": price,
            "prev_closing_price": price,
            "acc_trade_price": price * acc_volume,
            "change": "EVEN",
            "change_price": 0.0,
            "signed_change_price": 0.0,
            "change_rate": 0.0,
            "signed_change_rate": 0.0,
            "trade_volume": 0.1,
            "acc_trade_volume": acc_volume,
            "trade_date": "20231114",
            "trade_time": "221320",
            "trade_timestamp": ts_ms,
            "timestamp": ts_ms,
            "stream_type": "REALTIME",
        }
        payload.update(overrides)
        return payload
    return _make


@pytest.fixture
def make_candle():
    """Build an Upbit candle record."""
    def _make(ts_ms, open=100.0, high=110.0, low=90.0, close=105.0, volume=3.5):
        return {
            "market": "KRW-BTC",
            "timestamp": ts_ms,
            "opening_price": open,
            "high_price": high,
            "low_price": low,
            "trade_price": close,
            "candle_acc_trade_volume": volume,
        }
    return _make
