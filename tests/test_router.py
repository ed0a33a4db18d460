"""Tests for event routing."""

import json

import pytest

from upbit_stream.errors import DecodeError
from upbit_stream.models import Unrecognized
from upbit_stream.router import Destination, EventRouter, destination


@pytest.fixture
def router():
    router = EventRouter()
    router.sunk = []
    router.add_ticker_sink(router.sunk.append)
    router.subs = {
        "ticker": router.tickers.subscribe(),
        "trade": router.trades.subscribe(),
        "orderbook": router.orderbooks.subscribe(),
        "message": router.messages.subscribe(),
    }
    return router


def _sizes(router):
    return {name: sub.qsize() for name, sub in router.subs.items()}


def test_destination_is_pure():
    assert destination(Unrecognized("x")) is Destination.MESSAGE
    assert destination(DecodeError("ticker", "{}", "bad")) is None


def test_ticker_goes_to_stream_and_sink(router, make_ticker):
    router.route(json.dumps(make_ticker(price=5.0)))

    assert _sizes(router) == {"ticker": 1, "trade": 0, "orderbook": 0, "message": 0}
    assert router.subs["ticker"].get_nowait().trade_price == 5.0
    assert len(router.sunk) == 1


def test_orderbook_goes_only_to_orderbook_stream(router):
    router.route(json.dumps({
        "type": "orderbook",
        "code": "KRW-BTC",
        "timestamp": 1,
        "total_ask_size": 1.0,
        "total_bid_size": 1.0,
        "orderbook_units": [],
    }))

    assert _sizes(router) == {"ticker": 0, "trade": 0, "orderbook": 1, "message": 0}
    assert router.sunk == []


def test_unrecognized_goes_only_to_messages(router):
    raw = '{"request_id": "abc", "type": "market_all", "data": []}'

    router.route(raw)

    assert _sizes(router) == {"ticker": 0, "trade": 0, "orderbook": 0, "message": 1}
    assert router.subs["message"].get_nowait() == raw


def test_malformed_frame_is_dropped(router, make_ticker):
    payload = make_ticker()
    payload["timestamp"] = "not-a-number"

    frame = router.route(json.dumps(payload))

    assert isinstance(frame, DecodeError)
    assert router.decode_errors == 1
    assert _sizes(router) == {"ticker": 0, "trade": 0, "orderbook": 0, "message": 0}


def test_order_is_preserved_per_stream(router, make_ticker):
    for price in (1.0, 2.0, 3.0):
        router.route(json.dumps(make_ticker(price=price)))
        router.route('{"type": "other"}')

    prices = [router.subs["ticker"].get_nowait().trade_price for _ in range(3)]
    assert prices == [1.0, 2.0, 3.0]
    assert router.subs["message"].qsize() == 3
