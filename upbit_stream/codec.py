"""Wire codec for the Upbit WebSocket JSON envelope."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from .errors import DecodeError, ParseFailure, RequestEncodingError
from .models import (
    Bar,
    Channel,
    Frame,
    MarketInfo,
    OrderBookSnapshot,
    RequestKind,
    Response,
    Ticker,
    Trade,
    Unrecognized,
)
from .utils.timeframes import bucket_start


logger = logging.getLogger(__name__)

EVENT_MODELS = {
    Channel.TICKER.value: Ticker,
    Channel.TRADE.value: Trade,
    Channel.ORDERBOOK.value: OrderBookSnapshot,
}

REQUEST_PARAMS = ("market", "timeframe", "count", "is_details")


def _dumps(payload: Any) -> str:
    try:
        return json.dumps(payload, allow_nan=False, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise RequestEncodingError(f"Cannot serialize frame: {e}") from e


def encode_subscriptions(
    channels: Mapping[Channel | str, Iterable[str]],
    *,
    ticket: str | None = None,
    only_snapshot: bool | None = None,
    only_realtime: bool | None = None,
    fmt: str | None = None,
) -> str:
    """
    Encode one subscribe frame covering several channels.

    The venue replaces a connection's whole subscription set on every frame,
    so all wanted channels have to travel together under one ticket.
    """
    if not channels:
        raise RequestEncodingError("At least one channel is required")

    frame: list[dict[str, Any]] = [{"ticket": ticket or str(uuid.uuid4())}]
    for channel, instruments in channels.items():
        try:
            name = Channel(channel).value
        except ValueError as e:
            raise RequestEncodingError(f"Unknown channel: {channel!r}") from e
        codes = list(instruments)
        if not codes:
            raise RequestEncodingError(f"No instruments given for channel '{name}'")
        block: dict[str, Any] = {"type": name, "codes": codes}
        if only_snapshot is not None:
            block["is_only_snapshot"] = only_snapshot
        if only_realtime is not None:
            block["is_only_realtime"] = only_realtime
        frame.append(block)
    if fmt is not None:
        frame.append({"format": fmt})
    return _dumps(frame)


def encode_subscribe(channel: Channel | str, instruments: Iterable[str], **options: Any) -> str:
    """Encode a subscribe frame for a single channel."""
    return encode_subscriptions({Channel(channel): instruments}, **options)


def encode_request(kind: RequestKind | str, params: Mapping[str, Any], request_id: str) -> str:
    """Encode a tagged one-shot request. `None` params are omitted."""
    unknown = set(params) - set(REQUEST_PARAMS)
    if unknown:
        raise RequestEncodingError(f"Unsupported request parameters: {sorted(unknown)}")

    try:
        kind = RequestKind(kind)
    except ValueError as e:
        raise RequestEncodingError(f"Unknown request kind: {kind!r}") from e

    payload: dict[str, Any] = {"request_id": request_id, "type": kind.value}
    for key in REQUEST_PARAMS:
        if params.get(key) is not None:
            payload[key] = params[key]
    return _dumps(payload)


def decode(raw: str | bytes) -> Frame:
    """
    Decode one inbound frame.

    Anything that is not a known push channel comes back as `Unrecognized`
    with the raw text untouched; a known channel with a bad payload comes back
    as a `DecodeError` value.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            return DecodeError("binary", repr(raw[:64]), f"not UTF-8: {e}")
    else:
        text = raw

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return Unrecognized(text)

    if not isinstance(data, dict):
        return Unrecognized(text)

    kind = data.get("type")
    model = EVENT_MODELS.get(kind) if isinstance(kind, str) else None
    if model is None:
        return Unrecognized(text)

    try:
        return model.model_validate(data)
    except ValidationError as e:
        return DecodeError(kind, text, f"{e.error_count()} invalid field(s): {e.errors()[0]['loc']}")


def parse_response(raw: str) -> Response:
    """Parse a correlated response envelope."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"Response is not JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ParseFailure("Response is not a JSON object")

    data = payload.get("data")
    if not isinstance(data, list):
        raise ParseFailure("Response carries no 'data' array")

    try:
        kind = RequestKind(payload.get("type"))
    except ValueError as e:
        raise ParseFailure(f"Unknown response type: {payload.get('type')!r}") from e

    return Response(
        request_id=str(payload.get("request_id")),
        kind=kind,
        data=[record for record in data if isinstance(record, dict)],
    )


def parse_candles(records: Iterable[Mapping[str, Any]], interval_seconds: int) -> list[Bar]:
    """
    Convert candle records into a sorted series bucketed to `interval_seconds`.

    Records missing a field are skipped. When two records fall into the same
    bucket the later one wins.
    """
    bars: dict[int, Bar] = {}
    skipped = 0
    for record in records:
        try:
            ts = int(float(record["timestamp"]) // 1000)
            bar = Bar(
                time=bucket_start(ts, interval_seconds),
                open=float(record["opening_price"]),
                high=float(record["high_price"]),
                low=float(record["low_price"]),
                close=float(record["trade_price"]),
                volume=float(record["candle_acc_trade_volume"]),
            )
        except (KeyError, TypeError, ValueError):
            skipped += 1
            continue
        bars[bar.time] = bar

    if skipped:
        logger.debug(f"Skipped {skipped} malformed candle record(s)")
    return [bars[t] for t in sorted(bars)]


def parse_markets(records: Iterable[Mapping[str, Any]]) -> list[MarketInfo]:
    """Convert catalog records into `MarketInfo`, skipping malformed ones."""
    markets = []
    for record in records:
        try:
            markets.append(MarketInfo.model_validate(record))
        except ValidationError:
            continue
    return markets
