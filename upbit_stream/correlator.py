"""Request/response calls riding on the push stream."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from .codec import encode_request, parse_response
from .errors import CorrelationTimeout, SendFailure, TransportError
from .models import RequestKind, Response
from .pubsub import Broadcast


logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    request_id: str
    kind: RequestKind
    issued_at: float
    future: asyncio.Future = field(repr=False)


class RequestCorrelator:
    """
    Implements one-shot venue calls over the shared socket.

    Each call gets a fresh id and a one-shot slot. The first message on the
    raw-message stream whose `request_id` and `type` both match resolves the
    slot, which is then removed. A slot is also removed on timeout or
    cancellation, so anything arriving for that id afterwards is ignored.
    """

    def __init__(
        self,
        send: Callable[[str], Awaitable[None]],
        messages: Broadcast[str],
        default_timeout: float = 10.0,
    ):
        """
        Initialize the correlator.

        Args:
            send: Writes one text frame to the socket; raises TransportError
            messages: Raw-message stream to watch for responses
            default_timeout: Seconds to wait when `call` gets no timeout
        """
        self._send = send
        self.default_timeout = default_timeout
        self._pending: dict[str, PendingRequest] = {}
        self.ignored_responses = 0
        messages.add_listener(self.handle_message)

    @property
    def pending(self) -> list[PendingRequest]:
        return list(self._pending.values())

    async def call(
        self,
        kind: RequestKind,
        params: Mapping[str, Any],
        timeout: float | None = None,
    ) -> Response:
        """
        Send one tagged request and wait for its response.

        Raises:
            RequestEncodingError: The request could not be serialized (not sent)
            SendFailure: The write failed or the call was cancelled by a disconnect
            CorrelationTimeout: No matching response within `timeout`
            ParseFailure: The matching response has no usable `data`
        """
        timeout = self.default_timeout if timeout is None else timeout
        request_id = str(uuid.uuid4())
        frame = encode_request(kind, params, request_id)
        kind = RequestKind(kind)

        loop = asyncio.get_running_loop()
        pending = PendingRequest(request_id, kind, loop.time(), loop.create_future())
        self._pending[request_id] = pending

        try:
            try:
                await self._send(frame)
            except TransportError as e:
                raise SendFailure(f"{kind.value} request could not be sent: {e}") from e

            logger.debug(f"Awaiting {kind.value} response {request_id} (timeout={timeout}s)")
            try:
                raw = await asyncio.wait_for(pending.future, timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{kind.value} request {request_id} timed out after {timeout}s")
                raise CorrelationTimeout(kind.value, request_id, timeout) from None
        finally:
            self._pending.pop(request_id, None)
            if not pending.future.done():
                pending.future.cancel()

        return parse_response(raw)

    def handle_message(self, raw: str) -> None:
        """Resolve the pending call this message answers, if any."""
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return
        if not isinstance(payload, dict):
            return

        request_id = payload.get("request_id")
        if not isinstance(request_id, str):
            return

        pending = self._pending.get(request_id)
        if pending is None:
            self.ignored_responses += 1
            logger.debug(f"Ignoring response for unknown or expired request {request_id}")
            return
        if payload.get("type") != pending.kind.value:
            return

        del self._pending[request_id]
        if not pending.future.done():
            pending.future.set_result(raw)

    def cancel_all(self, reason: str = "Connection closed") -> int:
        """Fail every in-flight call with `SendFailure`. Returns how many were failed."""
        pending, self._pending = list(self._pending.values()), {}
        for request in pending:
            if not request.future.done():
                request.future.set_exception(
                    SendFailure(f"{request.kind.value} request cancelled: {reason}")
                )
        if pending:
            logger.info(f"Cancelled {len(pending)} in-flight request(s): {reason}")
        return len(pending)
