"""Upbit WebSocket connection lifecycle: connect, keepalive, reconnect."""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Awaitable, Callable

import websockets
from websockets.exceptions import WebSocketException

from .errors import TransportError
from .models import Transport
from .pubsub import Broadcast


logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (
    WebSocketException,
    asyncio.TimeoutError,
    OSError,
)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


Connector = Callable[[str], Awaitable[Transport]]


class ConnectionManager:
    """
    Owns the single streaming socket.

    A supervisor task opens the transport, runs one reader and one keepalive
    task against it, and reconnects with exponential backoff when the transport
    drops, until `disconnect()` is called. Every state transition is published
    on `state_changes`, and `connectivity` carries `state is CONNECTED` for each
    of them.
    """

    def __init__(
        self,
        url: str,
        on_message: Callable[[str | bytes], object],
        *,
        keepalive_interval: float = 30.0,
        open_timeout: float = 30.0,
        close_timeout: float = 10.0,
        auto_reconnect: bool = True,
        reconnect_initial_delay: float = 1.0,
        reconnect_max_delay: float = 60.0,
        connector: Connector | None = None,
    ):
        """
        Initialize the connection manager.

        Args:
            url: WebSocket endpoint
            on_message: Called inline by the reader loop for every inbound frame
            keepalive_interval: Seconds between protocol pings while connected
            open_timeout: Handshake timeout in seconds
            close_timeout: Closing handshake timeout in seconds
            auto_reconnect: Reconnect after a drop or failed handshake
            reconnect_initial_delay: First backoff delay in seconds
            reconnect_max_delay: Backoff cap in seconds
            connector: Opens a transport for a URL (defaults to websockets.connect)
        """
        self.url = url
        self.on_message = on_message
        self.keepalive_interval = keepalive_interval
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.auto_reconnect = auto_reconnect
        self.reconnect_initial_delay = reconnect_initial_delay
        self.reconnect_max_delay = reconnect_max_delay
        self._connector = connector or self._websocket_connector

        self.state = ConnectionState.DISCONNECTED
        self.last_error: TransportError | None = None
        self.connectivity: Broadcast[bool] = Broadcast("connectivity")
        self.state_changes: Broadcast[ConnectionState] = Broadcast("connection-state")

        self._transport: Transport | None = None
        self._supervisor: asyncio.Task | None = None
        self._first_attempt: asyncio.Future | None = None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def connect(self) -> bool:
        """
        Start the connection if it is not already running.

        Returns once the first handshake has settled: True when connected.
        Calling this while a connection is running or being attempted is a no-op.
        """
        if self._supervisor is not None and not self._supervisor.done():
            return self.connected

        self._first_attempt = asyncio.get_running_loop().create_future()
        self._supervisor = asyncio.create_task(self._supervise(), name="upbit-connection")
        return await asyncio.shield(self._first_attempt)

    async def disconnect(self) -> None:
        """Stop reconnecting, close the transport and end in DISCONNECTED."""
        supervisor, self._supervisor = self._supervisor, None
        if supervisor is not None and not supervisor.done():
            supervisor.cancel()
            await asyncio.gather(supervisor, return_exceptions=True)

        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_quietly(transport)
        self._set_state(ConnectionState.DISCONNECTED)

    async def send(self, message: str) -> None:
        """
        Write one text frame.

        Raises:
            TransportError: Not connected, or the write failed. A failed write
                drops the transport so the supervisor can reconnect.
        """
        transport = self._transport
        if transport is None or not self.connected:
            raise TransportError("WebSocket is not connected")
        try:
            await transport.send(message)
        except TRANSPORT_ERRORS as e:
            self.last_error = TransportError(f"WebSocket send failed: {e}")
            logger.error(f"{self.last_error}")
            if self._transport is transport:
                self._transport = None
                self._set_state(ConnectionState.DISCONNECTED)
            await self._close_quietly(transport)
            raise self.last_error from e
        logger.debug(f"Sent frame: {message}")

    async def _websocket_connector(self, url: str) -> Transport:
        # Library pings are off; keepalive is driven by this manager
        return await websockets.connect(
            url,
            open_timeout=self.open_timeout,
            close_timeout=self.close_timeout,
            ping_interval=None,
            max_size=None,
        )

    async def _supervise(self) -> None:
        retry_count = 0
        try:
            while True:
                self._set_state(ConnectionState.CONNECTING)
                logger.info(f"Connecting to Upbit WebSocket: {self.url}")
                try:
                    transport = await asyncio.wait_for(self._connector(self.url), self.open_timeout)
                except TRANSPORT_ERRORS as e:
                    self.last_error = TransportError(f"WebSocket connection failed: {e}")
                    logger.error(f"Upbit WebSocket connection error (attempt {retry_count + 1}): {e}")
                    self._set_state(ConnectionState.DISCONNECTED)
                    self._settle_first_attempt(False)
                else:
                    retry_count = 0
                    self._transport = transport
                    self._set_state(ConnectionState.CONNECTED)
                    self._settle_first_attempt(True)
                    logger.info("Connected to Upbit WebSocket.")
                    try:
                        await self._serve(transport)
                    finally:
                        if self._transport is transport:
                            self._transport = None
                        await self._close_quietly(transport)
                        self._set_state(ConnectionState.DISCONNECTED)

                if not self.auto_reconnect:
                    logger.info("Auto-reconnect disabled; connection supervisor stopping.")
                    return

                # Exponential backoff with jitter
                retry_count += 1
                delay = min(
                    self.reconnect_initial_delay * 2 ** (retry_count - 1)
                    + random.uniform(0, self.reconnect_initial_delay),
                    self.reconnect_max_delay,
                )
                logger.info(f"Reconnecting to Upbit WebSocket in {delay:.1f}s (attempt {retry_count})...")
                await asyncio.sleep(delay)
        finally:
            self._settle_first_attempt(False)

    async def _serve(self, transport: Transport) -> None:
        """Run reader and keepalive until either one ends."""
        reader = asyncio.create_task(self._read(transport), name="upbit-reader")
        keepalive = asyncio.create_task(self._keepalive(transport), name="upbit-keepalive")
        try:
            done, _ = await asyncio.wait({reader, keepalive}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reader, keepalive):
                task.cancel()
            await asyncio.gather(reader, keepalive, return_exceptions=True)

        for task in done:
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                self.last_error = exc if isinstance(exc, TransportError) else TransportError(str(exc))
                logger.error(f"Upbit WebSocket dropped: {exc}")
            elif task is reader:
                logger.warning("Upbit WebSocket closed by server.")

    async def _read(self, transport: Transport) -> None:
        async for message in transport:
            try:
                self.on_message(message)
            except Exception as e:
                logger.error(f"Error processing Upbit message: {e}", exc_info=True)

    async def _keepalive(self, transport: Transport) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            try:
                await transport.ping()
            except TRANSPORT_ERRORS as e:
                raise TransportError(f"Keepalive ping failed: {e}") from e
            logger.debug("Keepalive ping sent")

    async def _close_quietly(self, transport: Transport) -> None:
        try:
            await asyncio.wait_for(transport.close(), self.close_timeout)
        except TRANSPORT_ERRORS as e:
            logger.debug(f"Ignoring error while closing transport: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug(f"Connection state {self.state.value} -> {state.value}")
        self.state = state
        self.state_changes.publish(state)
        self.connectivity.publish(state is ConnectionState.CONNECTED)

    def _settle_first_attempt(self, connected: bool) -> None:
        if self._first_attempt is not None and not self._first_attempt.done():
            self._first_attempt.set_result(connected)
