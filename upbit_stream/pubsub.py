"""One-producer, many-consumer streams with per-consumer buffering."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Generic, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """
    A consumer's private view of a `Broadcast`.

    Each subscription owns its queue. When a bounded queue is full the oldest
    item is dropped, so a slow consumer only ever loses its own backlog.
    """

    def __init__(self, broadcast: "Broadcast[T]", maxsize: int = 0):
        self._broadcast = broadcast
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, item: T) -> None:
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(
                    f"Consumer of '{self._broadcast.name}' is falling behind; "
                    f"{self.dropped} item(s) dropped"
                )
        self._queue.put_nowait(item)

    async def get(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def get_nowait(self) -> T:
        item = self._queue.get_nowait()
        if item is _CLOSED:
            raise asyncio.QueueEmpty
        return item

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Detach from the broadcast and wake any pending iterator."""
        if self.closed:
            return
        self._broadcast._detach(self)
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        return await self.get()

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Broadcast(Generic[T]):
    """
    Fan-out stream. `publish` never blocks.

    Queue subscribers receive every item in publish order. Listeners are plain
    callbacks run inline; they must not block, and an exception in one is
    logged without affecting the others.
    """

    def __init__(self, name: str, maxsize: int = 0):
        self.name = name
        self.maxsize = maxsize
        self._subscriptions: list[Subscription[T]] = []
        self._listeners: list[Callable[[T], None]] = []

    def subscribe(self, maxsize: int | None = None) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(
            self, self.maxsize if maxsize is None else maxsize
        )
        self._subscriptions.append(subscription)
        return subscription

    def add_listener(self, listener: Callable[[T], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[T], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions) + len(self._listeners)

    def publish(self, item: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(item)
            except Exception as e:
                logger.error(f"Listener on '{self.name}' failed: {e}", exc_info=True)
        for subscription in list(self._subscriptions):
            subscription.offer(item)

    def _detach(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
