"""Cancellable queue-backed subscriptions for live engine output."""

from __future__ import annotations

import asyncio
from typing import Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """
    A single consumer's view of a feed.

    Iterate with ``async for``; iteration ends when the subscription is
    closed, either by the consumer or by the publishing engine.
    """

    def __init__(self, broadcaster: "Broadcaster[T]", maxsize: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, item: object) -> None:
        # Slow consumers lose the oldest update, never block the publisher
        if self._queue.full():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(item)

    async def get(self, timeout: Optional[float] = None) -> T:
        """
        Wait for the next value.

        Raises:
            StopAsyncIteration: If the subscription is closed
            asyncio.TimeoutError: If no value arrives within ``timeout``
        """
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            self._closed = True
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def close(self) -> None:
        """Detach from the feed and wake any pending reader."""
        if self._closed:
            return
        self._closed = True
        self._broadcaster._detach(self)
        self._offer(_CLOSED)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        return await self.get()


class Broadcaster(Generic[T]):
    """Fan-out of published values to every open subscription."""

    def __init__(self, name: str, maxsize: int = 64) -> None:
        self.name = name
        self._maxsize = maxsize
        self._subscribers: list[Subscription[T]] = []

    def subscribe(self) -> Subscription[T]:
        sub: Subscription[T] = Subscription(self, self._maxsize)
        self._subscribers.append(sub)
        logger.debug("feed_subscribed", feed=self.name, subscribers=len(self._subscribers))
        return sub

    def publish(self, value: T) -> None:
        for sub in list(self._subscribers):
            sub._offer(value)

    def close(self) -> None:
        """Close every subscription."""
        for sub in list(self._subscribers):
            sub.close()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _detach(self, sub: Subscription[T]) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
