"""
Event bus for domain events.

Each subscriber owns a bounded queue. When a queue is full the overflow
policy decides what happens: ``drop_oldest`` discards the oldest pending
event, ``block`` makes the publisher wait for the consumer.
"""

import asyncio
import logging
from enum import Enum
from typing import Iterable, List, Optional, Set

from .models import DomainEvent, EventKind

logger = logging.getLogger(__name__)

_CLOSED = object()


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


class Subscription:
    """
    A consumer's view of the event feed.

    Usage:
        sub = bus.subscribe()
        async for event in sub:
            if event.kind == EventKind.STATE_CHANGED:
                ...
    """

    def __init__(
        self,
        bus: "EventBus",
        kinds: Optional[Set[EventKind]] = None,
        maxsize: int = 256,
        overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ):
        self._bus = bus
        self.kinds = kinds
        self.overflow = overflow
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._closed_event = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of events waiting to be consumed."""
        return self._queue.qsize()

    def wants(self, event: DomainEvent) -> bool:
        return self.kinds is None or event.kind in self.kinds

    async def _deliver(self, event: DomainEvent) -> None:
        if self._closed:
            return
        if self.overflow == OverflowPolicy.BLOCK:
            await self._put_blocking(event)
            return
        self._put_dropping(event)

    async def _put_blocking(self, event: DomainEvent) -> None:
        if not self._queue.full():
            self._queue.put_nowait(event)
            return
        # Wait for room, or give up when the subscriber closes
        put = asyncio.ensure_future(self._queue.put(event))
        closed = asyncio.ensure_future(self._closed_event.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            put.cancel()
            closed.cancel()

    def _put_dropping(self, item) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    async def get(self, timeout: Optional[float] = None) -> DomainEvent:
        """
        Wait for the next event.

        Raises:
            StopAsyncIteration: If the subscription was closed
            asyncio.TimeoutError: If no event arrived within ``timeout``
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def get_nowait(self) -> Optional[DomainEvent]:
        """Return the next pending event, or None if there is none."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _CLOSED:
            return None
        return item

    def drain(self) -> List[DomainEvent]:
        """Return all pending events without waiting."""
        events = []
        while True:
            event = self.get_nowait()
            if event is None:
                return events
            events.append(event)

    def close(self) -> None:
        """Detach from the bus and wake any waiting consumer."""
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._closed_event.set()
        self._put_dropping(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> DomainEvent:
        return await self.get()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class EventBus:
    """Fan-out of domain events to subscriptions."""

    def __init__(
        self,
        maxsize: int = 256,
        overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ):
        self.maxsize = maxsize
        self.overflow = overflow
        self._subscriptions: List[Subscription] = []

    def subscribe(
        self,
        kinds: Optional[Iterable[EventKind]] = None,
        maxsize: Optional[int] = None,
        overflow: Optional[OverflowPolicy] = None,
    ) -> Subscription:
        """
        Open a new subscription.

        Args:
            kinds: Only deliver these event kinds (all kinds if None)
            maxsize: Queue bound for this subscriber
            overflow: Overflow policy for this subscriber
        """
        sub = Subscription(
            self,
            kinds=set(kinds) if kinds is not None else None,
            maxsize=maxsize if maxsize is not None else self.maxsize,
            overflow=overflow or self.overflow,
        )
        self._subscriptions.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: DomainEvent) -> None:
        """Deliver an event to every interested subscription, in order."""
        logger.debug(f"Event: {event.kind.value}")
        for sub in list(self._subscriptions):
            if sub.wants(event):
                await sub._deliver(event)

    def close(self) -> None:
        """Close every subscription."""
        for sub in list(self._subscriptions):
            sub.close()
