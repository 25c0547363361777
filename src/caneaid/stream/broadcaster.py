"""
Event Broadcaster
=================

Publish/subscribe hub between the connection manager and its consumers.

Channels:
    - states: every ConnectionState transition (StateChange), in order
    - records: every decoded SensorRecord, in arrival order
    - frames: raw pre-decode frame text (RawFrame), for diagnostics

Design Rules:
    - Fan-out: every current subscriber receives every item
    - No replay: a late subscriber only sees items published after it joined
    - Subscribe/unsubscribe are symmetric and idempotent
    - An unsubscribed consumer is no longer referenced by the channel
    - A failing subscriber is logged and never affects the publisher
      or the other subscribers
"""

import logging
from typing import Callable, Generic, List, Optional, TypeVar

from caneaid.models.events import RawFrame
from caneaid.models.sensor import SensorRecord
from caneaid.models.state import StateChange
from caneaid.stream.buffer import SubscriberQueue


logger = logging.getLogger(__name__)

T = TypeVar("T")

Callback = Callable[[T], None]


class Subscription(Generic[T]):
    """Handle returned by Channel.subscribe. close() unsubscribes."""

    __slots__ = ("_channel", "_callback")

    def __init__(self, channel: "Channel[T]", callback: Callback) -> None:
        self._channel: Optional["Channel[T]"] = channel
        self._callback: Optional[Callback] = callback

    @property
    def active(self) -> bool:
        return self._channel is not None and self._channel.is_subscribed(self._callback)

    def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._channel is not None and self._callback is not None:
            self._channel.unsubscribe(self._callback)
        self._channel = None
        self._callback = None


class QueueSubscription(Generic[T]):
    """
    Async-iterable channel subscription backed by a SubscriberQueue.

    Iteration ends once the subscription is closed, either directly or
    by Channel.clear() at shutdown.

    Example:
        async with broadcaster.records.listen(maxsize=50) as records:
            async for record in records:
                print(record.summary)
    """

    def __init__(self, channel: "Channel[T]", maxsize: int) -> None:
        self.queue: SubscriberQueue = SubscriberQueue(maxsize=maxsize)
        self._channel: Optional["Channel[T]"] = channel
        self._subscription: Optional[Subscription] = channel.subscribe(self.queue.put)

    @property
    def active(self) -> bool:
        return self._subscription is not None

    async def get(self, timeout: Optional[float] = None) -> Optional[T]:
        return await self.queue.get(timeout=timeout)

    def close(self) -> None:
        """Unsubscribe and wake any reader. Safe to call more than once."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._channel is not None:
            self._channel._release(self)
            self._channel = None
        self.queue.close()

    def __aiter__(self) -> "QueueSubscription[T]":
        return self

    async def __anext__(self) -> T:
        item = await self.queue.get()
        if item is None and self.queue.closed:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "QueueSubscription[T]":
        return self

    async def __aexit__(self, *args) -> None:
        self.close()


class Channel(Generic[T]):
    """
    One independent fan-out stream.

    Subscribers are plain callables invoked synchronously, in
    subscription order, for each published item.

    Example:
        channel = Channel("records")
        subscription = channel.subscribe(print)
        channel.publish(record)
        subscription.close()
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: List[Callback] = []
        self._published: int = 0
        self._subscriber_errors: int = 0
        self._listeners: List[QueueSubscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def published_count(self) -> int:
        return self._published

    def is_subscribed(self, callback: Optional[Callback]) -> bool:
        return callback is not None and any(cb == callback for cb in self._subscribers)

    def subscribe(self, callback: Callback) -> Subscription:
        """
        Register a consumer.

        Subscribing an already-registered callback is a no-op and
        returns a new handle for the same registration.
        """
        if not self.is_subscribed(callback):
            self._subscribers.append(callback)
            logger.debug(f"Channel '{self.name}': subscriber added ({len(self._subscribers)} total)")
        return Subscription(self, callback)

    def unsubscribe(self, callback: Callback) -> bool:
        """
        Remove a consumer.

        Returns:
            True if it was subscribed, False if it was not (no-op).
        """
        for index, cb in enumerate(self._subscribers):
            if cb == callback:
                del self._subscribers[index]
                logger.debug(f"Channel '{self.name}': subscriber removed ({len(self._subscribers)} left)")
                return True
        return False

    def listen(self, maxsize: int = 50) -> QueueSubscription:
        """Subscribe through a bounded drop-oldest queue."""
        listener = QueueSubscription(self, maxsize)
        self._listeners.append(listener)
        return listener

    def _release(self, listener: QueueSubscription) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, item: T) -> None:
        """Deliver item to every current subscriber."""
        self._published += 1
        # Snapshot so subscribers may (un)subscribe during delivery
        for callback in list(self._subscribers):
            try:
                callback(item)
            except Exception:
                self._subscriber_errors += 1
                logger.exception(f"Channel '{self.name}': subscriber {callback!r} failed")

    def clear(self) -> None:
        """Drop every subscriber and end every listen() stream."""
        for listener in list(self._listeners):
            listener.close()
        self._subscribers.clear()

    def metrics(self) -> dict:
        return {
            "subscribers": len(self._subscribers),
            "published": self._published,
            "subscriber_errors": self._subscriber_errors,
            "listeners": len(self._listeners),
            "listener_drops": sum(listener.queue.dropped_count for listener in self._listeners),
        }


class EventBroadcaster:
    """
    The three telemetry channels.

    Attributes:
        states: Connection state transitions
        records: Decoded sensor records
        frames: Raw frames, independent of decode success
    """

    def __init__(self) -> None:
        self.states: Channel[StateChange] = Channel("states")
        self.records: Channel[SensorRecord] = Channel("records")
        self.frames: Channel[RawFrame] = Channel("frames")

    def close(self) -> None:
        """Drop every subscriber on every channel."""
        for channel in (self.states, self.records, self.frames):
            channel.clear()

    def metrics(self) -> dict:
        return {
            "states": self.states.metrics(),
            "records": self.records.metrics(),
            "frames": self.frames.metrics(),
        }
