"""
Subscriber Queue
================

Bounded queue behind an async channel subscription.

Async consumers (WebSocket fan-out, the monitor script) read published
items from a SubscriberQueue instead of registering a callback. The
publisher never waits: when the queue is full the oldest item is
dropped.

Design Rules:
    - put() is synchronous and never blocks the publisher
    - Overflow drops the oldest queued item
    - close() wakes every waiting reader; items queued before it are
      still delivered, then get() returns None
"""

import asyncio
import logging
from typing import Generic, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class SubscriberQueue(Generic[T]):
    """
    Bounded drop-oldest queue with an end-of-stream marker.

    Example:
        queue = SubscriberQueue(maxsize=50)
        queue.put(record)          # from a channel callback
        record = await queue.get()
        queue.close()              # readers see None once drained
    """

    def __init__(self, maxsize: int = 50) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._dropped_count: int = 0
        self._closed: bool = False

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    @property
    def size(self) -> int:
        """Queued items, including the end-of-stream marker once closed."""
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item: T) -> bool:
        """
        Queue item for the reader.

        Returns:
            False if the oldest item was dropped to make room or the
            queue is closed, True otherwise.
        """
        if self._closed:
            return False
        dropped = self._make_room()
        self._queue.put_nowait(item)
        return not dropped

    def close(self) -> None:
        """End the stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._make_room()
        self._queue.put_nowait(_CLOSED)

    async def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Next item.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            The item, or None on timeout or after close().
        """
        try:
            if timeout is None:
                item = await self._queue.get()
            else:
                item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

        if item is _CLOSED:
            # Leave the marker for the next reader
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def _make_room(self) -> bool:
        if not self._queue.full():
            return False
        self._queue.get_nowait()
        self._dropped_count += 1
        logger.debug(f"Subscriber queue full, dropped oldest item ({self._dropped_count} total)")
        return True
