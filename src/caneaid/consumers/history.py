"""
Sample History
==============

Bounded in-memory window of the most recent sensor records.

Oldest records fall off when the window is full. Nothing is persisted.
"""

from collections import deque
from typing import List, Optional

from caneaid.models.sensor import SensorRecord
from caneaid.stream.broadcaster import EventBroadcaster, Subscription


class SampleHistory:
    """Last max_samples records, oldest first."""

    def __init__(self, max_samples: int = 100) -> None:
        if max_samples < 1:
            raise ValueError("max_samples must be >= 1")
        self._records: deque = deque(maxlen=max_samples)
        self._subscription: Optional[Subscription] = None

    @property
    def max_samples(self) -> int:
        return self._records.maxlen

    @property
    def latest(self) -> Optional[SensorRecord]:
        return self._records[-1] if self._records else None

    def __len__(self) -> int:
        return len(self._records)

    def attach(self, broadcaster: EventBroadcaster) -> None:
        self.detach()
        self._subscription = broadcaster.records.subscribe(self.append)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def append(self, record: SensorRecord) -> None:
        self._records.append(record)

    def snapshot(self, limit: Optional[int] = None) -> List[SensorRecord]:
        """Copy of the window, optionally only the newest `limit` records."""
        records = list(self._records)
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    def clear(self) -> int:
        cleared = len(self._records)
        self._records.clear()
        return cleared
