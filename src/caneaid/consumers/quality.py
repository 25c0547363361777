"""
Connection Quality
==================

Derives what the link is actually delivering.

    DISCONNECTED       socket not connected
    ACTIVE_WITH_DATA   connected and now - last_sample <= freshness threshold
    CONNECTED_NO_DATA  connected, but samples are stale or missing

The quality is computed on demand from the state and record channels;
nothing is stored centrally.
"""

import logging
import time
from typing import Callable, Optional

from caneaid.models.sensor import SensorRecord
from caneaid.models.state import ConnectionQuality, ConnectionState, StateChange
from caneaid.stream.broadcaster import EventBroadcaster


logger = logging.getLogger(__name__)


def derive_connection_quality(
    state: ConnectionState,
    last_sample_timestamp: Optional[float],
    now: float,
    freshness_threshold: float,
) -> ConnectionQuality:
    """Three-way link quality from connection state and sample age."""
    if state is not ConnectionState.CONNECTED:
        return ConnectionQuality.DISCONNECTED
    if last_sample_timestamp is not None and now - last_sample_timestamp <= freshness_threshold:
        return ConnectionQuality.ACTIVE_WITH_DATA
    return ConnectionQuality.CONNECTED_NO_DATA


class ConnectionQualityTracker:
    """
    Consumer that follows the state and record channels.

    Example:
        tracker = ConnectionQualityTracker(freshness_threshold=10.0)
        tracker.attach(broadcaster)
        if tracker.quality() is ConnectionQuality.ACTIVE_WITH_DATA:
            ...
    """

    def __init__(
        self,
        freshness_threshold: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if freshness_threshold <= 0:
            raise ValueError("freshness_threshold must be > 0")

        self.freshness_threshold = freshness_threshold
        self._clock = clock
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._last_sample_timestamp: Optional[float] = None
        self._subscriptions: list = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_sample_timestamp(self) -> Optional[float]:
        return self._last_sample_timestamp

    def attach(self, broadcaster: EventBroadcaster) -> None:
        self.detach()
        self._subscriptions = [
            broadcaster.states.subscribe(self.on_state_change),
            broadcaster.records.subscribe(self.on_record),
        ]

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []

    def on_state_change(self, change: StateChange) -> None:
        self._state = change.current

    def on_record(self, record: SensorRecord) -> None:
        self._last_sample_timestamp = record.timestamp

    def is_data_recent(self, now: Optional[float] = None) -> bool:
        if self._last_sample_timestamp is None:
            return False
        now = self._clock() if now is None else now
        return now - self._last_sample_timestamp <= self.freshness_threshold

    def quality(self, now: Optional[float] = None) -> ConnectionQuality:
        return derive_connection_quality(
            self._state,
            self._last_sample_timestamp,
            self._clock() if now is None else now,
            self.freshness_threshold,
        )
