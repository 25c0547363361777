"""
Zone Transitions
================

Detects changes of obstacle distance zone across consecutive records.

Announcement layers (speech, haptics) subscribe to the transitions
channel instead of comparing raw distances themselves. Records without
a distance sample are ignored and do not reset the current zone.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from caneaid.models.sensor import DistanceZone, SensorRecord
from caneaid.stream.broadcaster import Channel, EventBroadcaster, Subscription


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ZoneTransition:
    """
    One change of distance zone.

    Attributes:
        previous: Zone before the change (None for the first sample)
        current: Zone of the triggering record
        record: The record that caused the change
    """

    previous: Optional[DistanceZone]
    current: DistanceZone
    record: SensorRecord

    @property
    def obstacle_entered(self) -> bool:
        was_obstacle = self.previous is not None and self.previous.is_obstacle
        return self.current.is_obstacle and not was_obstacle

    @property
    def obstacle_cleared(self) -> bool:
        return self.previous is not None and self.previous.is_obstacle and not self.current.is_obstacle

    @property
    def approaching(self) -> bool:
        """True when the new zone is closer than the previous one."""
        if self.previous is None:
            return self.current.is_obstacle
        order = list(DistanceZone)
        return order.index(self.current) < order.index(self.previous)


class ZoneTransitionDetector:
    """
    Record consumer publishing ZoneTransition events.

    Example:
        detector = ZoneTransitionDetector()
        detector.attach(broadcaster)
        detector.transitions.subscribe(announce)
    """

    def __init__(self) -> None:
        self.transitions: Channel[ZoneTransition] = Channel("zone_transitions")
        self._current: Optional[DistanceZone] = None
        self._subscription: Optional[Subscription] = None

    @property
    def current_zone(self) -> Optional[DistanceZone]:
        return self._current

    def attach(self, broadcaster: EventBroadcaster) -> None:
        self.detach()
        self._subscription = broadcaster.records.subscribe(self.on_record)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def reset(self) -> None:
        self._current = None

    def on_record(self, record: SensorRecord) -> None:
        zone = record.distance_zone
        if zone is None or zone is self._current:
            return

        transition = ZoneTransition(previous=self._current, current=zone, record=record)
        self._current = zone
        logger.debug(
            f"Distance zone changed: "
            f"{transition.previous.value if transition.previous else None} -> {zone.value}"
        )
        self.transitions.publish(transition)
