"""
Consumers
=========

Independent subscribers of the EventBroadcaster.

    - ConnectionQualityTracker: Disconnected / ConnectedNoData / ActiveWithData
    - SampleHistory: Bounded window of recent records
    - ZoneTransitionDetector: Distance zone changes for announcements
"""

from caneaid.consumers.quality import ConnectionQualityTracker, derive_connection_quality
from caneaid.consumers.history import SampleHistory
from caneaid.consumers.zones import ZoneTransition, ZoneTransitionDetector

__all__ = [
    "ConnectionQualityTracker",
    "derive_connection_quality",
    "SampleHistory",
    "ZoneTransition",
    "ZoneTransitionDetector",
]
