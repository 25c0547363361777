"""
Connection State Models
=======================

Lifecycle states of the bridge connection and the derived quality view.

State Machine:
    DISCONNECTED --connect()--> CONNECTING --opened--> CONNECTED
    CONNECTED --close/error--> RECONNECTING --timer--> CONNECTING
    CONNECTING --failure--> ERROR --(auto-reconnect)--> RECONNECTING
    any --disconnect()--> DISCONNECTED

Only CONNECTED allows sends and heartbeats.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ConnectionState(str, Enum):
    """
    Lifecycle state of the single bridge connection.

    Attributes:
        DISCONNECTED: No transport, no reconnect pending
        CONNECTING: Transport open in progress
        CONNECTED: Transport open, frames flowing
        RECONNECTING: Waiting on the backoff timer
        ERROR: Last attempt failed (terminal once attempts are exhausted)
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class ConnectionQuality(str, Enum):
    """
    What the link is actually delivering.

    An open socket with no recent samples is materially different
    from one carrying live data.
    """

    DISCONNECTED = "disconnected"
    CONNECTED_NO_DATA = "connected_no_data"
    ACTIVE_WITH_DATA = "active_with_data"


@dataclass(frozen=True, slots=True)
class StateChange:
    """
    One published connection state transition.

    Attributes:
        previous: State before the transition
        current: State after the transition
        reason: Human readable cause
        attempt: Reconnect attempt number at the time of the change
        delay: Scheduled reconnect delay in seconds (RECONNECTING only)
        terminal: True when automatic reconnection has given up
        timestamp: UNIX seconds of the transition
    """

    previous: ConnectionState
    current: ConnectionState
    reason: str = ""
    attempt: int = 0
    delay: Optional[float] = None
    terminal: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "previous": self.previous.value,
            "current": self.current.value,
            "reason": self.reason,
            "attempt": self.attempt,
            "delay": self.delay,
            "terminal": self.terminal,
            "timestamp": self.timestamp,
        }
