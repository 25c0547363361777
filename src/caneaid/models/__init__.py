"""
Data Models
===========

Typed models for the CaneAID telemetry core.

Models:
    Sensor:
        - SensorRecord: Immutable telemetry sample with derived classifications
        - DistanceZone: Obstacle proximity bands

    State:
        - ConnectionState: Bridge connection lifecycle
        - ConnectionQuality: Derived link quality view
        - StateChange: Published state transition

    Events:
        - SensorEvent, HeartbeatEvent, StatusEvent: Decoded frames
        - ParseError: Undecodable frame
        - RawFrame: Pre-decode frame text

    Outbound:
        - HeartbeatResponse, PingMessage, DataRequest
"""

from caneaid.models.sensor import DistanceZone, SensorRecord, classify_distance
from caneaid.models.state import ConnectionQuality, ConnectionState, StateChange
from caneaid.models.events import (
    DecodeResult,
    HeartbeatEvent,
    MessageKind,
    ParseError,
    RawFrame,
    SensorEvent,
    StatusEvent,
)
from caneaid.models.outbound import DataRequest, HeartbeatResponse, PingMessage

__all__ = [
    # Sensor
    "SensorRecord",
    "DistanceZone",
    "classify_distance",
    # State
    "ConnectionState",
    "ConnectionQuality",
    "StateChange",
    # Events
    "MessageKind",
    "SensorEvent",
    "HeartbeatEvent",
    "StatusEvent",
    "ParseError",
    "RawFrame",
    "DecodeResult",
    # Outbound
    "HeartbeatResponse",
    "PingMessage",
    "DataRequest",
]
