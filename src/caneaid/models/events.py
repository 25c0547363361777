"""
Decoded Events
==============

Typed results of decoding one raw frame.

Every frame decodes to exactly one of:
    - SensorEvent: a SensorRecord (tagged or recovered by the fallback)
    - HeartbeatEvent: remote keep-alive
    - StatusEvent: bridge status report
    - ParseError: not JSON, or JSON with no recognizable meaning

Nothing past the dispatcher sees an untyped JSON map.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from caneaid.models.sensor import SensorRecord


class MessageKind(str, Enum):
    """Classification of an inbound frame."""

    HEARTBEAT = "heartbeat"
    SENSOR_DATA = "sensor_data"
    STATUS = "status"
    INVALID_JSON = "invalid_json"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True, slots=True)
class SensorEvent:
    """A decoded sensor sample. `tagged` is False for fallback payloads."""

    record: SensorRecord
    tagged: bool = True

    @property
    def kind(self) -> MessageKind:
        return MessageKind.SENSOR_DATA


@dataclass(frozen=True, slots=True)
class HeartbeatEvent:
    """Keep-alive received from the bridge."""

    received_at: float
    sender: Optional[str] = None
    remote_timestamp: Optional[str] = None

    @property
    def kind(self) -> MessageKind:
        return MessageKind.HEARTBEAT


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """Status report from the bridge."""

    status: str
    received_at: float
    message: Optional[str] = None

    @property
    def kind(self) -> MessageKind:
        return MessageKind.STATUS


@dataclass(frozen=True, slots=True)
class ParseError:
    """
    A frame that could not be interpreted.

    Returned as a value, never raised.

    Attributes:
        kind: INVALID_JSON or UNRECOGNIZED
        reason: Description of the failure
        raw: The offending frame text (truncated)
    """

    kind: MessageKind
    reason: str
    raw: str = ""


@dataclass(frozen=True, slots=True)
class RawFrame:
    """Pre-decode frame text, published for diagnostics."""

    text: str
    received_at: float


DecodedEvent = Union[SensorEvent, HeartbeatEvent, StatusEvent]
DecodeResult = Union[SensorEvent, HeartbeatEvent, StatusEvent, ParseError]
