"""
Message Dispatcher
==================

Turns one raw text frame into exactly one decoded event.

Decoding order:
    1. Parse JSON. Failure -> ParseError(INVALID_JSON)
    2. Known "type" tag (heartbeat, sensor_data/esp32_data, status)
       -> matching decoder
    3. Otherwise, direct-payload fallback: an object carrying the RGB
       triplet, a distance field or a latitude/longitude pair is decoded
       as an untagged sensor payload
    4. Otherwise -> ParseError(UNRECOGNIZED)

Upstream payload shapes differ between firmware versions, hence the
fallback. It only fires when the shape heuristics are met, so
genuinely malformed input is still reported.

Design Rules:
    - Never raises past decode()
    - Missing numeric fields default to zero; a partial sample is still useful
    - Nested "data" / "sensor_data" objects are unwrapped transparently
    - Increments shared statistics, never publishes
"""

import json
import logging
import math
import time
from typing import Any, Callable, Dict, Optional, Tuple, Union

from caneaid.models.events import (
    DecodeResult,
    HeartbeatEvent,
    MessageKind,
    ParseError,
    SensorEvent,
    StatusEvent,
)
from caneaid.models.sensor import SensorRecord
from caneaid.stream.metrics import TelemetryStatistics


logger = logging.getLogger(__name__)


SENSOR_TYPES = frozenset({"sensor_data", "esp32_data"})

# Nested payload containers, unwrapped in this order
_WRAPPER_KEYS = ("data", "sensor_data")
_MAX_UNWRAP_DEPTH = 4

_RED_KEYS = ("r", "red")
_GREEN_KEYS = ("g", "green")
_BLUE_KEYS = ("b", "blue")
_DISTANCE_KEYS = ("distance", "distance_cm")
_LATITUDE_KEYS = ("latitude", "lat")
_LONGITUDE_KEYS = ("longitude", "lng", "lon")
_FIX_KEYS = ("has_fix", "fix")

_RAW_PREVIEW_CHARS = 200

_MISSING = object()


class MessageDispatcher:
    """
    Decoder for inbound bridge frames.

    Attributes:
        statistics: Shared counters updated on every decode

    Example:
        dispatcher = MessageDispatcher(TelemetryStatistics())
        result = dispatcher.decode('{"r": 10, "g": 20, "b": 30}')
        if isinstance(result, SensorEvent):
            print(result.record.color_name)
    """

    def __init__(
        self,
        statistics: Optional[TelemetryStatistics] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            statistics: Counters to update (a private instance if omitted)
            clock: Source of receipt timestamps
        """
        self.statistics = statistics if statistics is not None else TelemetryStatistics()
        self._clock = clock
        self._decoders: Dict[str, Callable[[dict, float], DecodeResult]] = {
            "heartbeat": self._decode_heartbeat,
            "status": self._decode_status,
        }
        for sensor_type in SENSOR_TYPES:
            self._decoders[sensor_type] = self._decode_tagged_sensor

    def decode(self, raw: Union[str, bytes]) -> DecodeResult:
        """
        Decode one frame.

        Args:
            raw: Frame text (bytes are decoded as UTF-8)

        Returns:
            A decoded event, or ParseError. Never raises.
        """
        self.statistics.frames_received += 1
        received_at = self._clock()

        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = bytes(raw).decode("utf-8")
            except UnicodeDecodeError as e:
                return self._fail(MessageKind.INVALID_JSON, f"Frame is not UTF-8: {e}", "")

        try:
            data = json.loads(raw)
        except (ValueError, TypeError, RecursionError) as e:
            return self._fail(MessageKind.INVALID_JSON, f"Invalid JSON: {e}", raw)

        if not isinstance(data, dict):
            return self._fail(
                MessageKind.UNRECOGNIZED,
                f"Expected a JSON object, got {type(data).__name__}",
                raw,
            )

        message_type = data.get("type")
        decoder = self._decoders.get(message_type) if isinstance(message_type, str) else None

        if decoder is not None:
            result = decoder(data, received_at)
        else:
            payload = _unwrap(data)
            if not _has_sensor_fields(payload):
                reason = (
                    f"Unknown message type: {message_type!r}"
                    if message_type is not None
                    else "No type tag and no recognizable sensor fields"
                )
                return self._fail(MessageKind.UNRECOGNIZED, reason, raw)
            logger.debug("Decoding untagged frame via sensor field fallback")
            result = SensorEvent(
                record=self._build_record(payload, data, received_at),
                tagged=False,
            )

        self.statistics.frames_decoded += 1
        if isinstance(result, SensorEvent):
            self.statistics.last_sample_timestamp = result.record.timestamp
        return result

    # -------------------------------------------------------------------------
    # Tagged decoders
    # -------------------------------------------------------------------------

    def _decode_heartbeat(self, data: dict, received_at: float) -> HeartbeatEvent:
        self.statistics.heartbeats_received += 1
        sender = data.get("client_id") or data.get("server_id") or data.get("sender")
        remote_ts = data.get("timestamp")
        return HeartbeatEvent(
            received_at=received_at,
            sender=str(sender) if sender is not None else None,
            remote_timestamp=str(remote_ts) if remote_ts is not None else None,
        )

    def _decode_status(self, data: dict, received_at: float) -> StatusEvent:
        status = data.get("status")
        if not isinstance(status, str):
            self._protocol_error(f"status message without a string 'status' field: {status!r}")
            status = "unknown"

        message = data.get("message")
        if message is not None and not isinstance(message, str):
            message = str(message)

        self.statistics.last_remote_status = status
        logger.info(f"Bridge status: {status}" + (f" ({message})" if message else ""))
        return StatusEvent(status=status, received_at=received_at, message=message)

    def _decode_tagged_sensor(self, data: dict, received_at: float) -> SensorEvent:
        payload = _unwrap(data)
        if not _has_sensor_fields(payload):
            self._protocol_error(
                f"{data.get('type')} message carries no sensor fields, using defaults"
            )
        return SensorEvent(
            record=self._build_record(payload, data, received_at),
            tagged=True,
        )

    # -------------------------------------------------------------------------
    # Field extraction
    # -------------------------------------------------------------------------

    def _build_record(self, payload: dict, envelope: dict, received_at: float) -> SensorRecord:
        color = payload.get("color") if isinstance(payload.get("color"), dict) else payload
        gps = payload.get("gps") if isinstance(payload.get("gps"), dict) else payload

        red = self._number(color, _RED_KEYS)
        green = self._number(color, _GREEN_KEYS)
        blue = self._number(color, _BLUE_KEYS)

        distance_source = payload
        nested_distance = payload.get("distance")
        if isinstance(nested_distance, dict):
            distance_source = nested_distance
        distance = self._number(distance_source, _DISTANCE_KEYS)

        latitude = self._number(gps, _LATITUDE_KEYS)
        longitude = self._number(gps, _LONGITUDE_KEYS)

        has_fix = _explicit_fix(gps)
        if has_fix is None:
            has_fix = (
                latitude is not None
                and longitude is not None
                and not (latitude == 0.0 and longitude == 0.0)
            )

        source = envelope.get("source", payload.get("source"))
        return SensorRecord(
            red=_channel(red),
            green=_channel(green),
            blue=_channel(blue),
            distance_cm=distance if distance is not None else 0.0,
            latitude=latitude if latitude is not None else 0.0,
            longitude=longitude if longitude is not None else 0.0,
            has_distance=distance is not None,
            has_fix=has_fix,
            timestamp=received_at,
            source=source if source in ("websocket", "bluetooth") else "websocket",
        )

    def _number(self, payload: dict, keys: Tuple[str, ...]) -> Optional[float]:
        """
        First numeric value among keys.

        Returns None when no key is present. A present but non-numeric
        value counts as a protocol error and yields 0.0.
        """
        for key in keys:
            value = payload.get(key, _MISSING)
            if value is _MISSING or value is None:
                continue
            number = _to_number(value)
            if number is None:
                self._protocol_error(f"field {key!r} is not numeric: {value!r}")
                return 0.0
            return number
        return None

    # -------------------------------------------------------------------------
    # Failure accounting
    # -------------------------------------------------------------------------

    def _fail(self, kind: MessageKind, reason: str, raw: str) -> ParseError:
        self.statistics.frames_failed += 1
        self.statistics.last_parse_error = reason
        logger.warning(f"Failed to decode frame ({kind.value}): {reason}")
        return ParseError(kind=kind, reason=reason, raw=raw[:_RAW_PREVIEW_CHARS])

    def _protocol_error(self, reason: str) -> None:
        self.statistics.protocol_errors += 1
        logger.warning(f"Protocol error: {reason}")


def _unwrap(data: dict) -> dict:
    """Descend into nested data/sensor_data objects."""
    payload = data
    for _ in range(_MAX_UNWRAP_DEPTH):
        for key in _WRAPPER_KEYS:
            inner = payload.get(key)
            if isinstance(inner, dict):
                payload = inner
                break
        else:
            return payload
    return payload


def _has_key(payload: dict, keys: Tuple[str, ...]) -> bool:
    return any(payload.get(key) is not None for key in keys)


def _has_sensor_fields(payload: dict) -> bool:
    """Shape heuristic: RGB triplet, a distance field, or a lat/lon pair."""
    color = payload.get("color") if isinstance(payload.get("color"), dict) else payload
    gps = payload.get("gps") if isinstance(payload.get("gps"), dict) else payload

    has_rgb = (
        _has_key(color, _RED_KEYS)
        and _has_key(color, _GREEN_KEYS)
        and _has_key(color, _BLUE_KEYS)
    )
    has_distance = payload.get("distance") is not None or payload.get("distance_cm") is not None
    has_position = _has_key(gps, _LATITUDE_KEYS) and _has_key(gps, _LONGITUDE_KEYS)
    return has_rgb or has_distance or has_position


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _channel(value: Optional[float]) -> int:
    # Truncate toward zero before clamping, as int() does for the wire's floats
    if value is None:
        return 0
    return int(value)


def _explicit_fix(payload: dict) -> Optional[bool]:
    for key in _FIX_KEYS:
        value = payload.get(key)
        if isinstance(value, bool):
            return value
    return None
