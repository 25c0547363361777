"""
Sensor Record Model
===================

Canonical representation of one telemetry sample from the wearable.

A SensorRecord is built once per decoded frame and never mutated. All
classifications (brightness, distance zone, obstacle flag, color name)
are pure functions of the stored fields.

Wire Shape (untagged payload):
    {"r": 255, "g": 128, "b": 64, "distance": 50,
     "latitude": 23.7808, "longitude": 90.2792}

Design Rules:
    - Color channels are clamped to [0, 255] at construction
    - Coordinates are clamped to [-90, 90] / [-180, 180]
    - Distance is never negative
    - A missing distance sample or GPS fix is an explicit flag,
      never inferred from a zero value downstream
    - timestamp is assigned by the client on receipt, not read from the wire
"""

import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class DistanceZone(str, Enum):
    """
    Obstacle proximity bands.

    Intervals are half-open: a reading exactly on a boundary belongs
    to the farther zone (20.0cm is CLOSE, 50.0cm is MEDIUM).
    """

    VERY_CLOSE = "very_close"
    CLOSE = "close"
    MEDIUM = "medium"
    FAR = "far"
    VERY_FAR = "very_far"

    @property
    def is_obstacle(self) -> bool:
        return self in (DistanceZone.VERY_CLOSE, DistanceZone.CLOSE)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


# Upper bounds (exclusive) in centimeters
DISTANCE_VERY_CLOSE_CM = 20.0
DISTANCE_CLOSE_CM = 50.0
DISTANCE_MEDIUM_CM = 100.0
DISTANCE_FAR_CM = 200.0

SAFE_DISTANCE_CM = 100.0

_ZONE_BOUNDS = (
    (DISTANCE_VERY_CLOSE_CM, DistanceZone.VERY_CLOSE),
    (DISTANCE_CLOSE_CM, DistanceZone.CLOSE),
    (DISTANCE_MEDIUM_CM, DistanceZone.MEDIUM),
    (DISTANCE_FAR_CM, DistanceZone.FAR),
)


def classify_distance(distance_cm: float) -> DistanceZone:
    """Map a distance in centimeters to its proximity zone."""
    for upper, zone in _ZONE_BOUNDS:
        if distance_cm < upper:
            return zone
    return DistanceZone.VERY_FAR


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_channel(value: object) -> int:
    """
    Clamp a color channel to [0, 255].

    Non-numeric, boolean or non-finite input yields 0.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return int(_clamp(int(value), 0, 255))


def color_name(red: int, green: int, blue: int) -> str:
    """Coarse color bucket used for spoken color announcements."""
    if red > 200 and green > 200 and blue > 200:
        return "White"
    if red < 50 and green < 50 and blue < 50:
        return "Black"
    if red > 150 and green < 100 and blue < 100:
        return "Red"
    if red < 100 and green > 150 and blue < 100:
        return "Green"
    if red < 100 and green < 100 and blue > 150:
        return "Blue"
    if red > 150 and green > 150 and blue < 100:
        return "Yellow"
    if red > 150 and green < 100 and blue > 150:
        return "Magenta"
    if red < 100 and green > 150 and blue > 150:
        return "Cyan"
    if red > 150 and green > 100 and blue < 100:
        return "Orange"
    if red > 100 and green < 150 and blue > 100:
        return "Purple"
    return "Unknown"


@dataclass(frozen=True, slots=True)
class SensorRecord:
    """
    One telemetry sample.

    Immutable (frozen) with structural equality: two records with the
    same field values compare equal.

    Attributes:
        red: Red channel, 0-255
        green: Green channel, 0-255
        blue: Blue channel, 0-255
        distance_cm: Obstacle distance in centimeters (0.0 when absent)
        latitude: Degrees, -90..90
        longitude: Degrees, -180..180
        has_distance: Whether the frame carried a distance sample
        has_fix: Whether latitude/longitude come from a real GPS fix
        timestamp: UNIX seconds when the client received the frame
        source: Link that produced the record ("websocket" or "bluetooth")
    """

    red: int = 0
    green: int = 0
    blue: int = 0
    distance_cm: float = 0.0
    latitude: float = 0.0
    longitude: float = 0.0
    has_distance: bool = False
    has_fix: bool = False
    timestamp: float = field(default_factory=time.time)
    source: str = "websocket"

    def __post_init__(self) -> None:
        # Frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "red", clamp_channel(self.red))
        object.__setattr__(self, "green", clamp_channel(self.green))
        object.__setattr__(self, "blue", clamp_channel(self.blue))
        object.__setattr__(self, "distance_cm", max(0.0, _finite(self.distance_cm)))
        object.__setattr__(self, "latitude", _clamp(_finite(self.latitude), -90.0, 90.0))
        object.__setattr__(self, "longitude", _clamp(_finite(self.longitude), -180.0, 180.0))

    # -------------------------------------------------------------------------
    # Derived classifications
    # -------------------------------------------------------------------------

    @property
    def brightness(self) -> float:
        """Perceived luminance in [0.0, 1.0]."""
        return (0.299 * self.red + 0.587 * self.green + 0.114 * self.blue) / 255.0

    @property
    def is_dark(self) -> bool:
        return self.brightness < 0.5

    @property
    def distance_zone(self) -> Optional[DistanceZone]:
        """Proximity zone, or None when the record has no distance sample."""
        if not self.has_distance:
            return None
        return classify_distance(self.distance_cm)

    @property
    def is_obstacle(self) -> bool:
        zone = self.distance_zone
        return zone is not None and zone.is_obstacle

    @property
    def is_safe(self) -> bool:
        return self.has_distance and self.distance_cm > SAFE_DISTANCE_CM

    @property
    def color_name(self) -> str:
        return color_name(self.red, self.green, self.blue)

    @property
    def hex_color(self) -> str:
        return f"#{self.red:02x}{self.green:02x}{self.blue:02x}"

    @property
    def rgb_string(self) -> str:
        return f"RGB({self.red}, {self.green}, {self.blue})"

    @property
    def coordinates_string(self) -> str:
        if not self.has_fix:
            return "No GPS fix"
        return f"{self.latitude:.4f}, {self.longitude:.4f}"

    @property
    def captured_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def summary(self) -> str:
        """One-line human readable summary."""
        parts = []
        if self.has_distance:
            parts.append(f"Distance: {self.distance_cm:.1f}cm")
        parts.append(f"Color: {self.color_name} {self.rgb_string}")
        parts.append(f"GPS: {self.coordinates_string}")
        return " | ".join(parts)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_payload(self) -> dict:
        """Untagged wire payload, accepted back by the dispatcher fallback."""
        payload = {"r": self.red, "g": self.green, "b": self.blue}
        if self.has_distance:
            payload["distance"] = self.distance_cm
        payload["latitude"] = self.latitude
        payload["longitude"] = self.longitude
        payload["has_fix"] = self.has_fix
        return payload

    def to_dict(self) -> dict:
        """Full representation including derived values."""
        zone = self.distance_zone
        return {
            "timestamp": self.timestamp,
            "captured_at": self.captured_at.isoformat(),
            "source": self.source,
            "r": self.red,
            "g": self.green,
            "b": self.blue,
            "hex": self.hex_color,
            "color_name": self.color_name,
            "brightness": round(self.brightness, 4),
            "is_dark": self.is_dark,
            "distance_cm": self.distance_cm if self.has_distance else None,
            "distance_zone": zone.value if zone else None,
            "is_obstacle": self.is_obstacle,
            "latitude": self.latitude if self.has_fix else None,
            "longitude": self.longitude if self.has_fix else None,
            "has_fix": self.has_fix,
        }

    def __repr__(self) -> str:
        return (
            f"SensorRecord(rgb=({self.red}, {self.green}, {self.blue}), "
            f"distance={self.distance_cm if self.has_distance else None}, "
            f"fix={self.has_fix}, timestamp={self.timestamp:.3f})"
        )


def _finite(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    value = float(value)
    return value if math.isfinite(value) else 0.0
