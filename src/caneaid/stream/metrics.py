"""
Telemetry Statistics
====================

Mutable counters shared by the dispatcher and the connection manager.

Counters survive reconnects. They are cleared only by an explicit
reset (ConnectionManager.reset_reconnection_attempts), while the
reconnect attempt counter alone is also zeroed on every successful
connection.
"""

from typing import Optional


class TelemetryStatistics:
    """Counters for telemetry ingestion observability."""

    __slots__ = (
        "frames_received",
        "frames_decoded",
        "frames_failed",
        "protocol_errors",
        "heartbeats_received",
        "heartbeats_sent",
        "reconnect_attempts",
        "last_sample_timestamp",
        "last_error",
        "last_parse_error",
        "last_remote_status",
    )

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Zero every counter and clear the last-seen fields."""
        self.frames_received: int = 0
        self.frames_decoded: int = 0
        self.frames_failed: int = 0
        self.protocol_errors: int = 0
        self.heartbeats_received: int = 0
        self.heartbeats_sent: int = 0
        self.reconnect_attempts: int = 0
        self.last_sample_timestamp: Optional[float] = None
        self.last_error: Optional[str] = None
        self.last_parse_error: Optional[str] = None
        self.last_remote_status: Optional[str] = None

    def to_dict(self) -> dict:
        """Export statistics as dict."""
        return {
            "frames_received": self.frames_received,
            "frames_decoded": self.frames_decoded,
            "frames_failed": self.frames_failed,
            "protocol_errors": self.protocol_errors,
            "heartbeats_received": self.heartbeats_received,
            "heartbeats_sent": self.heartbeats_sent,
            "reconnect_attempts": self.reconnect_attempts,
            "last_sample_timestamp": self.last_sample_timestamp,
            "last_error": self.last_error,
            "last_parse_error": self.last_parse_error,
            "last_remote_status": self.last_remote_status,
        }
