"""
Outbound Message Schema
=======================

Pydantic models for frames the client sends to the bridge.

Output Contract:
    {"type": "heartbeat_response", "timestamp": "2026-01-01T00:00:00+00:00",
     "client_id": "caneaid-client"}

Arbitrary JSON-serializable objects can also be sent; these models cover
the envelopes the client itself produces.

Example:
    message = HeartbeatResponse.now("caneaid-client")
    await manager.send(message)
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class HeartbeatResponse(BaseModel):
    """Heartbeat frame identifying this client."""

    type: Literal["heartbeat_response"] = "heartbeat_response"
    timestamp: str = Field(
        default_factory=_utc_now_iso,
        description="ISO-8601 send time",
    )
    client_id: str = Field(..., description="Client identifier")

    @classmethod
    def now(cls, client_id: str) -> "HeartbeatResponse":
        return cls(client_id=client_id)


class PingMessage(BaseModel):
    """Application-level ping."""

    type: Literal["ping"] = "ping"
    timestamp: str = Field(default_factory=_utc_now_iso)
    client_id: Optional[str] = None


class DataRequest(BaseModel):
    """Ask the bridge to push a fresh sample for the given sensors."""

    type: Literal["data_request"] = "data_request"
    sensors: List[str] = Field(
        default_factory=lambda: ["color", "distance", "gps"],
        description="Sensors requested",
    )
    timestamp: str = Field(default_factory=_utc_now_iso)
    client_id: Optional[str] = None
