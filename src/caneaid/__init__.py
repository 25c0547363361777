"""
CaneAID Telemetry
=================

Telemetry ingestion core for the CaneAID assistive client.

A wearable streams color, obstacle distance and GPS readings through a
bridge server. This package keeps one resilient WebSocket connection to
that bridge, decodes every frame into a canonical SensorRecord and fans
records out to any number of independent consumers.

Components:
    - models: SensorRecord, connection states, decoded events
    - stream: Connection manager, dispatcher, broadcaster
    - consumers: Quality tracking, sample history, zone transitions
    - service: TelemetryClient composition root
    - main: FastAPI surface

Example:
    from caneaid.config import load_config
    from caneaid.service import TelemetryClient

    client = TelemetryClient(load_config())
    await client.start()
"""

__version__ = "0.1.0"
__author__ = "CaneAID Project"

__all__ = [
    "__version__",
]
