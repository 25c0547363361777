"""
Stream Module
=============

Bridge connection, frame decoding and event distribution.

This module provides the ingestion layer of the telemetry client:
    - MessageDispatcher: Raw frame -> typed event (never raises)
    - EventBroadcaster: states / records / frames fan-out channels
    - ConnectionManager: WebSocket lifecycle with backoff and heartbeats
    - TelemetryStatistics: Shared ingestion counters
    - SubscriberQueue: Drop-oldest queue behind async subscriptions

Example:
    from caneaid.config import ReconnectPolicy
    from caneaid.stream import ConnectionManager, EventBroadcaster

    broadcaster = EventBroadcaster()
    manager = ConnectionManager(ReconnectPolicy(), broadcaster)

    async with broadcaster.records.listen(maxsize=50) as records:
        await manager.connect("ws://192.168.0.102:8765")
        async for record in records:
            print(record.summary)
"""

from caneaid.stream.metrics import TelemetryStatistics
from caneaid.stream.buffer import SubscriberQueue
from caneaid.stream.broadcaster import Channel, EventBroadcaster, QueueSubscription, Subscription
from caneaid.stream.dispatcher import MessageDispatcher
from caneaid.stream.connection import ConnectionManager, websocket_connector


__all__ = [
    "TelemetryStatistics",
    "SubscriberQueue",
    "Channel",
    "Subscription",
    "QueueSubscription",
    "EventBroadcaster",
    "MessageDispatcher",
    "ConnectionManager",
    "websocket_connector",
]
