"""
Telemetry Client
================

Composition root for the telemetry core.

Builds the object graph explicitly from Settings: one broadcaster, one
dispatcher, one connection manager and the standard consumers. Callers
receive the TelemetryClient instance and reach components through it;
there is no process-wide accessor.

Example:
    client = TelemetryClient(load_config())
    await client.start()

    client.broadcaster.records.subscribe(on_record)
    print(client.quality())

    await client.stop()
"""

import logging
from typing import Optional

from caneaid.config import Settings
from caneaid.consumers import ConnectionQualityTracker, SampleHistory, ZoneTransitionDetector
from caneaid.models.state import ConnectionQuality
from caneaid.stream import (
    ConnectionManager,
    EventBroadcaster,
    MessageDispatcher,
    TelemetryStatistics,
    websocket_connector,
)
from caneaid.stream.connection import Connector, Sleep


logger = logging.getLogger(__name__)


class TelemetryClient:
    """
    Wires the telemetry components together.

    Attributes:
        settings: Configuration the graph was built from
        broadcaster: Shared event channels
        dispatcher: Frame decoder
        manager: Bridge connection manager
        quality_tracker: Link quality consumer
        history: Recent record window
        zones: Distance zone transition detector
    """

    def __init__(
        self,
        settings: Settings,
        connector: Optional[Connector] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        """
        Build the component graph.

        Args:
            settings: Loaded configuration
            connector: Transport factory override (tests, alternate links)
            sleep: Timer primitive override
        """
        self.settings = settings
        link = settings.link

        self.broadcaster = EventBroadcaster()
        self.dispatcher = MessageDispatcher(TelemetryStatistics())

        manager_kwargs = {}
        if sleep is not None:
            manager_kwargs["sleep"] = sleep
        self.manager = ConnectionManager(
            settings.reconnect,
            self.broadcaster,
            self.dispatcher,
            url=link.url,
            fallback_urls=link.fallback_urls,
            client_id=link.client_id,
            connector=connector or websocket_connector(
                ping_interval=link.ping_interval_seconds,
                close_timeout=link.close_timeout_seconds,
            ),
            **manager_kwargs,
        )

        self.quality_tracker = ConnectionQualityTracker(
            freshness_threshold=settings.quality.freshness_threshold_seconds,
        )
        self.history = SampleHistory(max_samples=settings.history.max_samples)
        self.zones = ZoneTransitionDetector()

        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Attach consumers and connect if auto_connect is set."""
        if self._started:
            return

        self.quality_tracker.attach(self.broadcaster)
        self.history.attach(self.broadcaster)
        self.zones.attach(self.broadcaster)
        self._started = True
        logger.info(f"Telemetry client started (bridge: {self.settings.link.url})")

        if self.settings.link.auto_connect:
            await self.manager.connect()

    async def stop(self) -> None:
        """Disconnect and detach consumers."""
        await self.manager.disconnect()

        self.zones.detach()
        self.history.detach()
        self.quality_tracker.detach()
        self._started = False
        logger.info("Telemetry client stopped")

    def quality(self) -> ConnectionQuality:
        return self.quality_tracker.quality()

    def snapshot(self) -> dict:
        """Statistics snapshot plus derived quality."""
        return {
            **self.manager.snapshot(),
            "quality": self.quality().value,
            "history_size": len(self.history),
            "current_zone": self.zones.current_zone.value if self.zones.current_zone else None,
            "channels": self.broadcaster.metrics(),
        }

    async def __aenter__(self) -> "TelemetryClient":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()
