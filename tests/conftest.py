"""
Test Configuration
==================

Pytest fixtures and test doubles for the CaneAID telemetry core.

The connection manager is exercised against in-memory transports:
    - FakeTransport: scripted inbound frames, recorded outbound frames
    - FakeConnector: hands out FakeTransports or fails on demand
    - RecordingSleep: records reconnect delays without waiting
    - Link: a manager plus recorders on its three channels

Async tests run under pytest-asyncio.
"""

import asyncio
import json

import pytest
import pytest_asyncio


_CLOSE = object()


class FakeTransport:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    def feed(self, frame) -> None:
        """Queue an inbound frame (str, bytes, or dict encoded as JSON)."""
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._incoming.put_nowait(frame)

    def drop(self, error: Exception = None) -> None:
        """End the inbound stream, optionally with an error."""
        self._incoming.put_nowait(error if error is not None else _CLOSE)

    @property
    def sent_json(self) -> list:
        return [json.loads(message) for message in self.sent]

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("transport closed")
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    def __aiter__(self) -> "FakeTransport":
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnector:
    """
    Transport factory for ConnectionManager.

    Args:
        failures: Number of initial calls that raise OSError
        always_fail: Every call raises OSError
        hang: Calls block until release() (for timeout / cancellation tests)
    """

    def __init__(self, failures: int = 0, always_fail: bool = False, hang: bool = False) -> None:
        self.failures = failures
        self.always_fail = always_fail
        self.hang = hang
        self.calls = []
        self.transports = []
        self.in_flight = 0
        self._release = None

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]

    def release(self) -> None:
        if self._release is not None:
            self._release.set()

    async def __call__(self, url: str) -> FakeTransport:
        self.calls.append(url)
        self.in_flight += 1
        try:
            if self.hang:
                self._release = asyncio.Event()
                await self._release.wait()
        finally:
            self.in_flight -= 1
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport


class RecordingSleep:
    """
    Records requested delays and only yields to the loop.

    Delays above `passthrough_above` (heartbeat intervals in tests)
    really sleep, so they never fire during a test.
    """

    def __init__(self, passthrough_above: float = 100.0) -> None:
        self.delays = []
        self.passthrough_above = passthrough_above

    async def __call__(self, delay: float) -> None:
        if delay > self.passthrough_above:
            await asyncio.sleep(delay)
            return
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll predicate on the running loop until true or fail."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


class Link:
    """A ConnectionManager with recording subscribers on every channel."""

    def __init__(self, manager, connector: FakeConnector, sleep) -> None:
        self.manager = manager
        self.connector = connector
        self.sleep = sleep
        self.changes = []
        self.records = []
        self.frames = []
        manager.broadcaster.states.subscribe(self.changes.append)
        manager.broadcaster.records.subscribe(self.records.append)
        manager.broadcaster.frames.subscribe(self.frames.append)

    @property
    def transitions(self) -> list:
        return [(change.previous, change.current) for change in self.changes]


@pytest.fixture
def connector():
    return FakeConnector()


@pytest_asyncio.fixture
async def make_link(policy, connector):
    """
    Factory fixture building a Link on the test's event loop.

    make_link(connector=..., sleep=..., policy=..., **manager_kwargs)

    Defaults are the connector and policy fixtures and a RecordingSleep.
    Every manager it builds is disconnected on teardown.
    """
    from caneaid.stream.broadcaster import EventBroadcaster
    from caneaid.stream.connection import ConnectionManager

    links = []

    def factory(connector=connector, sleep=None, policy=policy, **kwargs):
        kwargs.setdefault("url", "ws://bridge:8765")
        sleep = sleep if sleep is not None else RecordingSleep()
        manager = ConnectionManager(
            policy,
            EventBroadcaster(),
            connector=connector,
            sleep=sleep,
            **kwargs,
        )
        link = Link(manager, connector, sleep)
        links.append(link)
        return link

    yield factory

    for link in links:
        await link.manager.disconnect()


@pytest.fixture
def policy():
    """Reconnect policy with the documented 3s/30s backoff and no heartbeat noise."""
    from caneaid.config import ReconnectPolicy

    return ReconnectPolicy(
        base_delay_seconds=3.0,
        max_delay_seconds=30.0,
        max_attempts=3,
        heartbeat_interval_seconds=1000.0,
        connect_timeout_seconds=1.0,
    )


@pytest.fixture
def sample_payload():
    """Untagged sensor payload as sent by current firmware."""
    return {
        "r": 255,
        "g": 128,
        "b": 64,
        "distance": 50,
        "latitude": 23.7808,
        "longitude": 90.2792,
    }


@pytest.fixture
def sample_record():
    from caneaid.models.sensor import SensorRecord

    return SensorRecord(
        red=255,
        green=128,
        blue=64,
        distance_cm=45.0,
        latitude=23.7808,
        longitude=90.2792,
        has_distance=True,
        has_fix=True,
        timestamp=1_700_000_000.0,
    )
