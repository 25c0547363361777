"""
Connection Manager Tests
========================

State machine, reconnect backoff, frame routing and heartbeats,
driven against in-memory transports.
"""

import asyncio
import json

import pytest

from caneaid.config import ReconnectPolicy
from caneaid.models.outbound import DataRequest, PingMessage
from caneaid.models.state import ConnectionState

from conftest import FakeConnector, wait_until


D = ConnectionState.DISCONNECTED
CONNECTING = ConnectionState.CONNECTING
CONNECTED = ConnectionState.CONNECTED
RECONNECTING = ConnectionState.RECONNECTING
ERROR = ConnectionState.ERROR


class TestConnect:
    """Opening the connection."""

    @pytest.mark.asyncio
    async def test_connect_success(self, make_link):
        link = make_link()

        assert await link.manager.connect() is True
        assert link.manager.connected
        assert link.manager.state is CONNECTED
        assert link.connector.calls == ["ws://bridge:8765"]
        assert link.transitions == [(D, CONNECTING), (CONNECTING, CONNECTED)]

    @pytest.mark.asyncio
    async def test_connect_when_already_connected(self, make_link):
        link = make_link()

        await link.manager.connect()
        assert await link.manager.connect() is True
        assert len(link.connector.calls) == 1
        assert len(link.changes) == 2

    @pytest.mark.asyncio
    async def test_connect_with_explicit_url(self, make_link):
        link = make_link()

        await link.manager.connect("ws://other:9000")
        assert link.connector.calls == ["ws://other:9000"]
        assert link.manager.server_url == "ws://other:9000"

    @pytest.mark.asyncio
    async def test_connect_without_url(self, make_link):
        link = make_link(url=None)

        assert await link.manager.connect() is False
        assert link.manager.state is D
        assert link.changes == []
        assert link.connector.calls == []
        assert link.manager.statistics.last_error == "No server URL configured"

    @pytest.mark.asyncio
    async def test_connect_while_connecting_is_noop(self, make_link):
        link = make_link(connector=FakeConnector(hang=True))

        first = asyncio.create_task(link.manager.connect())
        await wait_until(lambda: link.connector.calls)
        assert link.manager.state is CONNECTING

        assert await link.manager.connect() is False
        link.connector.release()
        assert await first is True
        assert len(link.connector.calls) == 1

    @pytest.mark.asyncio
    async def test_connect_timeout(self, make_link):
        policy = ReconnectPolicy(max_attempts=0, connect_timeout_seconds=0.05)
        link = make_link(connector=FakeConnector(hang=True), policy=policy)

        assert await link.manager.connect() is False
        assert "timed out" in link.changes[1].reason
        assert link.manager.state is ERROR
        assert link.changes[-1].terminal
        assert link.connector.in_flight == 0


class TestSend:
    """Outbound messages."""

    @pytest.mark.asyncio
    async def test_send_when_disconnected(self, make_link):
        link = make_link()
        assert await link.manager.send({"type": "ping"}) is False

    @pytest.mark.asyncio
    async def test_send_dict_and_model(self, make_link):
        link = make_link()
        await link.manager.connect()

        assert await link.manager.send({"type": "data_request"}) is True
        assert await link.manager.send(PingMessage(client_id="cane")) is True

        sent = link.connector.last.sent_json
        assert sent[0] == {"type": "data_request"}
        assert sent[1]["type"] == "ping"
        assert sent[1]["client_id"] == "cane"

    @pytest.mark.asyncio
    async def test_send_data_request(self, make_link):
        link = make_link()
        await link.manager.connect()

        assert await link.manager.send(DataRequest(client_id="cane")) is True
        assert await link.manager.send(DataRequest(sensors=["distance"])) is True

        first, second = link.connector.last.sent_json
        assert first["type"] == "data_request"
        assert first["sensors"] == ["color", "distance", "gps"]
        assert first["client_id"] == "cane"
        assert "timestamp" in first
        assert second["sensors"] == ["distance"]
        assert second["client_id"] is None

    @pytest.mark.asyncio
    async def test_send_unserializable(self, make_link):
        link = make_link()
        await link.manager.connect()

        assert await link.manager.send({"value": object()}) is False
        assert link.connector.last.sent == []

    @pytest.mark.asyncio
    async def test_send_rejected_by_transport(self, make_link):
        link = make_link()
        await link.manager.connect()

        link.connector.last.closed = True
        assert await link.manager.send({"type": "ping"}) is False
        assert "Send failed" in link.manager.statistics.last_error


class TestFrameRouting:
    """Inbound frames reach the right channels, in order."""

    @pytest.mark.asyncio
    async def test_records_published_in_order(self, make_link):
        link = make_link()
        await link.manager.connect()

        for red in (1, 2, 3):
            link.connector.last.feed({"r": red, "g": 0, "b": 0})
        await wait_until(lambda: len(link.records) == 3)

        assert [record.red for record in link.records] == [1, 2, 3]
        assert len(link.frames) == 3
        assert json.loads(link.frames[0].text)["r"] == 1

    @pytest.mark.asyncio
    async def test_malformed_frame_keeps_connection(self, make_link):
        link = make_link()
        await link.manager.connect()

        link.connector.last.feed("{not json")
        link.connector.last.feed({"type": "sensor_data", "data": {"distance": 15}})
        await wait_until(lambda: len(link.records) == 1)

        assert link.manager.state is CONNECTED
        assert link.manager.statistics.frames_failed == 1
        assert len(link.frames) == 2
        assert link.records[0].is_obstacle

    @pytest.mark.asyncio
    async def test_hostile_frames_keep_connection(self, make_link):
        link = make_link()
        await link.manager.connect()
        transport = link.connector.last

        transport.feed('{"r": 1' + "0" * 400 + ', "g": 0, "b": 0}')
        transport.feed("[" * 100_000)
        transport.feed('{"distance": ' + "9" * 5001 + "}")
        transport.feed({"r": 7, "g": 0, "b": 0})
        await wait_until(lambda: len(link.frames) == 4)
        await wait_until(lambda: len(link.records) == 2)

        assert link.manager.state is CONNECTED
        assert link.transitions == [(D, CONNECTING), (CONNECTING, CONNECTED)]
        assert len(link.connector.calls) == 1
        assert [record.red for record in link.records] == [0, 7]
        assert link.manager.statistics.frames_failed == 2
        assert link.manager.statistics.protocol_errors == 1

    @pytest.mark.asyncio
    async def test_status_frame_is_not_a_record(self, make_link):
        link = make_link()
        await link.manager.connect()

        link.connector.last.feed({"type": "status", "status": "esp32_connected"})
        await wait_until(lambda: len(link.frames) == 1)

        assert link.records == []
        assert link.manager.statistics.last_remote_status == "esp32_connected"


class TestHeartbeat:
    """Keep-alive traffic."""

    @pytest.mark.asyncio
    async def test_remote_heartbeat_is_answered(self, make_link):
        link = make_link(client_id="cane-1")
        await link.manager.connect()

        link.connector.last.feed({"type": "heartbeat", "timestamp": "now"})
        await wait_until(lambda: link.connector.last.sent)

        reply = link.connector.last.sent_json[0]
        assert reply["type"] == "heartbeat_response"
        assert reply["client_id"] == "cane-1"
        assert "timestamp" in reply
        assert link.manager.statistics.heartbeats_received == 1
        assert link.manager.statistics.heartbeats_sent == 1

    @pytest.mark.asyncio
    async def test_periodic_heartbeat(self, make_link):
        policy = ReconnectPolicy(heartbeat_interval_seconds=0.01)
        link = make_link(policy=policy, sleep=asyncio.sleep)
        await link.manager.connect()

        await wait_until(lambda: len(link.connector.last.sent) >= 2)
        await link.manager.disconnect()

        sent = link.connector.last.sent_json
        assert all(message["type"] == "heartbeat_response" for message in sent)
        assert link.manager.statistics.heartbeats_sent == len(sent)

    @pytest.mark.asyncio
    async def test_heartbeat_stops_after_disconnect(self, make_link):
        policy = ReconnectPolicy(heartbeat_interval_seconds=0.01)
        link = make_link(policy=policy, sleep=asyncio.sleep)
        await link.manager.connect()
        await wait_until(lambda: link.connector.last.sent)
        await link.manager.disconnect()

        count = len(link.connector.last.sent)
        await asyncio.sleep(0.05)
        assert len(link.connector.last.sent) == count


class TestReconnect:
    """Backoff and give-up behavior."""

    @pytest.mark.asyncio
    async def test_initial_failure_enters_reconnecting(self, make_link):
        link = make_link(connector=FakeConnector(failures=1))

        assert await link.manager.connect() is False
        assert link.transitions[:3] == [
            (D, CONNECTING),
            (CONNECTING, ERROR),
            (ERROR, RECONNECTING),
        ]
        assert link.changes[2].delay == 3.0
        assert link.changes[2].attempt == 1

        await wait_until(lambda: link.manager.connected)
        assert link.sleep.delays == [3.0]
        assert link.manager.reconnect_attempts == 0
        assert link.manager.statistics.last_error is None

    @pytest.mark.asyncio
    async def test_backoff_then_give_up(self, make_link):
        link = make_link(connector=FakeConnector(always_fail=True))

        await link.manager.connect()
        await wait_until(lambda: any(change.terminal for change in link.changes))

        assert link.sleep.delays == [3.0, 6.0, 12.0]
        assert len(link.connector.calls) == 4
        assert link.manager.state is ERROR
        assert link.manager.reconnect_attempts == 3
        assert not link.manager.auto_reconnect_enabled

        final = link.changes[-1]
        assert (final.previous, final.current) == (ERROR, ERROR)
        assert final.terminal

        # No further attempts after giving up
        await asyncio.sleep(0.01)
        assert len(link.connector.calls) == 4

    @pytest.mark.asyncio
    async def test_delay_capped_at_maximum(self, make_link):
        policy = ReconnectPolicy(max_attempts=6, heartbeat_interval_seconds=1000.0)
        link = make_link(connector=FakeConnector(always_fail=True), policy=policy)

        await link.manager.connect()
        await wait_until(lambda: any(change.terminal for change in link.changes))

        assert link.sleep.delays == [3.0, 6.0, 12.0, 24.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_reset_after_give_up(self, make_link):
        link = make_link(connector=FakeConnector(failures=4))

        await link.manager.connect()
        await wait_until(lambda: any(change.terminal for change in link.changes))

        link.manager.reset_reconnection_attempts()
        assert link.manager.reconnect_attempts == 0
        assert link.manager.auto_reconnect_enabled
        assert link.manager.state is ERROR

        assert await link.manager.connect() is True
        assert len(link.connector.calls) == 5

    @pytest.mark.asyncio
    async def test_drop_while_connected_reconnects(self, make_link):
        link = make_link()
        await link.manager.connect()

        link.connector.last.drop()
        await wait_until(lambda: len(link.connector.transports) == 2 and link.manager.connected)

        assert (CONNECTED, RECONNECTING) in link.transitions
        assert link.connector.transports[0].closed
        assert link.sleep.delays == [3.0]

    @pytest.mark.asyncio
    async def test_transport_error_reconnects(self, make_link):
        link = make_link()
        await link.manager.connect()

        link.connector.last.drop(OSError("reset by peer"))
        await wait_until(lambda: len(link.connector.transports) == 2 and link.manager.connected)

    @pytest.mark.asyncio
    async def test_fallback_urls_rotate(self, make_link):
        link = make_link(
            connector=FakeConnector(failures=2),
            url="ws://a",
            fallback_urls=["ws://b"],
        )

        await link.manager.connect()
        await wait_until(lambda: link.manager.connected)

        assert link.connector.calls == ["ws://a", "ws://a", "ws://b"]
        assert link.manager.server_url == "ws://b"

    @pytest.mark.asyncio
    async def test_explicit_connect_cancels_pending_reconnect(self, make_link):
        link = make_link(connector=FakeConnector(failures=1), sleep=asyncio.sleep)

        assert await link.manager.connect() is False
        assert link.manager.state is RECONNECTING

        assert await link.manager.connect() is True
        assert len(link.connector.calls) == 2


class TestDisconnect:
    """Teardown."""

    @pytest.mark.asyncio
    async def test_disconnect_closes_transport(self, make_link):
        link = make_link()
        await link.manager.connect()

        await link.manager.disconnect()

        assert link.connector.last.closed
        assert link.manager.state is D
        assert not link.manager.auto_reconnect_enabled
        assert link.transitions[-1] == (CONNECTED, D)
        assert await link.manager.send({"type": "ping"}) is False

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, make_link):
        link = make_link()
        await link.manager.connect()

        await link.manager.disconnect()
        count = len(link.changes)
        await link.manager.disconnect()

        assert len(link.changes) == count

    @pytest.mark.asyncio
    async def test_disconnect_without_connect(self, make_link):
        link = make_link()
        await link.manager.disconnect()
        assert link.changes == []

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, make_link):
        link = make_link(connector=FakeConnector(always_fail=True), sleep=asyncio.sleep)

        await link.manager.connect()
        assert link.manager.state is RECONNECTING

        await link.manager.disconnect()
        assert link.manager.state is D
        assert len(link.connector.calls) == 1

    @pytest.mark.asyncio
    async def test_disconnect_during_dial(self, make_link):
        link = make_link(connector=FakeConnector(hang=True))

        dial = asyncio.create_task(link.manager.connect())
        await wait_until(lambda: link.connector.calls)
        await link.manager.disconnect()

        assert link.connector.in_flight == 0
        link.connector.release()

        assert await dial is False
        assert link.manager.state is D
        assert link.connector.transports == []

    @pytest.mark.asyncio
    async def test_connect_after_disconnect_during_dial(self, make_link):
        link = make_link(connector=FakeConnector(hang=True))

        first = asyncio.create_task(link.manager.connect())
        await wait_until(lambda: link.connector.calls)
        await link.manager.disconnect()
        assert await first is False

        second = asyncio.create_task(link.manager.connect())
        await wait_until(lambda: len(link.connector.calls) == 2)
        assert link.connector.in_flight == 1
        assert link.manager.state is CONNECTING

        link.connector.release()
        assert await second is True
        assert link.manager.connected
        assert len(link.connector.transports) == 1

    @pytest.mark.asyncio
    async def test_dropped_link_after_disconnect_does_not_reconnect(self, make_link):
        link = make_link()
        await link.manager.connect()
        transport = link.connector.last

        await link.manager.disconnect()
        transport.drop()
        await asyncio.sleep(0.01)

        assert len(link.connector.calls) == 1
        assert link.manager.state is D

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_link):
        link = make_link()
        async with link.manager:
            await link.manager.connect()

        assert link.manager.state is D
        assert link.connector.last.closed


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_fields(self, make_link):
        link = make_link(client_id="cane-1")
        await link.manager.connect()
        link.connector.last.feed({"r": 1, "g": 2, "b": 3})
        await wait_until(lambda: link.manager.statistics.frames_decoded == 1)

        snapshot = link.manager.snapshot()

        assert snapshot["state"] == "connected"
        assert snapshot["connected"] is True
        assert snapshot["client_id"] == "cane-1"
        assert snapshot["server_url"] == "ws://bridge:8765"
        assert snapshot["frames_decoded"] == 1
        assert snapshot["last_sample_age_seconds"] is not None
