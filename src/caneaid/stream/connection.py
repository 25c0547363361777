"""
Connection Manager
==================

Owns the single bridge connection and its health.

This module provides the ConnectionManager class which:
    - Opens the WebSocket transport with a connect timeout
    - Drives the reconnect state machine with exponential backoff
    - Sends periodic heartbeats while connected and answers remote ones
    - Feeds every inbound frame to the MessageDispatcher, in order
    - Publishes state changes, raw frames and sensor records on the
      EventBroadcaster

State Machine:
    DISCONNECTED --connect()--> CONNECTING --opened--> CONNECTED
    CONNECTED --close/error--> RECONNECTING --timer--> CONNECTING
    CONNECTING --failure--> ERROR --(auto-reconnect)--> RECONNECTING
    any --disconnect()--> DISCONNECTED

Design Rules:
    - Nothing here raises across the public API; failures become state
      changes, counters or a False return value
    - The transport is never exposed to other components
    - Receive loop, heartbeat timer and reconnect timer are tasks owned by
      the manager and are cancelled together by disconnect()
    - Attempts never overlap: connect() is a no-op while CONNECTING or
      CONNECTED
"""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Sequence, Union

import websockets
from pydantic import BaseModel
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from caneaid.config import ReconnectPolicy
from caneaid.models.events import HeartbeatEvent, ParseError, RawFrame, SensorEvent
from caneaid.models.outbound import HeartbeatResponse
from caneaid.models.state import ConnectionState, StateChange
from caneaid.stream.broadcaster import EventBroadcaster
from caneaid.stream.dispatcher import MessageDispatcher
from caneaid.stream.metrics import TelemetryStatistics


logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Minimal message transport, satisfied by a websockets client connection."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]: ...


Connector = Callable[[str], Awaitable[Transport]]
Sleep = Callable[[float], Awaitable[None]]


def websocket_connector(
    ping_interval: Optional[float] = 20.0,
    close_timeout: float = 5.0,
) -> Connector:
    """
    Connector opening a websockets client connection.

    The open timeout is enforced by the ConnectionManager, so the
    library's own is disabled.
    """

    async def connect(url: str) -> Transport:
        return await websockets.connect(
            url,
            open_timeout=None,
            ping_interval=ping_interval,
            ping_timeout=ping_interval,
            close_timeout=close_timeout,
        )

    return connect


class ConnectionManager:
    """
    Single-connection lifecycle manager for the bridge server.

    Attributes:
        policy: Reconnect/heartbeat timing
        broadcaster: Channels the manager publishes to
        dispatcher: Frame decoder
        statistics: Counters shared with the dispatcher
        client_id: Identifier sent in heartbeat frames

    Example:
        broadcaster = EventBroadcaster()
        manager = ConnectionManager(ReconnectPolicy(), broadcaster)
        broadcaster.records.subscribe(lambda record: print(record.summary))

        await manager.connect("ws://192.168.0.102:8765")
        ...
        await manager.disconnect()
    """

    def __init__(
        self,
        policy: ReconnectPolicy,
        broadcaster: EventBroadcaster,
        dispatcher: Optional[MessageDispatcher] = None,
        *,
        url: Optional[str] = None,
        fallback_urls: Sequence[str] = (),
        client_id: str = "caneaid-client",
        connector: Optional[Connector] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initialize connection manager.

        Args:
            policy: Reconnect and heartbeat timing
            broadcaster: Destination for state changes, frames and records
            dispatcher: Frame decoder (a new one sharing fresh statistics if omitted)
            url: Default server URL used when connect() is called without one
            fallback_urls: Alternatives tried in rotation while reconnecting
            client_id: Identifier sent in heartbeat frames
            connector: Transport factory (websockets by default)
            sleep: Timer primitive for reconnect and heartbeat delays
        """
        self.policy = policy
        self.broadcaster = broadcaster
        self.dispatcher = dispatcher if dispatcher is not None else MessageDispatcher()
        self.statistics: TelemetryStatistics = self.dispatcher.statistics
        self.client_id = client_id

        self._url: Optional[str] = url
        self._fallback_urls: List[str] = list(fallback_urls)
        self._active_url: Optional[str] = None
        self._connector: Connector = connector if connector is not None else websocket_connector()
        self._sleep = sleep

        # State
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._auto_reconnect: bool = True
        # Bumped by disconnect(); stale tasks and late dials compare against it
        self._session: int = 0

        # Owned tasks
        self._receive_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._dial_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """Whether the transport is open."""
        return self._state is ConnectionState.CONNECTED

    @property
    def server_url(self) -> Optional[str]:
        """URL of the current (or last attempted) connection."""
        return self._active_url or self._url

    @property
    def _dialing(self) -> bool:
        return self._dial_task is not None and not self._dial_task.done()

    @property
    def auto_reconnect_enabled(self) -> bool:
        return self._auto_reconnect

    @property
    def reconnect_attempts(self) -> int:
        return self.statistics.reconnect_attempts

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def connect(self, url: Optional[str] = None) -> bool:
        """
        Open the connection.

        No-op while a connection is open or being opened. On failure a
        reconnect is scheduled per policy unless auto-reconnect is off.

        Args:
            url: Server URL. Defaults to the last URL used.

        Returns:
            True if connected, False otherwise.
        """
        if self._state is ConnectionState.CONNECTED:
            logger.info(f"Already connected to {self.server_url}")
            return True
        if self._state is ConnectionState.CONNECTING or self._dialing:
            logger.info("Connection attempt already in progress")
            return False

        if url is not None:
            self._url = url
        if not self._url:
            self.statistics.last_error = "No server URL configured"
            logger.error(self.statistics.last_error)
            return False

        # Explicit connect supersedes a pending reconnect timer
        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        self._auto_reconnect = True

        return await self._open(self._url, reason="connect requested")

    async def disconnect(self) -> None:
        """
        Close the connection and stop automatic reconnection.

        Cancels an in-flight dial, the heartbeat timer, the reconnect timer
        and the receive loop, closes the transport, then reports DISCONNECTED. Calling it
        again is harmless and publishes nothing.
        """
        self._session += 1

        await self._cancel_task(self._dial_task)
        self._dial_task = None
        await self._cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        await self._cancel_task(self._receive_task)
        self._receive_task = None

        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_transport(transport)

        self._auto_reconnect = False
        self._set_state(ConnectionState.DISCONNECTED, reason="disconnect requested")

    async def send(self, message: Any) -> bool:
        """
        Send a message as JSON text.

        Args:
            message: Pydantic model or JSON-serializable object

        Returns:
            True if handed to the transport, False if not connected,
            not serializable, or the transport rejected it.
        """
        transport = self._transport
        if self._state is not ConnectionState.CONNECTED or transport is None:
            logger.warning("Cannot send message: not connected")
            return False

        try:
            text = _serialize(message)
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot serialize message: {e}")
            return False

        try:
            await transport.send(text)
        except Exception as e:
            self.statistics.last_error = f"Send failed: {e}"
            logger.warning(self.statistics.last_error)
            return False

        logger.debug(f"Sent message: {text}")
        return True

    def reset_reconnection_attempts(self) -> None:
        """Zero the attempt counter and statistics, re-enable auto-reconnect."""
        self.statistics.reset()
        self._auto_reconnect = True
        logger.info("Reconnection attempts reset, auto-reconnect enabled")

    def snapshot(self) -> dict:
        """Point-in-time statistics for collaborators."""
        last_sample = self.statistics.last_sample_timestamp
        return {
            "state": self._state.value,
            "connected": self.connected,
            "server_url": self.server_url,
            "client_id": self.client_id,
            "auto_reconnect": self._auto_reconnect,
            "last_sample_age_seconds": (
                round(time.time() - last_sample, 3) if last_sample is not None else None
            ),
            **self.statistics.to_dict(),
        }

    async def __aenter__(self) -> "ConnectionManager":
        return self

    async def __aexit__(self, *args) -> None:
        await self.disconnect()

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def _open(self, url: str, reason: str) -> bool:
        """Dial url once. Schedules a reconnect on failure."""
        session = self._session
        self._active_url = url
        self._set_state(ConnectionState.CONNECTING, reason=f"{reason}: {url}")

        error: Optional[str] = None
        transport: Optional[Transport] = None
        dial = asyncio.create_task(
            asyncio.wait_for(
                self._connector(url),
                timeout=self.policy.connect_timeout_seconds,
            ),
            name="caneaid_dial",
        )
        self._dial_task = dial
        try:
            transport = await dial
        except asyncio.CancelledError:
            if session == self._session:
                raise
            # Cancelled by disconnect()
            return False
        except asyncio.TimeoutError:
            error = f"Connection to {url} timed out after {self.policy.connect_timeout_seconds:.1f}s"
        except Exception as e:
            error = f"Connection to {url} failed: {e}"
        finally:
            if self._dial_task is dial:
                self._dial_task = None

        if session != self._session:
            # disconnect() ran while dialing
            if transport is not None:
                await self._close_transport(transport)
            return False

        if error is not None or transport is None:
            self.statistics.last_error = error
            logger.error(error)
            self._set_state(ConnectionState.ERROR, reason=error or "no transport")
            self._schedule_reconnect()
            return False

        self._transport = transport
        self.statistics.reconnect_attempts = 0
        self.statistics.last_error = None
        self._set_state(ConnectionState.CONNECTED, reason=f"connected to {url}")

        self._receive_task = asyncio.create_task(
            self._receive_loop(transport, session),
            name="caneaid_receive",
        )
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(session),
            name="caneaid_heartbeat",
        )
        return True

    def _schedule_reconnect(self) -> None:
        """Enter RECONNECTING with a backoff timer, or give up."""
        if not self._auto_reconnect:
            logger.info("Auto-reconnect disabled, not scheduling a reconnect")
            return

        attempt = self.statistics.reconnect_attempts + 1
        if attempt > self.policy.max_attempts:
            self._auto_reconnect = False
            message = f"Giving up after {self.policy.max_attempts} reconnect attempts"
            self.statistics.last_error = message
            logger.error(message)
            self._set_state(ConnectionState.ERROR, reason=message, terminal=True)
            return

        self.statistics.reconnect_attempts = attempt
        delay = self.policy.delay_for(attempt)
        logger.info(f"Reconnecting in {delay:.1f}s (attempt {attempt}/{self.policy.max_attempts})")
        self._set_state(
            ConnectionState.RECONNECTING,
            reason=f"reconnect attempt {attempt} scheduled",
            delay=delay,
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay, attempt, self._session),
            name="caneaid_reconnect",
        )

    async def _reconnect_after(self, delay: float, attempt: int, session: int) -> None:
        await self._sleep(delay)
        if session != self._session or not self._auto_reconnect:
            return
        if self._state is not ConnectionState.RECONNECTING:
            return

        candidates = [self._url, *self._fallback_urls]
        url = candidates[(attempt - 1) % len(candidates)]
        await self._open(url, reason=f"reconnect attempt {attempt}")

    async def _on_transport_lost(self, transport: Transport, reason: str) -> None:
        self._transport = None
        await self._cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        await self._close_transport(transport)

        self.statistics.last_error = reason
        logger.warning(f"Connection to {self.server_url} lost: {reason}")

        if self._auto_reconnect:
            self._schedule_reconnect()
        else:
            self._set_state(ConnectionState.DISCONNECTED, reason=reason)

    # -------------------------------------------------------------------------
    # Owned tasks
    # -------------------------------------------------------------------------

    async def _receive_loop(self, transport: Transport, session: int) -> None:
        """Consume frames until the transport ends."""
        reason = "connection closed by server"
        try:
            async for message in transport:
                await self._handle_frame(message)
        except ConnectionClosedOK:
            reason = "connection closed normally"
        except ConnectionClosed as e:
            reason = f"connection closed with error: {e}"
        except Exception as e:
            reason = f"transport error: {e}"

        if session == self._session and self._transport is transport:
            await self._on_transport_lost(transport, reason)

    async def _handle_frame(self, message: Union[str, bytes]) -> None:
        """Publish, decode and route one frame. Strictly in arrival order."""
        text = message if isinstance(message, str) else bytes(message).decode("utf-8", errors="replace")
        logger.debug(f"Received frame: {text}")
        self.broadcaster.frames.publish(RawFrame(text=text, received_at=time.time()))

        result = self.dispatcher.decode(message)

        if isinstance(result, SensorEvent):
            self.broadcaster.records.publish(result.record)
        elif isinstance(result, HeartbeatEvent):
            logger.debug(f"Heartbeat received from {result.sender or 'bridge'}, acknowledging")
            await self._send_heartbeat()
        elif isinstance(result, ParseError):
            # Counted by the dispatcher; the connection stays up
            pass

    async def _heartbeat_loop(self, session: int) -> None:
        interval = self.policy.heartbeat_interval_seconds
        while session == self._session and self._state is ConnectionState.CONNECTED:
            await self._sleep(interval)
            if session != self._session or self._state is not ConnectionState.CONNECTED:
                break
            await self._send_heartbeat()

    async def _send_heartbeat(self) -> bool:
        sent = await self.send(HeartbeatResponse.now(self.client_id))
        if sent:
            self.statistics.heartbeats_sent += 1
        return sent

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _set_state(
        self,
        new_state: ConnectionState,
        reason: str = "",
        delay: Optional[float] = None,
        terminal: bool = False,
    ) -> None:
        previous = self._state
        if previous is new_state and not terminal:
            return

        self._state = new_state
        logger.info(f"Connection state: {previous.value} -> {new_state.value} ({reason})")
        self.broadcaster.states.publish(
            StateChange(
                previous=previous,
                current=new_state,
                reason=reason,
                attempt=self.statistics.reconnect_attempts,
                delay=delay,
                terminal=terminal,
            )
        )

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @staticmethod
    async def _close_transport(transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug(f"Error while closing transport: {e}")


def _serialize(message: Any) -> str:
    if isinstance(message, BaseModel):
        return message.model_dump_json()
    return json.dumps(message)
