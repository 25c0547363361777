"""
CaneAID Telemetry Service
=========================

FastAPI entry point exposing the telemetry core to collaborators
(UI, announcement layers, diagnostics).

Endpoints:
    GET  /                 - Service information
    GET  /health           - Liveness probe (is process alive?)
    GET  /ready            - Readiness probe (bridge connected?)
    GET  /metrics          - Statistics snapshot and link quality
    GET  /latest           - Most recent sensor record
    GET  /history          - Recent sensor records (bounded window)
    POST /connect          - Connect to the bridge (optional url)
    POST /disconnect       - Disconnect and stop reconnecting
    POST /reconnect/reset  - Reset reconnect attempts and statistics
    POST /send             - Send a JSON message to the bridge
    WS   /ws/records       - Live sensor records
    WS   /ws/states        - Live connection state changes
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fastapi import Body, FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from caneaid import __version__
from caneaid.config import Settings, settings as default_settings
from caneaid.service import TelemetryClient
from caneaid.stream.broadcaster import QueueSubscription
from caneaid.stream.connection import Connector


logger = logging.getLogger(__name__)


class ConnectRequest(BaseModel):
    """Body of POST /connect."""

    url: Optional[str] = Field(default=None, description="Bridge URL (defaults to configured)")


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    connector: Optional[Connector] = None,
) -> FastAPI:
    """
    Build the FastAPI application around a new TelemetryClient.

    Args:
        settings: Configuration (module defaults if omitted)
        connector: Transport factory override

    Returns:
        Configured FastAPI app; the client is at app.state.telemetry
    """
    settings = settings or default_settings
    client = TelemetryClient(settings, connector=connector)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.startup_time = time.time()
        logger.info(f"Starting CaneAID telemetry service {__version__}")
        await client.start()

        yield

        logger.info("Shutting down gracefully...")
        await client.stop()
        client.broadcaster.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="CaneAID Telemetry",
        description="Sensor telemetry ingestion for the CaneAID assistive client",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.telemetry = client
    app.state.settings = settings
    app.state.startup_time = time.time()

    _register_routes(app)
    return app


def _client(request: Request) -> TelemetryClient:
    return request.app.state.telemetry


# =============================================================================
# Routes
# =============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.get("/")
    async def root(request: Request) -> JSONResponse:
        """Service information endpoint."""
        client = _client(request)
        return JSONResponse({
            "service": "CaneAID Telemetry",
            "version": __version__,
            "status": "running",
            "bridge_url": client.manager.server_url,
            "client_id": client.manager.client_id,
        })

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        """Liveness probe. Always 200 while the process runs."""
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - request.app.state.startup_time, 1),
        })

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        """
        Readiness probe.

        Returns 200 when the bridge connection is open, 503 otherwise.
        """
        client = _client(request)
        body = {
            "state": client.manager.state.value,
            "quality": client.quality().value,
        }
        if client.manager.connected:
            return JSONResponse({"status": "ready", **body})
        return JSONResponse({"status": "not_ready", **body}, status_code=503)

    @app.get("/metrics")
    async def metrics(request: Request) -> JSONResponse:
        """Statistics snapshot for observability."""
        return JSONResponse(_client(request).snapshot())

    @app.get("/latest")
    async def latest(request: Request) -> JSONResponse:
        """Most recent sensor record."""
        record = _client(request).history.latest
        if record is None:
            return JSONResponse({"error": "No sensor data received yet"}, status_code=503)
        return JSONResponse(record.to_dict())

    @app.get("/history")
    async def history(request: Request, limit: Optional[int] = None) -> JSONResponse:
        """Recent sensor records, oldest first."""
        records = _client(request).history.snapshot(limit=limit)
        return JSONResponse({
            "count": len(records),
            "records": [record.to_dict() for record in records],
        })

    @app.post("/connect")
    async def connect(request: Request, body: Optional[ConnectRequest] = None) -> JSONResponse:
        """Connect to the bridge."""
        client = _client(request)
        connected = await client.manager.connect(body.url if body else None)
        return JSONResponse(
            {
                "connected": connected,
                "state": client.manager.state.value,
                "server_url": client.manager.server_url,
                "last_error": client.manager.statistics.last_error,
            },
            status_code=200 if connected else 502,
        )

    @app.post("/disconnect")
    async def disconnect(request: Request) -> JSONResponse:
        """Disconnect and disable automatic reconnection."""
        client = _client(request)
        await client.manager.disconnect()
        return JSONResponse({"state": client.manager.state.value})

    @app.post("/reconnect/reset")
    async def reset_reconnect(request: Request) -> JSONResponse:
        """Reset reconnect attempts and statistics."""
        client = _client(request)
        client.manager.reset_reconnection_attempts()
        return JSONResponse({
            "reconnect_attempts": client.manager.reconnect_attempts,
            "auto_reconnect": client.manager.auto_reconnect_enabled,
        })

    @app.post("/send")
    async def send(request: Request, message: Dict[str, Any] = Body(...)) -> JSONResponse:
        """Forward a JSON object to the bridge."""
        sent = await _client(request).manager.send(message)
        if not sent:
            return JSONResponse({"sent": False, "error": "Not connected"}, status_code=503)
        return JSONResponse({"sent": True})

    # -------------------------------------------------------------------------
    # WebSocket Endpoints
    # -------------------------------------------------------------------------

    @app.websocket("/ws/records")
    async def record_stream(websocket: WebSocket) -> None:
        """Push every new sensor record to the connected client."""
        client: TelemetryClient = websocket.app.state.telemetry
        queue_size = websocket.app.state.settings.server.stream_queue_size
        await websocket.accept()
        logger.info("Client connected to /ws/records")

        try:
            async with client.broadcaster.records.listen(maxsize=queue_size) as records:
                await _stream(websocket, records, lambda record: record.to_dict())
        except Exception as e:
            logger.warning(f"WebSocket error: {e}")
        finally:
            logger.info("Client disconnected from /ws/records")

    @app.websocket("/ws/states")
    async def state_stream(websocket: WebSocket) -> None:
        """Push connection state changes, starting with the current state."""
        client: TelemetryClient = websocket.app.state.telemetry
        queue_size = websocket.app.state.settings.server.stream_queue_size
        await websocket.accept()
        logger.info("Client connected to /ws/states")

        try:
            async with client.broadcaster.states.listen(maxsize=queue_size) as changes:
                await websocket.send_json({
                    "current": client.manager.state.value,
                    "quality": client.quality().value,
                })
                await _stream(websocket, changes, lambda change: change.to_dict())
        except Exception as e:
            logger.warning(f"WebSocket error: {e}")
        finally:
            logger.info("Client disconnected from /ws/states")


async def _stream(
    websocket: WebSocket,
    listener: QueueSubscription,
    encode: Callable[[Any], dict],
) -> None:
    """
    Forward listener items until the client leaves or the listener closes.

    A watcher task reads the socket so a client disconnect closes the
    listener even while no items are flowing.
    """

    async def watch_disconnect() -> None:
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except Exception as e:
            logger.debug(f"WebSocket receive ended: {e}")
        finally:
            listener.close()

    watcher = asyncio.create_task(watch_disconnect())
    try:
        async for item in listener:
            await websocket.send_json(encode(item))
    finally:
        watcher.cancel()


# =============================================================================
# Default Application
# =============================================================================

app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    # Container platforms use PORT env var
    port = int(os.environ.get("PORT", default_settings.server.port))

    uvicorn.run(
        "caneaid.main:app",
        host=default_settings.server.host,
        port=port,
        reload=False,
    )
