#!/usr/bin/env python3
"""
Bridge Simulator
================

Minimal stand-in for the bridge server, for exercising the client
without the wearable.

Every connected client receives:
    - a sensor frame every --interval seconds (tagged, untagged and nested
      shapes in rotation, with a distance sweeping through every zone)
    - a heartbeat every --heartbeat seconds
    - a status frame on connect

Usage:
    python scripts/bridge_simulator.py --port 8765
    python scripts/bridge_simulator.py --malformed-every 10
"""

import argparse
import asyncio
import json
import logging
import math
import time
from datetime import datetime, timezone

import websockets


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger("bridge_simulator")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Simulate the CaneAID bridge server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--interval", type=float, default=0.5, help="Seconds between sensor frames")
    parser.add_argument("--heartbeat", type=float, default=15.0, help="Seconds between heartbeats")
    parser.add_argument(
        "--malformed-every",
        type=int,
        default=0,
        help="Send an invalid frame every N frames (0 disables)",
    )
    return parser


def sensor_frame(seq: int) -> str:
    # Distance sweeps 5..255cm so every zone is visited
    distance = 130.0 + 125.0 * math.sin(seq / 10.0)
    sample = {
        "r": int(127 + 127 * math.sin(seq / 7.0)),
        "g": int(127 + 127 * math.sin(seq / 11.0)),
        "b": int(127 + 127 * math.sin(seq / 13.0)),
        "distance": round(distance, 1),
        "latitude": 23.7808 + seq * 1e-5,
        "longitude": 90.2792 + seq * 1e-5,
    }
    shape = seq % 3
    if shape == 0:
        return json.dumps({"type": "sensor_data", "data": sample})
    if shape == 1:
        return json.dumps(sample)
    return json.dumps({"type": "esp32_data", "sensor_data": sample})


async def serve_client(ws, args) -> None:
    peer = getattr(ws, "remote_address", None)
    logger.info(f"Client connected: {peer}")

    await ws.send(json.dumps({"type": "status", "status": "connected", "message": "simulator"}))

    async def receive() -> None:
        async for message in ws:
            logger.info(f"From client: {message}")

    receiver = asyncio.create_task(receive())
    seq = 0
    last_heartbeat = time.monotonic()
    try:
        while True:
            seq += 1
            if args.malformed_every and seq % args.malformed_every == 0:
                await ws.send("{not json")
            else:
                await ws.send(sensor_frame(seq))

            if time.monotonic() - last_heartbeat >= args.heartbeat:
                await ws.send(json.dumps({
                    "type": "heartbeat",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "server_id": "bridge-simulator",
                }))
                last_heartbeat = time.monotonic()

            await asyncio.sleep(args.interval)
    except websockets.ConnectionClosed:
        logger.info(f"Client disconnected: {peer}")
    finally:
        receiver.cancel()


async def main() -> None:
    args = build_parser().parse_args()
    async with websockets.serve(lambda ws, *_: serve_client(ws, args), args.host, args.port):
        logger.info(f"Bridge simulator listening on ws://{args.host}:{args.port}")
        await asyncio.Future()


if __name__ == "__main__":
    asyncio.run(main())
