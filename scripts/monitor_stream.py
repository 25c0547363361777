#!/usr/bin/env python3
"""
Bridge Stream Monitor
=====================

Standalone script to watch the telemetry ingestion layer against a live
bridge server (or scripts/bridge_simulator.py).

This script:
    1. Connects to the bridge through the ConnectionManager
    2. Runs for a configurable duration
    3. Logs ingestion stats and link quality every report interval
    4. Reports final summary

Usage:
    python scripts/monitor_stream.py --duration 120
    python scripts/monitor_stream.py --url ws://192.168.0.102:8765 --verbose
"""

import argparse
import asyncio
import logging
import os
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from caneaid.config import load_config
from caneaid.models.state import StateChange
from caneaid.models.sensor import SensorRecord
from caneaid.service import TelemetryClient


# Logging is configured by importing caneaid.config
logger = logging.getLogger(__name__)


async def run_monitor(
    url: str,
    duration: int,
    report_interval: int,
    verbose: bool,
) -> dict:
    """
    Monitor the bridge stream.

    Args:
        url: WebSocket URL of the bridge server
        duration: Monitoring duration in seconds
        report_interval: Seconds between progress reports
        verbose: Log every decoded record

    Returns:
        Final statistics dict
    """
    settings = load_config()
    settings.link.url = url
    settings.link.auto_connect = False

    logger.info("=" * 60)
    logger.info("Bridge Stream Monitor")
    logger.info("=" * 60)
    logger.info(f"Bridge URL: {url}")
    logger.info(f"Duration: {duration} seconds")
    logger.info(f"Report interval: {report_interval} seconds")
    logger.info("=" * 60)

    client = TelemetryClient(settings)

    def on_state(change: StateChange) -> None:
        suffix = " (terminal)" if change.terminal else ""
        logger.info(f"State: {change.previous.value} -> {change.current.value}{suffix}")

    def on_record(record: SensorRecord) -> None:
        logger.info(f"Record: {record.summary}")

    client.broadcaster.states.subscribe(on_state)
    if verbose:
        client.broadcaster.records.subscribe(on_record)
    client.zones.transitions.subscribe(
        lambda t: logger.info(
            f"Zone: {t.previous.label if t.previous else '-'} -> {t.current.label}"
            + (" OBSTACLE" if t.obstacle_entered else "")
        )
    )

    await client.start()
    await client.manager.connect(url)

    start_time = time.time()
    last_report_time = start_time
    last_frame_count = 0

    try:
        while time.time() - start_time < duration:
            time_since_report = time.time() - last_report_time
            if time_since_report >= report_interval:
                stats = client.manager.statistics
                frames_since_last = stats.frames_received - last_frame_count
                rate = frames_since_last / time_since_report if time_since_report > 0 else 0

                logger.info("-" * 40)
                logger.info(f"Progress Report (elapsed: {time.time() - start_time:.0f}s)")
                logger.info(f"  State: {client.manager.state.value}")
                logger.info(f"  Quality: {client.quality().value}")
                logger.info(f"  Frames received: {stats.frames_received}")
                logger.info(f"  Frame rate: {rate:.1f}/s")
                logger.info(f"  Decoded / failed: {stats.frames_decoded} / {stats.frames_failed}")
                logger.info(f"  Reconnect attempts: {stats.reconnect_attempts}")
                if client.history.latest is not None:
                    logger.info(f"  Latest: {client.history.latest.summary}")

                last_report_time = time.time()
                last_frame_count = stats.frames_received

            await asyncio.sleep(0.5)

    except asyncio.CancelledError:
        logger.info("Monitor interrupted")
    finally:
        await client.stop()

    total_time = time.time() - start_time
    stats = client.manager.statistics

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames received: {stats.frames_received}")
    logger.info(f"Frames decoded: {stats.frames_decoded}")
    logger.info(f"Frames failed: {stats.frames_failed}")
    logger.info(f"Protocol errors: {stats.protocol_errors}")
    logger.info(f"Heartbeats sent/received: {stats.heartbeats_sent}/{stats.heartbeats_received}")
    logger.info(f"Last error: {stats.last_error}")
    logger.info("=" * 60)

    return {
        "duration": total_time,
        **stats.to_dict(),
    }


def main():
    parser = argparse.ArgumentParser(
        description="Monitor the CaneAID bridge telemetry stream"
    )
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("CANEAID_SERVER_URL", "ws://localhost:8765"),
        help="WebSocket URL of the bridge server",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=60,
        help="Monitoring duration in seconds (default: 60)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=10,
        help="Seconds between progress reports (default: 10)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every decoded record",
    )

    args = parser.parse_args()

    try:
        result = asyncio.run(run_monitor(
            url=args.url,
            duration=args.duration,
            report_interval=args.report_interval,
            verbose=args.verbose,
        ))
    except KeyboardInterrupt:
        sys.exit(130)

    sys.exit(0 if result["frames_decoded"] > 0 else 1)


if __name__ == "__main__":
    main()
