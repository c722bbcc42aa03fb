#!/usr/bin/env python3
"""Automated Scheduler for attendance terminal sync.

Long-running process that syncs every enabled terminal at a configurable
interval. Designed to run as the main process in a Docker container.

Architecture:
    - Simple asyncio loop with sleep (no external scheduler)
    - Graceful shutdown on SIGTERM/SIGINT: in-flight cycles are cancelled,
      sessions released, nothing cleared from the terminals
    - Configurable via environment variables
    - Health check endpoint via optional HTTP server

Environment Variables:
    SYNC_INTERVAL_MINUTES: Minutes between sync runs (default: 5)
    SYNC_ON_STARTUP: Run sync immediately on startup (default: true)
    SYNC_MAX_CONCURRENCY: Devices synced in parallel (default: 4)
    SYNC_RETRY_ATTEMPTS: Total connect/fetch attempts per cycle (default: 3)
    SYNC_RETRY_DELAY_SECONDS: Delay between attempts (default: 2)
    DEVICE_TIMEOUT_SECONDS: Per-call terminal timeout (default: 10)
    HEALTH_CHECK_PORT: Port for health check endpoint (default: 8080, 0 to disable)
    DATABASE_URL: PostgreSQL connection string (required)
    ATTENDANCE_DEVICES: Optional JSON device list
    LOG_LEVEL: Logging level (default: INFO)

Example:
    # Run every 10 minutes
    SYNC_INTERVAL_MINUTES=10 python scheduler.py

Docker Usage:
    docker run -e SYNC_INTERVAL_MINUTES=5 -e DATABASE_URL=... attendsync
"""
import asyncio
import json
import logging
import signal
import sys

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.attendsync.common.database import check_database_health
from src.attendsync.common.exceptions import AttendanceSyncError
from src.attendsync.config import SyncConfig, configure_logging
from src.attendsync.runtime import SyncRuntime, build_runtime, close_runtime

# Initialize logger
logger = logging.getLogger(__name__)


# ============================================
# Health Check Server
# ============================================

async def health_check_handler(reader, writer, runtime: SyncRuntime):
    """Handle HTTP health check requests."""
    # Read request (we don't care about the content)
    await reader.read(1024)

    state = runtime.scheduler.health()
    state["database"] = await check_database_health(runtime.pool)
    if not state["database"]["healthy"]:
        state["status"] = "unhealthy"
    body = json.dumps(state)

    http_status = 200 if state["status"] == "healthy" else 503
    response = (
        f"HTTP/1.1 {http_status} {'OK' if http_status == 200 else 'Service Unavailable'}\r\n"
        f"Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"Connection: close\r\n"
        f"\r\n"
        f"{body}"
    )

    writer.write(response.encode())
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def start_health_server(port: int, runtime: SyncRuntime):
    """Start the health check HTTP server."""
    if port <= 0:
        return None

    async def handler(reader, writer):
        await health_check_handler(reader, writer, runtime)

    server = await asyncio.start_server(handler, "0.0.0.0", port)
    logger.info(f"Health check server listening on port {port}")
    return server

# ============================================
# Main Entry Point
# ============================================

async def main() -> int:
    """Main entry point for the scheduler."""
    try:
        config = SyncConfig.from_env()
    except AttendanceSyncError as e:
        configure_logging()
        logger.error(f"Configuration error: {e}")
        return 1

    configure_logging(config.log_level)

    print("=" * 60)
    print("Attendance Device Sync Scheduler")
    print("=" * 60)
    logger.info(f"Config: {config}")

    try:
        runtime = await build_runtime(config)
    except AttendanceSyncError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    if not runtime.registry.list_enabled():
        logger.warning("No enabled devices configured; the loop will idle")

    # Shutdown event
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    # Signal handlers
    def handle_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    # Start health server
    health_server = await start_health_server(config.health_check_port, runtime)

    try:
        await runtime.scheduler.run_forever(shutdown_event)
    finally:
        logger.info("Cleaning up...")

        if health_server:
            health_server.close()
            await health_server.wait_closed()

        await close_runtime(runtime)
        logger.info("Shutdown complete")

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
