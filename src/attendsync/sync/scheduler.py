"""Sync Scheduler - periodic and on-demand cycles with single flight per device.

A device has at most one cycle in flight. A trigger arriving while one is
running awaits that cycle's result instead of opening a second session to
the terminal. Cycles hold the registry's per-device lock, so registry
bookkeeping is only mutated by the cycle that owns the device.

After every cycle (including a cancelled one) the scheduler:
- updates the registry bookkeeping
- persists it through the device repository (best effort)
- appends the result to the audit log (best effort)
- emits one structured log record carrying the result
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from ..common.exceptions import ConfigurationError
from .domain.entities import ConnectionCheck, CycleSummary, Device, SyncOutcome, SyncResult
from .domain.ports import IDeviceRepository, ISyncAuditLog
from .registry import DeviceRegistry
from .use_cases.check_connection import CheckConnectionUseCase
from .use_cases.sync_all_devices import SyncAllDevicesUseCase
from .use_cases.sync_device import SyncDeviceUseCase

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Owns every device cycle run by this process.

    Example:
        scheduler = SyncScheduler(registry, SyncDeviceUseCase(...), interval_seconds=300)
        result = await scheduler.trigger("front-door")

        shutdown_event = asyncio.Event()
        await scheduler.run_forever(shutdown_event)
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        sync_device: SyncDeviceUseCase,
        device_repo: Optional[IDeviceRepository] = None,
        audit_log: Optional[ISyncAuditLog] = None,
        max_concurrency: int = 4,
        interval_seconds: float = 300,
        sync_on_startup: bool = True,
        connection_check: Optional[CheckConnectionUseCase] = None,
    ):
        self.registry = registry
        self.sync_device = sync_device
        self.device_repo = device_repo
        self.audit_log = audit_log
        self.interval_seconds = interval_seconds
        self.sync_on_startup = sync_on_startup
        self.connection_check = connection_check
        self.orchestrator = SyncAllDevicesUseCase(
            registry, self.trigger, max_concurrency=max_concurrency
        )

        self._in_flight: dict[str, asyncio.Task] = {}
        self._closing = False

        # Health counters
        self.started_at = datetime.now(timezone.utc)
        self.last_cycle: Optional[CycleSummary] = None
        self.total_cycles = 0
        self.failed_cycles = 0

    @property
    def is_closing(self) -> bool:
        return self._closing

    def is_running(self, device_id: str) -> bool:
        return device_id in self._in_flight

    # ----------------------------------------
    # Single device
    # ----------------------------------------

    async def trigger(self, device_id: str) -> SyncResult:
        """Run (or join) a cycle for one device and return its result.

        Once shutdown has begun no new session is opened: the result is
        failure("cancelled") and nothing is recorded.

        Raises:
            DeviceNotFoundError: If the device is not registered
        """
        self.registry.get(device_id)
        task = self._in_flight.get(device_id)
        if task is not None:
            logger.debug(f"Joining in-flight cycle for device {device_id}")
        elif self._closing:
            logger.info(f"Not starting a cycle for device {device_id}: scheduler is shutting down")
            now = datetime.now(timezone.utc)
            return SyncResult(
                device_id=device_id,
                cycle_at=now,
                outcome=SyncOutcome.failure("cancelled"),
                attempts=0,
                error_details=("Scheduler is shutting down",),
                completed_at=now,
            )
        else:
            task = self._start(device_id)
        return await asyncio.shield(task)

    def submit(self, device_id: str) -> tuple[bool, bool]:
        """Start a cycle in the background.

        Returns:
            (accepted, already_running)

        Raises:
            DeviceNotFoundError: If the device is not registered
        """
        self.registry.get(device_id)
        if device_id in self._in_flight:
            return True, True
        if self._closing:
            return False, False
        self._start(device_id)
        return True, False

    def _start(self, device_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._run_device(device_id), name=f"sync-{device_id}")
        self._in_flight[device_id] = task

        def _done(finished: asyncio.Task) -> None:
            if self._in_flight.get(device_id) is finished:
                del self._in_flight[device_id]

        task.add_done_callback(_done)
        return task

    async def _run_device(self, device_id: str) -> SyncResult:
        device = self.registry.get(device_id)
        async with self.registry.lock_for(device_id):
            cycle_at = datetime.now(timezone.utc)
            try:
                result = await self.sync_device.execute(device)
            except asyncio.CancelledError:
                now = datetime.now(timezone.utc)
                await self._record(
                    device,
                    SyncResult(
                        device_id=device.id,
                        cycle_at=cycle_at,
                        outcome=SyncOutcome.failure("cancelled"),
                        error_details=("Cycle cancelled",),
                        completed_at=now,
                    ),
                )
                raise
            except Exception as e:
                logger.error(
                    f"Unexpected error syncing {device.display_name}: {type(e).__name__}: {e}",
                    exc_info=True,
                )
                result = SyncResult(
                    device_id=device.id,
                    cycle_at=cycle_at,
                    outcome=SyncOutcome.failure("unexpected-error"),
                    error_details=(f"{type(e).__name__}: {e}",),
                    completed_at=datetime.now(timezone.utc),
                )
            await self._record(device, result)
            return result

    async def _record(self, device: Device, result: SyncResult) -> None:
        self.registry.record_result(device.id, result)

        if self.device_repo is not None:
            try:
                await self.device_repo.save_sync_status(device)
            except Exception as e:
                logger.error(f"Failed to persist sync status of {device.display_name}: {e}")

        if self.audit_log is not None:
            try:
                await self.audit_log.append(result)
            except Exception as e:
                logger.error(f"Failed to append audit record for {device.display_name}: {e}")

        log = logger.error if result.outcome.is_failure else logger.info
        log(
            f"Device {device.display_name} cycle {result.outcome}: "
            f"fetched={result.records_fetched} written={result.records_written} "
            f"cleared={result.records_cleared} anomalies={len(result.anomalies)}",
            extra={"sync_result": result.to_dict()},
        )

    async def test_connection(self, device_id: str) -> ConnectionCheck:
        """Read-only connectivity check, serialized with the device's cycles.

        Disabled devices can be checked too.

        Raises:
            DeviceNotFoundError: If the device is not registered
            ConfigurationError: If no connection check was wired in
        """
        device = self.registry.get(device_id)
        if self.connection_check is None:
            raise ConfigurationError("Connection checks are not configured")
        if self._closing:
            now = datetime.now(timezone.utc)
            return ConnectionCheck(
                device_id=device_id,
                checked_at=now,
                error_code="cancelled",
                error="Scheduler is shutting down",
                completed_at=now,
            )

        async with self.registry.lock_for(device_id):
            return await self.connection_check.execute(device)

    # ----------------------------------------
    # All devices
    # ----------------------------------------

    async def run_cycle(self) -> CycleSummary:
        """Run one cycle over every enabled device."""
        summary = await self.orchestrator.execute()
        self.total_cycles += 1
        self.last_cycle = summary
        if summary.devices_attempted and summary.failed == summary.devices_attempted:
            self.failed_cycles += 1
        return summary

    async def _run_cycle_until(self, shutdown_event: asyncio.Event) -> Optional[CycleSummary]:
        """Run one cycle, abandoning it as soon as shutdown is requested."""
        cycle = asyncio.create_task(self.run_cycle(), name="sync-cycle")
        stopper = asyncio.create_task(shutdown_event.wait())
        done, _ = await asyncio.wait({cycle, stopper}, return_when=asyncio.FIRST_COMPLETED)

        if cycle in done:
            stopper.cancel()
            return cycle.result()

        logger.info("Shutdown requested during cycle, cancelling in-flight devices")
        await self.shutdown()
        cycle.cancel()
        await asyncio.gather(cycle, return_exceptions=True)
        return None

    async def run_forever(self, shutdown_event: asyncio.Event) -> None:
        """Periodic loop until shutdown_event is set."""
        if self.sync_on_startup and not shutdown_event.is_set():
            logger.info("Running initial sync on startup")
            await self._run_cycle_until(shutdown_event)

        while not shutdown_event.is_set():
            next_run = datetime.now(timezone.utc) + timedelta(seconds=self.interval_seconds)
            logger.info(f"Next sync at {next_run.isoformat()}")

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

            await self._run_cycle_until(shutdown_event)

        await self.shutdown()
        logger.info("Scheduler loop stopped")

    async def shutdown(self) -> None:
        """Cancel in-flight cycles and wait until their sessions are released."""
        self._closing = True
        tasks = list(self._in_flight.values())
        if not tasks:
            return

        logger.info(f"Cancelling {len(tasks)} in-flight device cycles")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ----------------------------------------
    # Status
    # ----------------------------------------

    def health(self) -> dict[str, Any]:
        """Health snapshot for the health check endpoints."""
        healthy = self.total_cycles == 0 or (
            self.last_cycle is not None
            and (
                not self.last_cycle.devices_attempted
                or self.last_cycle.failed < self.last_cycle.devices_attempted
            )
        )
        return {
            "status": "healthy" if healthy else "unhealthy",
            "uptime_seconds": round((datetime.now(timezone.utc) - self.started_at).total_seconds()),
            "devices": len(self.registry),
            "in_flight": sorted(self._in_flight),
            "total_cycles": self.total_cycles,
            "failed_cycles": self.failed_cycles,
            "last_cycle_at": (
                self.last_cycle.started_at.isoformat() if self.last_cycle else None
            ),
        }
