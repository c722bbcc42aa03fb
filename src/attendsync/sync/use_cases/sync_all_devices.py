"""Sync All Devices Use Case - one fan-out over every enabled terminal.

Devices are processed concurrently up to max_concurrency. One device's
failure never fails the others: each device's cycle already turns driver
and ledger errors into its SyncResult, and anything unexpected that still
escapes becomes a failure result for that device here.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from ...common.resilience import process_concurrent
from ..domain.entities import CycleSummary, Device, SyncOutcome, SyncResult
from ..registry import DeviceRegistry

logger = logging.getLogger(__name__)


class SyncAllDevicesUseCase:
    """Runs one cycle for every enabled device.

    Example:
        use_case = SyncAllDevicesUseCase(registry, scheduler.trigger, max_concurrency=4)
        summary = await use_case.execute()
        print(f"{summary.succeeded}/{summary.devices_attempted} devices synced")
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        sync_device: Callable[[str], Awaitable[SyncResult]],
        max_concurrency: int = 4,
    ):
        """Initialize the use case.

        Args:
            registry: Source of enabled devices
            sync_device: Runs one device cycle by id (normally SyncScheduler.trigger)
            max_concurrency: Devices processed in parallel
        """
        self.registry = registry
        self.sync_device = sync_device
        self.max_concurrency = max_concurrency

    async def execute(self) -> CycleSummary:
        summary = CycleSummary(started_at=datetime.now(timezone.utc))
        devices = self.registry.list_enabled()

        if not devices:
            logger.info("No enabled devices to sync")
            summary.completed_at = datetime.now(timezone.utc)
            return summary

        logger.info(
            f"Syncing {len(devices)} devices (max {self.max_concurrency} concurrent)"
        )

        async def run(device: Device) -> SyncResult:
            return await self.sync_device(device.id)

        outcomes = await process_concurrent(
            devices,
            run,
            max_concurrent=self.max_concurrency,
            return_exceptions=True,
        )

        for device, outcome in zip(devices, outcomes):
            if isinstance(outcome, SyncResult):
                summary.results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                # CancelledError and other BaseExceptions abort the fan-out
                raise outcome
            logger.error(
                f"Unexpected error syncing {device.display_name}: {outcome}",
                exc_info=outcome,
            )
            now = datetime.now(timezone.utc)
            summary.results.append(
                SyncResult(
                    device_id=device.id,
                    cycle_at=now,
                    outcome=SyncOutcome.failure("unexpected-error"),
                    error_details=(f"{type(outcome).__name__}: {outcome}",),
                    completed_at=now,
                )
            )

        summary.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Cycle complete: {summary.succeeded} succeeded, "
            f"{summary.partially_failed} partial, {summary.failed} failed, "
            f"{summary.entries_written} entries written "
            f"in {summary.duration_seconds:.1f}s"
        )
        return summary
