"""Device Registry - the set of known terminals and their sync bookkeeping.

Process-local state with one asyncio.Lock per device. The same lock gives
the scheduler its single-in-flight guarantee, so a device's bookkeeping is
only ever mutated by the cycle that holds it.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable

from ..common.exceptions import DeviceNotFoundError
from .domain.entities import Device, SyncResult, SyncStatus

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


class DeviceRegistry:
    """Known terminals, keyed by id."""

    def __init__(self, devices: Iterable[Device] = ()):
        self._devices: dict[str, Device] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.load(devices)

    def load(self, devices: Iterable[Device]) -> None:
        """Add or replace devices from configuration, keeping sync bookkeeping."""
        for device in devices:
            self.upsert(device)

    def upsert(self, device: Device) -> None:
        """Add or replace one device's configuration.

        Bookkeeping already tracked in this process wins over the
        incoming copy when the incoming copy is older.
        """
        existing = self._devices.get(device.id)
        if existing and existing.last_sync_at and (
            device.last_sync_at is None or device.last_sync_at < existing.last_sync_at
        ):
            device.last_sync_at = existing.last_sync_at
            device.last_sync_status = existing.last_sync_status
            device.consecutive_failures = existing.consecutive_failures
        self._devices[device.id] = device
        self._locks.setdefault(device.id, asyncio.Lock())

    def get(self, device_id: str) -> Device:
        try:
            return self._devices[device_id]
        except KeyError:
            raise DeviceNotFoundError(device_id)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def all(self) -> list[Device]:
        return sorted(self._devices.values(), key=lambda d: d.id)

    def list_enabled(self) -> list[Device]:
        """Enabled devices, stalest first; never-synced devices lead."""
        enabled = [d for d in self._devices.values() if d.enabled]
        return sorted(enabled, key=lambda d: (d.last_sync_at or _NEVER, d.id))

    def lock_for(self, device_id: str) -> asyncio.Lock:
        """Per-device exclusivity lock."""
        if device_id not in self._locks:
            raise DeviceNotFoundError(device_id)
        return self._locks[device_id]

    def record_result(self, device_id: str, result: SyncResult) -> Device:
        """Update last-sync bookkeeping after a cycle concludes.

        Failures only increase consecutive_failures; a device is never
        disabled here.
        """
        device = self.get(device_id)
        device.last_sync_at = result.completed_at or result.cycle_at
        device.last_sync_status = str(result.outcome)

        if result.outcome.status == SyncStatus.FAILURE:
            device.consecutive_failures += 1
            if device.consecutive_failures > 1:
                logger.warning(
                    f"Device {device.display_name} failed "
                    f"{device.consecutive_failures} consecutive cycles"
                )
        else:
            device.consecutive_failures = 0
        return device
