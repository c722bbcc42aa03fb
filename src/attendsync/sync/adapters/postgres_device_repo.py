"""Device repository adapters.

PostgresDeviceRepository reads terminals from the attendance_devices table
and writes sync bookkeeping back to it. EnvDeviceRepository reads the
ATTENDANCE_DEVICES JSON list instead, for deployments without a device
table; its bookkeeping lives only in the process registry.
"""

import json
import logging
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field, ValidationError

from ...common.database import database_connection
from ...common.exceptions import ConfigurationError
from ..domain.entities import DEFAULT_DEVICE_PORT, Device
from ..domain.ports import IDeviceRepository

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresDeviceRepository(IDeviceRepository):
    """PostgreSQL implementation of IDeviceRepository."""

    def __init__(self, pool: "asyncpg.Pool", default_timeout: float = 10.0):
        """Initialize the repository.

        Args:
            pool: asyncpg connection pool
            default_timeout: Timeout for devices without their own
        """
        self.pool = pool
        self.default_timeout = default_timeout

    async def list_devices(self) -> list[Device]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                """
                SELECT
                    id, name, address, port, timeout_seconds, enabled,
                    password, force_udp, timezone,
                    last_sync_at, last_sync_status, consecutive_failures
                FROM attendance_devices
                ORDER BY id
                """
            )

        devices = [self._row_to_device(row) for row in rows]
        logger.info(f"Loaded {len(devices)} devices from database")
        return devices

    async def save_sync_status(self, device: Device) -> None:
        async with database_connection(self.pool) as conn:
            await conn.execute(
                """
                UPDATE attendance_devices SET
                    last_sync_at = $2,
                    last_sync_status = $3,
                    consecutive_failures = $4,
                    updated_at = NOW()
                WHERE id = $1
                """,
                device.id,
                device.last_sync_at,
                device.last_sync_status,
                device.consecutive_failures,
            )

    def _row_to_device(self, row) -> Device:
        return Device(
            id=row["id"],
            name=row["name"],
            address=row["address"],
            port=row["port"] or DEFAULT_DEVICE_PORT,
            timeout=row["timeout_seconds"] or self.default_timeout,
            enabled=row["enabled"],
            password=row["password"] or 0,
            force_udp=row["force_udp"],
            timezone=row["timezone"] or "UTC",
            last_sync_at=row["last_sync_at"],
            last_sync_status=row["last_sync_status"],
            consecutive_failures=row["consecutive_failures"] or 0,
        )


class DeviceConfigItem(BaseModel):
    """One ATTENDANCE_DEVICES item."""

    id: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    port: int = Field(DEFAULT_DEVICE_PORT, ge=1, le=65535)
    name: Optional[str] = None
    timeout: Optional[float] = Field(None, gt=0)
    enabled: bool = True
    password: int = 0
    force_udp: bool = False
    timezone: str = "UTC"


class EnvDeviceRepository(IDeviceRepository):
    """Devices from a JSON list, e.g.

    ATTENDANCE_DEVICES='[{"id": "front-door", "address": "10.0.0.21"}]'
    """

    def __init__(self, devices_json: str, default_timeout: float = 10.0):
        self.devices = self._parse(devices_json, default_timeout)

    @staticmethod
    def _parse(devices_json: str, default_timeout: float) -> list[Device]:
        try:
            items = json.loads(devices_json)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"ATTENDANCE_DEVICES is not valid JSON: {e}", cause=e)

        if not isinstance(items, list):
            raise ConfigurationError("ATTENDANCE_DEVICES must be a JSON list")

        devices: list[Device] = []
        seen: set[str] = set()
        for index, item in enumerate(items):
            try:
                parsed = DeviceConfigItem.model_validate(item)
            except ValidationError as e:
                raise ConfigurationError(
                    f"ATTENDANCE_DEVICES[{index}] is invalid: {e}",
                    cause=e,
                )
            if parsed.id in seen:
                raise ConfigurationError(f"Duplicate device id in ATTENDANCE_DEVICES: {parsed.id}")
            seen.add(parsed.id)

            devices.append(
                Device(
                    id=parsed.id,
                    address=parsed.address,
                    port=parsed.port,
                    name=parsed.name,
                    timeout=parsed.timeout or default_timeout,
                    enabled=parsed.enabled,
                    password=parsed.password,
                    force_udp=parsed.force_udp,
                    timezone=parsed.timezone,
                )
            )
        return devices

    async def list_devices(self) -> list[Device]:
        return list(self.devices)

    async def save_sync_status(self, device: Device) -> None:
        logger.debug(f"Sync status of {device.id} kept in memory: {device.last_sync_status}")
