"""Check Connection Use Case - read-only connectivity check for one terminal.

Opens a session, reads device info plus the user and punch counts, and
releases the terminal. Nothing is reconciled, written or cleared, so the
check is safe to run against a terminal that has never been synced.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ...common.exceptions import DeviceError
from ..domain.entities import ConnectionCheck, Device
from ..domain.ports import IDeviceDriver
from .device_session import DeviceSession
from .sync_device import failure_reason

logger = logging.getLogger(__name__)


class CheckConnectionUseCase:
    """Connects to a terminal and reports what it sees.

    Example:
        check = await CheckConnectionUseCase(ZKDeviceDriver()).execute(device)
        if not check.ok:
            print(check.error_code, check.error)
    """

    def __init__(self, driver: IDeviceDriver, timeout: Optional[float] = None):
        self.driver = driver
        self.timeout = timeout

    async def execute(self, device: Device) -> ConnectionCheck:
        checked_at = datetime.now(timezone.utc)
        logger.info(f"Checking connection to {device.display_name} ({device.address}:{device.port})")

        async with DeviceSession(self.driver, device, self.timeout) as session:
            try:
                await session.open()
                info = await session.fetch_device_info()
                users = await session.fetch_users()
                records = await session.fetch_punch_records()
            except DeviceError as e:
                logger.warning(f"Connection check of {device.display_name} failed: {e}")
                return ConnectionCheck(
                    device_id=device.id,
                    checked_at=checked_at,
                    error_code=failure_reason(e),
                    error=str(e),
                    completed_at=datetime.now(timezone.utc),
                )

        logger.info(
            f"{device.display_name} reachable: serial={info.serial_number} "
            f"users={len(users)} records={len(records)}"
        )
        return ConnectionCheck(
            device_id=device.id,
            checked_at=checked_at,
            device_info=info,
            user_count=len(users),
            record_count=len(records),
            completed_at=datetime.now(timezone.utc),
        )
