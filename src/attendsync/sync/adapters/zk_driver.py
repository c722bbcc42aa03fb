"""ZKTeco terminal driver built on pyzk.

pyzk is blocking, so every call runs in a worker thread via
asyncio.to_thread. The session applies the per-call timeouts; this adapter
only maps pyzk's failures onto ConnectError / ProtocolError and pyzk's
objects onto domain entities.

pyzk can only purge the whole attendance log. clear_punch_records
therefore re-reads the log (the keypad is locked for the whole session, so
nothing new can arrive) and purges only when every resident record is in
the requested set. Otherwise it raises ClearSkipped and the records stay on
the terminal until a later cycle can clear them.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from zk import ZK
from zk.exception import ZKError, ZKErrorConnection, ZKErrorResponse, ZKNetworkError

from ...common.exceptions import ClearSkipped, ConnectError, ProtocolError
from ..domain.entities import DedupKey, Device, DeviceInfo, RawPunchRecord, RawUser
from ..domain.ports import IDeviceDriver

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ZKHandle:
    """An open pyzk connection and the device it belongs to."""

    device: Device
    conn: Any


class ZKDeviceDriver(IDeviceDriver):
    """IDeviceDriver implementation for ZKTeco terminals."""

    def __init__(self, zk_factory: Callable[..., Any] = ZK, ommit_ping: bool = True):
        """Initialize the driver.

        Args:
            zk_factory: Callable building a pyzk ZK object (overridable in tests)
            ommit_ping: Skip pyzk's ICMP ping before connecting
        """
        self._zk_factory = zk_factory
        self._ommit_ping = ommit_ping

    async def _run(self, handle: ZKHandle, operation: str, func: Callable[..., T], *args) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except (ZKErrorConnection, ZKNetworkError, OSError) as e:
            raise ConnectError(
                f"{operation} lost connection to {handle.device.display_name}: {e}",
                address=f"{handle.device.address}:{handle.device.port}",
                device_id=handle.device.id,
                cause=e,
            )
        except (ZKErrorResponse, ZKError) as e:
            raise ProtocolError(
                f"{operation} rejected by {handle.device.display_name}: {e}",
                operation=operation,
                device_id=handle.device.id,
                cause=e,
            )

    async def connect(self, device: Device, timeout: float) -> ZKHandle:
        zk = self._zk_factory(
            device.address,
            port=device.port,
            timeout=max(1, int(timeout)),
            password=device.password,
            force_udp=device.force_udp,
            ommit_ping=self._ommit_ping,
        )
        handle = ZKHandle(device=device, conn=None)
        handle.conn = await self._run(handle, "connect", zk.connect)
        logger.debug(f"Connected to {device.display_name} at {device.address}:{device.port}")
        return handle

    async def disable(self, handle: ZKHandle) -> None:
        await self._run(handle, "disable_device", handle.conn.disable_device)

    async def enable(self, handle: ZKHandle) -> None:
        await self._run(handle, "enable_device", handle.conn.enable_device)

    async def get_info(self, handle: ZKHandle) -> DeviceInfo:
        conn = handle.conn

        def read_info() -> DeviceInfo:
            return DeviceInfo(
                serial_number=_clean(conn.get_serialnumber()),
                firmware_version=_clean(conn.get_firmware_version()),
                platform=_clean(conn.get_platform()),
                device_name=_clean(conn.get_device_name()),
                mac_address=_clean(conn.get_mac()),
            )

        return await self._run(handle, "get_info", read_info)

    async def get_users(self, handle: ZKHandle) -> list[RawUser]:
        users = await self._run(handle, "get_users", handle.conn.get_users) or []
        return [
            RawUser(
                uid=int(user.uid),
                user_id=str(user.user_id),
                name=user.name or "",
                card_number=str(user.card) if user.card else None,
                privilege=int(user.privilege or 0),
            )
            for user in users
        ]

    async def get_punch_records(self, handle: ZKHandle) -> list[RawPunchRecord]:
        attendances = await self._run(handle, "get_attendance", handle.conn.get_attendance) or []
        return [self._to_record(handle.device, att) for att in attendances]

    def _to_record(self, device: Device, att: Any) -> RawPunchRecord:
        # pyzk: `punch` is the punch state, `status` is the verify mode
        return RawPunchRecord(
            device_id=device.id,
            user_id=str(att.user_id),
            timestamp=device.to_epoch(att.timestamp),
            status=int(att.punch),
            verify_type=int(att.status or 0),
        )

    async def clear_punch_records(self, handle: ZKHandle, keys: set[DedupKey]) -> int:
        resident = await self.get_punch_records(handle)
        resident_keys = {r.dedup_key for r in resident}
        leftover = resident_keys - set(keys)

        if leftover:
            raise ClearSkipped(
                f"{len(leftover)} of {len(resident_keys)} records on "
                f"{handle.device.display_name} are not persisted; log not cleared",
                resident=len(resident_keys),
                requested=len(keys),
                device_id=handle.device.id,
            )

        if not resident_keys:
            return 0

        await self._run(handle, "clear_attendance", handle.conn.clear_attendance)
        logger.info(f"Cleared {len(resident_keys)} records from {handle.device.display_name}")
        return len(resident_keys)

    async def disconnect(self, handle: ZKHandle) -> None:
        if handle.conn is None:
            return
        conn, handle.conn = handle.conn, None
        try:
            await asyncio.to_thread(conn.disconnect)
        except (ZKError, OSError) as e:
            logger.debug(f"Disconnect from {handle.device.display_name} failed: {e}")


def _clean(value: Optional[Any]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().strip("\x00")
    return text or None
