"""Port interfaces for attendance sync.

Ports define the contracts between the use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .entities import (
    DedupKey,
    Device,
    DeviceInfo,
    LedgerEntry,
    RawPunchRecord,
    RawUser,
    SyncResult,
    WriteResult,
)


class IDeviceDriver(ABC):
    """Port for the terminal protocol.

    Implementations own the wire format. Every method may block on the
    network; callers bound each call with a timeout.

    Failures must be raised as ConnectError (transport) or ProtocolError
    (unexpected response).
    """

    @abstractmethod
    async def connect(self, device: Device, timeout: float) -> Any:
        """Open a protocol session.

        Returns:
            Opaque handle passed to every other call
        """
        ...

    @abstractmethod
    async def disable(self, handle: Any) -> None:
        """Lock the terminal keypad so no punches arrive mid-cycle."""
        ...

    @abstractmethod
    async def enable(self, handle: Any) -> None:
        """Unlock the terminal keypad."""
        ...

    @abstractmethod
    async def get_info(self, handle: Any) -> DeviceInfo:
        """Read identity and firmware metadata."""
        ...

    @abstractmethod
    async def get_users(self, handle: Any) -> list[RawUser]:
        """Read every user enrolled on the terminal."""
        ...

    @abstractmethod
    async def get_punch_records(self, handle: Any) -> list[RawPunchRecord]:
        """Read every punch record resident on the terminal."""
        ...

    @abstractmethod
    async def clear_punch_records(self, handle: Any, keys: set[DedupKey]) -> int:
        """Purge the given records from the terminal.

        Raises:
            ClearSkipped: If the terminal cannot purge exactly these records

        Returns:
            Number of records purged
        """
        ...

    @abstractmethod
    async def disconnect(self, handle: Any) -> None:
        """Close the protocol session. Idempotent, never raises."""
        ...


class IAttendanceLedger(ABC):
    """Port for the central attendance ledger."""

    @abstractmethod
    async def get_synced_keys(
        self,
        device_id: str,
        keys: list[DedupKey],
    ) -> set[DedupKey]:
        """Return the subset of keys that already contributed to a ledger entry."""
        ...

    @abstractmethod
    async def get_open_entries(self, employee_ids: list[str]) -> list[LedgerEntry]:
        """Return the currently open entry (if any) of each employee."""
        ...

    @abstractmethod
    async def upsert_entries(self, entries: list[LedgerEntry]) -> WriteResult:
        """Upsert entries by entry_key and mark their source keys as synced.

        Each entry and its keys are persisted atomically. Rejections are
        reported per entry, not all-or-nothing.

        Raises:
            LedgerWriteError: If nothing could be written at all
        """
        ...


class IEmployeeDirectory(ABC):
    """Port for mapping terminal users to employees."""

    @abstractmethod
    async def resolve_employee(self, device_id: str, user_id: str) -> Optional[str]:
        """Return the employee id for a terminal user, or None if unmapped."""
        ...

    async def resolve_employees(
        self,
        device_id: str,
        user_ids: list[str],
    ) -> dict[str, str]:
        """Resolve many users at once. Unmapped users are absent from the result."""
        mapping: dict[str, str] = {}
        for user_id in user_ids:
            employee_id = await self.resolve_employee(device_id, user_id)
            if employee_id is not None:
                mapping[user_id] = employee_id
        return mapping

    @abstractmethod
    async def upsert_device_users(self, device_id: str, users: list[RawUser]) -> int:
        """Record the terminal's user roster.

        Returns:
            Number of users stored
        """
        ...


class IDeviceRepository(ABC):
    """Port for terminal configuration and sync bookkeeping storage."""

    @abstractmethod
    async def list_devices(self) -> list[Device]:
        """Load every configured terminal."""
        ...

    @abstractmethod
    async def save_sync_status(self, device: Device) -> None:
        """Persist last_sync_at, last_sync_status and consecutive_failures."""
        ...


class ISyncAuditLog(ABC):
    """Port for the append-only trail of device cycle results."""

    @abstractmethod
    async def append(self, result: SyncResult) -> None:
        """Append one result."""
        ...
