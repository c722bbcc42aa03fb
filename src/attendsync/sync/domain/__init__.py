"""Domain layer - entities and port interfaces. No infrastructure imports."""

from .entities import (
    Anomaly,
    AnomalyKind,
    ConnectionCheck,
    CycleSummary,
    DedupKey,
    Device,
    DeviceInfo,
    LedgerEntry,
    PunchDirection,
    RawPunchRecord,
    RawUser,
    SyncOutcome,
    SyncResult,
    SyncStatus,
    WriteResult,
)
from .ports import (
    IAttendanceLedger,
    IDeviceDriver,
    IDeviceRepository,
    IEmployeeDirectory,
    ISyncAuditLog,
)

__all__ = [
    # Entities
    "Anomaly",
    "AnomalyKind",
    "ConnectionCheck",
    "CycleSummary",
    "DedupKey",
    "Device",
    "DeviceInfo",
    "LedgerEntry",
    "PunchDirection",
    "RawPunchRecord",
    "RawUser",
    "SyncOutcome",
    "SyncResult",
    "SyncStatus",
    "WriteResult",
    # Ports
    "IAttendanceLedger",
    "IDeviceDriver",
    "IDeviceRepository",
    "IEmployeeDirectory",
    "ISyncAuditLog",
]
