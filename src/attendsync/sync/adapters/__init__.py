"""Adapters layer - Infrastructure implementations for attendance sync.

This layer contains concrete implementations of the ports defined in the domain layer:
- ZKDeviceDriver: pyzk implementation of IDeviceDriver
- PostgresAttendanceLedger: PostgreSQL implementation of IAttendanceLedger
- PostgresEmployeeDirectory: PostgreSQL implementation of IEmployeeDirectory
- PostgresDeviceRepository / EnvDeviceRepository: implementations of IDeviceRepository
- PostgresSyncAuditLog / LoggingSyncAuditLog: implementations of ISyncAuditLog
"""

from .postgres_audit_log import LoggingSyncAuditLog, PostgresSyncAuditLog
from .postgres_device_repo import EnvDeviceRepository, PostgresDeviceRepository
from .postgres_employee_directory import PostgresEmployeeDirectory
from .postgres_ledger import PostgresAttendanceLedger
from .zk_driver import ZKDeviceDriver, ZKHandle

__all__ = [
    # Terminal
    "ZKDeviceDriver",
    "ZKHandle",
    # Ledger
    "PostgresAttendanceLedger",
    "PostgresEmployeeDirectory",
    # Devices
    "EnvDeviceRepository",
    "PostgresDeviceRepository",
    # Audit
    "LoggingSyncAuditLog",
    "PostgresSyncAuditLog",
]
