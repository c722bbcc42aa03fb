"""Shared infrastructure for the sync engine.

Modules:
    exceptions: Exception hierarchy (AttendanceSyncError and subclasses)
    resilience: Retry, timeout and bounded-concurrency helpers
    database: asyncpg pool and transaction helpers
"""
from .exceptions import (
    AttendanceSyncError,
    ClearSkipped,
    ConfigurationError,
    ConnectError,
    ConnectionPoolError,
    DatabaseError,
    DeviceError,
    DeviceNotFoundError,
    LedgerError,
    LedgerReadError,
    LedgerWriteError,
    ProtocolError,
    SessionStateError,
    TransactionError,
)
from .resilience import (
    DEFAULT_RETRYABLE_EXCEPTIONS,
    process_concurrent,
    retry_async,
    with_timeout,
)

__all__ = [
    # Exceptions
    "AttendanceSyncError",
    "ClearSkipped",
    "ConfigurationError",
    "ConnectError",
    "ConnectionPoolError",
    "DatabaseError",
    "DeviceError",
    "DeviceNotFoundError",
    "LedgerError",
    "LedgerReadError",
    "LedgerWriteError",
    "ProtocolError",
    "SessionStateError",
    "TransactionError",
    # Resilience
    "DEFAULT_RETRYABLE_EXCEPTIONS",
    "process_concurrent",
    "retry_async",
    "with_timeout",
]
