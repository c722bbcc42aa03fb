#!/usr/bin/env python3
"""Exception Hierarchy for Attendance Device Sync.

This module provides a structured exception hierarchy for handling errors
across the sync engine: terminal sessions, the attendance ledger, the
device registry and the database layer.

Design Principles:
    - All exceptions inherit from AttendanceSyncError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - Driver and ledger errors never escape a device cycle; the cycle
      converts them into the SyncResult outcome

Exception Hierarchy:
    AttendanceSyncError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── DeviceError
    │   ├── ConnectError (recoverable - retry)
    │   ├── ProtocolError (recoverable a bounded number of times)
    │   ├── SessionStateError (programming error)
    │   └── ClearSkipped (device log left intact)
    ├── LedgerError
    │   ├── LedgerReadError
    │   └── LedgerWriteError (never retried within a cycle)
    ├── DeviceNotFoundError
    └── DatabaseError
        ├── ConnectionPoolError
        └── TransactionError
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class AttendanceSyncError(Exception):
    """Base exception for all sync engine errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "CONNECT_ERROR")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(AttendanceSyncError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Device Errors
# ============================================

class DeviceError(AttendanceSyncError):
    """Base class for errors talking to a terminal.

    Attributes:
        device_id: Registry id of the terminal involved
    """

    def __init__(self, message: str, device_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if device_id:
            details["device_id"] = device_id
        super().__init__(message, details=details, **kwargs)
        self.device_id = device_id


class ConnectError(DeviceError):
    """Raised when the terminal cannot be reached or a call times out."""

    def __init__(
        self,
        message: str = "Failed to connect to device",
        address: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if address:
            details["address"] = address
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="CONNECT_ERROR",
            details=details,
            recoverable=True,
            **kwargs,
        )


class ProtocolError(DeviceError):
    """Raised when the terminal returns a malformed or unexpected response."""

    def __init__(
        self,
        message: str = "Unexpected device response",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="PROTOCOL_ERROR",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.operation = operation


class SessionStateError(DeviceError):
    """Raised when a session operation is invoked in the wrong state."""

    def __init__(
        self,
        operation: str,
        state: str,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["operation"] = operation
        details["state"] = state
        super().__init__(
            f"Cannot {operation} while session is {state}",
            code="SESSION_STATE_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.operation = operation
        self.state = state


class ClearSkipped(DeviceError):
    """Raised when the driver declines to purge the terminal's punch log.

    The terminal keeps every record; the next cycle replays them as no-ops.
    """

    def __init__(
        self,
        message: str = "Device log not cleared",
        resident: int = 0,
        requested: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["resident"] = resident
        details["requested"] = requested
        super().__init__(
            message,
            code="CLEAR_SKIPPED",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.resident = resident
        self.requested = requested


# ============================================
# Ledger Errors
# ============================================

class LedgerError(AttendanceSyncError):
    """Base class for errors talking to the attendance ledger."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class LedgerReadError(LedgerError):
    """Raised when dedup keys, open entries or employees cannot be read."""

    def __init__(self, message: str = "Ledger read failed", **kwargs):
        super().__init__(message, code="LEDGER_READ_ERROR", **kwargs)


class LedgerWriteError(LedgerError):
    """Raised when the ledger rejects a whole batch of entries.

    Per-entry rejections are reported through WriteResult instead.
    """

    def __init__(
        self,
        message: str = "Ledger write failed",
        entry_count: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["entry_count"] = entry_count
        super().__init__(
            message,
            code="LEDGER_WRITE_ERROR",
            details=details,
            **kwargs,
        )
        self.entry_count = entry_count


# ============================================
# Registry Errors
# ============================================

class DeviceNotFoundError(AttendanceSyncError):
    """Raised when a device id is not in the registry."""

    def __init__(self, device_id: str, **kwargs):
        details = kwargs.pop("details", {})
        details["device_id"] = device_id
        super().__init__(
            f"Device '{device_id}' not found",
            code="DEVICE_NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.device_id = device_id


# ============================================
# Database Errors
# ============================================

class DatabaseError(AttendanceSyncError):
    """Base class for database-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionPoolError(DatabaseError):
    """Raised when database connection pool is exhausted or unavailable."""

    def __init__(
        self,
        message: str = "Database connection pool error",
        **kwargs,
    ):
        super().__init__(message, code="CONNECTION_POOL_ERROR", **kwargs)


class TransactionError(DatabaseError):
    """Raised when database transaction fails."""

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details=details,
            **kwargs,
        )


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "AttendanceSyncError",
    # Configuration
    "ConfigurationError",
    # Device
    "DeviceError",
    "ConnectError",
    "ProtocolError",
    "SessionStateError",
    "ClearSkipped",
    # Ledger
    "LedgerError",
    "LedgerReadError",
    "LedgerWriteError",
    # Registry
    "DeviceNotFoundError",
    # Database
    "DatabaseError",
    "ConnectionPoolError",
    "TransactionError",
]
