"""Use cases layer - business logic orchestration.

Use cases depend only on ports, never on adapters:
- DeviceSession: one terminal connection's lifecycle
- CheckConnectionUseCase: read-only connectivity check
- PunchReconciler: raw punches to ledger entries (pure)
- SyncDeviceUseCase: one end-to-end cycle for one terminal
- SyncAllDevicesUseCase: bounded fan-out over all enabled terminals
"""

from .check_connection import CheckConnectionUseCase
from .device_session import DeviceSession, SessionState
from .reconcile_punches import PunchReconciler, ReconciliationResult
from .sync_all_devices import SyncAllDevicesUseCase
from .sync_device import SyncDeviceUseCase

__all__ = [
    "CheckConnectionUseCase",
    "DeviceSession",
    "PunchReconciler",
    "ReconciliationResult",
    "SessionState",
    "SyncAllDevicesUseCase",
    "SyncDeviceUseCase",
]
