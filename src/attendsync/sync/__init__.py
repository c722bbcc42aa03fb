"""Sync module - Clean Architecture implementation of terminal-to-ledger sync.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Session, reconciler and cycle orchestration
    adapters/   - Infrastructure implementations (pyzk, PostgreSQL)
    registry    - Known terminals and their sync bookkeeping
    scheduler   - Periodic and on-demand cycles, single flight per device
"""

from .domain.entities import (
    Anomaly,
    AnomalyKind,
    CycleSummary,
    Device,
    LedgerEntry,
    RawPunchRecord,
    SyncOutcome,
    SyncResult,
)
from .registry import DeviceRegistry
from .scheduler import SyncScheduler

__all__ = [
    "Anomaly",
    "AnomalyKind",
    "CycleSummary",
    "Device",
    "DeviceRegistry",
    "LedgerEntry",
    "RawPunchRecord",
    "SyncOutcome",
    "SyncResult",
    "SyncScheduler",
]
