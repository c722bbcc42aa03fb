"""Domain entities for attendance sync.

These are pure data structures with no infrastructure dependencies.
They represent the terminals, the raw records read from them, and the
ledger entries and results produced by a sync cycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo

# (device id, device-local user id, raw epoch timestamp)
DedupKey = tuple[str, str, int]

# Terminal punch state codes
STATUS_CHECK_IN = 0
STATUS_CHECK_OUT = 1
STATUS_BREAK_OUT = 2
STATUS_BREAK_IN = 3
STATUS_OVERTIME_IN = 4
STATUS_OVERTIME_OUT = 5

ENTRY_STATUS_CODES = frozenset({STATUS_CHECK_IN, STATUS_BREAK_IN, STATUS_OVERTIME_IN})
EXIT_STATUS_CODES = frozenset({STATUS_CHECK_OUT, STATUS_BREAK_OUT, STATUS_OVERTIME_OUT})

DEFAULT_DEVICE_PORT = 4370


def key_to_str(key: DedupKey) -> str:
    """Render a dedup key for logs and JSON."""
    device_id, user_id, timestamp = key
    return f"{device_id}:{user_id}:{timestamp}"


class PunchDirection(Enum):
    """Whether a punch opens or closes an attendance session."""

    ENTRY = "entry"
    EXIT = "exit"


@dataclass
class Device:
    """A registered attendance terminal.

    Only last_sync_at, last_sync_status and consecutive_failures are
    changed by the sync engine; everything else comes from configuration.
    """

    id: str
    address: str
    port: int = DEFAULT_DEVICE_PORT
    name: Optional[str] = None
    timeout: float = 10.0
    enabled: bool = True

    # Driver options
    password: int = 0
    force_udp: bool = False
    timezone: str = "UTC"  # zone of the terminal clock

    # Sync bookkeeping
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    consecutive_failures: int = 0

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def to_epoch(self, local_time: datetime) -> int:
        """Convert a terminal timestamp to epoch seconds.

        Naive timestamps are interpreted in the terminal's timezone.
        """
        if local_time.tzinfo is None:
            local_time = local_time.replace(tzinfo=ZoneInfo(self.timezone))
        return int(local_time.timestamp())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "address": self.address,
            "port": self.port,
            "enabled": self.enabled,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "last_sync_status": self.last_sync_status,
            "consecutive_failures": self.consecutive_failures,
        }


@dataclass(frozen=True)
class DeviceInfo:
    """Identity and firmware metadata reported by a terminal."""

    serial_number: Optional[str] = None
    firmware_version: Optional[str] = None
    platform: Optional[str] = None
    device_name: Optional[str] = None
    mac_address: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "serial_number": self.serial_number,
            "firmware_version": self.firmware_version,
            "platform": self.platform,
            "device_name": self.device_name,
            "mac_address": self.mac_address,
        }


@dataclass(frozen=True)
class RawUser:
    """A user enrolled on a terminal."""

    uid: int
    user_id: str
    name: str = ""
    card_number: Optional[str] = None
    privilege: int = 0


@dataclass(frozen=True)
class RawPunchRecord:
    """One punch as read from a terminal. Immutable once read."""

    device_id: str
    user_id: str
    timestamp: int  # epoch seconds
    status: int
    verify_type: int = 0

    @property
    def dedup_key(self) -> DedupKey:
        return (self.device_id, self.user_id, self.timestamp)

    @property
    def punched_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def direction(self) -> Optional[PunchDirection]:
        """ENTRY, EXIT, or None for a status code the terminal should not emit."""
        if self.status in ENTRY_STATUS_CODES:
            return PunchDirection.ENTRY
        if self.status in EXIT_STATUS_CODES:
            return PunchDirection.EXIT
        return None


@dataclass(frozen=True)
class LedgerEntry:
    """A reconciled attendance session written to the ledger.

    entry_key is the dedup key of the opening punch and is the ledger's
    upsert identity. An unterminated entry was closed without an exit punch;
    it is not open even though exit_time is None.
    """

    employee_id: str
    device_id: str
    entry_key: DedupKey
    entry_time: datetime
    exit_time: Optional[datetime] = None
    unterminated: bool = False
    source_keys: tuple[DedupKey, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.exit_time is None and not self.unterminated

    @property
    def interval_end(self) -> Optional[datetime]:
        """End of [entry_time, end). None means still open."""
        if self.exit_time is not None:
            return self.exit_time
        if self.unterminated:
            return self.entry_time
        return None

    def overlaps(self, other: "LedgerEntry") -> bool:
        """True if both entries belong to one employee and their intervals intersect."""
        if self.employee_id != other.employee_id:
            return False
        if self.entry_time == other.entry_time:
            return True
        self_end = self.interval_end
        other_end = other.interval_end
        return (other_end is None or self.entry_time < other_end) and (
            self_end is None or other.entry_time < self_end
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "device_id": self.device_id,
            "entry_key": key_to_str(self.entry_key),
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "unterminated": self.unterminated,
        }


class AnomalyKind(Enum):
    """Informational problems found while reconciling punches."""

    UNTERMINATED_SESSION = "unterminated-session"
    ORPHAN_EXIT = "orphan-exit"
    UNMAPPED_USER = "unmapped-user"
    UNKNOWN_STATUS = "unknown-status"
    OUT_OF_ORDER = "out-of-order"


@dataclass(frozen=True)
class Anomaly:
    """A reconciliation anomaly. Never aborts a cycle."""

    kind: AnomalyKind
    device_id: str
    user_id: str
    timestamp: Optional[int] = None
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "device_id": self.device_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "detail": self.detail,
        }


class SyncStatus(Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


@dataclass(frozen=True)
class SyncOutcome:
    """Outcome of one device cycle."""

    status: SyncStatus
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "SyncOutcome":
        return cls(SyncStatus.SUCCESS)

    @classmethod
    def partial_failure(cls, reason: str) -> "SyncOutcome":
        return cls(SyncStatus.PARTIAL_FAILURE, reason)

    @classmethod
    def failure(cls, reason: str) -> "SyncOutcome":
        return cls(SyncStatus.FAILURE, reason)

    @property
    def is_success(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.status == SyncStatus.FAILURE

    def __str__(self) -> str:
        if self.reason:
            return f"{self.status.value}({self.reason})"
        return self.status.value


@dataclass(frozen=True)
class WriteResult:
    """Per-entry result of a ledger upsert, keyed by entry_key."""

    accepted: tuple[DedupKey, ...] = ()
    rejected: dict[DedupKey, str] = field(default_factory=dict)

    @property
    def all_accepted(self) -> bool:
        return not self.rejected

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)


@dataclass(frozen=True)
class SyncResult:
    """Result of one device cycle. Appended to the audit trail, never mutated."""

    device_id: str
    cycle_at: datetime
    outcome: SyncOutcome
    records_fetched: int = 0
    records_reconciled: int = 0
    records_written: int = 0
    records_cleared: int = 0
    users_fetched: int = 0
    attempts: int = 1
    anomalies: tuple[Anomaly, ...] = ()
    device_info: Optional[DeviceInfo] = None
    error_details: tuple[str, ...] = ()
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.outcome.is_success

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.cycle_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logs, the audit trail and API responses."""
        return {
            "device_id": self.device_id,
            "cycle_at": self.cycle_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.outcome.status.value,
            "reason": self.outcome.reason,
            "records_fetched": self.records_fetched,
            "records_reconciled": self.records_reconciled,
            "records_written": self.records_written,
            "records_cleared": self.records_cleared,
            "users_fetched": self.users_fetched,
            "attempts": self.attempts,
            "anomalies": [a.to_dict() for a in self.anomalies],
            "device_info": self.device_info.to_dict() if self.device_info else None,
            "error_details": list(self.error_details),
        }


@dataclass(frozen=True)
class ConnectionCheck:
    """Result of a read-only connectivity check against one terminal.

    Nothing is written to the ledger and nothing is cleared. On failure
    error_code carries the same reason codes as a failed sync cycle.
    """

    device_id: str
    checked_at: datetime
    device_info: Optional[DeviceInfo] = None
    user_count: Optional[int] = None
    record_count: Optional[int] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.error_code is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "ok": self.ok,
            "checked_at": self.checked_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "device_info": self.device_info.to_dict() if self.device_info else None,
            "user_count": self.user_count,
            "record_count": self.record_count,
            "error_code": self.error_code,
            "error": self.error,
        }


@dataclass
class CycleSummary:
    """Aggregate of one fan-out over all enabled devices."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    results: list[SyncResult] = field(default_factory=list)

    @property
    def devices_attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.outcome.status == SyncStatus.SUCCESS)

    @property
    def partially_failed(self) -> int:
        return sum(1 for r in self.results if r.outcome.status == SyncStatus.PARTIAL_FAILURE)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome.status == SyncStatus.FAILURE)

    @property
    def entries_written(self) -> int:
        return sum(r.records_written for r in self.results)

    @property
    def anomaly_count(self) -> int:
        return sum(len(r.anomalies) for r in self.results)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "devices_attempted": self.devices_attempted,
            "succeeded": self.succeeded,
            "partially_failed": self.partially_failed,
            "failed": self.failed,
            "entries_written": self.entries_written,
            "anomalies": self.anomaly_count,
            "results": [r.to_dict() for r in self.results],
        }
