"""Punch Reconciler - raw terminal punches to ledger entries.

Pure and synchronous: every input the reconciler needs (employee mapping,
already-synced keys, currently open ledger entries) is fetched by the
caller beforehand.

Algorithm:
1. Drop records of unmapped users (anomaly "unmapped-user") and records
   with an unknown status code (anomaly "unknown-status").
   Duplicates collapse on (dedup key, direction), so a check-in and a
   check-out punched in the same second both survive.
2. Per user, sort by timestamp; on equal timestamps entry codes sort
   before exit codes.
3. Seed the walk with the employee's open ledger entry, unless that entry
   was opened by a check-in in this batch. Records before the seed's entry
   time, and check-ins at that same instant, are skipped (anomaly
   "out-of-order").
4. Walk: a check-in while an entry is open closes the open entry as
   unterminated (anomaly "unterminated-session") and opens a new one; a
   check-out closes the open entry, or is skipped with anomaly
   "orphan-exit" when nothing is open.
5. Drop every entry whose contributing records are all already synced,
   together with the anomalies raised while building it. A seeded entry
   closed in this batch is always kept.

An entry's source keys are only the records it was built from, so a
rejected entry never shares a key with an accepted one.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..domain.entities import (
    Anomaly,
    AnomalyKind,
    DedupKey,
    LedgerEntry,
    PunchDirection,
    RawPunchRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Entries to write plus informational anomalies."""

    entries: list[LedgerEntry] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)
    replayed_keys: set[DedupKey] = field(default_factory=set)
    # Records excluded from every entry; they stay on the terminal
    skipped_keys: set[DedupKey] = field(default_factory=set)

    @property
    def has_unterminated(self) -> bool:
        return any(a.kind == AnomalyKind.UNTERMINATED_SESSION for a in self.anomalies)


class _EntryBuilder:
    """Mutable working copy of one entry during the walk."""

    def __init__(
        self,
        employee_id: str,
        device_id: str,
        entry_key: DedupKey,
        entry_time: datetime,
        source_keys: Iterable[DedupKey] = (),
    ):
        self.employee_id = employee_id
        self.device_id = device_id
        self.entry_key = entry_key
        self.entry_time = entry_time
        self.exit_time: Optional[datetime] = None
        self.unterminated = False
        self.seeded = False
        self.source_keys: list[DedupKey] = []
        self.anomalies: list[Anomaly] = []
        for key in (entry_key, *source_keys):
            self.add_key(key)

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "_EntryBuilder":
        builder = cls(
            employee_id=entry.employee_id,
            device_id=entry.device_id,
            entry_key=entry.entry_key,
            entry_time=entry.entry_time,
            source_keys=entry.source_keys,
        )
        builder.seeded = True
        return builder

    def add_key(self, key: DedupKey) -> None:
        if key not in self.source_keys:
            self.source_keys.append(key)

    def is_replay(self, synced: set[DedupKey]) -> bool:
        """True when the ledger already holds this entry as built."""
        if self.seeded and (self.unterminated or self.exit_time is not None):
            return False
        return all(key in synced for key in self.source_keys)

    def build(self) -> LedgerEntry:
        return LedgerEntry(
            employee_id=self.employee_id,
            device_id=self.device_id,
            entry_key=self.entry_key,
            entry_time=self.entry_time,
            exit_time=self.exit_time,
            unterminated=self.unterminated,
            source_keys=tuple(self.source_keys),
        )


def _sort_key(record: RawPunchRecord) -> tuple[int, int, int]:
    direction_rank = 0 if record.direction == PunchDirection.ENTRY else 1
    return (record.timestamp, direction_rank, record.status)


class PunchReconciler:
    """Turns raw punch records into non-overlapping ledger entries."""

    def reconcile(
        self,
        device_id: str,
        records: list[RawPunchRecord],
        employee_map: dict[str, str],
        synced_keys: Optional[set[DedupKey]] = None,
        open_entries: Iterable[LedgerEntry] = (),
    ) -> ReconciliationResult:
        """Reconcile one device's records.

        Args:
            device_id: Terminal the records were read from
            records: Raw records as read from the terminal
            employee_map: Device-local user id to employee id
            synced_keys: Dedup keys that contributed to entries in earlier cycles
            open_entries: Open ledger entries of the mapped employees

        Returns:
            ReconciliationResult ordered by (employee_id, entry_time)
        """
        known_synced: set[DedupKey] = set(synced_keys or ())
        result = ReconciliationResult()
        batch_entry_keys = {
            r.dedup_key for r in records if r.direction == PunchDirection.ENTRY
        }

        def report(kind: AnomalyKind, record: RawPunchRecord, detail: str = "") -> None:
            result.skipped_keys.add(record.dedup_key)
            if record.dedup_key in known_synced:
                return
            result.anomalies.append(
                Anomaly(
                    kind=kind,
                    device_id=device_id,
                    user_id=record.user_id,
                    timestamp=record.timestamp,
                    detail=detail,
                )
            )

        by_user: dict[str, list[RawPunchRecord]] = defaultdict(list)
        seen: set[tuple[DedupKey, Optional[PunchDirection]]] = set()
        for record in records:
            identity = (record.dedup_key, record.direction)
            if identity in seen:
                continue
            seen.add(identity)

            if record.user_id not in employee_map:
                report(AnomalyKind.UNMAPPED_USER, record, "no employee mapping")
                continue
            if record.direction is None:
                report(AnomalyKind.UNKNOWN_STATUS, record, f"status code {record.status}")
                continue
            by_user[record.user_id].append(record)

        open_by_employee: dict[str, LedgerEntry] = {}
        for entry in open_entries:
            if entry.is_open and entry.entry_key not in batch_entry_keys:
                open_by_employee[entry.employee_id] = entry
                known_synced.update((entry.entry_key, *entry.source_keys))

        finished: list[_EntryBuilder] = []

        for user_id in sorted(by_user):
            employee_id = employee_map[user_id]
            seed = open_by_employee.get(employee_id)
            current = _EntryBuilder.from_entry(seed) if seed else None
            floor = seed.entry_time if seed else None

            for record in sorted(by_user[user_id], key=_sort_key):
                punched_at = record.punched_at

                if floor is not None and (
                    punched_at < floor
                    or (punched_at == floor and record.direction == PunchDirection.ENTRY)
                ):
                    report(
                        AnomalyKind.OUT_OF_ORDER,
                        record,
                        f"precedes open entry started {floor.isoformat()}",
                    )
                    continue

                if record.direction == PunchDirection.ENTRY:
                    if current is not None:
                        current.unterminated = True
                        current.anomalies.append(
                            Anomaly(
                                kind=AnomalyKind.UNTERMINATED_SESSION,
                                device_id=device_id,
                                user_id=user_id,
                                timestamp=record.timestamp,
                                detail=f"entry at {current.entry_time.isoformat()} has no exit",
                            )
                        )
                        finished.append(current)
                    current = _EntryBuilder(
                        employee_id=employee_id,
                        device_id=device_id,
                        entry_key=record.dedup_key,
                        entry_time=punched_at,
                    )
                    continue

                if current is None:
                    report(AnomalyKind.ORPHAN_EXIT, record, "check-out without open entry")
                    continue

                current.exit_time = punched_at
                current.add_key(record.dedup_key)
                finished.append(current)
                current = None

            if current is not None:
                finished.append(current)

        for builder in finished:
            if builder.is_replay(known_synced):
                result.replayed_keys.update(builder.source_keys)
                continue
            result.entries.append(builder.build())
            result.anomalies.extend(builder.anomalies)

        result.entries.sort(key=lambda e: (e.employee_id, e.entry_time))

        if result.replayed_keys:
            logger.debug(
                f"Device {device_id}: {len(result.replayed_keys)} replayed records skipped"
            )
        return result
