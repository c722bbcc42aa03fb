"""PostgreSQL adapter for the attendance ledger.

Tables (see db/schema.sql):
    attendance_entries: one row per reconciled session, unique on the
        opening punch (device_id, entry_user_id, entry_timestamp)
    attendance_synced_records: every raw punch that contributed to an
        entry, keyed by (device_id, user_id, timestamp)

Each entry is written together with its synced records in its own
transaction, so one rejected entry never rolls back the others.
"""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ...common.database import database_connection, database_transaction
from ...common.exceptions import (
    ConnectionPoolError,
    DatabaseError,
    LedgerReadError,
    LedgerWriteError,
)
from ..domain.entities import DedupKey, LedgerEntry, WriteResult, key_to_str
from ..domain.ports import IAttendanceLedger

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresAttendanceLedger(IAttendanceLedger):
    """PostgreSQL implementation of IAttendanceLedger."""

    def __init__(self, pool: "asyncpg.Pool"):
        """Initialize the ledger.

        Args:
            pool: asyncpg connection pool for database operations
        """
        self.pool = pool

    async def get_synced_keys(self, device_id: str, keys: list[DedupKey]) -> set[DedupKey]:
        """Return the subset of keys already recorded as synced."""
        if not keys:
            return set()

        user_ids = [k[1] for k in keys]
        timestamps = [k[2] for k in keys]

        try:
            async with database_connection(self.pool) as conn:
                rows = await conn.fetch(
                    """
                    SELECT r.user_id, r.timestamp
                    FROM attendance_synced_records r
                    JOIN unnest($2::text[], $3::bigint[]) AS k(user_id, timestamp)
                        ON r.user_id = k.user_id AND r.timestamp = k.timestamp
                    WHERE r.device_id = $1
                    """,
                    device_id,
                    user_ids,
                    timestamps,
                )
        except DatabaseError as e:
            raise LedgerReadError(f"Failed to load synced keys for {device_id}: {e}", cause=e)

        return {(device_id, row["user_id"], row["timestamp"]) for row in rows}

    async def get_open_entries(self, employee_ids: list[str]) -> list[LedgerEntry]:
        """Return the open entry of each employee, with its source keys."""
        if not employee_ids:
            return []

        try:
            async with database_connection(self.pool) as conn:
                rows = await conn.fetch(
                    """
                    SELECT
                        e.employee_id,
                        e.device_id,
                        e.entry_user_id,
                        e.entry_timestamp,
                        e.entry_time,
                        array_remove(array_agg(r.device_id ORDER BY r.timestamp), NULL)
                            AS source_devices,
                        array_remove(array_agg(r.user_id ORDER BY r.timestamp), NULL)
                            AS source_users,
                        array_remove(array_agg(r.timestamp ORDER BY r.timestamp), NULL)
                            AS source_timestamps
                    FROM attendance_entries e
                    LEFT JOIN attendance_synced_records r ON r.entry_id = e.id
                    WHERE e.employee_id = ANY($1)
                    AND e.exit_time IS NULL
                    AND NOT e.unterminated
                    GROUP BY e.id
                    """,
                    list(employee_ids),
                )
        except DatabaseError as e:
            raise LedgerReadError(f"Failed to load open entries: {e}", cause=e)

        return [self._row_to_open_entry(row) for row in rows]

    def _row_to_open_entry(self, row) -> LedgerEntry:
        source_keys = zip(
            row["source_devices"] or [],
            row["source_users"] or [],
            row["source_timestamps"] or [],
        )
        return LedgerEntry(
            employee_id=row["employee_id"],
            device_id=row["device_id"],
            entry_key=(row["device_id"], row["entry_user_id"], row["entry_timestamp"]),
            entry_time=row["entry_time"],
            source_keys=tuple(source_keys),
        )

    async def upsert_entries(self, entries: list[LedgerEntry]) -> WriteResult:
        """Upsert entries one transaction each.

        Raises:
            LedgerWriteError: If the database is unreachable before anything is written
        """
        accepted: list[DedupKey] = []
        rejected: dict[DedupKey, str] = {}

        for entry in entries:
            try:
                await self._upsert_entry(entry)
            except ConnectionPoolError as e:
                if not accepted:
                    raise LedgerWriteError(
                        f"Ledger unavailable: {e}",
                        entry_count=len(entries),
                        cause=e,
                    )
                rejected[entry.entry_key] = str(e)
            except DatabaseError as e:
                logger.warning(f"Entry {key_to_str(entry.entry_key)} rejected: {e}")
                rejected[entry.entry_key] = str(e)
            else:
                accepted.append(entry.entry_key)

        logger.info(f"Ledger upsert: {len(accepted)} accepted, {len(rejected)} rejected")
        return WriteResult(accepted=tuple(accepted), rejected=rejected)

    async def _upsert_entry(self, entry: LedgerEntry) -> None:
        device_id, entry_user_id, entry_timestamp = entry.entry_key

        async with database_transaction(self.pool) as conn:
            entry_id = await conn.fetchval(
                """
                INSERT INTO attendance_entries (
                    employee_id, device_id, entry_user_id, entry_timestamp,
                    entry_time, exit_time, unterminated, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (device_id, entry_user_id, entry_timestamp) DO UPDATE SET
                    employee_id = EXCLUDED.employee_id,
                    exit_time = EXCLUDED.exit_time,
                    unterminated = EXCLUDED.unterminated,
                    updated_at = EXCLUDED.updated_at
                RETURNING id
                """,
                entry.employee_id,
                device_id,
                entry_user_id,
                entry_timestamp,
                entry.entry_time,
                entry.exit_time,
                entry.unterminated,
                datetime.now(timezone.utc),
            )

            if entry.source_keys:
                await conn.executemany(
                    """
                    INSERT INTO attendance_synced_records (device_id, user_id, timestamp, entry_id)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (device_id, user_id, timestamp) DO UPDATE SET
                        entry_id = EXCLUDED.entry_id
                    """,
                    [(d, u, t, entry_id) for d, u, t in entry.source_keys],
                )
