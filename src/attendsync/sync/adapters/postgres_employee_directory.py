"""PostgreSQL adapter for the employee directory.

A terminal user resolves to an employee through an explicit per-device
mapping (device_user_mappings) first, then through the employee's
biometric id (employees.biometric_id), which applies on every terminal.
"""

import logging
from typing import TYPE_CHECKING, Optional

from ...common.database import database_connection, database_transaction
from ...common.exceptions import DatabaseError, LedgerReadError, LedgerWriteError
from ..domain.entities import RawUser
from ..domain.ports import IEmployeeDirectory

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresEmployeeDirectory(IEmployeeDirectory):
    """PostgreSQL implementation of IEmployeeDirectory."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def resolve_employee(self, device_id: str, user_id: str) -> Optional[str]:
        mapping = await self.resolve_employees(device_id, [user_id])
        return mapping.get(user_id)

    async def resolve_employees(self, device_id: str, user_ids: list[str]) -> dict[str, str]:
        """Resolve many users with two queries instead of one per user."""
        if not user_ids:
            return {}

        try:
            async with database_connection(self.pool) as conn:
                mapped = await conn.fetch(
                    """
                    SELECT user_id, employee_id
                    FROM device_user_mappings
                    WHERE device_id = $1 AND user_id = ANY($2)
                    """,
                    device_id,
                    list(user_ids),
                )
                by_biometric_id = await conn.fetch(
                    """
                    SELECT biometric_id AS user_id, id AS employee_id
                    FROM employees
                    WHERE biometric_id = ANY($1)
                    AND active
                    """,
                    list(user_ids),
                )
        except DatabaseError as e:
            raise LedgerReadError(f"Failed to resolve employees for {device_id}: {e}", cause=e)

        mapping = {row["user_id"]: row["employee_id"] for row in by_biometric_id}
        # Per-device mappings override the global biometric id
        mapping.update({row["user_id"]: row["employee_id"] for row in mapped})
        return mapping

    async def upsert_device_users(self, device_id: str, users: list[RawUser]) -> int:
        """Bulk upsert the terminal's roster into device_users."""
        if not users:
            return 0

        records = [
            (device_id, u.user_id, u.uid, u.name, u.card_number, u.privilege)
            for u in users
        ]

        try:
            async with database_transaction(self.pool) as conn:
                await conn.executemany(
                    """
                    INSERT INTO device_users (
                        device_id, user_id, uid, name, card_number, privilege, synced_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, NOW())
                    ON CONFLICT (device_id, user_id) DO UPDATE SET
                        uid = EXCLUDED.uid,
                        name = EXCLUDED.name,
                        card_number = EXCLUDED.card_number,
                        privilege = EXCLUDED.privilege,
                        synced_at = NOW()
                    """,
                    records,
                )
        except DatabaseError as e:
            raise LedgerWriteError(
                f"Failed to store roster of {device_id}: {e}",
                entry_count=len(records),
                cause=e,
            )

        logger.debug(f"Stored {len(records)} users of device {device_id}")
        return len(records)
