"""Audit log adapters for device cycle results."""

import json
import logging
from typing import TYPE_CHECKING, Optional

from ...common.database import database_connection
from ..domain.entities import SyncResult
from ..domain.ports import ISyncAuditLog

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


class PostgresSyncAuditLog(ISyncAuditLog):
    """Appends results to the sync_history table."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def append(self, result: SyncResult) -> None:
        async with database_connection(self.pool) as conn:
            await conn.execute(
                """
                INSERT INTO sync_history (
                    device_id, cycle_at, completed_at, status, reason,
                    records_fetched, records_written, records_cleared,
                    attempts, anomalies, error_details, device_info
                ) VALUES (
                    $1, $2, $3, $4, $5, $6, $7, $8, $9,
                    $10::jsonb, $11::jsonb, $12::jsonb
                )
                """,
                result.device_id,
                result.cycle_at,
                result.completed_at,
                result.outcome.status.value,
                result.outcome.reason,
                result.records_fetched,
                result.records_written,
                result.records_cleared,
                result.attempts,
                json.dumps([a.to_dict() for a in result.anomalies]),
                json.dumps(list(result.error_details)),
                json.dumps(result.device_info.to_dict() if result.device_info else None),
            )


class LoggingSyncAuditLog(ISyncAuditLog):
    """Writes each result as one JSON line to the audit logger."""

    def __init__(self, audit_logger: Optional[logging.Logger] = None):
        self.audit_logger = audit_logger or logging.getLogger("attendsync.audit")

    async def append(self, result: SyncResult) -> None:
        self.audit_logger.info(json.dumps(result.to_dict(), sort_keys=True))
