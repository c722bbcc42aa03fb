"""Sync Device Use Case - one end-to-end cycle for one terminal.

Workflow (strictly sequential):
1. Open a session, lock the keypad, read device info, users and punches
   (connect/protocol failures retried with a fixed delay)
2. Record the user roster in the employee directory (non-fatal)
3. Resolve employees, load already-synced keys and open ledger entries
4. Reconcile records into ledger entries
5. Upsert entries (never retried within the cycle)
6. Clear only the records the ledger durably accepted
7. Unlock the keypad and disconnect, whatever happened above

Driver and ledger errors never escape: they become the SyncResult outcome.
Cancellation does propagate, after the session has been released and
without clearing anything.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ...common.exceptions import (
    ClearSkipped,
    ConnectError,
    DeviceError,
    ProtocolError,
    SessionStateError,
)
from ...common.resilience import retry_async
from ..domain.entities import (
    DedupKey,
    Device,
    DeviceInfo,
    RawPunchRecord,
    RawUser,
    SyncOutcome,
    SyncResult,
)
from ..domain.ports import IAttendanceLedger, IDeviceDriver, IEmployeeDirectory
from .device_session import DeviceSession
from .reconcile_punches import PunchReconciler

logger = logging.getLogger(__name__)


def failure_reason(error: Exception) -> str:
    """Outcome reason for a device error."""
    if isinstance(error, ConnectError):
        return "connect-error"
    if isinstance(error, ProtocolError):
        return "protocol-error"
    if isinstance(error, SessionStateError):
        return "session-state-error"
    return "device-error"


@dataclass
class _Snapshot:
    info: DeviceInfo
    users: list[RawUser]
    records: list[RawPunchRecord]


class SyncDeviceUseCase:
    """Runs one sync cycle for one terminal.

    Example:
        use_case = SyncDeviceUseCase(
            driver=ZKDeviceDriver(),
            ledger=PostgresAttendanceLedger(pool),
            directory=PostgresEmployeeDirectory(pool),
        )
        result = await use_case.execute(device)
    """

    def __init__(
        self,
        driver: IDeviceDriver,
        ledger: IAttendanceLedger,
        directory: IEmployeeDirectory,
        reconciler: Optional[PunchReconciler] = None,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        timeout: Optional[float] = None,
    ):
        """Initialize the use case with its dependencies.

        Args:
            driver: Port for the terminal protocol
            ledger: Port for the attendance ledger
            directory: Port for the employee directory
            reconciler: Punch reconciler (default: PunchReconciler())
            retry_attempts: Total open+fetch attempts per cycle
            retry_delay_seconds: Fixed delay between attempts
            timeout: Per-call timeout overriding device.timeout
        """
        self.driver = driver
        self.ledger = ledger
        self.directory = directory
        self.reconciler = reconciler or PunchReconciler()
        self.retry_attempts = retry_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.timeout = timeout

    async def execute(self, device: Device) -> SyncResult:
        """Execute one cycle for device.

        Returns:
            SyncResult describing the cycle
        """
        cycle_at = datetime.now(timezone.utc)
        attempts = 0

        async def open_and_fetch() -> tuple[DeviceSession, _Snapshot]:
            nonlocal attempts
            attempts += 1
            session = DeviceSession(self.driver, device, self.timeout)
            try:
                await session.open()
                info = await session.fetch_device_info()
                users = await session.fetch_users()
                records = await session.fetch_punch_records()
            except BaseException:
                await session.close()
                raise
            return session, _Snapshot(info, users, records)

        logger.info(f"Starting sync of {device.display_name} ({device.address}:{device.port})")

        try:
            session, snapshot = await retry_async(
                open_and_fetch,
                max_attempts=self.retry_attempts,
                initial_delay=self.retry_delay_seconds,
                backoff_factor=1.0,
                jitter=False,
            )
        except DeviceError as e:
            logger.error(f"Sync of {device.display_name} failed after {attempts} attempt(s): {e}")
            return SyncResult(
                device_id=device.id,
                cycle_at=cycle_at,
                outcome=SyncOutcome.failure(failure_reason(e)),
                attempts=attempts,
                error_details=(str(e),),
                completed_at=datetime.now(timezone.utc),
            )

        async with session:
            return await self._process(session, device, snapshot, cycle_at, attempts)

    async def _process(
        self,
        session: DeviceSession,
        device: Device,
        snapshot: _Snapshot,
        cycle_at: datetime,
        attempts: int,
    ) -> SyncResult:
        errors: list[str] = []
        records = snapshot.records

        logger.info(
            f"Fetched {len(records)} punch records and {len(snapshot.users)} users "
            f"from {device.display_name}"
        )

        def finish(outcome: SyncOutcome, **counts) -> SyncResult:
            return SyncResult(
                device_id=device.id,
                cycle_at=cycle_at,
                outcome=outcome,
                records_fetched=len(records),
                users_fetched=len(snapshot.users),
                attempts=attempts,
                device_info=snapshot.info,
                error_details=tuple(errors),
                completed_at=datetime.now(timezone.utc),
                **counts,
            )

        # Step 2: user roster
        if snapshot.users:
            try:
                await self.directory.upsert_device_users(device.id, snapshot.users)
            except Exception as e:
                error_msg = f"User roster update failed: {e}"
                logger.warning(error_msg)
                errors.append(error_msg)

        if not records:
            logger.info(f"No punch records on {device.display_name}")
            return finish(SyncOutcome.success())

        # Step 3: reads needed by the reconciler
        batch_keys: set[DedupKey] = {r.dedup_key for r in records}
        try:
            employee_map = await self.directory.resolve_employees(
                device.id, sorted({r.user_id for r in records})
            )
            synced_keys = await self.ledger.get_synced_keys(device.id, sorted(batch_keys))
            open_entries = await self.ledger.get_open_entries(sorted(set(employee_map.values())))
        except Exception as e:
            error_msg = f"Ledger read failed: {e}"
            logger.error(error_msg)
            errors.append(error_msg)
            return finish(SyncOutcome.failure("ledger-read-failed"))

        # Step 4: reconcile
        reconciliation = self.reconciler.reconcile(
            device.id,
            records,
            employee_map,
            synced_keys=synced_keys,
            open_entries=open_entries,
        )
        entries = reconciliation.entries
        anomalies = tuple(reconciliation.anomalies)
        for anomaly in anomalies:
            logger.warning(
                f"Anomaly on {device.display_name}: {anomaly.kind.value} "
                f"user={anomaly.user_id} ts={anomaly.timestamp} {anomaly.detail}"
            )
        if reconciliation.skipped_keys:
            logger.info(
                f"{len(reconciliation.skipped_keys)} records stay on {device.display_name}"
            )

        # Step 5: write
        outcome = SyncOutcome.success()
        clear_keys: set[DedupKey] = set(reconciliation.replayed_keys)
        written = 0

        if entries:
            try:
                write_result = await self.ledger.upsert_entries(entries)
            except Exception as e:
                error_msg = f"Ledger write failed: {e}"
                logger.error(error_msg)
                errors.append(error_msg)
                return finish(
                    SyncOutcome.failure("ledger-write-failed"),
                    records_reconciled=len(entries),
                    anomalies=anomalies,
                )

            accepted = set(write_result.accepted)
            held_back: set[DedupKey] = set()
            for entry in entries:
                if entry.entry_key in accepted:
                    clear_keys.update(entry.source_keys)
                else:
                    held_back.update(entry.source_keys)
            # A record feeding a rejected entry stays on the terminal
            clear_keys -= held_back
            written = len(accepted)

            if not write_result.all_accepted:
                outcome = SyncOutcome.partial_failure("ledger-partial-write")
                for key, reason in write_result.rejected.items():
                    errors.append(f"Entry {key} rejected: {reason}")
                logger.warning(
                    f"Ledger accepted {written}/{len(entries)} entries from {device.display_name}"
                )

        # Step 6: clear what the ledger holds
        clear_keys &= batch_keys
        cleared = 0
        if clear_keys:
            session.mark_clear_pending()
            try:
                cleared = await session.confirm_clear(clear_keys)
            except ClearSkipped as e:
                logger.warning(f"Records left on {device.display_name}: {e}")
                errors.append(str(e))
            except DeviceError as e:
                logger.error(f"Clear on {device.display_name} failed: {e}")
                errors.append(f"Clear failed: {e}")
                if outcome.is_success:
                    outcome = SyncOutcome.partial_failure("clear-failed")

        if outcome.is_success and reconciliation.has_unterminated:
            outcome = SyncOutcome.partial_failure("unterminated-session")

        logger.info(
            f"Sync of {device.display_name} finished: {outcome}, "
            f"{written} written, {cleared} cleared, {len(anomalies)} anomalies"
        )

        return finish(
            outcome,
            records_reconciled=len(entries),
            records_written=written,
            records_cleared=cleared,
            anomalies=anomalies,
        )
