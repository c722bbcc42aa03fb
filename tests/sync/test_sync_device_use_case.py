"""Tests for SyncDeviceUseCase.

The driver, ledger and employee directory are in-memory mocks, so each
test drives a full cycle: fetch, reconcile, write, clear, release.
"""

import asyncio
from typing import Any, Optional

import pytest

from src.attendsync.common.exceptions import (
    ClearSkipped,
    ConnectError,
    LedgerReadError,
    LedgerWriteError,
    ProtocolError,
)
from src.attendsync.sync.domain.entities import (
    STATUS_CHECK_IN,
    STATUS_CHECK_OUT,
    AnomalyKind,
    DedupKey,
    Device,
    DeviceInfo,
    LedgerEntry,
    RawPunchRecord,
    RawUser,
    SyncStatus,
    WriteResult,
)
from src.attendsync.sync.domain.ports import (
    IAttendanceLedger,
    IDeviceDriver,
    IEmployeeDirectory,
)
from src.attendsync.sync.use_cases.sync_device import SyncDeviceUseCase, failure_reason

DEVICE_ID = "dev-1"
T = 1_700_000_000
HOUR = 3600


# ============================================
# Mock Implementations
# ============================================

class MockDriver(IDeviceDriver):
    """In-memory terminal whose punch log shrinks when cleared."""

    def __init__(self, records=None, users=None):
        self.records: list[RawPunchRecord] = list(records or [])
        self.users = list(users or [])
        self.calls: list[str] = []
        self.clear_requests: list[set[DedupKey]] = []
        # operation -> exception, raised on every call
        self.fail: dict[str, Exception] = {}
        # operation -> remaining number of calls that fail
        self.fail_times: dict[str, int] = {}
        self.hang: set[str] = set()

    async def _enter(self, operation: str):
        self.calls.append(operation)
        if operation in self.hang:
            await asyncio.sleep(10)
        if self.fail_times.get(operation, 0) > 0:
            self.fail_times[operation] -= 1
            raise ConnectError(f"{operation} dropped")
        if operation in self.fail:
            raise self.fail[operation]

    async def connect(self, device: Device, timeout: float) -> Any:
        await self._enter("connect")
        return "handle"

    async def disable(self, handle: Any) -> None:
        await self._enter("disable")

    async def enable(self, handle: Any) -> None:
        await self._enter("enable")

    async def get_info(self, handle: Any) -> DeviceInfo:
        await self._enter("get_info")
        return DeviceInfo(serial_number="SN-1", firmware_version="Ver 6.60")

    async def get_users(self, handle: Any) -> list[RawUser]:
        await self._enter("get_users")
        return list(self.users)

    async def get_punch_records(self, handle: Any) -> list[RawPunchRecord]:
        await self._enter("get_punch_records")
        return list(self.records)

    async def clear_punch_records(self, handle: Any, keys: set[DedupKey]) -> int:
        self.clear_requests.append(set(keys))
        await self._enter("clear_punch_records")
        before = len(self.records)
        self.records = [r for r in self.records if r.dedup_key not in keys]
        return before - len(self.records)

    async def disconnect(self, handle: Any) -> None:
        await self._enter("disconnect")


class MockLedger(IAttendanceLedger):
    """In-memory ledger keyed by entry_key."""

    def __init__(self):
        self.entries: dict[DedupKey, LedgerEntry] = {}
        self.synced: dict[DedupKey, DedupKey] = {}
        self.reject_employees: set[str] = set()
        self.reject_entry_keys: set[DedupKey] = set()
        self.read_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.upsert_calls = 0

    async def get_synced_keys(self, device_id: str, keys: list[DedupKey]) -> set[DedupKey]:
        if self.read_error:
            raise self.read_error
        return {k for k in keys if k in self.synced}

    async def get_open_entries(self, employee_ids: list[str]) -> list[LedgerEntry]:
        if self.read_error:
            raise self.read_error
        return [
            e for e in self.entries.values()
            if e.is_open and e.employee_id in employee_ids
        ]

    async def upsert_entries(self, entries: list[LedgerEntry]) -> WriteResult:
        self.upsert_calls += 1
        if self.write_error:
            raise self.write_error
        accepted = []
        rejected = {}
        for entry in entries:
            if (
                entry.employee_id in self.reject_employees
                or entry.entry_key in self.reject_entry_keys
            ):
                rejected[entry.entry_key] = "constraint violation"
                continue
            self.entries[entry.entry_key] = entry
            for key in entry.source_keys:
                self.synced[key] = entry.entry_key
            accepted.append(entry.entry_key)
        return WriteResult(accepted=tuple(accepted), rejected=rejected)


class MockDirectory(IEmployeeDirectory):

    def __init__(self, mapping=None):
        self.mapping = dict(mapping or {})
        self.rosters: list[list[RawUser]] = []
        self.roster_error: Optional[Exception] = None

    async def resolve_employee(self, device_id: str, user_id: str) -> Optional[str]:
        return self.mapping.get(user_id)

    async def upsert_device_users(self, device_id: str, users: list[RawUser]) -> int:
        if self.roster_error:
            raise self.roster_error
        self.rosters.append(users)
        return len(users)


# ============================================
# Fixtures
# ============================================

def punch(user_id: str, timestamp: int, status: int = STATUS_CHECK_IN) -> RawPunchRecord:
    return RawPunchRecord(DEVICE_ID, user_id, timestamp, status)


@pytest.fixture
def device():
    return Device(id=DEVICE_ID, address="10.0.0.21", timeout=1.0)


@pytest.fixture
def ledger():
    return MockLedger()


@pytest.fixture
def directory():
    return MockDirectory({"7": "EMP-7", "8": "EMP-8"})


def make_use_case(driver, ledger, directory, **kwargs) -> SyncDeviceUseCase:
    kwargs.setdefault("retry_delay_seconds", 0)
    return SyncDeviceUseCase(driver=driver, ledger=ledger, directory=directory, **kwargs)


def assert_released(driver: MockDriver):
    assert driver.calls[-2:] == ["enable", "disconnect"]


# ============================================
# Scenarios
# ============================================

class TestScenarios:

    async def test_check_in_then_out_writes_one_entry_and_clears(self, device, ledger, directory):
        driver = MockDriver([punch("7", T), punch("7", T + 8 * HOUR, STATUS_CHECK_OUT)])

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.SUCCESS
        assert result.records_fetched == 2
        assert result.records_written == 1
        assert result.records_cleared == 2
        assert result.device_info.serial_number == "SN-1"
        assert len(ledger.entries) == 1
        entry = next(iter(ledger.entries.values()))
        assert entry.exit_time is not None
        assert driver.records == []
        assert_released(driver)

    async def test_two_check_ins_leave_unterminated_and_open_entry(self, device, ledger, directory):
        driver = MockDriver([punch("7", T), punch("7", T + HOUR)])

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.PARTIAL_FAILURE
        assert result.outcome.reason == "unterminated-session"
        assert [a.kind for a in result.anomalies] == [AnomalyKind.UNTERMINATED_SESSION]
        entries = sorted(ledger.entries.values(), key=lambda e: e.entry_time)
        assert entries[0].unterminated is True
        assert entries[1].is_open
        assert result.records_cleared == 2

    async def test_unmapped_user_is_success_with_anomaly(self, device, ledger, directory):
        driver = MockDriver([punch("99", T)])

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.SUCCESS
        assert len(result.anomalies) == 1
        assert result.anomalies[0].kind == AnomalyKind.UNMAPPED_USER
        assert result.anomalies[0].user_id == "99"
        assert ledger.entries == {}
        assert result.records_cleared == 0
        assert driver.clear_requests == []
        assert len(driver.records) == 1

    async def test_no_records_is_success_without_clear(self, device, ledger, directory):
        driver = MockDriver([])

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.SUCCESS
        assert result.records_fetched == 0
        assert "clear_punch_records" not in driver.calls
        assert ledger.upsert_calls == 0
        assert_released(driver)

    async def test_exit_in_next_cycle_closes_open_entry(self, device, ledger, directory):
        driver = MockDriver([punch("7", T)])
        use_case = make_use_case(driver, ledger, directory)
        await use_case.execute(device)

        driver.records = [punch("7", T + 8 * HOUR, STATUS_CHECK_OUT)]
        result = await use_case.execute(device)

        assert result.outcome.status == SyncStatus.SUCCESS
        assert len(ledger.entries) == 1
        entry = ledger.entries[(DEVICE_ID, "7", T)]
        assert entry.exit_time is not None
        assert driver.records == []


class TestIdempotentReplay:

    async def test_replaying_uncleared_records_changes_nothing(self, device, ledger, directory):
        records = [
            punch("7", T),
            punch("7", T + HOUR, STATUS_CHECK_OUT),
            punch("8", T + 60),
        ]
        driver = MockDriver(records)
        driver.fail["clear_punch_records"] = ClearSkipped(resident=3, requested=2)
        use_case = make_use_case(driver, ledger, directory)

        first = await use_case.execute(device)
        snapshot = dict(ledger.entries)
        second = await use_case.execute(device)

        assert first.outcome.status == SyncStatus.SUCCESS
        assert first.records_written == 2
        assert any("not cleared" in d for d in first.error_details)
        assert second.outcome.status == SyncStatus.SUCCESS
        assert second.records_written == 0
        assert second.anomalies == ()
        assert ledger.entries == snapshot
        # replayed records are offered for clearing again
        assert driver.clear_requests[-1] == {r.dedup_key for r in records}

    async def test_records_already_cleared_are_not_refetched(self, device, ledger, directory):
        driver = MockDriver([punch("7", T), punch("7", T + HOUR, STATUS_CHECK_OUT)])
        use_case = make_use_case(driver, ledger, directory)

        await use_case.execute(device)
        second = await use_case.execute(device)

        assert second.records_fetched == 0
        assert len(ledger.entries) == 1


class TestLedgerFailures:

    async def test_write_failure_clears_nothing(self, device, ledger, directory):
        driver = MockDriver([punch("7", T), punch("7", T + HOUR, STATUS_CHECK_OUT)])
        ledger.write_error = LedgerWriteError("ledger down", entry_count=1)

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.FAILURE
        assert result.outcome.reason == "ledger-write-failed"
        assert "clear_punch_records" not in driver.calls
        assert len(driver.records) == 2
        assert_released(driver)

    async def test_partial_write_clears_only_accepted_records(self, device, ledger, directory):
        driver = MockDriver([
            punch("7", T),
            punch("7", T + HOUR, STATUS_CHECK_OUT),
            punch("8", T + 60),
            punch("8", T + 2 * HOUR, STATUS_CHECK_OUT),
        ])
        ledger.reject_employees.add("EMP-8")

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.PARTIAL_FAILURE
        assert result.outcome.reason == "ledger-partial-write"
        assert result.records_written == 1
        assert driver.clear_requests == [{(DEVICE_ID, "7", T), (DEVICE_ID, "7", T + HOUR)}]
        assert {r.user_id for r in driver.records} == {"8"}
        assert any("rejected" in d for d in result.error_details)

    async def test_rejected_entry_keeps_its_records_on_the_device(self, device, ledger, directory):
        reopened_key = (DEVICE_ID, "7", T + HOUR)
        driver = MockDriver([punch("7", T), punch("7", T + HOUR)])
        ledger.reject_entry_keys.add(reopened_key)
        use_case = make_use_case(driver, ledger, directory)

        first = await use_case.execute(device)

        assert first.outcome.reason == "ledger-partial-write"
        assert first.records_written == 1
        assert driver.clear_requests == [{(DEVICE_ID, "7", T)}]
        assert [r.dedup_key for r in driver.records] == [reopened_key]
        assert reopened_key not in ledger.synced

        ledger.reject_entry_keys.clear()
        second = await use_case.execute(device)

        assert second.outcome.status == SyncStatus.SUCCESS
        assert second.records_written == 1
        assert ledger.entries[reopened_key].is_open
        assert ledger.entries[(DEVICE_ID, "7", T)].unterminated is True
        assert driver.records == []

    async def test_read_failure_is_failure(self, device, ledger, directory):
        driver = MockDriver([punch("7", T)])
        ledger.read_error = LedgerReadError("timeout")

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.FAILURE
        assert result.outcome.reason == "ledger-read-failed"
        assert ledger.upsert_calls == 0
        assert "clear_punch_records" not in driver.calls

    async def test_roster_failure_is_not_fatal(self, device, ledger, directory):
        driver = MockDriver(
            [punch("7", T), punch("7", T + HOUR, STATUS_CHECK_OUT)],
            users=[RawUser(uid=1, user_id="7", name="Ana")],
        )
        directory.roster_error = LedgerWriteError("roster table locked")

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.SUCCESS
        assert result.users_fetched == 1
        assert any("roster" in d for d in result.error_details)

    async def test_roster_is_recorded(self, device, ledger, directory):
        users = [RawUser(uid=1, user_id="7", name="Ana"), RawUser(uid=2, user_id="8")]
        driver = MockDriver([], users=users)

        await make_use_case(driver, ledger, directory).execute(device)

        assert directory.rosters == [users]


class TestDeviceFailures:

    async def test_unreachable_device_fails_after_all_attempts(self, device, ledger, directory):
        driver = MockDriver([punch("7", T)])
        driver.fail["connect"] = ConnectError("no route to host")

        result = await make_use_case(driver, ledger, directory, retry_attempts=3).execute(device)

        assert result.outcome.status == SyncStatus.FAILURE
        assert result.outcome.reason == "connect-error"
        assert result.attempts == 3
        assert driver.calls.count("connect") == 3
        assert ledger.upsert_calls == 0

    async def test_transient_failure_is_retried(self, device, ledger, directory):
        driver = MockDriver([punch("7", T), punch("7", T + HOUR, STATUS_CHECK_OUT)])
        driver.fail_times["get_punch_records"] = 1

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.SUCCESS
        assert result.attempts == 2
        # the failed attempt released its session before the retry
        assert driver.calls.count("disconnect") == 2

    async def test_protocol_failure_reason(self, device, ledger, directory):
        driver = MockDriver([punch("7", T)])
        driver.fail["get_info"] = ProtocolError("bad reply", operation="get_info")

        result = await make_use_case(driver, ledger, directory, retry_attempts=1).execute(device)

        assert result.outcome.reason == "protocol-error"
        assert result.attempts == 1
        assert_released(driver)

    async def test_clear_failure_is_partial(self, device, ledger, directory):
        driver = MockDriver([punch("7", T), punch("7", T + HOUR, STATUS_CHECK_OUT)])
        driver.fail["clear_punch_records"] = ConnectError("dropped during clear")

        result = await make_use_case(driver, ledger, directory).execute(device)

        assert result.outcome.status == SyncStatus.PARTIAL_FAILURE
        assert result.outcome.reason == "clear-failed"
        assert result.records_written == 1
        assert len(ledger.entries) == 1
        assert "disconnect" in driver.calls

    async def test_cancellation_releases_session(self, device, ledger, directory):
        driver = MockDriver([punch("7", T)])
        driver.hang.add("get_punch_records")
        use_case = make_use_case(driver, ledger, directory)

        task = asyncio.create_task(use_case.execute(device))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert driver.calls[-2:] == ["enable", "disconnect"]
        assert ledger.upsert_calls == 0
        assert "clear_punch_records" not in driver.calls


class TestFailureReason:

    @pytest.mark.parametrize(
        "error,reason",
        [
            (ConnectError("x"), "connect-error"),
            (ProtocolError("x"), "protocol-error"),
            (ClearSkipped(), "device-error"),
        ],
    )
    def test_reasons(self, error, reason):
        assert failure_reason(error) == reason
