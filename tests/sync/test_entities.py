"""Tests for attendance sync domain entities."""

from datetime import datetime, timedelta, timezone

import pytest

from src.attendsync.sync.domain.entities import (
    Anomaly,
    AnomalyKind,
    CycleSummary,
    Device,
    DeviceInfo,
    LedgerEntry,
    PunchDirection,
    RawPunchRecord,
    SyncOutcome,
    SyncResult,
    SyncStatus,
    WriteResult,
    key_to_str,
)

T0 = datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc)


def entry(employee_id="E1", start=T0, end=None, unterminated=False, user_id="7"):
    return LedgerEntry(
        employee_id=employee_id,
        device_id="dev-1",
        entry_key=("dev-1", user_id, int(start.timestamp())),
        entry_time=start,
        exit_time=end,
        unterminated=unterminated,
    )


class TestDevice:
    """Tests for the Device entity."""

    def test_defaults(self):
        device = Device(id="front-door", address="10.0.0.21")

        assert device.port == 4370
        assert device.enabled is True
        assert device.consecutive_failures == 0
        assert device.display_name == "front-door"

    def test_display_name_prefers_name(self):
        device = Device(id="front-door", address="10.0.0.21", name="Front Door")
        assert device.display_name == "Front Door"

    def test_to_epoch_uses_terminal_timezone(self):
        device = Device(id="d", address="x", timezone="Europe/Madrid")

        # 09:00 in Madrid (CET, UTC+1) is 08:00 UTC
        assert device.to_epoch(datetime(2024, 1, 15, 9, 0)) == int(
            datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc).timestamp()
        )

    def test_to_epoch_keeps_aware_timestamps(self):
        device = Device(id="d", address="x", timezone="Asia/Tokyo")
        assert device.to_epoch(T0) == int(T0.timestamp())

    def test_to_dict(self):
        device = Device(id="d", address="10.0.0.5", last_sync_at=T0, last_sync_status="success")
        data = device.to_dict()

        assert data["id"] == "d"
        assert data["last_sync_at"] == T0.isoformat()
        assert data["last_sync_status"] == "success"
        assert "password" not in data


class TestRawPunchRecord:

    @pytest.mark.parametrize("status", [0, 3, 4])
    def test_entry_codes(self, status):
        record = RawPunchRecord("d", "7", 1000, status)
        assert record.direction == PunchDirection.ENTRY

    @pytest.mark.parametrize("status", [1, 2, 5])
    def test_exit_codes(self, status):
        record = RawPunchRecord("d", "7", 1000, status)
        assert record.direction == PunchDirection.EXIT

    def test_unknown_code_has_no_direction(self):
        assert RawPunchRecord("d", "7", 1000, 255).direction is None

    def test_dedup_key_and_time(self):
        record = RawPunchRecord("d", "7", int(T0.timestamp()), 0)

        assert record.dedup_key == ("d", "7", int(T0.timestamp()))
        assert record.punched_at == T0
        assert key_to_str(record.dedup_key) == f"d:7:{int(T0.timestamp())}"


class TestLedgerEntry:

    def test_open_entry(self):
        e = entry()
        assert e.is_open is True
        assert e.interval_end is None

    def test_unterminated_entry_is_not_open(self):
        e = entry(unterminated=True)
        assert e.is_open is False
        assert e.interval_end == T0

    def test_closed_entries_do_not_overlap_when_adjacent(self):
        first = entry(start=T0, end=T0 + timedelta(hours=1))
        second = entry(start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=2))

        assert not first.overlaps(second)
        assert not second.overlaps(first)

    def test_overlapping_entries(self):
        first = entry(start=T0, end=T0 + timedelta(hours=2))
        second = entry(start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=3))

        assert first.overlaps(second)
        assert second.overlaps(first)

    def test_open_entry_overlaps_everything_after_it(self):
        open_entry = entry(start=T0)
        later = entry(start=T0 + timedelta(days=1), end=T0 + timedelta(days=1, hours=1))

        assert open_entry.overlaps(later)

    def test_unterminated_entry_does_not_overlap_later_entry(self):
        unterminated = entry(start=T0, unterminated=True)
        later = entry(start=T0 + timedelta(minutes=5))

        assert not unterminated.overlaps(later)

    def test_same_start_overlaps(self):
        assert entry(unterminated=True).overlaps(entry(unterminated=True))

    def test_different_employees_never_overlap(self):
        assert not entry(employee_id="E1").overlaps(entry(employee_id="E2"))


class TestSyncOutcome:

    def test_str(self):
        assert str(SyncOutcome.success()) == "success"
        assert str(SyncOutcome.partial_failure("clear-failed")) == "partial_failure(clear-failed)"
        assert str(SyncOutcome.failure("connect-error")) == "failure(connect-error)"

    def test_flags(self):
        assert SyncOutcome.success().is_success
        assert SyncOutcome.failure("x").is_failure
        assert not SyncOutcome.partial_failure("x").is_success
        assert not SyncOutcome.partial_failure("x").is_failure


class TestResults:

    def test_write_result(self):
        result = WriteResult(accepted=(("d", "1", 1),), rejected={("d", "2", 2): "boom"})

        assert result.accepted_count == 1
        assert result.all_accepted is False
        assert WriteResult().all_accepted is True

    def test_sync_result_to_dict(self):
        result = SyncResult(
            device_id="d",
            cycle_at=T0,
            outcome=SyncOutcome.partial_failure("unterminated-session"),
            records_fetched=3,
            anomalies=(Anomaly(AnomalyKind.UNMAPPED_USER, "d", "99", 1000),),
            device_info=DeviceInfo(serial_number="SN1"),
            completed_at=T0 + timedelta(seconds=4),
        )
        data = result.to_dict()

        assert data["status"] == "partial_failure"
        assert data["reason"] == "unterminated-session"
        assert data["anomalies"][0]["kind"] == "unmapped-user"
        assert data["device_info"]["serial_number"] == "SN1"
        assert result.duration_seconds == 4.0
        assert result.success is False

    def test_cycle_summary_counts(self):
        def result(outcome, written=0):
            return SyncResult("d", T0, outcome, records_written=written)

        summary = CycleSummary(
            started_at=T0,
            completed_at=T0 + timedelta(seconds=10),
            results=[
                result(SyncOutcome.success(), written=2),
                result(SyncOutcome.partial_failure("clear-failed"), written=1),
                result(SyncOutcome.failure("connect-error")),
            ],
        )

        assert summary.devices_attempted == 3
        assert summary.succeeded == 1
        assert summary.partially_failed == 1
        assert summary.failed == 1
        assert summary.entries_written == 3
        assert summary.duration_seconds == 10.0
        assert summary.to_dict()["failed"] == 1
        assert SyncStatus.FAILURE.value == "failure"
