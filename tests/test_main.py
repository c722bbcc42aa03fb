"""Tests for the one-shot CLI.

The runtime is replaced with an in-memory scheduler, so no database or
terminal is needed.
"""
import argparse
import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

import main
from src.attendsync.sync.domain.entities import ConnectionCheck, Device, DeviceInfo
from src.attendsync.sync.registry import DeviceRegistry
from src.attendsync.sync.scheduler import SyncScheduler


class FakeConnectionCheck:

    def __init__(self, reachable: bool = True):
        self.reachable = reachable

    async def execute(self, device: Device) -> ConnectionCheck:
        now = datetime.now(timezone.utc)
        if not self.reachable:
            return ConnectionCheck(
                device_id=device.id,
                checked_at=now,
                error_code="connect-error",
                error="no route to host",
                completed_at=now,
            )
        return ConnectionCheck(
            device_id=device.id,
            checked_at=now,
            device_info=DeviceInfo(serial_number="OIN7012345", firmware_version="Ver 6.60"),
            user_count=3,
            record_count=5,
            completed_at=now,
        )


@pytest.fixture
def cli(monkeypatch):
    """Patch the runtime; returns a setter for the connection check."""
    state = {"check": FakeConnectionCheck(), "closed": False}

    async def fake_build_runtime(config):
        registry = DeviceRegistry([Device("front-door", "10.0.0.21")])
        scheduler = SyncScheduler(registry, sync_device=None, connection_check=state["check"])
        return SimpleNamespace(scheduler=scheduler)

    async def fake_close_runtime(runtime):
        state["closed"] = True

    monkeypatch.setattr(
        main, "SyncConfig", SimpleNamespace(from_env=lambda: SimpleNamespace(log_level="INFO"))
    )
    monkeypatch.setattr(main, "configure_logging", lambda level: None)
    monkeypatch.setattr(main, "build_runtime", fake_build_runtime)
    monkeypatch.setattr(main, "close_runtime", fake_close_runtime)
    return state


def args_for(**kwargs) -> argparse.Namespace:
    values = {"device": None, "test_device": None, "json": False}
    values.update(kwargs)
    return argparse.Namespace(**values)


class TestTestDevice:

    async def test_reachable_device(self, cli, capsys):
        code = await main.run_sync(args_for(test_device="front-door"))

        out = capsys.readouterr().out
        assert code == 0
        assert "front-door: connected" in out
        assert "OIN7012345" in out
        assert cli["closed"] is True

    async def test_unreachable_device_exits_1(self, cli, capsys):
        cli["check"] = FakeConnectionCheck(reachable=False)

        code = await main.run_sync(args_for(test_device="front-door"))

        assert code == 1
        assert "unreachable (connect-error)" in capsys.readouterr().out

    async def test_json_output(self, cli, capsys):
        code = await main.run_sync(args_for(test_device="front-door", json=True))

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data["ok"] is True
        assert data["record_count"] == 5

    async def test_unknown_device_exits_2(self, cli, capsys):
        code = await main.run_sync(args_for(test_device="missing"))

        assert code == 2
        assert "missing" in capsys.readouterr().err


def test_device_and_test_device_are_exclusive(monkeypatch):
    monkeypatch.setattr("sys.argv", ["main.py", "--device", "a", "--test-device", "b"])

    with pytest.raises(SystemExit) as exc_info:
        main.main()

    assert exc_info.value.code == 2
