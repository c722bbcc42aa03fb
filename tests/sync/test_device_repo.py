"""Tests for EnvDeviceRepository (ATTENDANCE_DEVICES parsing)."""

import json

import pytest

from src.attendsync.common.exceptions import ConfigurationError
from src.attendsync.sync.adapters.postgres_device_repo import EnvDeviceRepository
from src.attendsync.sync.domain.entities import Device


class TestEnvDeviceRepository:

    async def test_parses_devices_with_defaults(self):
        repo = EnvDeviceRepository(
            json.dumps([
                {"id": "front-door", "address": "10.0.0.21"},
                {
                    "id": "warehouse",
                    "address": "10.0.0.22",
                    "port": 4371,
                    "name": "Warehouse",
                    "timeout": 3,
                    "enabled": False,
                    "timezone": "Europe/Madrid",
                },
            ]),
            default_timeout=7.5,
        )

        devices = await repo.list_devices()

        assert [d.id for d in devices] == ["front-door", "warehouse"]
        front, warehouse = devices
        assert front.port == 4370
        assert front.timeout == 7.5
        assert front.enabled is True
        assert warehouse.port == 4371
        assert warehouse.timeout == 3
        assert warehouse.enabled is False
        assert warehouse.display_name == "Warehouse"
        assert warehouse.timezone == "Europe/Madrid"

    def test_invalid_json(self):
        with pytest.raises(ConfigurationError):
            EnvDeviceRepository("[{not json")

    def test_not_a_list(self):
        with pytest.raises(ConfigurationError):
            EnvDeviceRepository('{"id": "a", "address": "x"}')

    @pytest.mark.parametrize(
        "item",
        [
            {"address": "10.0.0.1"},
            {"id": "", "address": "10.0.0.1"},
            {"id": "a", "address": "10.0.0.1", "port": 70000},
            {"id": "a", "address": "10.0.0.1", "timeout": 0},
        ],
    )
    def test_invalid_item(self, item):
        with pytest.raises(ConfigurationError) as exc_info:
            EnvDeviceRepository(json.dumps([item]))

        assert "ATTENDANCE_DEVICES[0]" in str(exc_info.value)

    def test_duplicate_ids(self):
        with pytest.raises(ConfigurationError):
            EnvDeviceRepository(json.dumps([
                {"id": "a", "address": "10.0.0.1"},
                {"id": "a", "address": "10.0.0.2"},
            ]))

    async def test_save_sync_status_is_a_noop(self):
        repo = EnvDeviceRepository("[]")

        await repo.save_sync_status(Device("a", "x"))

        assert await repo.list_devices() == []
