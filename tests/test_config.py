"""Tests for SyncConfig environment parsing."""

import pytest

from src.attendsync.common.exceptions import ConfigurationError
from src.attendsync.config import SyncConfig

ENV_VARS = [
    "SYNC_INTERVAL_MINUTES",
    "SYNC_ON_STARTUP",
    "SYNC_MAX_CONCURRENCY",
    "SYNC_RETRY_ATTEMPTS",
    "SYNC_RETRY_DELAY_SECONDS",
    "DEVICE_TIMEOUT_SECONDS",
    "HEALTH_CHECK_PORT",
    "DATABASE_URL",
    "ATTENDANCE_DEVICES",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestSyncConfig:

    def test_defaults(self):
        config = SyncConfig.from_env()

        assert config.interval_minutes == 5
        assert config.interval_seconds == 300
        assert config.sync_on_startup is True
        assert config.max_concurrency == 4
        assert config.retry_attempts == 3
        assert config.retry_delay_seconds == 2.0
        assert config.device_timeout_seconds == 10.0
        assert config.health_check_port == 8080
        assert config.database_url is None
        assert config.devices_json is None
        assert config.log_level == "INFO"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("SYNC_INTERVAL_MINUTES", "10")
        monkeypatch.setenv("SYNC_ON_STARTUP", "False")
        monkeypatch.setenv("SYNC_RETRY_DELAY_SECONDS", "0.5")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("ATTENDANCE_DEVICES", '[{"id": "a", "address": "x"}]')

        config = SyncConfig.from_env()

        assert config.interval_seconds == 600
        assert config.sync_on_startup is False
        assert config.retry_delay_seconds == 0.5
        assert config.log_level == "DEBUG"
        assert config.devices_json.startswith("[")

    @pytest.mark.parametrize(
        "name,value",
        [
            ("SYNC_INTERVAL_MINUTES", "abc"),
            ("SYNC_INTERVAL_MINUTES", "0"),
            ("SYNC_MAX_CONCURRENCY", "0"),
            ("SYNC_RETRY_ATTEMPTS", "0"),
            ("SYNC_RETRY_DELAY_SECONDS", "-1"),
            ("DEVICE_TIMEOUT_SECONDS", "fast"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ConfigurationError) as exc_info:
            SyncConfig.from_env()

        assert name in str(exc_info.value)

    def test_require_database(self, monkeypatch):
        with pytest.raises(ConfigurationError) as exc_info:
            SyncConfig.from_env().require_database()
        assert exc_info.value.details["missing_keys"] == ["DATABASE_URL"]

        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/attendance")
        assert SyncConfig.from_env().require_database() == "postgresql://localhost/attendance"

    def test_repr_hides_database_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://user:secret@db/attendance")

        assert "secret" not in repr(SyncConfig.from_env())
