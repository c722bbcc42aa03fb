"""Configuration loaded from environment variables.

Entrypoints call ``load_dotenv()`` before constructing SyncConfig, so values
may also come from a ``.env`` file.

Environment Variables:
    SYNC_INTERVAL_MINUTES: Minutes between periodic cycles (default: 5)
    SYNC_ON_STARTUP: Run a cycle immediately on startup (default: true)
    SYNC_MAX_CONCURRENCY: Devices synced in parallel (default: 4)
    SYNC_RETRY_ATTEMPTS: Total connect/fetch attempts per cycle (default: 3)
    SYNC_RETRY_DELAY_SECONDS: Fixed delay between attempts (default: 2)
    DEVICE_TIMEOUT_SECONDS: Default per-call terminal timeout (default: 10)
    HEALTH_CHECK_PORT: Port for health check endpoint (default: 8080, 0 to disable)
    DATABASE_URL: PostgreSQL connection string
    ATTENDANCE_DEVICES: Optional JSON list of devices (overrides the database table)
    LOG_LEVEL: Logging level (default: INFO)
"""
import logging
import os
from typing import Optional

from .common.exceptions import ConfigurationError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            details={"variable": name},
        )
    if value < minimum:
        raise ConfigurationError(
            f"{name} must be >= {minimum}, got {value}",
            details={"variable": name},
        )
    return value


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number, got {raw!r}",
            details={"variable": name},
        )
    if value < minimum:
        raise ConfigurationError(
            f"{name} must be >= {minimum}, got {value}",
            details={"variable": name},
        )
    return value


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


class SyncConfig:
    """Configuration loaded from environment variables."""

    def __init__(self):
        self.interval_minutes = _env_int("SYNC_INTERVAL_MINUTES", 5, minimum=1)
        self.sync_on_startup = _env_bool("SYNC_ON_STARTUP", True)
        self.max_concurrency = _env_int("SYNC_MAX_CONCURRENCY", 4, minimum=1)
        self.retry_attempts = _env_int("SYNC_RETRY_ATTEMPTS", 3, minimum=1)
        self.retry_delay_seconds = _env_float("SYNC_RETRY_DELAY_SECONDS", 2.0)
        self.device_timeout_seconds = _env_float("DEVICE_TIMEOUT_SECONDS", 10.0, minimum=0.1)
        self.health_check_port = _env_int("HEALTH_CHECK_PORT", 8080)
        self.database_url: Optional[str] = os.getenv("DATABASE_URL") or None
        self.devices_json: Optional[str] = os.getenv("ATTENDANCE_DEVICES") or None
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def from_env(cls) -> "SyncConfig":
        return cls()

    @property
    def interval_seconds(self) -> int:
        return self.interval_minutes * 60

    def require_database(self) -> str:
        """Return DATABASE_URL or raise ConfigurationError."""
        if not self.database_url:
            raise ConfigurationError(
                "DATABASE_URL is required",
                missing_keys=["DATABASE_URL"],
            )
        return self.database_url

    def __repr__(self):
        return (
            f"SyncConfig("
            f"interval={self.interval_minutes}m, "
            f"startup={self.sync_on_startup}, "
            f"concurrency={self.max_concurrency}, "
            f"attempts={self.retry_attempts}, "
            f"retry_delay={self.retry_delay_seconds}s, "
            f"device_timeout={self.device_timeout_seconds}s, "
            f"health_port={self.health_check_port})"
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the service format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
