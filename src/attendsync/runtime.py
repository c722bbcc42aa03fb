"""Runtime wiring shared by the scheduler process, the CLI and the API server.

build_runtime() creates the asyncpg pool, the adapters, the registry and
the scheduler from a SyncConfig; close_runtime() tears them down in
reverse order.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .common.database import close_pool, create_pool
from .config import SyncConfig
from .sync.adapters import (
    EnvDeviceRepository,
    PostgresAttendanceLedger,
    PostgresDeviceRepository,
    PostgresEmployeeDirectory,
    PostgresSyncAuditLog,
    ZKDeviceDriver,
)
from .sync.domain.ports import IDeviceDriver, IDeviceRepository
from .sync.registry import DeviceRegistry
from .sync.scheduler import SyncScheduler
from .sync.use_cases.check_connection import CheckConnectionUseCase
from .sync.use_cases.sync_device import SyncDeviceUseCase

logger = logging.getLogger(__name__)


@dataclass
class SyncRuntime:
    config: SyncConfig
    pool: Any
    device_repo: IDeviceRepository
    registry: DeviceRegistry
    scheduler: SyncScheduler


async def build_runtime(
    config: SyncConfig,
    driver: Optional[IDeviceDriver] = None,
) -> SyncRuntime:
    """Create every collaborator of the sync engine.

    Raises:
        ConfigurationError: If DATABASE_URL or ATTENDANCE_DEVICES is invalid
        ConnectionPoolError: If the database is unreachable
    """
    pool = await create_pool(config.require_database())

    try:
        if config.devices_json:
            device_repo: IDeviceRepository = EnvDeviceRepository(
                config.devices_json, default_timeout=config.device_timeout_seconds
            )
        else:
            device_repo = PostgresDeviceRepository(
                pool, default_timeout=config.device_timeout_seconds
            )

        registry = DeviceRegistry(await device_repo.list_devices())
        logger.info(f"Registry loaded with {len(registry)} devices")

        device_driver = driver or ZKDeviceDriver()

        sync_device = SyncDeviceUseCase(
            driver=device_driver,
            ledger=PostgresAttendanceLedger(pool),
            directory=PostgresEmployeeDirectory(pool),
            retry_attempts=config.retry_attempts,
            retry_delay_seconds=config.retry_delay_seconds,
        )
        scheduler = SyncScheduler(
            registry=registry,
            sync_device=sync_device,
            device_repo=device_repo,
            audit_log=PostgresSyncAuditLog(pool),
            max_concurrency=config.max_concurrency,
            interval_seconds=config.interval_seconds,
            sync_on_startup=config.sync_on_startup,
            connection_check=CheckConnectionUseCase(device_driver),
        )
    except BaseException:
        await close_pool(pool)
        raise

    return SyncRuntime(
        config=config,
        pool=pool,
        device_repo=device_repo,
        registry=registry,
        scheduler=scheduler,
    )


async def close_runtime(runtime: SyncRuntime) -> None:
    """Cancel in-flight cycles, then close the pool."""
    await runtime.scheduler.shutdown()
    await close_pool(runtime.pool)
