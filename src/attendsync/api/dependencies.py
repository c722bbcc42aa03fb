"""FastAPI dependency injection for the sync API.

Lifecycle Management:
- The runtime (pool, adapters, registry, scheduler) is built at startup
  and shared across requests
- It is torn down at application shutdown

Tests swap the scheduler in through app.dependency_overrides[get_scheduler].
"""

import logging
from typing import Optional

from ..config import SyncConfig
from ..runtime import SyncRuntime, build_runtime, close_runtime
from ..sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

# ========== Global State ==========

# Runtime (initialized on startup)
_runtime: Optional[SyncRuntime] = None


async def init_runtime(config: SyncConfig) -> SyncRuntime:
    """Build the runtime. Should be called on application startup."""
    global _runtime
    _runtime = await build_runtime(config)
    return _runtime


async def shutdown_runtime() -> None:
    """Tear the runtime down. Should be called on application shutdown."""
    global _runtime
    if _runtime is not None:
        await close_runtime(_runtime)
        _runtime = None


def get_runtime() -> SyncRuntime:
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call init_runtime() first.")
    return _runtime


# ========== Dependency Functions ==========


def get_scheduler() -> SyncScheduler:
    """Get the process-wide sync scheduler."""
    return get_runtime().scheduler
