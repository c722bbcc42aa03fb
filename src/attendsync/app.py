"""FastAPI application for the attendance sync service.

Runs the periodic sync loop in the background and exposes on-demand sync,
registry status and health endpoints.

    uvicorn src.attendsync.app:app --port 8000
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from .api.dependencies import get_scheduler, init_runtime, shutdown_runtime
from .api.router import router
from .config import SyncConfig, configure_logging
from .sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


def create_app(manage_runtime: bool = True) -> FastAPI:
    """Build the application.

    Args:
        manage_runtime: Build the runtime and run the periodic loop in the
            lifespan. Disabled when the caller injects a scheduler itself.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not manage_runtime:
            yield
            return

        load_dotenv()
        config = SyncConfig.from_env()
        configure_logging(config.log_level)
        logger.info(f"Starting attendance sync API: {config}")

        runtime = await init_runtime(config)
        shutdown_event = asyncio.Event()
        loop_task = asyncio.create_task(
            runtime.scheduler.run_forever(shutdown_event), name="sync-loop"
        )

        yield

        logger.info("Shutting down attendance sync API...")
        shutdown_event.set()
        await loop_task
        await shutdown_runtime()

    app = FastAPI(
        title="Attendance Device Sync API",
        description="""
        Pulls punch records from attendance terminals into the attendance ledger.

        - **Sync a device**: run (or join) a cycle for one terminal
        - **Sync all**: run one cycle over every enabled terminal
        - **Devices**: registry view with last sync status
        """,
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.get("/health")
    async def health(scheduler: SyncScheduler = Depends(get_scheduler)):
        """Service health; 503 when every device failed the last cycle."""
        state = scheduler.health()
        status_code = 200 if state["status"] == "healthy" else 503
        return JSONResponse(status_code=status_code, content=state)

    return app


app = create_app()


# Entry point for running with uvicorn
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.attendsync.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
