"""FastAPI router for device sync endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from ..common.exceptions import DeviceNotFoundError
from ..sync.scheduler import SyncScheduler
from .dependencies import get_scheduler
from .schemas import (
    ConnectionCheckDTO,
    CycleSummaryDTO,
    DeviceListResponse,
    DeviceStatusDTO,
    SyncAcceptedResponse,
    SyncResultDTO,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Device Sync"])


@router.post(
    "/devices/{device_id}",
    response_model=SyncResultDTO,
    responses={
        202: {"model": SyncAcceptedResponse, "description": "Sync started in the background"},
        404: {"description": "Unknown device"},
        409: {"description": "Device is disabled"},
    },
)
async def sync_device(
    device_id: str,
    wait: bool = Query(True, description="Wait for the cycle to finish"),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """Sync one device now.

    A request for a device that is already syncing joins the running cycle
    instead of starting a second one.
    """
    try:
        device = scheduler.registry.get(device_id)
    except DeviceNotFoundError:
        raise HTTPException(status_code=404, detail=f"Device not found: {device_id}")

    if not device.enabled:
        raise HTTPException(status_code=409, detail=f"Device is disabled: {device_id}")

    if scheduler.is_closing and not scheduler.is_running(device_id):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is shutting down",
        )

    if wait:
        result = await scheduler.trigger(device_id)
        return SyncResultDTO.from_result(result)

    accepted, already_running = scheduler.submit(device_id)
    if not accepted:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is shutting down",
        )

    response = SyncAcceptedResponse(
        device_id=device_id,
        accepted=accepted,
        already_running=already_running,
        message="Sync already in progress" if already_running else "Sync started",
    )
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=response.model_dump())


@router.post(
    "/devices/{device_id}/test",
    response_model=ConnectionCheckDTO,
    responses={
        404: {"description": "Unknown device"},
        503: {"description": "Scheduler is shutting down"},
    },
)
async def check_device_connection(
    device_id: str,
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """Connect, read device info and disconnect without syncing.

    An unreachable terminal is still a 200; ok=false and error_code say why.
    """
    try:
        scheduler.registry.get(device_id)
    except DeviceNotFoundError:
        raise HTTPException(status_code=404, detail=f"Device not found: {device_id}")

    if scheduler.is_closing:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is shutting down",
        )

    check = await scheduler.test_connection(device_id)
    return ConnectionCheckDTO.from_check(check)


@router.post("/cycle", response_model=CycleSummaryDTO)
async def sync_all_devices(scheduler: SyncScheduler = Depends(get_scheduler)):
    """Sync every enabled device once and return the cycle summary."""
    summary = await scheduler.run_cycle()
    return CycleSummaryDTO.from_summary(summary)


@router.get("/devices", response_model=DeviceListResponse)
async def list_devices(scheduler: SyncScheduler = Depends(get_scheduler)):
    """List registered devices with their last sync status."""
    devices = [
        DeviceStatusDTO.from_device(d, running=scheduler.is_running(d.id))
        for d in scheduler.registry.all()
    ]
    return DeviceListResponse(devices=devices, total=len(devices))
