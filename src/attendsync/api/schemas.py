"""Pydantic schemas for API responses."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..sync.domain.entities import ConnectionCheck, CycleSummary, Device, SyncResult


class AnomalyDTO(BaseModel):
    """A reconciliation anomaly."""

    kind: str
    device_id: str
    user_id: str
    timestamp: Optional[int] = None
    detail: str = ""


class DeviceInfoDTO(BaseModel):
    serial_number: Optional[str] = None
    firmware_version: Optional[str] = None
    platform: Optional[str] = None
    device_name: Optional[str] = None
    mac_address: Optional[str] = None


class SyncResultDTO(BaseModel):
    """Result of one device cycle."""

    device_id: str
    cycle_at: datetime
    completed_at: Optional[datetime] = None
    status: str = Field(..., description="success, partial_failure or failure")
    reason: Optional[str] = None
    records_fetched: int = 0
    records_reconciled: int = 0
    records_written: int = 0
    records_cleared: int = 0
    users_fetched: int = 0
    attempts: int = 1
    anomalies: list[AnomalyDTO] = Field(default_factory=list)
    device_info: Optional[DeviceInfoDTO] = None
    error_details: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultDTO":
        return cls.model_validate(result.to_dict())


class SyncAcceptedResponse(BaseModel):
    """Response to a background sync request."""

    device_id: str
    accepted: bool
    already_running: bool
    message: str


class CycleSummaryDTO(BaseModel):
    """Result of one fan-out over all enabled devices."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    devices_attempted: int = 0
    succeeded: int = 0
    partially_failed: int = 0
    failed: int = 0
    entries_written: int = 0
    anomalies: int = 0
    results: list[SyncResultDTO] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: CycleSummary) -> "CycleSummaryDTO":
        return cls.model_validate(summary.to_dict())


class DeviceStatusDTO(BaseModel):
    """Registry view of one device."""

    id: str
    name: str
    address: str
    port: int
    enabled: bool
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    consecutive_failures: int = 0
    running: bool = False

    @classmethod
    def from_device(cls, device: Device, running: bool = False) -> "DeviceStatusDTO":
        return cls.model_validate({**device.to_dict(), "running": running})


class DeviceListResponse(BaseModel):
    devices: list[DeviceStatusDTO] = Field(default_factory=list)
    total: int = 0


class ConnectionCheckDTO(BaseModel):
    """Result of a read-only connectivity check."""

    device_id: str
    ok: bool
    checked_at: datetime
    completed_at: Optional[datetime] = None
    device_info: Optional[DeviceInfoDTO] = None
    user_count: Optional[int] = None
    record_count: Optional[int] = None
    error_code: Optional[str] = Field(None, description="Same reason codes as a failed sync")
    error: Optional[str] = None

    @classmethod
    def from_check(cls, check: ConnectionCheck) -> "ConnectionCheckDTO":
        return cls.model_validate(check.to_dict())
