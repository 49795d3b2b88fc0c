"""Pydantic schemas for the monitoring API."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from sync.results import SyncMode


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class ConnectRequest(BaseModel):
    provider: str = Field(..., min_length=1)
    credentials: dict[str, Any] = Field(default_factory=dict)


class SyncRequest(BaseModel):
    provider: str = Field(..., min_length=1)
    mode: SyncMode = SyncMode.FULL
    selected_plant_ids: Optional[list[str]] = None


class HealthRequest(BaseModel):
    provider: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class ConnectResponse(BaseModel):
    success: bool
    integration_id: Optional[str] = None
    status: Optional[str] = None
    health: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    category: Optional[str] = None


class SyncResponse(BaseModel):
    provider: str
    mode: SyncMode
    status: Optional[str] = None
    plants_upserted: int = 0
    metrics_upserted: int = 0
    devices_upserted: int = 0
    alarms_upserted: int = 0
    errors: list[str] = Field(default_factory=list)
    error_categories: list[str] = Field(default_factory=list)
    discovered_plants: Optional[list[dict[str, Any]]] = None


class BatchEntry(BaseModel):
    tenant_id: str
    provider: str
    status: Optional[str] = None
    plants_upserted: int = 0
    metrics_upserted: int = 0
    errors: int = 0
    error: Optional[str] = None


class BatchResponse(BaseModel):
    processed: int
    results: list[BatchEntry]


class HealthResponse(BaseModel):
    provider: str
    status: str
    auth_ok: bool
    endpoint_ok: bool
    latency_ms: int
    checked_at: str
    error: Optional[str] = None
    error_category: Optional[str] = None


class ProviderCapabilities(BaseModel):
    refresh: bool = False
    devices: bool = False
    alarms: bool = False


class ProviderInfo(BaseModel):
    id: str
    label: str
    required_fields: dict[str, str]
    sessionless: bool = False
    legacy: bool = False
    capabilities: ProviderCapabilities = Field(default_factory=ProviderCapabilities)
