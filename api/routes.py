"""Monitoring API router: connect, sync, batch trigger, health, providers.

Status mapping:
- unsupported provider → 400
- stored token expired and not refreshable → 401
- integration blocked by vendor permissions → 403
- no stored integration → 404
- everything else → 200 with per-entity ``errors``
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from api.deps import get_config, get_orchestrator
from api.middleware import get_current_tenant
from api.schemas import (
    BatchEntry,
    BatchResponse,
    ConnectRequest,
    ConnectResponse,
    HealthRequest,
    HealthResponse,
    ProviderInfo,
    SyncRequest,
    SyncResponse,
)
from core.config import MonitoringConfig
from core.integrations.errors import UnsupportedProviderError
from core.integrations.registry import list_providers
from sync.orchestrator import IntegrationNotFoundError, SyncOrchestrator
from sync.status import IntegrationStatus

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Connect
# ============================================================================

@router.post("/connect", response_model=ConnectResponse)
async def connect(
    request: ConnectRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Validate and authenticate credentials, then store the integration."""
    try:
        result = await orchestrator.connect(get_current_tenant(), request.provider, request.credentials)
    except UnsupportedProviderError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return ConnectResponse(**result.to_dict())


# ============================================================================
# Sync
# ============================================================================

@router.post("/sync", response_model=SyncResponse)
async def sync(
    request: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.sync(
            get_current_tenant(), request.provider, request.mode, request.selected_plant_ids,
        )
    except UnsupportedProviderError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except IntegrationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    if result.token_expired:
        raise HTTPException(status_code=401, detail={
            "error": "Token expired. Reconnect the integration.",
            "status": result.status,
            "errors": result.errors,
        })
    if result.status == IntegrationStatus.BLOCKED.value:
        raise HTTPException(status_code=403, detail={
            "error": "Provider denied access to part of the data.",
            "status": result.status,
            "errors": result.errors,
        })
    return SyncResponse(**result.to_dict())


@router.post("/sync/batch", response_model=BatchResponse)
async def sync_batch(
    x_cron_secret: Optional[str] = Header(None),
    config: MonitoringConfig = Depends(get_config),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Scheduled trigger: full sync of every connected or errored integration."""
    if not config.cron_secret:
        logger.error("Batch sync requested but CRON_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Batch trigger is not configured")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, config.cron_secret):
        raise HTTPException(status_code=401, detail="Invalid cron secret")

    summary = await orchestrator.run_batch()
    return BatchResponse(processed=len(summary), results=[BatchEntry(**entry) for entry in summary])


# ============================================================================
# Health & catalogue
# ============================================================================

@router.post("/health", response_model=HealthResponse)
async def integration_health(
    request: HealthRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.check_health(get_current_tenant(), request.provider)
    except UnsupportedProviderError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except IntegrationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if result is None:
        raise HTTPException(status_code=400, detail=f"Health check is not available for {request.provider}")
    return HealthResponse(**result.to_dict())


@router.get("/providers", response_model=list[ProviderInfo])
async def providers(config: MonitoringConfig = Depends(get_config)):
    return [ProviderInfo(**entry) for entry in list_providers(config.http)]
