"""FastAPI dependencies for the monitoring routes.

Tests override ``get_store`` (and optionally ``get_config``) through
``app.dependency_overrides``.
"""

from fastapi import Depends, Request

from core.config import MonitoringConfig
from sync.orchestrator import SyncOrchestrator
from sync.sql_store import SqlMonitoringStore
from sync.store import MonitoringStore


def get_config() -> MonitoringConfig:
    return MonitoringConfig.from_env()


def get_store() -> MonitoringStore:
    return SqlMonitoringStore()


def get_orchestrator(
    request: Request,
    store: MonitoringStore = Depends(get_store),
    config: MonitoringConfig = Depends(get_config),
) -> SyncOrchestrator:
    """FastAPI dependency for SyncOrchestrator."""
    tracer = getattr(request.app.state, "tracer", None)
    return SyncOrchestrator(store, config, tracer=tracer)
