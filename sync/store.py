"""
Persistence boundary for the sync orchestrator.

MonitoringStore is the narrow read/write contract the orchestrator needs.
Upserts are keyed by natural keys:

- integration: (tenant, provider)
- plant: (tenant, provider, external_id)
- device: (tenant, plant, provider_device_id)
- alarm: (tenant, provider, provider_event_id)
- daily metrics: (tenant, plant, date)

The metrics audit trail, realtime readings and audit events are append-only.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable
import copy
import uuid

from core.integrations.normalizer import (
    DailyMetrics,
    NormalizedAlarm,
    NormalizedDevice,
    NormalizedPlant,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class IntegrationRecord:
    id: str
    tenant_id: str
    provider: str
    status: str
    credentials: dict[str, Any] = field(default_factory=dict)
    tokens: dict[str, Any] = field(default_factory=dict)
    sync_error: str | None = None
    last_sync_at: datetime | None = None


@dataclass
class PlantRecord:
    id: str
    tenant_id: str
    integration_id: str | None
    provider: str
    external_id: str
    name: str
    capacity_kw: float | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    status: str = "unknown"
    metadata: dict[str, Any] = field(default_factory=dict)


class MonitoringStore(ABC):
    """Read/write contract used by the orchestrator and connect flow."""

    # --- Integrations ---

    @abstractmethod
    async def get_integration(self, tenant_id: str, provider: str) -> IntegrationRecord | None: ...

    @abstractmethod
    async def save_integration(
        self,
        tenant_id: str,
        provider: str,
        *,
        status: str,
        credentials: dict[str, Any],
        tokens: dict[str, Any],
        sync_error: str | None = None,
    ) -> IntegrationRecord:
        """Create or replace the integration for (tenant, provider)."""

    @abstractmethod
    async def update_integration_status(
        self,
        integration_id: str,
        *,
        status: str,
        sync_error: str | None,
        last_sync_at: datetime | None = None,
        tokens: dict[str, Any] | None = None,
        credentials: dict[str, Any] | None = None,
    ) -> None: ...

    @abstractmethod
    async def list_integrations(self, statuses: Iterable[str]) -> list[IntegrationRecord]: ...

    # --- Plants ---

    @abstractmethod
    async def upsert_plant(
        self, tenant_id: str, integration_id: str | None, provider: str, plant: NormalizedPlant,
    ) -> PlantRecord: ...

    @abstractmethod
    async def list_plants(self, tenant_id: str, integration_id: str) -> list[PlantRecord]: ...

    @abstractmethod
    async def get_plant(self, tenant_id: str, provider: str, external_id: str) -> PlantRecord | None: ...

    # --- Devices, alarms, metrics ---

    @abstractmethod
    async def upsert_device(self, tenant_id: str, plant_id: str, device: NormalizedDevice) -> str: ...

    @abstractmethod
    async def upsert_alarm(self, tenant_id: str, plant_id: str, provider: str, alarm: NormalizedAlarm) -> str: ...

    @abstractmethod
    async def upsert_daily_metrics(self, tenant_id: str, plant_id: str, day: date, metrics: DailyMetrics) -> str: ...

    @abstractmethod
    async def append_metrics_audit(
        self, tenant_id: str, plant_id: str, provider: str, day: date, payload: dict[str, Any],
    ) -> None: ...

    @abstractmethod
    async def append_reading(self, tenant_id: str, plant_id: str, metrics: DailyMetrics, recorded_at: datetime) -> None: ...

    # --- Audit ---

    @abstractmethod
    async def write_audit_event(
        self,
        tenant_id: str,
        action: str,
        table: str,
        record_id: str | None,
        data: dict[str, Any],
    ) -> None: ...


class InMemoryMonitoringStore(MonitoringStore):
    """
    In-memory store for tests and local runs.

    Replace with SqlMonitoringStore for production.
    """

    def __init__(self):
        self.integrations: dict[tuple[str, str], IntegrationRecord] = {}
        self.plants: dict[tuple[str, str, str], PlantRecord] = {}
        self.devices: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.alarms: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.metrics: dict[tuple[str, str, date], dict[str, Any]] = {}
        self.metrics_audit: list[dict[str, Any]] = []
        self.readings: list[dict[str, Any]] = []
        self.audit_events: list[dict[str, Any]] = []

    # --- Integrations ---

    async def get_integration(self, tenant_id: str, provider: str) -> IntegrationRecord | None:
        record = self.integrations.get((tenant_id, provider))
        return copy.deepcopy(record) if record else None

    async def save_integration(self, tenant_id, provider, *, status, credentials, tokens, sync_error=None):
        existing = self.integrations.get((tenant_id, provider))
        record = IntegrationRecord(
            id=existing.id if existing else _new_id(),
            tenant_id=tenant_id,
            provider=provider,
            status=status,
            credentials=dict(credentials),
            tokens=dict(tokens),
            sync_error=sync_error,
            last_sync_at=existing.last_sync_at if existing else None,
        )
        self.integrations[(tenant_id, provider)] = record
        return copy.deepcopy(record)

    async def update_integration_status(
        self, integration_id, *, status, sync_error, last_sync_at=None, tokens=None, credentials=None,
    ):
        for record in self.integrations.values():
            if record.id != integration_id:
                continue
            record.status = status
            record.sync_error = sync_error
            if last_sync_at is not None:
                record.last_sync_at = last_sync_at
            if tokens is not None:
                record.tokens = dict(tokens)
            if credentials is not None:
                record.credentials = dict(credentials)
            return
        raise KeyError(f"Integration not found: {integration_id}")

    async def list_integrations(self, statuses):
        wanted = {str(getattr(s, "value", s)) for s in statuses}
        return [copy.deepcopy(r) for r in self.integrations.values() if r.status in wanted]

    # --- Plants ---

    async def upsert_plant(self, tenant_id, integration_id, provider, plant):
        key = (tenant_id, provider, plant.external_id)
        existing = self.plants.get(key)
        record = PlantRecord(
            id=existing.id if existing else _new_id(),
            tenant_id=tenant_id,
            integration_id=integration_id,
            provider=provider,
            external_id=plant.external_id,
            name=plant.name,
            capacity_kw=plant.capacity_kw,
            address=plant.address,
            latitude=plant.latitude,
            longitude=plant.longitude,
            status=plant.status,
            metadata=dict(plant.metadata),
        )
        self.plants[key] = record
        return record

    async def list_plants(self, tenant_id, integration_id):
        return [p for p in self.plants.values() if p.tenant_id == tenant_id and p.integration_id == integration_id]

    async def get_plant(self, tenant_id, provider, external_id):
        return self.plants.get((tenant_id, provider, external_id))

    # --- Devices, alarms, metrics ---

    async def upsert_device(self, tenant_id, plant_id, device):
        key = (tenant_id, plant_id, device.provider_device_id)
        row_id = self.devices[key]["id"] if key in self.devices else _new_id()
        self.devices[key] = {"id": row_id, "plant_id": plant_id, **device.to_dict(), "updated_at": _utcnow()}
        return row_id

    async def upsert_alarm(self, tenant_id, plant_id, provider, alarm):
        key = (tenant_id, provider, alarm.provider_event_id)
        row_id = self.alarms[key]["id"] if key in self.alarms else _new_id()
        self.alarms[key] = {"id": row_id, "plant_id": plant_id, "provider": provider, **alarm.to_dict()}
        return row_id

    async def upsert_daily_metrics(self, tenant_id, plant_id, day, metrics):
        key = (tenant_id, plant_id, day)
        row_id = self.metrics[key]["id"] if key in self.metrics else _new_id()
        self.metrics[key] = {"id": row_id, "plant_id": plant_id, "date": day, **metrics.to_dict()}
        return row_id

    async def append_metrics_audit(self, tenant_id, plant_id, provider, day, payload):
        self.metrics_audit.append({
            "tenant_id": tenant_id,
            "plant_id": plant_id,
            "provider": provider,
            "date": day,
            "payload": copy.deepcopy(payload),
            "created_at": _utcnow(),
        })

    async def append_reading(self, tenant_id, plant_id, metrics, recorded_at):
        self.readings.append({
            "tenant_id": tenant_id,
            "plant_id": plant_id,
            "power_kw": metrics.power_kw,
            "energy_kwh": metrics.energy_kwh,
            "total_energy_kwh": metrics.total_energy_kwh,
            "recorded_at": recorded_at,
        })

    # --- Audit ---

    async def write_audit_event(self, tenant_id, action, table, record_id, data):
        self.audit_events.append({
            "tenant_id": tenant_id,
            "action": action,
            "table": table,
            "record_id": record_id,
            "data": copy.deepcopy(data),
            "created_at": _utcnow(),
        })
