"""SQLAlchemy implementation of MonitoringStore.

Each call runs in its own session (commit on success, rollback on error).
Upserts are select-then-update on the natural keys, with tenant isolation on
every query.
"""

import uuid
from datetime import date, datetime
from typing import Any, Iterable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import get_session_factory
from core.integrations.normalizer import DailyMetrics, NormalizedAlarm, NormalizedDevice, NormalizedPlant
from core.models.base import Base
from core.models.monitoring import (
    AuditLog,
    MonitoringIntegration,
    SolarAlarm,
    SolarDevice,
    SolarMetricsAudit,
    SolarPlant,
    SolarPlantMetricsDaily,
    SolarPlantReading,
)
from sync.store import IntegrationRecord, MonitoringStore, PlantRecord

ModelT = TypeVar("ModelT", bound=Base)


def _uuid(value: str | uuid.UUID | None) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _integration_record(row: MonitoringIntegration) -> IntegrationRecord:
    return IntegrationRecord(
        id=str(row.id),
        tenant_id=row.tenant_id,
        provider=row.provider,
        status=row.status,
        credentials=dict(row.credentials or {}),
        tokens=dict(row.tokens or {}),
        sync_error=row.sync_error,
        last_sync_at=row.last_sync_at,
    )


def _plant_record(row: SolarPlant) -> PlantRecord:
    return PlantRecord(
        id=str(row.id),
        tenant_id=row.tenant_id,
        integration_id=str(row.integration_id) if row.integration_id else None,
        provider=row.provider,
        external_id=row.external_id,
        name=row.name,
        capacity_kw=row.capacity_kw,
        address=row.address,
        latitude=row.latitude,
        longitude=row.longitude,
        status=row.status,
        metadata=dict(row.metadata_ or {}),
    )


class SqlMonitoringStore(MonitoringStore):
    """Usage::

        store = SqlMonitoringStore()                 # DATABASE_URL engine
        store = SqlMonitoringStore(session_factory)  # tests: sqlite+aiosqlite
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    def _session(self) -> AsyncSession:
        return (self._session_factory or get_session_factory())()

    @staticmethod
    async def _upsert(
        session: AsyncSession,
        model: type[ModelT],
        keys: dict[str, Any],
        values: dict[str, Any],
    ) -> ModelT:
        stmt = select(model).where(*(getattr(model, k) == v for k, v in keys.items()))
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            row = model(**keys, **values)
            session.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
        await session.flush()
        return row

    async def _write(self, fn):
        async with self._session() as session:
            try:
                result = await fn(session)
                await session.commit()
                return result
            except Exception:
                await session.rollback()
                raise

    # -- Integrations --

    async def get_integration(self, tenant_id: str, provider: str) -> IntegrationRecord | None:
        async with self._session() as session:
            stmt = select(MonitoringIntegration).where(
                MonitoringIntegration.tenant_id == tenant_id,
                MonitoringIntegration.provider == provider,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _integration_record(row) if row else None

    async def save_integration(self, tenant_id, provider, *, status, credentials, tokens, sync_error=None):
        async def op(session: AsyncSession) -> IntegrationRecord:
            row = await self._upsert(
                session,
                MonitoringIntegration,
                {"tenant_id": tenant_id, "provider": provider},
                {"status": status, "credentials": dict(credentials), "tokens": dict(tokens), "sync_error": sync_error},
            )
            return _integration_record(row)
        return await self._write(op)

    async def update_integration_status(
        self, integration_id, *, status, sync_error, last_sync_at=None, tokens=None, credentials=None,
    ):
        async def op(session: AsyncSession) -> None:
            row = await session.get(MonitoringIntegration, _uuid(integration_id))
            if row is None:
                raise KeyError(f"Integration not found: {integration_id}")
            row.status = status
            row.sync_error = sync_error
            if last_sync_at is not None:
                row.last_sync_at = last_sync_at
            if tokens is not None:
                row.tokens = dict(tokens)
            if credentials is not None:
                row.credentials = dict(credentials)
        await self._write(op)

    async def list_integrations(self, statuses: Iterable[str]) -> list[IntegrationRecord]:
        wanted = [str(getattr(s, "value", s)) for s in statuses]
        async with self._session() as session:
            stmt = (
                select(MonitoringIntegration)
                .where(MonitoringIntegration.status.in_(wanted))
                .order_by(MonitoringIntegration.created_at)
            )
            return [_integration_record(r) for r in (await session.execute(stmt)).scalars().all()]

    # -- Plants --

    async def upsert_plant(self, tenant_id, integration_id, provider, plant: NormalizedPlant) -> PlantRecord:
        async def op(session: AsyncSession) -> PlantRecord:
            row = await self._upsert(
                session,
                SolarPlant,
                {"tenant_id": tenant_id, "provider": provider, "external_id": plant.external_id},
                {
                    "integration_id": _uuid(integration_id),
                    "name": plant.name,
                    "capacity_kw": plant.capacity_kw,
                    "address": plant.address,
                    "latitude": plant.latitude,
                    "longitude": plant.longitude,
                    "status": plant.status,
                    "metadata_": dict(plant.metadata),
                },
            )
            return _plant_record(row)
        return await self._write(op)

    async def list_plants(self, tenant_id: str, integration_id: str) -> list[PlantRecord]:
        async with self._session() as session:
            stmt = (
                select(SolarPlant)
                .where(SolarPlant.tenant_id == tenant_id, SolarPlant.integration_id == _uuid(integration_id))
                .order_by(SolarPlant.external_id)
            )
            return [_plant_record(r) for r in (await session.execute(stmt)).scalars().all()]

    async def get_plant(self, tenant_id: str, provider: str, external_id: str) -> PlantRecord | None:
        async with self._session() as session:
            stmt = select(SolarPlant).where(
                SolarPlant.tenant_id == tenant_id,
                SolarPlant.provider == provider,
                SolarPlant.external_id == external_id,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _plant_record(row) if row else None

    # -- Devices, alarms, metrics --

    async def upsert_device(self, tenant_id, plant_id, device: NormalizedDevice) -> str:
        async def op(session: AsyncSession) -> str:
            row = await self._upsert(
                session,
                SolarDevice,
                {"tenant_id": tenant_id, "plant_id": _uuid(plant_id), "provider_device_id": device.provider_device_id},
                {
                    "type": device.type,
                    "model": device.model,
                    "serial": device.serial,
                    "status": device.status,
                    "metadata_": dict(device.metadata),
                },
            )
            return str(row.id)
        return await self._write(op)

    async def upsert_alarm(self, tenant_id, plant_id, provider, alarm: NormalizedAlarm) -> str:
        async def op(session: AsyncSession) -> str:
            row = await self._upsert(
                session,
                SolarAlarm,
                {"tenant_id": tenant_id, "provider": provider, "provider_event_id": alarm.provider_event_id},
                {
                    "plant_id": _uuid(plant_id),
                    "provider_device_id": alarm.provider_device_id,
                    "severity": alarm.severity,
                    "type": alarm.type,
                    "title": alarm.title,
                    "message": alarm.message,
                    "starts_at": alarm.starts_at,
                    "ends_at": alarm.ends_at,
                    "is_open": alarm.is_open,
                },
            )
            return str(row.id)
        return await self._write(op)

    async def upsert_daily_metrics(self, tenant_id, plant_id, day: date, metrics: DailyMetrics) -> str:
        async def op(session: AsyncSession) -> str:
            row = await self._upsert(
                session,
                SolarPlantMetricsDaily,
                {"tenant_id": tenant_id, "plant_id": _uuid(plant_id), "day": day},
                {
                    "power_kw": metrics.power_kw,
                    "energy_kwh": metrics.energy_kwh,
                    "total_energy_kwh": metrics.total_energy_kwh,
                    "metadata_": dict(metrics.metadata),
                },
            )
            return str(row.id)
        return await self._write(op)

    async def append_metrics_audit(self, tenant_id, plant_id, provider, day: date, payload: dict[str, Any]) -> None:
        async def op(session: AsyncSession) -> None:
            session.add(SolarMetricsAudit(
                tenant_id=tenant_id, plant_id=_uuid(plant_id), provider=provider, day=day, payload=payload,
            ))
        await self._write(op)

    async def append_reading(self, tenant_id, plant_id, metrics: DailyMetrics, recorded_at: datetime) -> None:
        async def op(session: AsyncSession) -> None:
            session.add(SolarPlantReading(
                tenant_id=tenant_id,
                plant_id=_uuid(plant_id),
                power_kw=metrics.power_kw,
                energy_kwh=metrics.energy_kwh,
                total_energy_kwh=metrics.total_energy_kwh,
                recorded_at=recorded_at,
            ))
        await self._write(op)

    # -- Audit --

    async def write_audit_event(self, tenant_id, action, table, record_id, data) -> None:
        async def op(session: AsyncSession) -> None:
            session.add(AuditLog(
                tenant_id=tenant_id, action=action, table_name=table, record_id=record_id, data=data,
            ))
        await self._write(op)
