"""Monitoring tables.

Natural-key unique constraints back the orchestrator's idempotent upserts:
- monitoring_integrations: (tenant_id, provider)
- solar_plants: (tenant_id, provider, external_id)
- solar_devices: (tenant_id, plant_id, provider_device_id)
- solar_alarms: (tenant_id, provider, provider_event_id)
- solar_plant_metrics_daily: (tenant_id, plant_id, date)

solar_metrics_audit, solar_plant_readings and audit_logs are append-only.
"""

import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import Boolean, Date, Float, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base, TenantMixin


class MonitoringIntegration(TenantMixin, Base):
    __tablename__ = "monitoring_integrations"
    __table_args__ = (UniqueConstraint("tenant_id", "provider", name="uq_integration_tenant_provider"),)

    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="connected")
    credentials: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    tokens: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)


class SolarPlant(TenantMixin, Base):
    __tablename__ = "solar_plants"
    __table_args__ = (UniqueConstraint("tenant_id", "provider", "external_id", name="uq_plant_external"),)

    integration_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("monitoring_integrations.id", ondelete="SET NULL"), nullable=True,
    )
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    capacity_kw: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="unknown")
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", nullable=False, default=dict)


class SolarDevice(TenantMixin, Base):
    __tablename__ = "solar_devices"
    __table_args__ = (UniqueConstraint("tenant_id", "plant_id", "provider_device_id", name="uq_device_plant"),)

    plant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("solar_plants.id", ondelete="CASCADE"), nullable=False,
    )
    provider_device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="inverter")
    model: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    serial: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="unknown")
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", nullable=False, default=dict)


class SolarAlarm(TenantMixin, Base):
    __tablename__ = "solar_alarms"
    __table_args__ = (UniqueConstraint("tenant_id", "provider", "provider_event_id", name="uq_alarm_event"),)

    plant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("solar_plants.id", ondelete="CASCADE"), nullable=False,
    )
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    provider_device_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="info")
    type: Mapped[str] = mapped_column(String(64), nullable=False, default="other")
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    starts_at: Mapped[str] = mapped_column(String(40), nullable=False)
    ends_at: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SolarPlantMetricsDaily(TenantMixin, Base):
    __tablename__ = "solar_plant_metrics_daily"
    __table_args__ = (UniqueConstraint("tenant_id", "plant_id", "date", name="uq_metrics_plant_date"),)

    plant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("solar_plants.id", ondelete="CASCADE"), nullable=False,
    )
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    power_kw: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    energy_kwh: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_energy_kwh: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", nullable=False, default=dict)


class SolarMetricsAudit(TenantMixin, Base):
    """Write-once copy of every metrics payload."""
    __tablename__ = "solar_metrics_audit"

    plant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)


class SolarPlantReading(TenantMixin, Base):
    """Write-once realtime snapshot."""
    __tablename__ = "solar_plant_readings"

    plant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    power_kw: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    energy_kwh: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_energy_kwh: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)


class AuditLog(TenantMixin, Base):
    __tablename__ = "audit_logs"

    action: Mapped[str] = mapped_column(String(128), nullable=False)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    record_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
