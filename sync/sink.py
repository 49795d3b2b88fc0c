"""
Per-sync persistence helper shared by the canonical and legacy strategies.

Wraps the store for one (tenant, integration) and turns every write into an
EntityResult recorded on the running SyncResult. Audit-trail and reading
writes are best-effort: failures are logged and never reach the result.
"""
from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any, Iterable
import logging

from core.config import SyncConfig
from core.integrations.errors import ErrorCategory, ProviderError
from core.integrations.normalizer import (
    REASON_KEY,
    DailyMetrics,
    NormalizedAlarm,
    NormalizedDeviceGroup,
    NormalizedPlant,
)
from sync.results import EntityResult, SyncResult
from sync.store import IntegrationRecord, MonitoringStore, PlantRecord

logger = logging.getLogger(__name__)


class PlantSink:
    def __init__(
        self,
        store: MonitoringStore,
        integration: IntegrationRecord,
        result: SyncResult,
        config: SyncConfig | None = None,
        selected_plant_ids: Iterable[str] | None = None,
        today: date | None = None,
    ):
        self.store = store
        self.integration = integration
        self.result = result
        self.config = config or SyncConfig()
        self.selected = {str(i) for i in selected_plant_ids} if selected_plant_ids else None
        self.today = today or datetime.now(timezone.utc).date()

    @property
    def tenant_id(self) -> str:
        return self.integration.tenant_id

    @property
    def provider(self) -> str:
        return self.integration.provider

    def is_selected(self, external_id: str) -> bool:
        return self.selected is None or str(external_id) in self.selected

    def record(self, result: EntityResult[Any]) -> bool:
        return self.result.record(result)

    def fail(self, entity: str, error: Exception) -> None:
        self.record(EntityResult.fail(entity, error, self.provider))

    # --- Plants ---

    async def upsert_plants(self, plants: list[NormalizedPlant]) -> None:
        for plant in plants:
            if not self.is_selected(plant.external_id):
                continue
            if await self.upsert_plant(plant) is not None:
                self.result.plants_upserted += 1

    async def upsert_plant(self, plant: NormalizedPlant) -> PlantRecord | None:
        try:
            return await self.store.upsert_plant(self.tenant_id, self.integration.id, self.provider, plant)
        except Exception as exc:
            self.fail(f"Plant {plant.external_id}", exc)
            return None

    async def known_plants(self) -> list[PlantRecord]:
        plants = await self.store.list_plants(self.tenant_id, self.integration.id)
        return [p for p in plants if self.is_selected(p.external_id)]

    # --- Metrics ---

    async def upsert_metrics(self, plant: PlantRecord, metrics: DailyMetrics) -> bool:
        entity = f"Metrics {plant.external_id}"
        if metrics.is_blocked:
            self.record(EntityResult(entity=entity, error=ProviderError(
                ErrorCategory.PERMISSION,
                self.provider,
                f"Metrics not available for this account ({metrics.metadata.get(REASON_KEY)})",
            )))
            return False
        try:
            await self.store.upsert_daily_metrics(self.tenant_id, plant.id, self.today, metrics)
        except Exception as exc:
            self.fail(entity, exc)
            return False
        self.result.metrics_upserted += 1
        await self._append_history(plant, metrics)
        return True

    async def _append_history(self, plant: PlantRecord, metrics: DailyMetrics) -> None:
        if self.config.write_audit_trail:
            try:
                await self.store.append_metrics_audit(
                    self.tenant_id, plant.id, self.provider, self.today, metrics.to_dict(),
                )
            except Exception as exc:
                logger.warning("[%s] metrics audit write failed for %s: %s", self.provider, plant.external_id, exc)
        if self.config.write_readings and metrics.has_data:
            try:
                await self.store.append_reading(self.tenant_id, plant.id, metrics, datetime.now(timezone.utc))
            except Exception as exc:
                logger.warning("[%s] reading write failed for %s: %s", self.provider, plant.external_id, exc)

    # --- Devices & alarms ---

    async def upsert_device_groups(self, groups: list[NormalizedDeviceGroup]) -> None:
        for group in groups:
            if not self.is_selected(group.station_id):
                continue
            plant = await self._plant_for_station(group.station_id)
            if plant is None:
                continue
            for device in group.devices:
                try:
                    await self.store.upsert_device(self.tenant_id, plant.id, device)
                except Exception as exc:
                    self.fail(f"Device {device.provider_device_id}", exc)
                else:
                    self.result.devices_upserted += 1

    async def _plant_for_station(self, station_id: str) -> PlantRecord | None:
        plant = await self.store.get_plant(self.tenant_id, self.provider, station_id)
        if plant is not None:
            return plant
        # Devices must hang off a plant; create a minimal one for the station.
        logger.info("[%s] creating plant %s for its devices", self.provider, station_id)
        return await self.upsert_plant(NormalizedPlant(
            external_id=station_id,
            name=f"Station {station_id}",
            metadata={"auto_created": True},
        ))

    async def upsert_alarms(self, alarms: list[NormalizedAlarm]) -> None:
        for alarm in alarms:
            if not self.is_selected(alarm.provider_plant_id):
                continue
            plant = await self.store.get_plant(self.tenant_id, self.provider, alarm.provider_plant_id)
            if plant is None:
                logger.debug("[%s] skipping alarm %s for unknown plant %s",
                             self.provider, alarm.provider_event_id, alarm.provider_plant_id)
                continue
            try:
                await self.store.upsert_alarm(self.tenant_id, plant.id, self.provider, alarm)
            except Exception as exc:
                self.fail(f"Alarm {alarm.provider_event_id}", exc)
            else:
                self.result.alarms_upserted += 1
