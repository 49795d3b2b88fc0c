"""
SolarEdge Monitoring API adapter (account API key).

The key is a query parameter (``api_key``) on every call. Listings page
with ``size`` / ``startIndex``; the API enforces a daily request quota and
answers 429 once it is used up.

Plants:  GET /sites/list
Metrics: GET /site/{id}/overview
Devices: GET /equipment/{id}/list
"""
from __future__ import annotations
from typing import Any, Mapping

from core.integrations.adapter_base import AuthResult, ProviderAdapter
from core.integrations.errors import ProviderError
from core.integrations.normalizer import (
    DailyMetrics,
    FieldMapping,
    NormalizedDevice,
    NormalizedDeviceGroup,
    NormalizedPlant,
    SchemaMapping,
    default_normalizer,
    first_present,
    map_status,
    to_float,
    to_str,
)

PAGE_SIZE = 100

STATUS_MAP = {"active": "normal", "pending": "offline", "disabled": "offline"}

PLANT_MAPPING = SchemaMapping(
    adapter_name="solaredge",
    entity_type="plant",
    mappings=[
        FieldMapping("id", "external_id", "str"),
        FieldMapping("name", "name", "strip"),
        FieldMapping("peakPower", "capacity_kw", "float"),
        FieldMapping(("location.address", "location.city"), "address", "optional_str"),
    ],
)
default_normalizer.register_mapping(PLANT_MAPPING)


def _kilo(value: Any) -> float | None:
    number = to_float(value)
    return number / 1000 if number is not None else None


class SolarEdgeAdapter(ProviderAdapter):
    provider_id = "solaredge"
    display_name = "SolarEdge"
    base_url = "https://monitoringapi.solaredge.com"
    required_fields = {"apiKey": "API Key"}

    supports_devices = True

    async def authenticate(self, creds: Mapping[str, Any]) -> AuthResult:
        self.validate_credentials(creds)
        api_key = str(creds["apiKey"]).strip()
        try:
            json = await self.http.get("/sites/list", params={"api_key": api_key, "size": 1}, no_retry=True)
        except ProviderError as exc:
            raise self.as_auth_failure(exc)
        if "sites" not in json:
            raise self.auth_error("SolarEdge did not return a site list for this API key")
        return AuthResult(credentials={}, tokens={"api_key": api_key})

    async def fetch_plants(self, auth: AuthResult) -> list[NormalizedPlant]:
        async def fetch_page(page: int) -> tuple[list[NormalizedPlant], int]:
            json = await self._get(auth, "/sites/list", {"size": PAGE_SIZE, "startIndex": (page - 1) * PAGE_SIZE})
            sites = json.get("sites") or {}
            plants = [
                default_normalizer.normalize_plant(
                    self.provider_id, r, status=map_status(str(r.get("status", "")).lower(), STATUS_MAP),
                )
                for r in sites.get("site") or []
            ]
            return plants, int(to_float(sites.get("count")) or 0)

        return await self.paginate(fetch_page, PAGE_SIZE)

    async def fetch_metrics(self, auth: AuthResult, external_plant_id: str) -> DailyMetrics:
        json = await self._get(auth, f"/site/{external_plant_id}/overview")
        overview = json.get("overview") or {}
        if not overview:
            return DailyMetrics.no_data()
        metrics = DailyMetrics(
            power_kw=_kilo(first_present(overview, "currentPower.power")),
            energy_kwh=_kilo(first_present(overview, "lastDayData.energy")),
            total_energy_kwh=_kilo(first_present(overview, "lifeTimeData.energy")),
            metadata=dict(overview),
        )
        if not metrics.has_data:
            metrics.metadata.setdefault("reason", "no_data")
        return metrics

    async def fetch_devices(self, auth: AuthResult) -> list[NormalizedDeviceGroup]:
        pairs: list[tuple[str, NormalizedDevice]] = []
        for plant in await self.fetch_plants(auth):
            json = await self._get(auth, f"/equipment/{plant.external_id}/list")
            for raw in first_present(json, "reporters.list") or []:
                pairs.append((plant.external_id, NormalizedDevice(
                    provider_device_id=str(first_present(raw, "serialNumber", "name") or ""),
                    type="inverter",
                    model=to_str(raw.get("model")),
                    serial=to_str(raw.get("serialNumber")),
                    status="online",
                    metadata=dict(raw),
                )))
        return self.group_devices(pairs)

    async def _get(self, auth: AuthResult, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.http.get(path, params={"api_key": auth.tokens.get("api_key", ""), **(params or {})})
