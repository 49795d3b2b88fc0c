"""
Enphase Enlighten API v4 adapter, API-key-only scope.

Without a partner OAuth grant the key only unlocks the system listing.
Production telemetry needs OAuth, so metrics come back as a blocked marker
instead of a call that is bound to be rejected; the orchestrator turns that
marker into a PERMISSION failure and the integration into ``blocked``.

Plants:  GET /api/v4/systems
"""
from __future__ import annotations
from typing import Any, Mapping

from core.integrations.adapter_base import AuthResult, ProviderAdapter
from core.integrations.errors import ProviderError
from core.integrations.normalizer import (
    DailyMetrics,
    FieldMapping,
    NormalizedPlant,
    SchemaMapping,
    default_normalizer,
    map_status,
    to_float,
)

PAGE_SIZE = 100
BLOCKED_REASON = "oauth_required"

STATUS_MAP = {
    "normal": "normal",
    "comm": "no_communication",
    "power": "alarm",
    "micro": "alarm",
    "meter": "alarm",
    "battery": "alarm",
    "offline": "offline",
}

PLANT_MAPPING = SchemaMapping(
    adapter_name="enphase",
    entity_type="plant",
    mappings=[
        FieldMapping("system_id", "external_id", "str"),
        FieldMapping(("name", "public_name"), "name", "strip"),
        FieldMapping("system_size", "capacity_kw", "kw_from_w"),
        FieldMapping(("address.city", "address.state"), "address", "optional_str"),
    ],
)
default_normalizer.register_mapping(PLANT_MAPPING)


class EnphaseAdapter(ProviderAdapter):
    provider_id = "enphase"
    display_name = "Enphase Enlighten"
    base_url = "https://api.enphaseenergy.com"
    required_fields = {"apiKey": "API Key"}

    async def authenticate(self, creds: Mapping[str, Any]) -> AuthResult:
        self.validate_credentials(creds)
        api_key = str(creds["apiKey"]).strip()
        try:
            await self.http.get("/api/v4/systems", params={"key": api_key, "page": 1, "size": 1}, no_retry=True)
        except ProviderError as exc:
            raise self.as_auth_failure(exc)
        return AuthResult(credentials={}, tokens={"api_key": api_key})

    async def fetch_plants(self, auth: AuthResult) -> list[NormalizedPlant]:
        async def fetch_page(page: int) -> tuple[list[NormalizedPlant], int]:
            json = await self.http.get(
                "/api/v4/systems",
                params={"key": auth.tokens.get("api_key", ""), "page": page, "size": PAGE_SIZE},
            )
            plants = [
                default_normalizer.normalize_plant(
                    self.provider_id, r, status=map_status(r.get("status"), STATUS_MAP),
                )
                for r in json.get("systems") or []
            ]
            return plants, int(to_float(json.get("total")) or 0)

        return await self.paginate(fetch_page, PAGE_SIZE)

    async def fetch_metrics(self, auth: AuthResult, external_plant_id: str) -> DailyMetrics:
        return DailyMetrics.blocked(BLOCKED_REASON)
