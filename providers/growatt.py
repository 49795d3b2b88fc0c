"""
Growatt ShineServer adapter (cookie session, form login).

Login is a form POST with the Growatt password transform; the server answers
with a session cookie that is stored as an opaque token. Sessions expire
server-side without notice, usually surfacing as an HTML login page (PARSE)
or an AUTH error. The adapter then logs in again once with the retained
password hash and repeats the call.

Login:   POST /newTwoLoginAPI.do
Plants:  POST /newTwoPlantAPI.do?op=getAllPlantListTwo
Metrics: GET  /newTwoPlantAPI.do?op=getPlantData
Devices: GET  /newTwoPlantAPI.do?op=getAllDeviceList
"""
from __future__ import annotations
from typing import Any, Mapping
import logging

from core.integrations.adapter_base import AuthResult, ProviderAdapter
from core.integrations.crypto import growatt_password_hash
from core.integrations.errors import ErrorCategory, ProviderError, normalize_error
from core.integrations.http_client import FORM_CONTENT_TYPE
from core.integrations.masking import REAUTH_FIELD
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
from core.integrations.tokens import expires_at_from_ttl

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
SESSION_TTL_SECONDS = 20 * 60

# Session loss shows up as one of these.
REAUTH_CATEGORIES = (ErrorCategory.PARSE, ErrorCategory.AUTH)

PLANT_STATUS_MAP = {"0": "offline", "1": "normal", "2": "alarm", "3": "no_communication"}
DEVICE_STATUS_MAP = {"-1": "offline", "0": "offline", "1": "online", "3": "alarm"}

PLANT_MAPPING = SchemaMapping(
    adapter_name="growatt",
    entity_type="plant",
    mappings=[
        FieldMapping(("plantId", "id"), "external_id", "str"),
        FieldMapping(("plantName", "name"), "name", "strip"),
        FieldMapping("nominalPower", "capacity_kw", "kw_from_w"),
        FieldMapping(("city", "plantAddress"), "address", "optional_str"),
        FieldMapping(("lat", "latitude"), "latitude", "float"),
        FieldMapping(("lng", "longitude"), "longitude", "float"),
    ],
)
default_normalizer.register_mapping(PLANT_MAPPING)


class GrowattAdapter(ProviderAdapter):
    provider_id = "growatt"
    display_name = "Growatt ShineServer"
    base_url = "https://server.growatt.com"
    required_fields = {
        "username": "Username",
        "password": "Password",
    }

    requires_reauth_secret = True
    supports_refresh = True
    supports_devices = True

    # --- Auth ---

    async def authenticate(self, creds: Mapping[str, Any]) -> AuthResult:
        self.validate_credentials(creds)
        return await self._login(str(creds["username"]).strip(), growatt_password_hash(str(creds["password"])))

    async def refresh_token(self, tokens: Mapping[str, Any], credentials: Mapping[str, Any]) -> AuthResult:
        password_hash = tokens.get(REAUTH_FIELD)
        username = credentials.get("username")
        if not password_hash or not username:
            raise self.auth_error("Growatt session expired and no reauth secret is stored; reconnect required")
        return await self._login(str(username), str(password_hash))

    async def _login(self, username: str, password_hash: str) -> AuthResult:
        try:
            response = await self.http.send(
                "POST",
                "/newTwoLoginAPI.do",
                body={"userName": username, "password": password_hash},
                content_type=FORM_CONTENT_TYPE,
                no_retry=True,
            )
        except ProviderError as exc:
            raise self.as_auth_failure(exc)

        back = (response.data or {}).get("back") or {}
        if not back.get("success"):
            raise self.auth_error(
                str(back.get("msg") or back.get("error") or "Growatt login failed"),
                provider_error_code=to_str(back.get("msg")),
            )
        if not response.cookies:
            raise self.auth_error("Growatt login returned no cookies")

        user = back.get("user") or {}
        return AuthResult(
            credentials={"username": username},
            tokens={
                "session_cookie": "; ".join(f"{k}={v}" for k, v in response.cookies.items()),
                "user_id": to_str(first_present(user, "id", "userId")),
                "expires_at": expires_at_from_ttl(SESSION_TTL_SECONDS),
                REAUTH_FIELD: password_hash,
            },
        )

    # --- Session-aware transport ---

    async def _call(
        self,
        auth: AuthResult,
        method: str,
        op: str,
        params: dict[str, Any] | None = None,
        form: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            return await self._request(auth, method, op, params, form)
        except ProviderError as exc:
            if exc.category not in REAUTH_CATEGORIES or not auth.tokens.get(REAUTH_FIELD):
                raise
            logger.info("[growatt] session lost (%s); logging in again", exc.category.value)

        renewed = await self.refresh_token(auth.tokens, auth.credentials)
        auth.credentials.update(renewed.credentials)
        auth.tokens.update(renewed.tokens)
        self.renewed_auth = auth
        return await self._request(auth, method, op, params, form)

    async def _request(
        self,
        auth: AuthResult,
        method: str,
        op: str,
        params: dict[str, Any] | None,
        form: dict[str, Any] | None,
    ) -> dict[str, Any]:
        json = await self.http.request(
            method,
            "/newTwoPlantAPI.do",
            params={"op": op, **(params or {})},
            body=form,
            content_type=FORM_CONTENT_TYPE,
            headers={"Cookie": str(auth.tokens.get("session_cookie", ""))},
        )
        if not isinstance(json, dict):
            return {"datas": json}
        back = json.get("back")
        if isinstance(back, Mapping) and back.get("success") is False:
            raise normalize_error(dict(back), self.provider_id, provider_error_code=to_str(back.get("msg")))
        return json

    # --- Data ---

    async def fetch_plants(self, auth: AuthResult) -> list[NormalizedPlant]:
        async def fetch_page(page: int) -> tuple[list[NormalizedPlant], int]:
            json = await self._call(
                auth, "POST", "getAllPlantListTwo",
                form={"plantStatus": "", "pageSize": PAGE_SIZE, "toPageNum": page, "language": "1"},
            )
            records = json.get("datas") or []
            plants = [
                default_normalizer.normalize_plant(
                    self.provider_id, r, status=map_status(r.get("status"), PLANT_STATUS_MAP),
                )
                for r in records
            ]
            return plants, int(to_float(first_present(json, "totalCount", "total")) or 0)

        return await self.paginate(fetch_page, PAGE_SIZE)

    async def fetch_metrics(self, auth: AuthResult, external_plant_id: str) -> DailyMetrics:
        json = await self._call(auth, "GET", "getPlantData", params={"plantId": external_plant_id})
        data = first_present(json, "back.data", "data") or {}
        if not isinstance(data, Mapping) or not data:
            return DailyMetrics.no_data()

        power_w = to_float(first_present(data, "currentPower", "pac", "powerValue"))
        metrics = DailyMetrics(
            power_kw=power_w / 1000 if power_w is not None else None,
            energy_kwh=to_float(first_present(data, "todayEnergy", "eToday")),
            total_energy_kwh=to_float(first_present(data, "totalEnergy", "eTotal")),
            metadata=dict(data),
        )
        if not metrics.has_data:
            metrics.metadata.setdefault("reason", "no_data")
        return metrics

    async def fetch_devices(self, auth: AuthResult) -> list[NormalizedDeviceGroup]:
        plants = await self.fetch_plants(auth)
        pairs: list[tuple[str, NormalizedDevice]] = []
        for plant in plants:
            plant_id = plant.external_id

            async def fetch_page(page: int) -> tuple[list[NormalizedDevice], int]:
                json = await self._call(
                    auth, "GET", "getAllDeviceList",
                    params={"plantId": plant_id, "pageNum": page, "pageSize": PAGE_SIZE},
                )
                records = first_present(json, "deviceList", "datas") or []
                return [self._device(r) for r in records], int(to_float(json.get("totalNum")) or 0)

            for device in await self.paginate(fetch_page, PAGE_SIZE):
                pairs.append((plant_id, device))
        return self.group_devices(pairs)

    @staticmethod
    def _device(raw: Mapping[str, Any]) -> NormalizedDevice:
        status = raw.get("deviceStatus", raw.get("status"))
        if raw.get("lost") in (True, "true"):
            status = "-1"
        return NormalizedDevice(
            provider_device_id=str(first_present(raw, "deviceSn", "sn") or ""),
            type=str(raw.get("deviceType") or "inverter").lower(),
            model=to_str(first_present(raw, "deviceModel", "deviceAilas")),
            serial=to_str(raw.get("deviceSn")),
            status=map_status(status, DEVICE_STATUS_MAP),
            metadata=dict(raw),
        )
