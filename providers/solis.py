"""
SolisCloud Platform API V2.0 adapter (HMAC-signed, sessionless).

Every request is signed; there is no token:

    Content-MD5   = base64(MD5(body))
    Authorization = "API <apiId>:" + base64(HMAC-SHA1(apiSecret,
                    "POST\\n" + Content-MD5 + "\\napplication/json\\n" + Date + "\\n" + path))

Success is a body flag (``success`` / ``code == 0``), not the HTTP status.
Solis enforces a hard limit of one call every 2 seconds; the adapter spaces
its own calls.

Plants:  POST /v1/api/userStationList
Metrics: POST /v1/api/stationDetail (fallback /v1/api/stationDay)
Devices: POST /v1/api/inverterList (+ /v1/api/inverterDetail per inverter)
Alarms:  POST /v1/api/alarmList
"""
from __future__ import annotations
from datetime import date
from email.utils import formatdate
from typing import Any, Awaitable, Callable, Mapping
import asyncio
import json as jsonlib
import logging
import time

import httpx

from core.config import HttpConfig, SyncConfig
from core.integrations.adapter_base import AuthResult, ProviderAdapter
from core.integrations.crypto import hmac_sha1_base64, md5_base64
from core.integrations.errors import ProviderError, normalize_error
from core.integrations.normalizer import (
    AlarmSeverity,
    DailyMetrics,
    FieldMapping,
    NormalizedAlarm,
    NormalizedDevice,
    NormalizedDeviceGroup,
    NormalizedPlant,
    SchemaMapping,
    default_normalizer,
    first_present,
    map_status,
    ms_to_iso,
    now_iso,
    to_float,
    to_str,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
CONTENT_TYPE = "application/json"

STATUS_MAP = {"1": "normal", "2": "offline", "3": "alarm", "4": "no_communication"}
DEVICE_STATUS_MAP = {"1": "online", "2": "offline", "3": "alarm"}

PLANT_MAPPING = SchemaMapping(
    adapter_name="solis_cloud",
    entity_type="plant",
    mappings=[
        FieldMapping(("id", "sno"), "external_id", "str"),
        FieldMapping(("stationName", "sno"), "name", "str"),
        FieldMapping(("installedCapacity", "capacity"), "capacity_kw", "float"),
        FieldMapping("city", "address", "optional_str"),
        FieldMapping("latitude", "latitude", "float"),
        FieldMapping("longitude", "longitude", "float"),
    ],
)
default_normalizer.register_mapping(PLANT_MAPPING)


def sign_request(api_secret: str, body: str, path: str, date_header: str) -> tuple[str, str]:
    """Return ``(content_md5, signature)`` for a Solis POST."""
    content_md5 = md5_base64(body)
    payload = f"POST\n{content_md5}\n{CONTENT_TYPE}\n{date_header}\n{path}"
    return content_md5, hmac_sha1_base64(api_secret, payload)


class SolisAdapter(ProviderAdapter):
    provider_id = "solis_cloud"
    display_name = "Solis Cloud"
    base_url = "https://www.soliscloud.com:13333"
    required_fields = {
        "apiId": "KeyID",
        "apiSecret": "KeySecret",
    }

    sessionless = True
    supports_devices = True
    supports_alarms = True

    def __init__(
        self,
        http_config: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        min_call_interval: float | None = None,
        enrich_devices: bool = True,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        if min_call_interval is None:
            min_call_interval = SyncConfig().solis_min_call_interval_s
        # Retries inside the HTTP client keep the same spacing as adapter calls.
        super().__init__(
            http_config=http_config,
            transport=transport,
            sleep=sleep,
            min_backoff_ms=min_call_interval * 1000,
        )
        self.min_call_interval = min_call_interval
        self.enrich_devices = enrich_devices
        self._sleep = sleep or asyncio.sleep
        self._last_call: float | None = None

    # --- Auth ---

    async def authenticate(self, creds: Mapping[str, Any]) -> AuthResult:
        self.validate_credentials(creds)
        api_id, api_secret = str(creds["apiId"]), str(creds["apiSecret"])
        # Signing is per request; "authenticate" proves the key pair works.
        try:
            await self._signed(api_id, api_secret, "/v1/api/userStationList", {"pageNo": 1, "pageSize": 1})
        except ProviderError as exc:
            raise self.as_auth_failure(exc)
        return AuthResult(credentials={"apiId": api_id}, tokens={"apiSecret": api_secret})

    # --- Data ---

    async def fetch_plants(self, auth: AuthResult) -> list[NormalizedPlant]:
        async def fetch_page(page: int) -> tuple[list[NormalizedPlant], int]:
            records, total = await self._page(auth, "/v1/api/userStationList", page)
            return [
                default_normalizer.normalize_plant(self.provider_id, r, status=map_status(r.get("state"), STATUS_MAP))
                for r in records
            ], total

        return await self.paginate(fetch_page, PAGE_SIZE)

    async def fetch_metrics(self, auth: AuthResult, external_plant_id: str) -> DailyMetrics:
        try:
            data = (await self._call(auth, "/v1/api/stationDetail", {"id": external_plant_id})).get("data")
        except ProviderError as exc:
            logger.info("[solis_cloud] stationDetail failed for %s (%s); trying stationDay",
                        external_plant_id, exc.category.value)
            data = (await self._call(auth, "/v1/api/stationDay", {
                "id": external_plant_id,
                "money": "CNY",
                "time": date.today().isoformat(),
                "timeZone": 0,
            })).get("data")

        if not data or not isinstance(data, Mapping):
            return DailyMetrics.no_data()

        pac = to_float(first_present(data, "pac", "power", "currentPower"))
        metrics = DailyMetrics(
            # Solis mixes W and kW for pac depending on plant size.
            power_kw=(pac / 1000 if pac > 100 else pac) if pac is not None else None,
            energy_kwh=to_float(first_present(data, "dayEnergy", "eToday", "e_today", "todayEnergy")),
            total_energy_kwh=to_float(first_present(data, "allEnergy", "eTotal", "e_total", "totalEnergy")),
            metadata=dict(data),
        )
        if not metrics.has_data:
            metrics.metadata.setdefault("reason", "no_data")
        return metrics

    async def fetch_devices(self, auth: AuthResult) -> list[NormalizedDeviceGroup]:
        async def fetch_page(page: int) -> tuple[list[tuple[str, NormalizedDevice]], int]:
            records, total = await self._page(auth, "/v1/api/inverterList", page)
            pairs = []
            for r in records:
                station_id = str(first_present(r, "stationId", "plantId") or "")
                pairs.append((station_id, await self._device(auth, r)))
            return pairs, total

        return self.group_devices(await self.paginate(fetch_page, PAGE_SIZE))

    async def fetch_alarms(self, auth: AuthResult) -> list[NormalizedAlarm]:
        async def fetch_page(page: int) -> tuple[list[NormalizedAlarm], int]:
            records, total = await self._page(auth, "/v1/api/alarmList", page)
            return [self._alarm(r) for r in records], total

        return await self.paginate(fetch_page, PAGE_SIZE)

    # --- Mapping ---

    async def _device(self, auth: AuthResult, raw: Mapping[str, Any]) -> NormalizedDevice:
        sn = to_str(first_present(raw, "sn", "inverterSn"))
        detail: dict[str, Any] = {}
        if sn and self.enrich_devices:
            try:
                dd = (await self._call(auth, "/v1/api/inverterDetail", {"sn": sn})).get("data") or {}
            except ProviderError as exc:
                logger.warning("[solis_cloud] inverterDetail failed for %s: %s", sn, exc.message)
            else:
                detail = _string_readings(dd)
        return NormalizedDevice(
            provider_device_id=str(first_present(raw, "id", "sn") or ""),
            type="inverter",
            model=to_str(first_present(raw, "inverterType", "model")),
            serial=sn,
            status=map_status(raw.get("state"), DEVICE_STATUS_MAP),
            metadata={**raw, **detail},
        )

    @staticmethod
    def _alarm(raw: Mapping[str, Any]) -> NormalizedAlarm:
        level = str(first_present(raw, "alarmLevel", "level") or "").lower()
        if level in ("1", "critical"):
            severity = AlarmSeverity.CRITICAL
        elif level in ("2", "major"):
            severity = AlarmSeverity.WARN
        else:
            severity = AlarmSeverity.INFO
        sn = to_str(first_present(raw, "sn", "inverterSn"))
        title = first_present(raw, "alarmMsg", "alarmMessage", "alarmCode") or "Solis alarm"
        return NormalizedAlarm(
            provider_event_id=str(first_present(raw, "id", "alarmId") or f"{sn}_{raw.get('alarmBeginTime')}"),
            provider_plant_id=str(first_present(raw, "stationId", "plantId") or ""),
            provider_device_id=sn,
            severity=severity.value,
            type="inverter_fault" if raw.get("alarmCode") else "other",
            title=str(title),
            message=" | ".join(str(v) for v in (raw.get("alarmMsg"), raw.get("alarmCode"), sn) if v) or None,
            starts_at=ms_to_iso(raw.get("alarmBeginTime")) or now_iso(),
            ends_at=ms_to_iso(raw.get("alarmEndTime")),
        )

    # --- Signed transport ---

    async def _page(self, auth: AuthResult, path: str, page: int) -> tuple[list[dict[str, Any]], int]:
        data = (await self._call(auth, path, {"pageNo": page, "pageSize": PAGE_SIZE})).get("data") or {}
        records = first_present(data, "page.records", "records") or []
        return list(records), int(to_float(first_present(data, "page.total", "total")) or 0)

    async def _call(self, auth: AuthResult, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._signed(
            str(auth.credentials.get("apiId", "")),
            str(auth.tokens.get("apiSecret", "")),
            path,
            body,
        )

    async def _signed(self, api_id: str, api_secret: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        await self._rate_delay()
        body_str = jsonlib.dumps(body, separators=(",", ":"))
        date_header = formatdate(usegmt=True)
        content_md5, signature = sign_request(api_secret, body_str, path, date_header)

        try:
            json = await self.http.post(
                path,
                body_str,
                headers={
                    "Content-MD5": content_md5,
                    "Date": date_header,
                    "Authorization": f"API {api_id}:{signature}",
                },
                content_type=CONTENT_TYPE,
            )
        finally:
            # Spacing counts from the last attempt, retries included.
            self._last_call = time.monotonic()
        if json.get("success") is True or str(json.get("code")) == "0":
            return json
        raise normalize_error(
            json.get("msg") or f"Solis error (code={json.get('code')})",
            self.provider_id,
            provider_error_code=to_str(json.get("code")),
        )

    async def _rate_delay(self) -> None:
        """Space consecutive calls at least ``min_call_interval`` seconds apart."""
        now = time.monotonic()
        if self._last_call is not None:
            wait = self.min_call_interval - (now - self._last_call)
            if wait > 0:
                await self._sleep(wait)
        self._last_call = time.monotonic()


def _string_readings(dd: Mapping[str, Any]) -> dict[str, Any]:
    """Per-MPPT DC readings from inverterDetail."""
    readings: dict[str, Any] = {}
    for i in range(1, 5):
        readings[f"vpv{i}"] = first_present(dd, f"uPv{i}", f"vpv{i}")
        readings[f"ipv{i}"] = first_present(dd, f"iPv{i}", f"ipv{i}")
        readings[f"ppv{i}"] = first_present(dd, f"pow{i}", f"ppv{i}")
    readings.update({
        "pac": dd.get("pac"),
        "etoday": dd.get("eToday"),
        "etotal": dd.get("eTotal"),
        "dcInputTypeMppt": first_present(dd, "mpptCount", "dcInputType"),
    })
    return readings
