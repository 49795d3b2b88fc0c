"""
Fox ESS OpenAPI adapter (static MD5 signature, sessionless).

The API key never expires. Each request carries:

    token:     <apiKey>
    timestamp: <unix seconds>
    signature: MD5(path + "\\r\\n" + token + "\\r\\n" + timestamp)

Success is ``errno == 0`` in the body; HTTP 200 is returned for most
failures.

Plants:  POST /op/v0/plant/list
Metrics: POST /op/v0/plant/real/query
Devices: POST /op/v0/device/list
"""
from __future__ import annotations
from typing import Any, Mapping
import logging
import time

from core.integrations.adapter_base import AuthResult, ProviderAdapter
from core.integrations.crypto import md5_hex
from core.integrations.errors import ErrorCategory, ProviderError, normalize_error
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

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

# errno -> category. Anything else falls back to message classification.
ERRNO_CATEGORIES: dict[int, ErrorCategory] = {
    40256: ErrorCategory.AUTH,        # request header parameters missing
    40257: ErrorCategory.UNKNOWN,     # request body parameters invalid
    40400: ErrorCategory.RATE_LIMIT,  # too many requests
    41807: ErrorCategory.AUTH,        # wrong user name or password
    41808: ErrorCategory.AUTH,        # token expired
    41809: ErrorCategory.AUTH,        # token invalid
    41930: ErrorCategory.NOT_FOUND,   # no such plant / device
    44096: ErrorCategory.PERMISSION,  # unsupported for this account
}

DEVICE_STATUS_MAP = {"1": "online", "2": "alarm", "3": "offline"}

PLANT_MAPPING = SchemaMapping(
    adapter_name="fox_ess",
    entity_type="plant",
    mappings=[
        FieldMapping(("stationID", "plantID", "id"), "external_id", "str"),
        FieldMapping(("name", "stationName", "plantName"), "name", "str"),
        FieldMapping(("capacity", "pvCapacity"), "capacity_kw", "float"),
        FieldMapping(("address", "city"), "address", "optional_str"),
    ],
)
default_normalizer.register_mapping(PLANT_MAPPING)


def build_signature(path: str, token: str, timestamp: int | str) -> str:
    return md5_hex(f"{path}\r\n{token}\r\n{timestamp}")


class FoxEssAdapter(ProviderAdapter):
    provider_id = "fox_ess"
    display_name = "Fox ESS"
    base_url = "https://www.foxesscloud.com"
    required_fields = {"apiKey": "API Key"}

    sessionless = True
    supports_devices = True

    async def authenticate(self, creds: Mapping[str, Any]) -> AuthResult:
        self.validate_credentials(creds)
        api_key = str(creds["apiKey"]).strip()
        try:
            await self._signed(api_key, "/op/v0/plant/list", {"currentPage": 1, "pageSize": 1})
        except ProviderError as exc:
            raise self.as_auth_failure(exc)
        return AuthResult(credentials={}, tokens={"api_key": api_key})

    async def fetch_plants(self, auth: AuthResult) -> list[NormalizedPlant]:
        async def fetch_page(page: int) -> tuple[list[NormalizedPlant], int]:
            records, total = await self._page(auth, "/op/v0/plant/list", page)
            return [default_normalizer.normalize_plant(self.provider_id, r, status="normal") for r in records], total

        return await self.paginate(fetch_page, PAGE_SIZE)

    async def fetch_metrics(self, auth: AuthResult, external_plant_id: str) -> DailyMetrics:
        try:
            json = await self._call(auth, "/op/v0/plant/real/query", {"plantID": external_plant_id})
        except ProviderError as exc:
            if exc.category == ErrorCategory.NOT_FOUND:
                return DailyMetrics.no_data(message=exc.message)
            raise

        result = json.get("result") or {}
        if not isinstance(result, Mapping) or not result:
            return DailyMetrics.no_data()
        metrics = DailyMetrics(
            power_kw=to_float(first_present(result, "generationPower", "pvPower", "power")),
            energy_kwh=to_float(first_present(result, "todayGeneration", "today", "generationToday")),
            total_energy_kwh=to_float(first_present(result, "cumulative", "totalGeneration")),
            metadata=dict(result),
        )
        if not metrics.has_data:
            metrics.metadata.setdefault("reason", "no_data")
        return metrics

    async def fetch_devices(self, auth: AuthResult) -> list[NormalizedDeviceGroup]:
        async def fetch_page(page: int) -> tuple[list[tuple[str, NormalizedDevice]], int]:
            records, total = await self._page(auth, "/op/v0/device/list", page)
            return [(str(r.get("stationID") or ""), self._device(r)) for r in records], total

        return self.group_devices(await self.paginate(fetch_page, PAGE_SIZE))

    @staticmethod
    def _device(raw: Mapping[str, Any]) -> NormalizedDevice:
        return NormalizedDevice(
            provider_device_id=str(first_present(raw, "deviceSN", "moduleSN") or ""),
            type=str(raw.get("deviceType") or "inverter").lower(),
            model=to_str(first_present(raw, "productType", "deviceType")),
            serial=to_str(raw.get("deviceSN")),
            status=map_status(raw.get("status"), DEVICE_STATUS_MAP),
            metadata=dict(raw),
        )

    # --- Signed transport ---

    async def _page(self, auth: AuthResult, path: str, page: int) -> tuple[list[dict[str, Any]], int]:
        json = await self._call(auth, path, {"currentPage": page, "pageSize": PAGE_SIZE})
        result = json.get("result") or {}
        return list(result.get("data") or []), int(to_float(result.get("total")) or 0)

    async def _call(self, auth: AuthResult, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._signed(str(auth.tokens.get("api_key", "")), path, body)

    async def _signed(self, token: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        timestamp = int(time.time())
        json = await self.http.post(
            path,
            body,
            headers={
                "token": token,
                "timestamp": str(timestamp),
                "signature": build_signature(path, token, timestamp),
                "lang": "en",
            },
        )
        errno = json.get("errno")
        if errno in (0, "0"):
            return json
        raise self._errno_error(errno, json.get("msg"))

    def _errno_error(self, errno: Any, msg: Any) -> ProviderError:
        code = to_str(errno)
        message = str(msg or f"Fox ESS error (errno={code})")
        try:
            category = ERRNO_CATEGORIES.get(int(errno))
        except (TypeError, ValueError):
            category = None
        if category is None:
            return normalize_error(message, self.provider_id, provider_error_code=code)
        return ProviderError(category, self.provider_id, message, provider_error_code=code)
