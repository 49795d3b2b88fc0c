"""
Solarman Business API adapter (reference token-bearer vendor).

Auth: POST /account/v1.0/token with the password as SHA-256 hex.
The bearer token carries a TTL (~7200s). There is no refresh endpoint:
refresh re-runs the login with the reauth secret, which holds the app
secret and the password hash. Persisted credentials are only appId and email.

Plants:  POST /station/v1.0/list
Metrics: POST /station/v1.0/realTime
Devices: POST /station/v1.0/device
Alarms:  POST /station/v1.0/alarm
"""
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
import logging

from core.integrations.adapter_base import AuthResult, ProviderAdapter
from core.integrations.crypto import sha256_hex
from core.integrations.errors import ProviderError, normalize_error
from core.integrations.masking import REAUTH_FIELD
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
    now_iso,
    to_float,
    to_str,
)
from core.integrations.tokens import expires_at_from_ttl

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
DEFAULT_TTL_SECONDS = 7200

STATUS_MAP = {"1": "normal", "2": "offline", "3": "alarm", "4": "no_communication"}
DEVICE_STATUS_MAP = {"1": "online", "0": "offline", "2": "alarm"}
NO_DATA_PATTERN = ("no data", "no record", "data not exist")

PLANT_MAPPING = SchemaMapping(
    adapter_name="solarman_business",
    entity_type="plant",
    mappings=[
        FieldMapping(("id", "stationId"), "external_id", "str"),
        FieldMapping(("name", "stationName"), "name", "str"),
        FieldMapping("installedCapacity", "capacity_kw", "float"),
        FieldMapping("locationAddress", "address", "optional_str"),
        FieldMapping(("locationLat", "latitude"), "latitude", "float"),
        FieldMapping(("locationLng", "longitude"), "longitude", "float"),
    ],
)
default_normalizer.register_mapping(PLANT_MAPPING)


class SolarmanAdapter(ProviderAdapter):
    provider_id = "solarman_business"
    display_name = "Solarman Business"
    base_url = "https://globalapi.solarmanpv.com"
    required_fields = {
        "appId": "App ID",
        "appSecret": "App Secret",
        "email": "E-mail",
        "password": "Password",
    }

    requires_reauth_secret = True
    supports_refresh = True
    supports_devices = True
    supports_alarms = True

    # --- Auth ---

    async def authenticate(self, creds: Mapping[str, Any]) -> AuthResult:
        self.validate_credentials(creds)
        return await self._login(
            app_id=str(creds["appId"]),
            app_secret=str(creds["appSecret"]),
            email=str(creds["email"]),
            password_hash=sha256_hex(str(creds["password"])),
        )

    async def refresh_token(self, tokens: Mapping[str, Any], credentials: Mapping[str, Any]) -> AuthResult:
        secret = tokens.get(REAUTH_FIELD)
        if not isinstance(secret, Mapping):
            secret = {}
        app_secret, password_hash = secret.get("appSecret"), secret.get("passwordHash")
        if not (app_secret and password_hash and credentials.get("appId") and credentials.get("email")):
            raise self.auth_error("Stored session cannot be renewed; reconnect required")
        return await self._login(
            app_id=str(credentials["appId"]),
            app_secret=str(app_secret),
            email=str(credentials["email"]),
            password_hash=str(password_hash),
        )

    async def _login(self, app_id: str, app_secret: str, email: str, password_hash: str) -> AuthResult:
        try:
            json = await self.http.post(
                "/account/v1.0/token",
                {"appSecret": app_secret, "email": email, "password": password_hash},
                params={"appId": app_id, "language": "en"},
                no_retry=True,
            )
        except ProviderError as exc:
            raise self.as_auth_failure(exc)

        access_token = json.get("access_token")
        if not access_token or json.get("success") is False:
            raise self.auth_error(
                json.get("msg") or json.get("message") or "Solarman authentication failed",
                provider_error_code=to_str(json.get("code")),
            )

        ttl = to_float(json.get("expires_in")) or DEFAULT_TTL_SECONDS
        return AuthResult(
            credentials={"appId": app_id, "email": email},
            tokens={
                "access_token": access_token,
                "token_type": json.get("token_type") or "bearer",
                "expires_at": expires_at_from_ttl(ttl),
                "uid": json.get("uid"),
                "orgId": json.get("orgId"),
                REAUTH_FIELD: {"appSecret": app_secret, "passwordHash": password_hash},
            },
        )

    # --- Data ---

    async def _call(self, auth: AuthResult, path: str, body: dict[str, Any]) -> dict[str, Any]:
        json = await self.http.post(
            path,
            body,
            headers={"Authorization": f"Bearer {auth.tokens.get('access_token', '')}"},
        )
        if json.get("success") is False:
            raise normalize_error(json, self.provider_id, provider_error_code=to_str(json.get("code")))
        return json

    async def fetch_plants(self, auth: AuthResult) -> list[NormalizedPlant]:
        async def fetch_page(page: int) -> tuple[list[NormalizedPlant], int]:
            json = await self._call(auth, "/station/v1.0/list", {"page": page, "size": PAGE_SIZE})
            records = json.get("stationList") or []
            plants = [
                default_normalizer.normalize_plant(
                    self.provider_id, r, status=map_status(r.get("networkStatus", r.get("status")), STATUS_MAP),
                )
                for r in records
            ]
            return plants, int(to_float(json.get("total")) or 0)

        return await self.paginate(fetch_page, PAGE_SIZE)

    async def fetch_metrics(self, auth: AuthResult, external_plant_id: str) -> DailyMetrics:
        try:
            json = await self._call(auth, "/station/v1.0/realTime", {"stationId": _station_id(external_plant_id)})
        except ProviderError as exc:
            if any(p in exc.message.lower() for p in NO_DATA_PATTERN):
                return DailyMetrics.no_data(message=exc.message)
            raise

        power_w = to_float(json.get("generationPower"))
        metrics = DailyMetrics(
            power_kw=power_w / 1000 if power_w is not None else None,
            energy_kwh=to_float(first_present(json, "generationValue", "dailyGeneration")),
            total_energy_kwh=to_float(first_present(json, "generationTotal", "totalGenerationValue")),
            metadata=dict(json),
        )
        if not metrics.has_data:
            metrics.metadata.setdefault("reason", "no_data")
        return metrics

    async def fetch_devices(self, auth: AuthResult) -> list[NormalizedDeviceGroup]:
        plants = await self.fetch_plants(auth)
        pairs: list[tuple[str, NormalizedDevice]] = []
        for plant in plants:
            station_id = plant.external_id

            async def fetch_page(page: int) -> tuple[list[NormalizedDevice], int]:
                json = await self._call(
                    auth,
                    "/station/v1.0/device",
                    {"stationId": _station_id(station_id), "page": page, "size": PAGE_SIZE},
                )
                records = json.get("deviceListItems") or []
                return [self._device(r) for r in records], int(to_float(json.get("total")) or 0)

            for device in await self.paginate(fetch_page, PAGE_SIZE):
                pairs.append((station_id, device))
        return self.group_devices(pairs)

    async def fetch_alarms(self, auth: AuthResult) -> list[NormalizedAlarm]:
        plants = await self.fetch_plants(auth)
        now = datetime.now(timezone.utc)
        start = int((now - timedelta(days=1)).timestamp())
        alarms: list[NormalizedAlarm] = []
        for plant in plants:
            station_id = plant.external_id

            async def fetch_page(page: int) -> tuple[list[NormalizedAlarm], int]:
                json = await self._call(
                    auth,
                    "/station/v1.0/alarm",
                    {
                        "stationId": _station_id(station_id),
                        "startTimestamp": start,
                        "endTimestamp": int(now.timestamp()),
                        "page": page,
                        "size": PAGE_SIZE,
                    },
                )
                records = json.get("stationAlertItems") or []
                return [self._alarm(station_id, r) for r in records], int(to_float(json.get("total")) or 0)

            alarms.extend(await self.paginate(fetch_page, PAGE_SIZE))
        return alarms

    # --- Mapping ---

    @staticmethod
    def _device(raw: Mapping[str, Any]) -> NormalizedDevice:
        return NormalizedDevice(
            provider_device_id=str(first_present(raw, "deviceId", "deviceSn") or ""),
            type=str(raw.get("deviceType") or "unknown").lower(),
            model=to_str(raw.get("deviceModel")),
            serial=to_str(raw.get("deviceSn")),
            status=map_status(raw.get("connectStatus"), DEVICE_STATUS_MAP),
            metadata=dict(raw),
        )

    @staticmethod
    def _alarm(station_id: str, raw: Mapping[str, Any]) -> NormalizedAlarm:
        level = str(raw.get("level", ""))
        severity = {"2": AlarmSeverity.CRITICAL, "1": AlarmSeverity.WARN}.get(level, AlarmSeverity.INFO)
        starts = to_float(raw.get("alertTime"))
        ends = to_float(raw.get("endTime"))
        return NormalizedAlarm(
            provider_event_id=str(first_present(raw, "alertId", "id") or f"{station_id}_{raw.get('alertTime')}"),
            provider_plant_id=station_id,
            provider_device_id=to_str(raw.get("deviceSn")),
            severity=severity.value,
            type="inverter_fault" if raw.get("code") else "other",
            title=str(raw.get("alertName") or raw.get("code") or "Solarman alarm"),
            message=to_str(raw.get("alertDesc")),
            starts_at=_epoch_iso(starts) or now_iso(),
            ends_at=_epoch_iso(ends),
        )


def _station_id(value: str) -> int | str:
    return int(value) if str(value).isdigit() else value


def _epoch_iso(seconds: float | None) -> str | None:
    if not seconds:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
