"""
Hoymiles S-Miles cloud, legacy sync path.

Token login with the Hoymiles password transform (``md5hex.base64(sha256)``).
The token travels in the ``authorization`` header; a rejected token triggers
one silent re-login with the retained password hash.

Login:    POST /iam/pub/0/auth/login
Stations: POST /pvm/api/0/station/select_by_page
Realtime: POST /pvm-data/api/0/station/data/count_station_real_data
"""
from __future__ import annotations
from typing import Any, Mapping
import logging

from core.integrations.crypto import hoymiles_password_hash
from core.integrations.adapter_base import AuthResult
from core.integrations.errors import ErrorCategory, ProviderError, normalize_error
from core.integrations.http_client import ProviderHttpClient
from core.integrations.masking import REAUTH_FIELD
from core.integrations.normalizer import (
    DailyMetrics,
    FieldMapping,
    NormalizedPlant,
    SchemaMapping,
    default_normalizer,
    first_present,
    to_float,
)
from providers.legacy.base import LegacyContext, LegacyOutcome, LegacyProvider
from sync.results import SyncMode
from sync.sink import PlantSink

logger = logging.getLogger(__name__)

PROVIDER_ID = "hoymiles"
BASE_URL = "https://neapi.hoymiles.com"
PAGE_SIZE = 50

REQUIRED_FIELDS = {"username": "Username", "password": "Password"}

PLANT_MAPPING = SchemaMapping(
    adapter_name=PROVIDER_ID,
    entity_type="plant",
    mappings=[
        FieldMapping("id", "external_id", "str"),
        FieldMapping("name", "name", "strip"),
        FieldMapping("capacitor", "capacity_kw", "float"),
        FieldMapping("address", "address", "optional_str"),
        FieldMapping("latitude", "latitude", "float"),
        FieldMapping("longitude", "longitude", "float"),
    ],
)
default_normalizer.register_mapping(PLANT_MAPPING)


def _client(ctx: LegacyContext) -> ProviderHttpClient:
    return ProviderHttpClient(PROVIDER_ID, BASE_URL, config=ctx.http_config, transport=ctx.transport)


def _check(json: Any) -> dict[str, Any]:
    if not isinstance(json, dict):
        raise ProviderError(ErrorCategory.PARSE, PROVIDER_ID, "Unexpected Hoymiles response shape")
    if str(json.get("status")) != "0":
        raise normalize_error(
            json.get("message") or f"Hoymiles error (status={json.get('status')})",
            PROVIDER_ID,
            provider_error_code=str(json.get("status")),
        )
    return json


async def _login(http: ProviderHttpClient, username: str, password_hash: str) -> AuthResult:
    try:
        json = _check(await http.post(
            "/iam/pub/0/auth/login",
            {"user_name": username, "password": password_hash},
            no_retry=True,
        ))
    except ProviderError as exc:
        if exc.category in (ErrorCategory.TIMEOUT, ErrorCategory.PROVIDER_DOWN, ErrorCategory.RATE_LIMIT):
            raise
        raise ProviderError(ErrorCategory.AUTH, PROVIDER_ID, exc.message, exc.status_code, exc.provider_error_code)

    token = first_present(json, "data.token")
    if not token:
        raise ProviderError(ErrorCategory.AUTH, PROVIDER_ID, "Hoymiles login returned no token")
    return AuthResult(
        credentials={"username": username},
        tokens={"token": token, REAUTH_FIELD: password_hash},
    )


async def connect(creds: Mapping[str, Any], ctx: LegacyContext) -> AuthResult:
    return await _login(_client(ctx), str(creds["username"]).strip(), hoymiles_password_hash(str(creds["password"])))


class _Session:
    """Token-bearing caller with one silent re-login."""

    def __init__(self, ctx: LegacyContext):
        self.http = _client(ctx)
        self.auth = ctx.auth
        self.renewed = False

    async def call(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self._post(path, body)
        except ProviderError as exc:
            if exc.category != ErrorCategory.AUTH or self.renewed or not self.auth.tokens.get(REAUTH_FIELD):
                raise
        logger.info("[hoymiles] token rejected; logging in again")
        renewed = await _login(
            self.http, str(self.auth.credentials.get("username", "")), str(self.auth.tokens[REAUTH_FIELD]),
        )
        self.auth.credentials.update(renewed.credentials)
        self.auth.tokens.update(renewed.tokens)
        self.renewed = True
        return await self._post(path, body)

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return _check(await self.http.post(
            path, body, headers={"authorization": str(self.auth.tokens.get("token", ""))},
        ))


async def _list_stations(session: _Session) -> list[NormalizedPlant]:
    plants: list[NormalizedPlant] = []
    page = 1
    while True:
        json = await session.call("/pvm/api/0/station/select_by_page", {"page": page, "page_size": PAGE_SIZE})
        records = first_present(json, "data.list") or []
        if not records:
            break
        plants.extend(default_normalizer.normalize_plant(PROVIDER_ID, r, status="normal") for r in records)
        if page * PAGE_SIZE >= int(to_float(first_present(json, "data.total")) or 0):
            break
        page += 1
    return plants


async def _station_metrics(session: _Session, station_id: str) -> DailyMetrics:
    json = await session.call("/pvm-data/api/0/station/data/count_station_real_data", {"sid": int(station_id)})
    data = json.get("data") or {}
    if not data:
        return DailyMetrics.no_data()

    def kilo(key: str) -> float | None:
        value = to_float(data.get(key))
        return value / 1000 if value is not None else None

    metrics = DailyMetrics(
        power_kw=kilo("real_power"),
        energy_kwh=kilo("today_eq"),
        total_energy_kwh=kilo("total_eq"),
        metadata=dict(data),
    )
    if not metrics.has_data:
        metrics.metadata.setdefault("reason", "no_data")
    return metrics


async def sync(ctx: LegacyContext, mode: SyncMode, sink: PlantSink) -> LegacyOutcome:
    """
    Run one legacy sync. Station listing failures propagate (the mode cannot
    continue); per-station metrics failures are recorded on the sink.
    """
    session = _Session(ctx)
    outcome = LegacyOutcome()

    if mode in (SyncMode.DISCOVER, SyncMode.PLANTS, SyncMode.FULL):
        plants = await _list_stations(session)
        if mode == SyncMode.DISCOVER:
            outcome.discovered = plants
        else:
            await sink.upsert_plants(plants)

    if mode.syncs_metrics:
        for plant in await sink.known_plants():
            try:
                metrics = await _station_metrics(session, plant.external_id)
            except (ProviderError, ValueError) as exc:
                sink.fail(f"Metrics {plant.external_id}", exc)
                continue
            await sink.upsert_metrics(plant, metrics)

    if session.renewed:
        outcome.renewed_auth = session.auth
    return outcome


HOYMILES = LegacyProvider(
    provider_id=PROVIDER_ID,
    display_name="Hoymiles S-Miles",
    required_fields=REQUIRED_FIELDS,
    connect=connect,
    sync=sync,
    requires_reauth_secret=True,
)
