"""Test the SolisCloud adapter: request signing, call spacing, mapping."""
import json

import httpx
import pytest

from core.config import HttpConfig
from core.integrations.adapter_base import AuthResult
from core.integrations.crypto import hmac_sha1_base64, md5_base64
from core.integrations.errors import ErrorCategory, ProviderError
from providers.solis import SolisAdapter, sign_request

AUTH = AuthResult(credentials={"apiId": "1300386381676"}, tokens={"apiSecret": "s3cret"})


def ok(data):
    return {"success": True, "code": "0", "msg": "success", "data": data}


def make_adapter(vendor, fast_http, **kwargs):
    kwargs.setdefault("min_call_interval", 0)
    return SolisAdapter(http_config=fast_http, transport=vendor.transport, **kwargs)


def test_sign_request_matches_vendor_recipe():
    body = '{"pageNo":1,"pageSize":1}'
    date = "Thu, 01 Feb 2024 10:00:00 GMT"
    content_md5, signature = sign_request("s3cret", body, "/v1/api/userStationList", date)
    assert content_md5 == md5_base64(body)
    expected = hmac_sha1_base64(
        "s3cret", f"POST\n{content_md5}\napplication/json\n{date}\n/v1/api/userStationList",
    )
    assert signature == expected


@pytest.mark.asyncio
async def test_every_request_is_signed(fake_vendor, fast_http):
    vendor = fake_vendor({"/v1/api/userStationList": ok({"page": {"total": 0, "records": []}})})
    adapter = make_adapter(vendor, fast_http)

    auth = await adapter.authenticate({"apiId": "1300386381676", "apiSecret": "s3cret"})

    sent = vendor.requests[0]
    body = sent.content.decode()
    assert json.loads(body) == {"pageNo": 1, "pageSize": 1}
    content_md5, signature = sign_request("s3cret", body, "/v1/api/userStationList", sent.headers["Date"])
    assert sent.headers["Content-MD5"] == content_md5
    assert sent.headers["Authorization"] == f"API 1300386381676:{signature}"
    assert sent.headers["Content-Type"] == "application/json"
    assert auth.credentials == {"apiId": "1300386381676"}
    assert auth.tokens == {"apiSecret": "s3cret"}


@pytest.mark.asyncio
async def test_vendor_failure_flag_is_an_error(fake_vendor, fast_http):
    vendor = fake_vendor({"/v1/api/userStationList": {"success": False, "code": "Z0001", "msg": "sign invalid"}})
    adapter = make_adapter(vendor, fast_http)
    with pytest.raises(ProviderError) as exc_info:
        await adapter.authenticate({"apiId": "1", "apiSecret": "bad"})
    assert exc_info.value.category == ErrorCategory.AUTH
    assert exc_info.value.provider_error_code == "Z0001"


@pytest.mark.asyncio
async def test_consecutive_calls_are_spaced(fake_vendor, fast_http):
    vendor = fake_vendor({"/v1/api/stationDetail": ok({"pac": 1.2})})
    sleeps: list[float] = []

    async def sleep(seconds):
        sleeps.append(seconds)

    adapter = make_adapter(vendor, fast_http, min_call_interval=2.0, sleep=sleep)
    await adapter.fetch_metrics(AUTH, "1")
    await adapter.fetch_metrics(AUTH, "2")

    assert len(sleeps) == 1
    assert 1.5 < sleeps[0] <= 2.0


@pytest.mark.asyncio
async def test_retries_keep_call_spacing(fake_vendor):
    vendor = fake_vendor({"/v1/api/stationDetail": [httpx.Response(503, text="busy"), ok({"pac": 1.2})]})
    sleeps: list[float] = []

    async def sleep(seconds):
        sleeps.append(seconds)

    retrying = HttpConfig(max_retries=1, backoff_base_ms=0, backoff_max_ms=0, jitter_ms=0)
    adapter = make_adapter(vendor, retrying, min_call_interval=2.0, sleep=sleep)
    metrics = await adapter.fetch_metrics(AUTH, "1")
    await adapter.fetch_metrics(AUTH, "2")

    assert metrics.power_kw == 1.2
    assert len(vendor.calls_to("/v1/api/stationDetail")) == 3
    assert sleeps[0] == 2.0
    assert len(sleeps) == 2
    assert 1.5 < sleeps[1] <= 2.0


@pytest.mark.asyncio
async def test_fetch_plants_reads_page_records(fake_vendor, fast_http):
    vendor = fake_vendor({"/v1/api/userStationList": ok({"page": {"total": 2, "records": [
        {"id": "1001", "stationName": "Roof", "capacity": 8.2, "state": 1},
        {"id": "1002", "stationName": "Barn", "capacity": 20, "state": 2},
    ]}})})
    adapter = make_adapter(vendor, fast_http)

    plants = await adapter.fetch_plants(AUTH)

    assert [(p.external_id, p.name, p.status) for p in plants] == [
        ("1001", "Roof", "normal"), ("1002", "Barn", "offline"),
    ]
    assert plants[0].capacity_kw == 8.2


@pytest.mark.asyncio
async def test_metrics_fall_back_to_station_day(fake_vendor, fast_http):
    vendor = fake_vendor({
        "/v1/api/stationDetail": httpx.Response(500, text="boom"),
        "/v1/api/stationDay": ok({"pac": 3500, "dayEnergy": 14.2, "allEnergy": 9000}),
    })
    adapter = make_adapter(vendor, fast_http)

    metrics = await adapter.fetch_metrics(AUTH, "1001")

    assert len(vendor.calls_to("/v1/api/stationDay")) == 1
    assert metrics.power_kw == 3.5
    assert metrics.energy_kwh == 14.2
    assert metrics.total_energy_kwh == 9000


@pytest.mark.asyncio
async def test_small_pac_is_already_kw(fake_vendor, fast_http):
    vendor = fake_vendor({"/v1/api/stationDetail": ok({"pac": 4.7, "dayEnergy": 3})})
    metrics = await make_adapter(vendor, fast_http).fetch_metrics(AUTH, "1")
    assert metrics.power_kw == 4.7


@pytest.mark.asyncio
async def test_empty_metrics_payload_is_no_data(fake_vendor, fast_http):
    vendor = fake_vendor({"/v1/api/stationDetail": ok(None)})
    metrics = await make_adapter(vendor, fast_http).fetch_metrics(AUTH, "1")
    assert metrics.metadata["reason"] == "no_data"


@pytest.mark.asyncio
async def test_devices_enriched_and_grouped(fake_vendor, fast_http):
    vendor = fake_vendor({
        "/v1/api/inverterList": ok({"page": {"total": 2, "records": [
            {"id": "i1", "sn": "SN1", "stationId": "1001", "state": 1, "inverterType": "S6"},
            {"id": "i2", "sn": "SN2", "stationId": "1001", "state": 3},
        ]}}),
        "/v1/api/inverterDetail": [
            ok({"uPv1": 350.1, "iPv1": 8.2, "pac": 2.1}),
            {"success": False, "code": "1", "msg": "busy"},
        ],
    })
    adapter = make_adapter(vendor, fast_http)

    groups = await adapter.fetch_devices(AUTH)

    assert len(groups) == 1 and groups[0].station_id == "1001"
    first, second = groups[0].devices
    assert first.status == "online" and first.model == "S6"
    assert first.metadata["vpv1"] == 350.1
    assert second.status == "alarm"
    assert "vpv1" not in second.metadata


@pytest.mark.asyncio
async def test_alarm_levels(fake_vendor, fast_http):
    vendor = fake_vendor({"/v1/api/alarmList": ok({"page": {"total": 3, "records": [
        {"id": "a1", "stationId": "1001", "sn": "SN1", "alarmLevel": "1", "alarmCode": "1010",
         "alarmMsg": "Grid overvoltage", "alarmBeginTime": 1700000000000},
        {"id": "a2", "stationId": "1001", "alarmLevel": "2", "alarmBeginTime": 1700000000000},
        {"id": "a3", "stationId": "1001", "alarmLevel": "3", "alarmBeginTime": 1700000000000,
         "alarmEndTime": 1700000600000},
    ]}})})
    alarms = await make_adapter(vendor, fast_http).fetch_alarms(AUTH)

    assert [a.severity for a in alarms] == ["critical", "warn", "info"]
    assert alarms[0].message == "Grid overvoltage | 1010 | SN1"
    assert alarms[0].starts_at.startswith("2023-11-14")
    assert not alarms[2].is_open
