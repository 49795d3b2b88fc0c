"""Test the API-key-only Enphase adapter."""
import httpx
import pytest

from core.integrations.adapter_base import AuthResult
from core.integrations.errors import ErrorCategory, ProviderError
from providers.enphase import BLOCKED_REASON, EnphaseAdapter

AUTH = AuthResult(credentials={}, tokens={"api_key": "enph-key"})


@pytest.mark.asyncio
async def test_fetch_plants(fake_vendor, fast_http):
    vendor = fake_vendor({"/api/v4/systems": {"total": 2, "systems": [
        {"system_id": 11, "name": "North", "system_size": 7200, "status": "normal"},
        {"system_id": 12, "public_name": "South", "status": "comm"},
    ]}})
    adapter = EnphaseAdapter(http_config=fast_http, transport=vendor.transport)

    plants = await adapter.fetch_plants(AUTH)

    assert vendor.requests[0].url.params["key"] == "enph-key"
    assert [(p.external_id, p.name, p.status) for p in plants] == [
        ("11", "North", "normal"), ("12", "South", "no_communication"),
    ]
    assert plants[0].capacity_kw == 7.2


@pytest.mark.asyncio
async def test_metrics_are_blocked_without_network(fake_vendor, fast_http):
    vendor = fake_vendor({})
    adapter = EnphaseAdapter(http_config=fast_http, transport=vendor.transport)

    metrics = await adapter.fetch_metrics(AUTH, "11")

    assert metrics.is_blocked
    assert metrics.metadata["reason"] == BLOCKED_REASON
    assert not metrics.has_data
    assert vendor.requests == []


@pytest.mark.asyncio
async def test_rejected_key(fake_vendor, fast_http):
    vendor = fake_vendor({"/api/v4/systems": httpx.Response(401, text="Not authorized")})
    adapter = EnphaseAdapter(http_config=fast_http, transport=vendor.transport)
    with pytest.raises(ProviderError) as exc_info:
        await adapter.authenticate({"apiKey": "bad"})
    assert exc_info.value.category == ErrorCategory.AUTH


def test_capabilities():
    adapter = EnphaseAdapter()
    assert not adapter.supports_devices
    assert not adapter.supports_alarms
    assert not adapter.supports_refresh
