"""Test the adapter registry, legacy fallback and the health check."""
import httpx
import pytest

from core.config import MonitoringConfig, SyncConfig
from core.integrations.adapter_base import AuthResult
from core.integrations.errors import UnsupportedProviderError
from core.integrations.health import HealthStatus, overall_status, run_health_check
from core.integrations.registry import ADAPTER_FACTORIES, get_adapter, list_providers, resolve_provider
from providers.foxess import FoxEssAdapter
from providers.solis import SolisAdapter


def test_every_registered_adapter_is_constructible():
    for provider_id in ADAPTER_FACTORIES:
        adapter = get_adapter(provider_id)
        assert adapter is not None
        assert adapter.provider_id == provider_id


def test_get_adapter_unknown_returns_none():
    assert get_adapter("sungrow") is None


def test_get_adapter_returns_fresh_instances():
    assert get_adapter("fox_ess") is not get_adapter("fox_ess")
    assert isinstance(get_adapter("fox_ess"), FoxEssAdapter)


def test_solis_call_interval_comes_from_config():
    config = MonitoringConfig(sync=SyncConfig(solis_min_call_interval_s=0.5))
    adapter = get_adapter("solis_cloud", config)
    assert isinstance(adapter, SolisAdapter)
    assert adapter.min_call_interval == 0.5


def test_resolve_prefers_canonical_then_legacy():
    canonical = resolve_provider("growatt")
    assert not canonical.is_legacy
    assert canonical.requires_reauth_secret

    legacy = resolve_provider("hoymiles")
    assert legacy.is_legacy
    assert legacy.adapter is None
    assert legacy.legacy.provider_id == "hoymiles"

    assert resolve_provider("solis_cloud").sessionless


def test_resolve_unknown_raises():
    with pytest.raises(UnsupportedProviderError, match="Unsupported provider: sungrow"):
        resolve_provider("sungrow")


def test_list_providers_catalogue():
    catalogue = {entry["id"]: entry for entry in list_providers()}
    assert set(catalogue) == {
        "solarman_business", "solis_cloud", "fox_ess", "growatt", "solaredge", "enphase", "hoymiles",
    }
    assert catalogue["hoymiles"]["legacy"] is True
    assert catalogue["solis_cloud"]["required_fields"] == {"apiId": "KeyID", "apiSecret": "KeySecret"}
    assert catalogue["solarman_business"]["capabilities"] == {"refresh": True, "devices": True, "alarms": True}


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

def test_overall_status():
    assert overall_status(True, True) == HealthStatus.OK
    assert overall_status(True, False) == HealthStatus.DEGRADED
    assert overall_status(False, False) == HealthStatus.FAIL


@pytest.mark.asyncio
async def test_health_ok_with_zero_plants(fake_vendor, fast_http):
    vendor = fake_vendor({"/op/v0/plant/list": {"errno": 0, "result": {"data": [], "total": 0}}})
    adapter = FoxEssAdapter(http_config=fast_http, transport=vendor.transport)

    result = await run_health_check(adapter, AuthResult(tokens={"api_key": "k"}))

    assert result.status == HealthStatus.OK
    assert result.auth_ok and result.endpoint_ok
    assert result.latency_ms >= 0
    assert result.to_dict()["status"] == "OK"


@pytest.mark.asyncio
async def test_health_degraded_on_outage(fake_vendor, fast_http):
    vendor = fake_vendor({"/op/v0/plant/list": httpx.Response(502, text="bad gateway")})
    adapter = FoxEssAdapter(http_config=fast_http, transport=vendor.transport)

    result = await run_health_check(adapter, AuthResult(tokens={"api_key": "k"}))

    assert result.status == HealthStatus.DEGRADED
    assert result.auth_ok and not result.endpoint_ok
    assert result.error_category == "PROVIDER_DOWN"


@pytest.mark.asyncio
async def test_health_fail_on_auth(fake_vendor, fast_http):
    vendor = fake_vendor({"/op/v0/plant/list": {"errno": 41809, "msg": "token invalid"}})
    adapter = FoxEssAdapter(http_config=fast_http, transport=vendor.transport)

    result = await run_health_check(adapter, AuthResult(tokens={"api_key": "k"}))

    assert result.status == HealthStatus.FAIL
    assert not result.auth_ok
    assert result.error == "token invalid"
