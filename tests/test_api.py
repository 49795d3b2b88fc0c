"""Test the monitoring HTTP surface with FastAPI's TestClient."""
import pytest
from fastapi.testclient import TestClient

from api.deps import get_config, get_orchestrator, get_store
from api.main import app
from api.middleware import tenant_from_request
from core.config import MonitoringConfig
from sync.orchestrator import SyncOrchestrator
from sync.store import IntegrationRecord

TENANT_HEADERS = {"X-Tenant-ID": "acme"}
EXPIRED = "2000-01-01T00:00:00+00:00"

VENDOR_ROUTES = {
    "/op/v0/plant/list": {"errno": 0, "result": {"total": 1, "data": [{"stationID": "fx-1", "name": "Yard"}]}},
    "/op/v0/plant/real/query": {"errno": 0, "result": {"generationPower": 1.5, "todayGeneration": 6.0}},
    "/op/v0/device/list": {"errno": 0, "result": {"total": 0, "data": []}},
    "/api/v4/systems": {"total": 1, "systems": [{"system_id": 11, "name": "North"}]},
}


def seed(store, provider, status, tokens):
    store.integrations[("acme", provider)] = IntegrationRecord(
        id=f"int-{provider}", tenant_id="acme", provider=provider, status=status, tokens=tokens,
    )


@pytest.fixture
def api(store, fast_http, fake_vendor):
    vendor = fake_vendor(VENDOR_ROUTES)
    config = MonitoringConfig(http=fast_http, cron_secret="s3cret")

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_orchestrator] = lambda: SyncOrchestrator(store, config, transport=vendor.transport)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_service_health(api):
    assert api.get("/health").json()["status"] == "healthy"


def test_providers_catalogue(api):
    response = api.get("/api/monitoring/providers")
    assert response.status_code == 200
    ids = {p["id"] for p in response.json()}
    assert {"fox_ess", "hoymiles"} <= ids


def test_connect_and_sync(api, store):
    connect = api.post("/api/monitoring/connect", headers=TENANT_HEADERS,
                       json={"provider": "fox_ess", "credentials": {"apiKey": "fox-key"}})
    assert connect.status_code == 200
    assert connect.json()["success"] is True
    assert ("acme", "fox_ess") in store.integrations

    response = api.post("/api/monitoring/sync", headers=TENANT_HEADERS, json={"provider": "fox_ess"})
    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "connected"
    assert (body["plants_upserted"], body["metrics_upserted"]) == (1, 1)


def test_connect_failure_is_a_200_with_category(api):
    response = api.post("/api/monitoring/connect", headers=TENANT_HEADERS,
                        json={"provider": "fox_ess", "credentials": {}})
    assert response.status_code == 200
    assert response.json()["category"] == "AUTH"


def test_unsupported_provider_is_400(api):
    response = api.post("/api/monitoring/connect", json={"provider": "sungrow", "credentials": {}})
    assert response.status_code == 400


def test_sync_without_integration_is_404(api):
    response = api.post("/api/monitoring/sync", headers=TENANT_HEADERS, json={"provider": "fox_ess"})
    assert response.status_code == 404


def test_sync_expired_token_is_401(api, store):
    seed(store, "enphase", "connected", {"api_key": "k", "expires_at": EXPIRED})
    response = api.post("/api/monitoring/sync", headers=TENANT_HEADERS, json={"provider": "enphase"})
    assert response.status_code == 401
    assert response.json()["detail"]["status"] == "reconnect_required"


def test_sync_blocked_is_403(api, store):
    seed(store, "enphase", "connected", {"api_key": "k"})
    response = api.post("/api/monitoring/sync", headers=TENANT_HEADERS, json={"provider": "enphase"})
    assert response.status_code == 403
    assert response.json()["detail"]["status"] == "blocked"


def test_invalid_mode_is_rejected(api):
    response = api.post("/api/monitoring/sync", json={"provider": "fox_ess", "mode": "everything"})
    assert response.status_code == 422


def test_batch_requires_secret(api, store):
    assert api.post("/api/monitoring/sync/batch").status_code == 401
    assert api.post("/api/monitoring/sync/batch", headers={"X-Cron-Secret": "wrong"}).status_code == 401

    seed(store, "fox_ess", "error", {"api_key": "k"})
    response = api.post("/api/monitoring/sync/batch", headers={"X-Cron-Secret": "s3cret"})
    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 1
    assert body["results"][0]["status"] == "connected"


def test_batch_without_configured_secret_is_500(api, store):
    app.dependency_overrides[get_config] = lambda: MonitoringConfig()
    response = api.post("/api/monitoring/sync/batch", headers={"X-Cron-Secret": "anything"})
    assert response.status_code == 500


def test_integration_health(api, store):
    response = api.post("/api/monitoring/health", headers=TENANT_HEADERS, json={"provider": "fox_ess"})
    assert response.status_code == 404

    seed(store, "fox_ess", "connected", {"api_key": "k"})
    response = api.post("/api/monitoring/health", headers=TENANT_HEADERS, json={"provider": "fox_ess"})
    assert response.status_code == 200
    assert response.json()["status"] == "OK"

    seed(store, "hoymiles", "connected", {})
    response = api.post("/api/monitoring/health", headers=TENANT_HEADERS, json={"provider": "hoymiles"})
    assert response.status_code == 400


def test_tenant_from_subdomain(api, store):
    seed(store, "fox_ess", "connected", {"api_key": "k"})
    response = api.post("/api/monitoring/health", headers={"host": "acme.monitoring.example"},
                        json={"provider": "fox_ess"})
    assert response.status_code == 200

    response = api.post("/api/monitoring/health", headers={"host": "monitoring.example:8000"},
                        json={"provider": "fox_ess"})
    assert response.status_code == 404


def test_tenant_resolution_order():
    assert tenant_from_request({"X-Tenant-ID": "beta"}, "acme.monitoring.example") == "beta"
    assert tenant_from_request({"X-Tenant-ID": "  "}, "acme.monitoring.example:443") == "acme"
    assert tenant_from_request({}, "www.monitoring.example") is None
    assert tenant_from_request({}, "localhost:8000") is None
