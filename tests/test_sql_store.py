"""Test the SQLAlchemy store against sqlite+aiosqlite."""
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from core import database
from core.database import create_engine_for, init_db
from core.integrations.normalizer import DailyMetrics, NormalizedAlarm, NormalizedDevice, NormalizedPlant
from core.models.monitoring import AuditLog, SolarAlarm, SolarDevice, SolarPlant, SolarPlantMetricsDaily
from sync.sql_store import SqlMonitoringStore


@asynccontextmanager
async def open_store(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'monitoring.db'}")
    try:
        await init_db(engine)
        sessions = async_sessionmaker(engine, expire_on_commit=False)
        yield SqlMonitoringStore(sessions), sessions
    finally:
        await engine.dispose()


async def count(sessions, model):
    async with sessions() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_integration_save_is_keyed_by_tenant_and_provider(tmp_path):
    async with open_store(tmp_path) as (sql_store, _):
        first = await sql_store.save_integration(
            "acme", "fox_ess", status="connected", credentials={}, tokens={"api_key": "k1"},
        )
        second = await sql_store.save_integration(
            "acme", "fox_ess", status="error", credentials={}, tokens={}, sync_error="bad key",
        )

        assert first.id == second.id
        stored = await sql_store.get_integration("acme", "fox_ess")
        assert stored.status == "error"
        assert stored.sync_error == "bad key"
        assert await sql_store.get_integration("other", "fox_ess") is None


@pytest.mark.asyncio
async def test_update_status_and_batch_listing(tmp_path):
    async with open_store(tmp_path) as (sql_store, _):
        record = await sql_store.save_integration("acme", "growatt", status="connected", credentials={}, tokens={})
        await sql_store.save_integration("beta", "growatt", status="blocked", credentials={}, tokens={})

        await sql_store.update_integration_status(
            record.id,
            status="error",
            sync_error="Metrics 1: Request timed out",
            last_sync_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
            tokens={"session_cookie": "JSESSIONID=x"},
        )

        stored = await sql_store.get_integration("acme", "growatt")
        assert stored.status == "error"
        assert stored.last_sync_at is not None
        assert stored.tokens == {"session_cookie": "JSESSIONID=x"}
        listed = await sql_store.list_integrations(["connected", "error"])
        assert [r.tenant_id for r in listed] == ["acme"]


@pytest.mark.asyncio
async def test_update_unknown_integration_raises(tmp_path):
    async with open_store(tmp_path) as (sql_store, _):
        with pytest.raises(KeyError):
            await sql_store.update_integration_status(
                "00000000-0000-0000-0000-000000000000", status="error", sync_error=None,
            )


@pytest.mark.asyncio
async def test_plant_and_children_upserts_are_idempotent(tmp_path):
    plant = NormalizedPlant("1001", "Roof", capacity_kw=5.0, metadata={"sno": "A"})
    device = NormalizedDevice("i1", "inverter", serial="SN1")
    alarm = NormalizedAlarm("a1", "1001", "warn", "other", "Fault", "2024-01-01T00:00:00+00:00")
    day = date(2024, 5, 1)

    async with open_store(tmp_path) as (sql_store, sessions):
        integration = await sql_store.save_integration("acme", "solis_cloud", status="connected",
                                                       credentials={}, tokens={})
        for energy in (1.0, 2.5):
            record = await sql_store.upsert_plant("acme", integration.id, "solis_cloud", plant)
            await sql_store.upsert_device("acme", record.id, device)
            await sql_store.upsert_alarm("acme", record.id, "solis_cloud", alarm)
            await sql_store.upsert_daily_metrics("acme", record.id, day, DailyMetrics(energy_kwh=energy))

        for model in (SolarPlant, SolarDevice, SolarAlarm, SolarPlantMetricsDaily):
            assert await count(sessions, model) == 1
        async with sessions() as session:
            metrics = (await session.execute(select(SolarPlantMetricsDaily))).scalar_one()
        assert metrics.energy_kwh == 2.5

        listed = await sql_store.list_plants("acme", integration.id)
        assert [(p.external_id, p.metadata) for p in listed] == [("1001", {"sno": "A"})]
        assert (await sql_store.get_plant("acme", "solis_cloud", "1001")).id == record.id
        assert await sql_store.get_plant("beta", "solis_cloud", "1001") is None


@pytest.mark.asyncio
async def test_audit_events_append(tmp_path):
    async with open_store(tmp_path) as (sql_store, sessions):
        for errors in (0, 1):
            await sql_store.write_audit_event(
                "acme", "monitoring.sync.run", "monitoring_integrations", None, {"errors": errors},
            )
        assert await count(sessions, AuditLog) == 2


@pytest.mark.asyncio
async def test_process_engine_is_lazy_and_reset_on_close(monkeypatch, tmp_path):
    monkeypatch.setattr(database, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'lazy.db'}")
    await database.close_db()

    factory = database.get_session_factory()
    assert database.get_session_factory() is factory
    assert database.get_engine().url.database.endswith("lazy.db")

    await database.close_db()
    assert database._engine is None
    assert database._session_factory is None
