"""
Sync orchestrator.

Drives one integration at a time through:

1. Load stored credentials/tokens for (tenant, provider)
2. Refresh expired tokens, or mark ``reconnect_required`` and stop
3. Resolve a canonical adapter, else the legacy table
4. Run the mode (discover / plants / metrics / full), collecting
   per-entity failures instead of raising
5. Reduce the failure categories to the integration status and persist it

Also hosts the connect flow and the sequential batch driver.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable
import logging

import httpx

from core.config import MonitoringConfig
from core.integrations.adapter_base import AuthResult, ProviderAdapter
from core.integrations.errors import (
    CredentialValidationError,
    ErrorCategory,
    ProviderError,
    UnsupportedProviderError,
    normalize_error,
)
from core.integrations.health import HealthCheckResult, run_health_check
from core.integrations.masking import REAUTH_FIELD, public_fields, strip_sensitive
from core.integrations.registry import ResolvedProvider, resolve_provider
from core.integrations.tokens import is_expired
from core.observability.otel_setup import create_sync_span, end_sync_span
from providers.legacy import LegacyContext
from sync.results import EntityResult, SyncMode, SyncResult
from sync.sink import PlantSink
from sync.status import BATCH_STATUSES, IntegrationStatus, reduce_status
from sync.store import IntegrationRecord, MonitoringStore

logger = logging.getLogger(__name__)

AUDIT_TABLE = "monitoring_integrations"


class IntegrationNotFoundError(LookupError):
    """No integration stored for (tenant, provider): connect first."""

    def __init__(self, tenant_id: str, provider: str):
        self.tenant_id = tenant_id
        self.provider = provider
        super().__init__(f"Integration not found for provider {provider}. Connect first.")


def sanitize_auth(auth: AuthResult, keep_reauth_secret: bool = False) -> tuple[dict[str, Any], dict[str, Any]]:
    """Credentials and tokens safe to persist."""
    keep = (REAUTH_FIELD,) if keep_reauth_secret else ()
    return strip_sensitive(auth.credentials), strip_sensitive(auth.tokens, keep=keep)


def truncate_error(errors: Iterable[str], max_len: int) -> str | None:
    joined = "; ".join(errors)
    return joined[:max_len] if joined else None


@dataclass
class ConnectResult:
    success: bool
    provider: str
    integration_id: str | None = None
    status: str | None = None
    health: dict[str, Any] | None = None
    error: str | None = None
    category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error, "category": self.category}
        return {
            "success": True,
            "integration_id": self.integration_id,
            "status": self.status,
            "health": self.health,
        }


@dataclass
class _Run:
    """Mutable state of one sync invocation."""
    integration: IntegrationRecord
    resolved: ResolvedProvider
    auth: AuthResult
    result: SyncResult
    sink: PlantSink
    renewed_auth: AuthResult | None = None


class SyncOrchestrator:
    """
    Usage::

        orchestrator = SyncOrchestrator(store, MonitoringConfig.from_env())
        result = await orchestrator.sync(tenant_id, "solis_cloud", SyncMode.FULL)

    ``resolver`` maps a provider id to a ResolvedProvider; it defaults to the
    registry and is replaced in tests to inject fake adapters.
    """

    def __init__(
        self,
        store: MonitoringStore,
        config: MonitoringConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        tracer: Any = None,
        resolver: Callable[[str], ResolvedProvider] | None = None,
    ):
        self.store = store
        self.config = config or MonitoringConfig.default()
        self.transport = transport
        self.tracer = tracer
        self._resolver = resolver or (lambda provider: resolve_provider(provider, self.config, self.transport))

    def resolve(self, provider: str) -> ResolvedProvider:
        return self._resolver(provider)

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def connect(self, tenant_id: str, provider: str, credentials: dict[str, Any]) -> ConnectResult:
        """
        Validate, authenticate, persist sanitized auth, then health-check.

        Raises UnsupportedProviderError; every vendor failure is returned as
        ``{error, category}``.
        """
        resolved = self.resolve(provider)
        source = resolved.adapter or resolved.legacy

        try:
            source.validate_credentials(credentials)
        except CredentialValidationError as exc:
            await self._audit(tenant_id, "monitoring.integration.error", None, {
                "provider": provider, "error": str(exc), "category": ErrorCategory.AUTH.value,
            })
            return ConnectResult(False, provider, error=str(exc), category=ErrorCategory.AUTH.value)

        try:
            if resolved.adapter is not None:
                auth = await resolved.adapter.authenticate(credentials)
            else:
                auth = await resolved.legacy.connect(
                    credentials, LegacyContext(AuthResult(), self.config.http, self.transport),
                )
        except Exception as exc:
            err = normalize_error(exc, provider)
            logger.warning("[%s] connect failed for tenant %s: %s (%s)",
                           provider, tenant_id, err.message, err.category.value)
            record = await self.store.save_integration(
                tenant_id,
                provider,
                status=IntegrationStatus.ERROR.value,
                credentials=public_fields(credentials),
                tokens={},
                sync_error=truncate_error([err.message], self.config.sync.sync_error_max_len),
            )
            await self._audit(tenant_id, "monitoring.integration.error", record.id, {
                "provider": provider, "error": err.message, "category": err.category.value,
            })
            return ConnectResult(
                False, provider, error=f"Authentication failed: {err.message}", category=err.category.value,
            )

        safe_credentials, safe_tokens = sanitize_auth(auth, resolved.requires_reauth_secret)
        record = await self.store.save_integration(
            tenant_id,
            provider,
            status=IntegrationStatus.CONNECTED.value,
            credentials=safe_credentials,
            tokens=safe_tokens,
        )

        health = None
        if resolved.adapter is not None:
            health = (await run_health_check(resolved.adapter, auth)).to_dict()

        await self._audit(tenant_id, "monitoring.integration.connected", record.id, {
            "provider": provider,
            "status": IntegrationStatus.CONNECTED.value,
            "health": health["status"] if health else None,
        })
        logger.info("[%s] connected for tenant %s", provider, tenant_id)
        return ConnectResult(
            True, provider, integration_id=record.id, status=IntegrationStatus.CONNECTED.value, health=health,
        )

    async def check_health(self, tenant_id: str, provider: str) -> HealthCheckResult | None:
        """Health of the stored integration; None for legacy providers."""
        integration = await self.store.get_integration(tenant_id, provider)
        if integration is None:
            raise IntegrationNotFoundError(tenant_id, provider)
        resolved = self.resolve(provider)
        if resolved.adapter is None:
            return None
        auth = AuthResult(credentials=dict(integration.credentials), tokens=dict(integration.tokens))
        return await run_health_check(resolved.adapter, auth)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync(
        self,
        tenant_id: str,
        provider: str,
        mode: SyncMode | str = SyncMode.FULL,
        selected_plant_ids: Iterable[str] | None = None,
    ) -> SyncResult:
        """
        Run one sync. Raises IntegrationNotFoundError and
        UnsupportedProviderError; vendor failures land in ``result.errors``.
        """
        mode = SyncMode(mode)
        integration = await self.store.get_integration(tenant_id, provider)
        if integration is None:
            raise IntegrationNotFoundError(tenant_id, provider)
        resolved = self.resolve(provider)

        result = SyncResult(provider=provider, mode=mode)
        run = _Run(
            integration=integration,
            resolved=resolved,
            auth=AuthResult(credentials=dict(integration.credentials), tokens=dict(integration.tokens)),
            result=result,
            sink=PlantSink(self.store, integration, result, self.config.sync, selected_plant_ids),
        )

        span = create_sync_span(self.tracer, provider, mode.value, tenant_id)
        try:
            if not await self._ensure_fresh_tokens(run):
                return await self._finish_expired(run)

            if resolved.adapter is not None:
                await self._run_canonical(run, resolved.adapter)
            else:
                await self._run_legacy(run)

            if mode == SyncMode.DISCOVER:
                await self._persist_renewed(run)
            else:
                await self._finish(run)
            await self._audit_sync(run)
            return result
        finally:
            end_sync_span(span, {
                "status": result.status or "",
                "plants_upserted": result.plants_upserted,
                "metrics_upserted": result.metrics_upserted,
                "errors": len(result.failures),
            })

    async def _ensure_fresh_tokens(self, run: _Run) -> bool:
        """False when tokens are expired and cannot be refreshed."""
        skew = self.config.sync.token_expiry_skew_seconds
        if not is_expired(run.auth.tokens, skew_seconds=skew):
            return True

        adapter = run.resolved.adapter
        provider = run.integration.provider
        if adapter is None or not adapter.supports_refresh:
            run.result.record(EntityResult(entity="Token refresh", error=ProviderError(
                ErrorCategory.AUTH, provider, "Token expired and this provider cannot refresh it. Reconnect.",
            )))
            return False

        try:
            renewed = await adapter.refresh_token(run.auth.tokens, run.auth.credentials)
        except Exception as exc:
            err = normalize_error(exc, provider)
            logger.warning("[%s] token refresh failed: %s", provider, err.message)
            run.result.record(EntityResult(entity="Token refresh", error=ProviderError(
                ErrorCategory.AUTH, provider, f"Token refresh failed: {err.message}",
                err.status_code, err.provider_error_code,
            )))
            return False

        logger.info("[%s] token refreshed for tenant %s", provider, run.integration.tenant_id)
        run.auth = renewed
        run.renewed_auth = renewed
        await self._persist_renewed(run)
        return True

    async def _finish_expired(self, run: _Run) -> SyncResult:
        run.result.status = IntegrationStatus.RECONNECT_REQUIRED.value
        run.result.token_expired = True
        await self.store.update_integration_status(
            run.integration.id,
            status=run.result.status,
            sync_error=truncate_error(run.result.errors, self.config.sync.sync_error_max_len),
            last_sync_at=datetime.now(timezone.utc),
        )
        await self._audit_sync(run)
        return run.result

    # --- Strategy 1: canonical adapter ---

    async def _run_canonical(self, run: _Run, adapter: ProviderAdapter) -> None:
        mode, sink, auth = run.result.mode, run.sink, run.auth

        if mode in (SyncMode.DISCOVER, SyncMode.PLANTS, SyncMode.FULL):
            try:
                plants = await adapter.fetch_plants(auth)
            except Exception as exc:
                # Nothing to page against: the whole mode stops here.
                sink.fail("listPlants", exc)
                run.renewed_auth = adapter.renewed_auth or run.renewed_auth
                return
            if mode == SyncMode.DISCOVER:
                run.result.discovered_plants = [p.to_dict() for p in plants]
                run.renewed_auth = adapter.renewed_auth or run.renewed_auth
                return
            await sink.upsert_plants(plants)

        if mode.syncs_metrics:
            for plant in await sink.known_plants():
                try:
                    metrics = await adapter.fetch_metrics(auth, plant.external_id)
                except Exception as exc:
                    sink.fail(f"Metrics {plant.external_id}", exc)
                    continue
                await sink.upsert_metrics(plant, metrics)

        if mode == SyncMode.FULL:
            if adapter.supports_devices:
                try:
                    groups = await adapter.fetch_devices(auth)
                except Exception as exc:
                    sink.fail("listDevices", exc)
                else:
                    await sink.upsert_device_groups(groups)
            if adapter.supports_alarms:
                try:
                    alarms = await adapter.fetch_alarms(auth)
                except Exception as exc:
                    sink.fail("listAlarms", exc)
                else:
                    await sink.upsert_alarms(alarms)

        run.renewed_auth = adapter.renewed_auth or run.renewed_auth

    # --- Strategy 2: legacy table ---

    async def _run_legacy(self, run: _Run) -> None:
        legacy = run.resolved.legacy
        ctx = LegacyContext(run.auth, self.config.http, self.transport)
        try:
            outcome = await legacy.sync(ctx, run.result.mode, run.sink)
        except Exception as exc:
            run.sink.fail("listPlants", exc)
            return
        if run.result.mode == SyncMode.DISCOVER:
            run.result.discovered_plants = [p.to_dict() for p in outcome.discovered]
        run.renewed_auth = outcome.renewed_auth or run.renewed_auth

    # --- Persistence ---

    async def _persist_renewed(self, run: _Run) -> None:
        if run.renewed_auth is None:
            return
        credentials, tokens = sanitize_auth(run.renewed_auth, run.resolved.requires_reauth_secret)
        await self.store.update_integration_status(
            run.integration.id,
            status=run.integration.status,
            sync_error=run.integration.sync_error,
            tokens=tokens,
            credentials=credentials,
        )

    async def _finish(self, run: _Run) -> None:
        result = run.result
        status = reduce_status(result.error_categories, sessionless=run.resolved.sessionless)
        result.status = status.value

        tokens = credentials = None
        if run.renewed_auth is not None:
            credentials, tokens = sanitize_auth(run.renewed_auth, run.resolved.requires_reauth_secret)
        await self.store.update_integration_status(
            run.integration.id,
            status=status.value,
            sync_error=truncate_error(result.errors, self.config.sync.sync_error_max_len),
            last_sync_at=datetime.now(timezone.utc),
            tokens=tokens,
            credentials=credentials,
        )
        logger.info(
            "[%s] sync %s for tenant %s: plants=%d metrics=%d devices=%d alarms=%d errors=%d -> %s",
            result.provider, result.mode.value, run.integration.tenant_id,
            result.plants_upserted, result.metrics_upserted, result.devices_upserted,
            result.alarms_upserted, len(result.failures), result.status,
        )

    async def _audit_sync(self, run: _Run) -> None:
        result = run.result
        await self._audit(run.integration.tenant_id, "monitoring.sync.run", run.integration.id, {
            "provider": result.provider,
            "mode": result.mode.value,
            "status": result.status,
            "plantsUpserted": result.plants_upserted,
            "metricsUpserted": result.metrics_upserted,
            "errors": len(result.failures),
        })

    async def _audit(self, tenant_id: str, action: str, record_id: str | None, data: dict[str, Any]) -> None:
        await self.store.write_audit_event(tenant_id, action, AUDIT_TABLE, record_id, data)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def run_batch(self) -> list[dict[str, Any]]:
        """Full sync of every connected/errored integration, one at a time."""
        integrations = await self.store.list_integrations([s.value for s in BATCH_STATUSES])
        summary: list[dict[str, Any]] = []
        for integration in integrations:
            entry: dict[str, Any] = {"tenant_id": integration.tenant_id, "provider": integration.provider}
            try:
                result = await self.sync(integration.tenant_id, integration.provider, SyncMode.FULL)
            except (UnsupportedProviderError, IntegrationNotFoundError) as exc:
                entry.update({"status": None, "error": str(exc)})
            except Exception as exc:
                logger.exception("[%s] batch sync crashed for tenant %s", integration.provider, integration.tenant_id)
                entry.update({"status": None, "error": str(exc) or type(exc).__name__})
            else:
                entry.update({
                    "status": result.status,
                    "plants_upserted": result.plants_upserted,
                    "metrics_upserted": result.metrics_upserted,
                    "errors": len(result.failures),
                })
            summary.append(entry)
        logger.info("Batch sync finished: %d integrations", len(summary))
        return summary
