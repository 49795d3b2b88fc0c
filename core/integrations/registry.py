"""
Adapter registry.

A static provider-id -> factory table. ``get_adapter`` returns None for
unknown ids; ``resolve_provider`` adds the legacy table as a second,
separate strategy and raises only when neither knows the provider.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from core.config import HttpConfig, MonitoringConfig
from core.integrations.adapter_base import ProviderAdapter
from core.integrations.errors import UnsupportedProviderError
from providers.enphase import EnphaseAdapter
from providers.foxess import FoxEssAdapter
from providers.growatt import GrowattAdapter
from providers.legacy import LEGACY_PROVIDERS, LegacyProvider, get_legacy
from providers.solaredge import SolarEdgeAdapter
from providers.solarman import SolarmanAdapter
from providers.solis import SolisAdapter

AdapterFactory = Callable[[MonitoringConfig, "httpx.AsyncBaseTransport | None"], ProviderAdapter]


def _solis(config: MonitoringConfig, transport: httpx.AsyncBaseTransport | None) -> ProviderAdapter:
    return SolisAdapter(
        http_config=config.http,
        transport=transport,
        min_call_interval=config.sync.solis_min_call_interval_s,
    )


def _simple(cls: type[ProviderAdapter]) -> AdapterFactory:
    def factory(config: MonitoringConfig, transport: httpx.AsyncBaseTransport | None) -> ProviderAdapter:
        return cls(http_config=config.http, transport=transport)
    return factory


ADAPTER_FACTORIES: dict[str, AdapterFactory] = {
    SolarmanAdapter.provider_id: _simple(SolarmanAdapter),
    SolisAdapter.provider_id: _solis,
    FoxEssAdapter.provider_id: _simple(FoxEssAdapter),
    GrowattAdapter.provider_id: _simple(GrowattAdapter),
    SolarEdgeAdapter.provider_id: _simple(SolarEdgeAdapter),
    EnphaseAdapter.provider_id: _simple(EnphaseAdapter),
}


def get_adapter(
    provider_id: str,
    config: MonitoringConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderAdapter | None:
    """A fresh adapter instance, or None when no canonical adapter exists."""
    factory = ADAPTER_FACTORIES.get(provider_id)
    if factory is None:
        return None
    return factory(config or MonitoringConfig.default(), transport)


@dataclass
class ResolvedProvider:
    """Either a canonical adapter or a legacy table entry, never both."""
    provider_id: str
    adapter: ProviderAdapter | None = None
    legacy: LegacyProvider | None = None

    @property
    def is_legacy(self) -> bool:
        return self.adapter is None

    @property
    def sessionless(self) -> bool:
        source = self.adapter or self.legacy
        return bool(source and source.sessionless)

    @property
    def requires_reauth_secret(self) -> bool:
        source = self.adapter or self.legacy
        return bool(source and source.requires_reauth_secret)


def resolve_provider(
    provider_id: str,
    config: MonitoringConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ResolvedProvider:
    """Canonical adapter first, then the legacy table. Raises UnsupportedProviderError."""
    adapter = get_adapter(provider_id, config, transport)
    if adapter is not None:
        return ResolvedProvider(provider_id, adapter=adapter)
    legacy = get_legacy(provider_id)
    if legacy is not None:
        return ResolvedProvider(provider_id, legacy=legacy)
    raise UnsupportedProviderError(provider_id)


def list_providers(http_config: HttpConfig | None = None) -> list[dict[str, Any]]:
    """Catalogue of every provider the registry can serve."""
    catalogue = [
        factory(MonitoringConfig(http=http_config or HttpConfig()), None).describe()
        for factory in ADAPTER_FACTORIES.values()
    ]
    catalogue.extend(legacy.describe() for legacy in LEGACY_PROVIDERS.values())
    return catalogue
