"""
Legacy provider table.

Consulted by the registry only when no canonical adapter is registered.
"""
from providers.legacy.base import (
    LegacyContext,
    LegacyOutcome,
    LegacyProvider,
)
from providers.legacy.hoymiles import HOYMILES

LEGACY_PROVIDERS: dict[str, LegacyProvider] = {
    HOYMILES.provider_id: HOYMILES,
}


def get_legacy(provider_id: str) -> LegacyProvider | None:
    return LEGACY_PROVIDERS.get(provider_id)


__all__ = [
    "LEGACY_PROVIDERS",
    "LegacyContext",
    "LegacyOutcome",
    "LegacyProvider",
    "get_legacy",
]
