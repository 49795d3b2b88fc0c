"""
Legacy provider table entries.

Vendors not yet migrated to ProviderAdapter keep a single sync function
honouring the four-mode contract. The orchestrator hands it a PlantSink for
persistence and only falls back here when the registry has no adapter.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

import httpx

from core.config import HttpConfig
from core.integrations.adapter_base import AuthResult
from core.integrations.errors import CredentialValidationError
from core.integrations.normalizer import NormalizedPlant
from sync.results import SyncMode

if TYPE_CHECKING:
    from sync.sink import PlantSink


@dataclass
class LegacyContext:
    """Stored auth plus transport settings for one legacy call."""
    auth: AuthResult
    http_config: HttpConfig | None = None
    transport: httpx.AsyncBaseTransport | None = None


@dataclass
class LegacyOutcome:
    discovered: list[NormalizedPlant] = field(default_factory=list)
    renewed_auth: AuthResult | None = None


LegacyConnect = Callable[[Mapping[str, Any], LegacyContext], Awaitable[AuthResult]]
LegacySync = Callable[[LegacyContext, SyncMode, "PlantSink"], Awaitable[LegacyOutcome]]


@dataclass(frozen=True)
class LegacyProvider:
    provider_id: str
    display_name: str
    required_fields: dict[str, str]
    connect: LegacyConnect
    sync: LegacySync
    sessionless: bool = False
    requires_reauth_secret: bool = False

    def validate_credentials(self, creds: Mapping[str, Any]) -> None:
        for key, label in self.required_fields.items():
            value = creds.get(key) if creds else None
            if value is None or (isinstance(value, str) and not value.strip()):
                raise CredentialValidationError(key, label)

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.provider_id,
            "label": self.display_name,
            "required_fields": dict(self.required_fields),
            "sessionless": self.sessionless,
            "legacy": True,
            "capabilities": {"refresh": False, "devices": False, "alarms": False},
        }
