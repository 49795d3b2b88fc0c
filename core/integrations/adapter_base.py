"""
Provider Adapter Framework.

Every solar-monitoring vendor integration inherits from ProviderAdapter.
Provides:
- Declarative credential fields validated before any network I/O
- Capability flags (refresh, devices, alarms, sessionless, reauth secret)
- A per-adapter ProviderHttpClient (timeouts, retry, masked logging)
- A pagination loop shared by page/total style vendor listings
- The AuthResult envelope persisted (sanitized) by the orchestrator
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import httpx

from core.config import HttpConfig
from core.integrations.errors import (
    CredentialValidationError,
    ErrorCategory,
    ProviderError,
    normalize_error,
)
from core.integrations.http_client import ProviderHttpClient
from core.integrations.normalizer import (
    DailyMetrics,
    NormalizedAlarm,
    NormalizedDevice,
    NormalizedDeviceGroup,
    NormalizedPlant,
)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Auth envelope
# ---------------------------------------------------------------------------

@dataclass
class AuthResult:
    """
    Result of authenticate/refresh_token.

    credentials: safe-to-persist identifiers (never raw passwords)
    tokens: operational session/access material
    """
    credentials: dict[str, Any] = field(default_factory=dict)
    tokens: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# ProviderAdapter
# ---------------------------------------------------------------------------

class ProviderAdapter(ABC):
    """
    Base class for all monitoring vendor adapters.

    Subclasses must set:
        provider_id: str                 registry key
        base_url: str                    API root URL
        required_fields: dict[str, str]  credential key -> human label

    and may set the capability flags below. Optional operations
    (refresh_token, fetch_devices, fetch_alarms) raise NotImplementedError
    unless the matching ``supports_*`` flag is True.
    """

    provider_id: str = ""
    display_name: str = ""
    base_url: str = ""
    required_fields: dict[str, str] = {}

    # Signature-based vendors never truly expire; AUTH errors do not mean reconnect.
    sessionless: bool = False
    # The adapter needs REAUTH_FIELD kept in persisted tokens to log in again.
    requires_reauth_secret: bool = False

    supports_refresh: bool = False
    supports_devices: bool = False
    supports_alarms: bool = False

    def __init__(
        self,
        http_config: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        min_backoff_ms: float = 0,
    ):
        self.http = ProviderHttpClient(
            provider=self.provider_id,
            base_url=self.base_url,
            config=http_config,
            transport=transport,
            sleep=sleep,
            min_backoff_ms=min_backoff_ms,
        )
        # Set when the adapter silently re-authenticated mid-sync; the
        # orchestrator persists it once the sync finishes.
        self.renewed_auth: AuthResult | None = None

    # --- Credentials ---

    def validate_credentials(self, creds: Mapping[str, Any]) -> None:
        """Raise CredentialValidationError naming the first missing field."""
        for key, label in self.required_fields.items():
            value = creds.get(key) if creds else None
            if value is None or (isinstance(value, str) and not value.strip()):
                raise CredentialValidationError(key, label)

    # --- Canonical operations ---

    @abstractmethod
    async def authenticate(self, creds: Mapping[str, Any]) -> AuthResult:
        """Vendor handshake. Raises ProviderError(AUTH) on rejection."""

    async def refresh_token(self, tokens: Mapping[str, Any], credentials: Mapping[str, Any]) -> AuthResult:
        raise NotImplementedError(f"{self.provider_id} does not support token refresh")

    @abstractmethod
    async def fetch_plants(self, auth: AuthResult) -> list[NormalizedPlant]:
        """All plants, transparently paginated."""

    @abstractmethod
    async def fetch_metrics(self, auth: AuthResult, external_plant_id: str) -> DailyMetrics:
        """Today's metrics. Never raises for vendor "no data" answers."""

    async def fetch_devices(self, auth: AuthResult) -> list[NormalizedDeviceGroup]:
        raise NotImplementedError(f"{self.provider_id} does not support device listing")

    async def fetch_alarms(self, auth: AuthResult) -> list[NormalizedAlarm]:
        raise NotImplementedError(f"{self.provider_id} does not support alarm listing")

    # --- Helpers for subclasses ---

    def auth_error(
        self,
        message: str,
        status_code: int | None = None,
        provider_error_code: str | None = None,
    ) -> ProviderError:
        return ProviderError(
            category=ErrorCategory.AUTH,
            provider=self.provider_id,
            message=message,
            status_code=status_code,
            provider_error_code=provider_error_code,
            retryable=False,
        )

    def as_auth_failure(self, exc: Exception) -> ProviderError:
        """
        Normalize a login failure. Transport-level categories (timeouts,
        outages, rate limits) pass through; everything else is AUTH.
        """
        err = normalize_error(exc, self.provider_id)
        if err.category in (
            ErrorCategory.TIMEOUT,
            ErrorCategory.PROVIDER_DOWN,
            ErrorCategory.RATE_LIMIT,
            ErrorCategory.AUTH,
        ):
            return err
        return self.auth_error(err.message, err.status_code, err.provider_error_code)

    @staticmethod
    async def paginate(
        fetch_page: Callable[[int], Awaitable[tuple[list[T], int]]],
        page_size: int,
        before_page: Callable[[int], Awaitable[None]] | None = None,
    ) -> list[T]:
        """
        Page through a vendor listing.

        ``fetch_page(page)`` returns ``(records, total)``. Stops on an empty
        page or once ``page * page_size >= total``.
        """
        items: list[T] = []
        page = 1
        while True:
            if before_page is not None:
                await before_page(page)
            records, total = await fetch_page(page)
            if not records:
                break
            items.extend(records)
            if page * page_size >= total:
                break
            page += 1
        return items

    @staticmethod
    def group_devices(pairs: list[tuple[str, NormalizedDevice]]) -> list[NormalizedDeviceGroup]:
        """Group (station_id, device) pairs preserving first-seen station order."""
        groups: dict[str, NormalizedDeviceGroup] = {}
        for station_id, device in pairs:
            groups.setdefault(station_id, NormalizedDeviceGroup(station_id=station_id)).devices.append(device)
        return list(groups.values())

    def describe(self) -> dict[str, Any]:
        """Public metadata for provider catalogues."""
        return {
            "id": self.provider_id,
            "label": self.display_name or self.provider_id,
            "required_fields": dict(self.required_fields),
            "sessionless": self.sessionless,
            "legacy": False,
            "capabilities": {
                "refresh": self.supports_refresh,
                "devices": self.supports_devices,
                "alarms": self.supports_alarms,
            },
        }
