"""
Integration health check.

Probes an authenticated adapter with its cheapest meaningful call
(``fetch_plants``) and reports OK / DEGRADED / FAIL with wall-clock latency.
"""
from __future__ import annotations
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any
import logging
import time

from core.integrations.adapter_base import AuthResult, ProviderAdapter
from core.integrations.errors import ErrorCategory, normalize_error
from core.integrations.normalizer import now_iso

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    OK = "OK"
    DEGRADED = "DEGRADED"
    FAIL = "FAIL"


@dataclass
class HealthCheckResult:
    provider: str
    status: HealthStatus
    auth_ok: bool
    endpoint_ok: bool
    latency_ms: int
    checked_at: str
    error: str | None = None
    error_category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def overall_status(auth_ok: bool, endpoint_ok: bool) -> HealthStatus:
    if auth_ok and endpoint_ok:
        return HealthStatus.OK
    if auth_ok:
        return HealthStatus.DEGRADED
    return HealthStatus.FAIL


async def run_health_check(adapter: ProviderAdapter, auth: AuthResult) -> HealthCheckResult:
    """Never raises: every failure is folded into the result."""
    start = time.monotonic()
    auth_ok, endpoint_ok = True, False
    error: str | None = None
    category: str | None = None
    try:
        await adapter.fetch_plants(auth)
        endpoint_ok = True
    except Exception as exc:
        err = normalize_error(exc, adapter.provider_id)
        auth_ok = err.category != ErrorCategory.AUTH
        error, category = err.message, err.category.value
        logger.warning("[%s] health check failed: %s (%s)", adapter.provider_id, err.message, category)

    latency = int((time.monotonic() - start) * 1000)
    return HealthCheckResult(
        provider=adapter.provider_id,
        status=overall_status(auth_ok, endpoint_ok),
        auth_ok=auth_ok,
        endpoint_ok=endpoint_ok,
        latency_ms=latency,
        checked_at=now_iso(),
        error=error,
        error_category=category,
    )
