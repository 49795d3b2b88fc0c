"""Per-request tenant resolution.

Connect, sync and health calls act on the caller's tenant. The tenant is
taken from ``X-Tenant-ID`` or, failing that, from the first label of a
``<tenant>.<domain>.<tld>`` host, and held in a ContextVar for the lifetime
of the request. The cron batch endpoint ignores it and walks every tenant.
"""

from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

TENANT_HEADER = "X-Tenant-ID"
DEFAULT_TENANT = "default"

_current_tenant: ContextVar[str] = ContextVar("current_tenant", default=DEFAULT_TENANT)


def get_current_tenant() -> str:
    return _current_tenant.get()


def tenant_from_request(headers, host: str) -> Optional[str]:
    """Header first, then the subdomain. Ports and bare domains yield None."""
    explicit = (headers.get(TENANT_HEADER) or "").strip()
    if explicit:
        return explicit
    labels = host.split(":")[0].split(".")
    if len(labels) > 2 and labels[0] not in ("", "www"):
        return labels[0]
    return None


class TenantMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, default_tenant: str = DEFAULT_TENANT):
        super().__init__(app)
        self.default_tenant = default_tenant

    async def dispatch(self, request: Request, call_next) -> Response:
        tenant = tenant_from_request(request.headers, request.headers.get("host", ""))
        token = _current_tenant.set(tenant or self.default_tenant)
        try:
            return await call_next(request)
        finally:
            _current_tenant.reset(token)
