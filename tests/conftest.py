"""Shared fixtures: a path-routed fake vendor served through httpx.MockTransport."""
from typing import Any, Callable

import httpx
import pytest

from core.config import HttpConfig, MonitoringConfig, SyncConfig
from sync.store import InMemoryMonitoringStore


class FakeVendor:
    """
    Answers requests by URL path.

    A route value may be a dict (200 JSON), an ``httpx.Response``, a
    callable taking the request, or a list of those served in order (the
    last one repeats).
    """

    def __init__(self, routes: dict[str, Any]):
        self.routes = {path: list(v) if isinstance(v, list) else v for path, v in routes.items()}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="no route")
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if callable(route) and not isinstance(route, httpx.Response):
            route = route(request)
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


@pytest.fixture
def fake_vendor() -> Callable[[dict[str, Any]], FakeVendor]:
    return FakeVendor


@pytest.fixture
def fast_http() -> HttpConfig:
    return HttpConfig(max_retries=0, backoff_base_ms=0, backoff_max_ms=0, jitter_ms=0)


@pytest.fixture
def config(fast_http) -> MonitoringConfig:
    return MonitoringConfig(http=fast_http, sync=SyncConfig(solis_min_call_interval_s=0))


@pytest.fixture
def store() -> InMemoryMonitoringStore:
    return InMemoryMonitoringStore()
