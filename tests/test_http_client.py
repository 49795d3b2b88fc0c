"""Test the resilient provider HTTP client against httpx.MockTransport."""
import json

import httpx
import pytest

from core.config import HttpConfig
from core.integrations.errors import ErrorCategory, ProviderError
from core.integrations.http_client import FORM_CONTENT_TYPE, ProviderHttpClient, backoff_delay_ms

FAST = HttpConfig(max_retries=2, backoff_base_ms=0, backoff_max_ms=0, jitter_ms=0)


class Recorder:
    """Serves queued responses and counts calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def make_client(handler, config=FAST, sleeps=None):
    async def sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    return ProviderHttpClient(
        "test_provider",
        "https://api.example.com",
        config=config,
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )


def test_backoff_delay_is_exponential_and_capped():
    assert backoff_delay_ms(1, 1000, 10_000, 0) == 1000
    assert backoff_delay_ms(3, 1000, 10_000, 0) == 4000
    assert backoff_delay_ms(6, 1000, 10_000, 0) == 10_000
    assert 1000 <= backoff_delay_ms(1, 1000, 10_000, 500) <= 1500


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds():
    handler = Recorder(httpx.Response(503, text="down"), httpx.Response(200, json={"ok": True}))
    sleeps: list[float] = []
    client = make_client(handler, sleeps=sleeps)

    response = await client.send("GET", "/plants")
    assert response.data == {"ok": True}
    assert response.attempts == 2
    assert len(handler.requests) == 2
    assert sleeps == [0.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    handler = Recorder(httpx.Response(429))
    client = make_client(handler)
    with pytest.raises(ProviderError) as exc_info:
        await client.get("/plants")
    assert exc_info.value.category == ErrorCategory.RATE_LIMIT
    assert len(handler.requests) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("status,category", [
    (401, ErrorCategory.AUTH),
    (403, ErrorCategory.AUTH),
    (404, ErrorCategory.NOT_FOUND),
    (400, ErrorCategory.UNKNOWN),
])
async def test_terminal_statuses_are_not_retried(status, category):
    handler = Recorder(httpx.Response(status, text="nope"))
    client = make_client(handler)
    with pytest.raises(ProviderError) as exc_info:
        await client.get("/plants")
    assert exc_info.value.category == category
    assert exc_info.value.status_code == status
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_timeout_is_classified_and_retried():
    handler = Recorder(httpx.ReadTimeout("slow"))
    client = make_client(handler)
    with pytest.raises(ProviderError) as exc_info:
        await client.get("/plants")
    assert exc_info.value.category == ErrorCategory.TIMEOUT
    assert len(handler.requests) == 3


@pytest.mark.asyncio
async def test_network_error_is_provider_down():
    handler = Recorder(httpx.ConnectError("refused"))
    client = make_client(handler)
    with pytest.raises(ProviderError) as exc_info:
        await client.get("/plants", no_retry=True)
    assert exc_info.value.category == ErrorCategory.PROVIDER_DOWN
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_html_body_is_parse_error():
    handler = Recorder(httpx.Response(200, text="<!DOCTYPE html><html>login</html>"))
    client = make_client(handler)
    with pytest.raises(ProviderError) as exc_info:
        await client.get("/plants")
    assert exc_info.value.category == ErrorCategory.PARSE
    assert "HTML" in exc_info.value.message
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_login_redirect_is_auth_and_not_followed():
    handler = Recorder(httpx.Response(302, headers={"Location": "/login"}))
    client = make_client(handler)
    with pytest.raises(ProviderError) as exc_info:
        await client.get("/plants")
    assert exc_info.value.category == ErrorCategory.AUTH
    assert exc_info.value.status_code == 302
    assert "/login" in exc_info.value.message
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_empty_body_is_empty_dict():
    client = make_client(Recorder(httpx.Response(200, text="")))
    assert await client.get("/plants") == {}


@pytest.mark.asyncio
async def test_json_body_and_headers():
    handler = Recorder(httpx.Response(200, json={"ok": True}))
    client = make_client(handler)
    client.default_headers["X-App"] = "1"
    await client.post("/login", {"a": 1}, headers={"X-Extra": "2"})

    sent = handler.requests[0]
    assert sent.method == "POST"
    assert json.loads(sent.content) == {"a": 1}
    assert sent.headers["Content-Type"] == "application/json"
    assert sent.headers["X-App"] == "1"
    assert sent.headers["X-Extra"] == "2"


@pytest.mark.asyncio
async def test_form_body_and_cookies():
    handler = Recorder(httpx.Response(
        200, json={"back": {"success": True}}, headers={"Set-Cookie": "JSESSIONID=abc; Path=/"},
    ))
    client = make_client(handler)
    response = await client.send("POST", "/login.do", body={"userName": "u"}, content_type=FORM_CONTENT_TYPE)

    assert handler.requests[0].content == b"userName=u"
    assert response.cookies == {"JSESSIONID": "abc"}


@pytest.mark.asyncio
async def test_absolute_url_and_base_url_switch():
    handler = Recorder(httpx.Response(200, json={}))
    client = make_client(handler)
    client.set_base_url("https://eu.example.com")
    await client.get("/a")
    await client.get("/ignored", absolute_url="https://other.example.com/b")
    assert str(handler.requests[0].url) == "https://eu.example.com/a"
    assert str(handler.requests[1].url) == "https://other.example.com/b"
