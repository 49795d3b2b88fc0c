"""
Resilient HTTP client shared by every provider adapter.

One request engine for all vendor calls:
- Per-attempt timeout (default 15s), classified as TIMEOUT
- Bounded exponential backoff retry on 429 / 5xx / network / timeout
- Status-based terminal classification (3xx login redirects, 401/403, 404,
  other 4xx)
- Safe response parsing (empty body, HTML auth redirects, bad JSON)
- Logging with credentials masked
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode
import asyncio
import json
import logging
import random
import time

import httpx

from core.config import HttpConfig
from core.integrations.errors import ErrorCategory, ProviderError
from core.integrations.masking import mask_mapping, mask_url

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass
class ProviderResponse:
    """Standardized inbound response."""
    status_code: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    latency_ms: float = 0.0
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def backoff_delay_ms(
    attempt: int,
    base_ms: int = 1_000,
    max_ms: int = 10_000,
    jitter_ms: int = 500,
) -> float:
    """``min(base * 2^(attempt-1), max) + random(0..jitter)`` in milliseconds."""
    return min(base_ms * (2 ** (attempt - 1)), max_ms) + random.uniform(0, jitter_ms)


class ProviderHttpClient:
    """
    Request engine for a single provider.

    ``base_url`` is mutable so adapters can switch region after discovery.
    ``transport`` is passed straight to ``httpx.AsyncClient`` (tests inject
    ``httpx.MockTransport``). ``min_backoff_ms`` is a floor under every retry
    delay for vendors that enforce call spacing.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        config: HttpConfig | None = None,
        default_headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        min_backoff_ms: float = 0,
    ):
        self.provider = provider
        self.base_url = base_url
        self.config = config or HttpConfig()
        self.default_headers = dict(default_headers or {})
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self.min_backoff_ms = min_backoff_ms

    def set_base_url(self, url: str) -> None:
        self.base_url = url

    # --- Public API ---

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        absolute_url: str | None = None,
        content_type: str = JSON_CONTENT_TYPE,
        timeout_ms: int | None = None,
        no_retry: bool = False,
    ) -> Any:
        """Execute a request and return the parsed JSON body."""
        response = await self.send(
            method,
            path,
            body=body,
            params=params,
            headers=headers,
            absolute_url=absolute_url,
            content_type=content_type,
            timeout_ms=timeout_ms,
            no_retry=no_retry,
        )
        return response.data

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, body: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, body=body, **kwargs)

    async def send(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        absolute_url: str | None = None,
        content_type: str = JSON_CONTENT_TYPE,
        timeout_ms: int | None = None,
        no_retry: bool = False,
    ) -> ProviderResponse:
        """
        Execute a request through the full pipeline and return the envelope
        (parsed data plus headers and cookies). Raises ProviderError.
        """
        method = method.upper()
        url = absolute_url or f"{self.base_url}{path}"
        request_headers = {**self.default_headers, **(headers or {})}
        content = self._serialize(body, content_type)
        if content is not None and method != "GET":
            request_headers["Content-Type"] = content_type

        timeout_s = (timeout_ms or self.config.timeout_ms) / 1000
        max_attempts = 1 if no_retry else self.config.max_retries + 1
        last_error: ProviderError | None = None

        logger.debug(
            "[%s] %s %s headers=%s",
            self.provider, method, mask_url(url), mask_mapping(request_headers),
        )

        async with httpx.AsyncClient(transport=self._transport, timeout=timeout_s, follow_redirects=False) as client:
            for attempt in range(1, max_attempts + 1):
                start = time.monotonic()
                try:
                    resp = await client.request(
                        method,
                        url,
                        params=params or None,
                        content=content,
                        headers=request_headers,
                    )
                except httpx.TimeoutException:
                    last_error = self._error(
                        ErrorCategory.TIMEOUT, None,
                        f"Request timed out after {int(timeout_s * 1000)}ms",
                    )
                except httpx.TransportError as exc:
                    last_error = self._error(
                        ErrorCategory.PROVIDER_DOWN, None,
                        f"Network error: {exc or type(exc).__name__}",
                    )
                except httpx.HTTPError as exc:
                    raise self._error(ErrorCategory.UNKNOWN, None, str(exc) or type(exc).__name__)
                else:
                    latency = (time.monotonic() - start) * 1000
                    logger.info(
                        "[%s] %s %s -> %s (%dms, attempt %d)",
                        self.provider, method, mask_url(resp.request.url),
                        resp.status_code, latency, attempt,
                    )
                    try:
                        data = self._check_and_parse(resp, path)
                    except ProviderError as exc:
                        last_error = exc
                    else:
                        return ProviderResponse(
                            status_code=resp.status_code,
                            data=data,
                            headers=dict(resp.headers),
                            cookies=dict(resp.cookies),
                            latency_ms=latency,
                            attempts=attempt,
                        )

                if not last_error.retryable or attempt >= max_attempts:
                    raise last_error
                await self._backoff(attempt)

        # Unreachable: the loop either returns or raises.
        raise last_error or self._error(ErrorCategory.UNKNOWN, None, "All retries exhausted")

    # --- Internal ---

    @staticmethod
    def _serialize(body: Any, content_type: str) -> str | bytes | None:
        if body is None:
            return None
        if isinstance(body, (str, bytes)):
            return body
        if "json" in content_type:
            return json.dumps(body, separators=(",", ":"))
        if content_type.startswith(FORM_CONTENT_TYPE) and isinstance(body, dict):
            return urlencode(body)
        return str(body)

    def _check_and_parse(self, resp: httpx.Response, path: str) -> Any:
        status = resp.status_code
        if status == 429:
            raise self._error(ErrorCategory.RATE_LIMIT, status, "Rate limit exceeded")
        if status >= 500:
            raise self._error(ErrorCategory.PROVIDER_DOWN, status, f"Server error: {resp.text[:200]}")
        if 300 <= status < 400:
            # Vendors answer an expired session with a redirect to their login page.
            location = resp.headers.get("location", "")
            raise self._error(ErrorCategory.AUTH, status, f"Redirected to {location or 'login'} ({status})")
        if status in (401, 403):
            raise self._error(ErrorCategory.AUTH, status, f"Auth failed ({status}): {resp.text[:200]}")
        if status == 404:
            raise self._error(ErrorCategory.NOT_FOUND, status, f"Not found: {path}")
        if 400 <= status < 500:
            raise self._error(
                ErrorCategory.UNKNOWN, status, f"Client error {status}: {resp.text[:200]}", retryable=False,
            )
        return self.parse_body(resp.text, status)

    def parse_body(self, text: str, status: int | None = None) -> Any:
        """Parse a response body; empty means ``{}``."""
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except ValueError:
            if text.lstrip().startswith("<"):
                raise self._error(
                    ErrorCategory.PARSE, status,
                    f"HTML response (likely auth redirect): {text.strip()[:100]}",
                )
            raise self._error(ErrorCategory.PARSE, status, f"Invalid JSON: {text[:200]}")

    def _error(
        self,
        category: ErrorCategory,
        status_code: int | None,
        message: str,
        retryable: bool | None = None,
    ) -> ProviderError:
        return ProviderError(
            category=category,
            provider=self.provider,
            message=message,
            status_code=status_code,
            retryable=retryable,
        )

    async def _backoff(self, attempt: int) -> None:
        delay_ms = max(
            backoff_delay_ms(
                attempt,
                self.config.backoff_base_ms,
                self.config.backoff_max_ms,
                self.config.jitter_ms,
            ),
            self.min_backoff_ms,
        )
        logger.info("[%s] Retry backoff: %dms", self.provider, delay_ms)
        await self._sleep(delay_ms / 1000)
