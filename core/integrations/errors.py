"""
Provider error normalization.

Every failure that crosses an adapter boundary (exception, vendor payload,
bare string, HTTP status) is reduced to a ProviderError carrying one of
eight canonical categories. Classification precedence:

1. Explicit / embedded HTTP status code
2. Regex patterns on the message, in a fixed order
3. UNKNOWN
"""
from __future__ import annotations
from enum import Enum
from typing import Any
import re


class ErrorCategory(str, Enum):
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    NOT_FOUND = "NOT_FOUND"
    PERMISSION = "PERMISSION"
    PARSE = "PARSE"
    PROVIDER_DOWN = "PROVIDER_DOWN"
    UNKNOWN = "UNKNOWN"


RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.TIMEOUT,
    ErrorCategory.PROVIDER_DOWN,
})


class ProviderError(Exception):
    """Normalized, read-only provider failure."""

    def __init__(
        self,
        category: ErrorCategory | str,
        provider: str,
        message: str,
        status_code: int | None = None,
        provider_error_code: str | None = None,
        retryable: bool | None = None,
    ):
        category = ErrorCategory(category)
        super().__init__(message)
        self._category = category
        self._provider = provider
        self._message = message
        self._status_code = status_code
        self._provider_error_code = provider_error_code
        self._retryable = category in RETRYABLE_CATEGORIES if retryable is None else retryable

    @property
    def category(self) -> ErrorCategory:
        return self._category

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def message(self) -> str:
        return self._message

    @property
    def status_code(self) -> int | None:
        return self._status_code

    @property
    def provider_error_code(self) -> str | None:
        return self._provider_error_code

    @property
    def retryable(self) -> bool:
        return self._retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self._category.value,
            "provider": self._provider,
            "status_code": self._status_code,
            "provider_error_code": self._provider_error_code,
            "message": self._message,
            "retryable": self._retryable,
        }

    def __repr__(self) -> str:
        return (
            f"ProviderError({self._category.value}, provider={self._provider!r}, "
            f"status={self._status_code}, message={self._message!r})"
        )


class CredentialValidationError(ValueError):
    """A required credential field is missing. Raised before any network I/O."""

    def __init__(self, field_name: str, label: str | None = None):
        self.field_name = field_name
        super().__init__(f"Missing: {field_name}" + (f" ({label})" if label else ""))


class UnsupportedProviderError(LookupError):
    """Neither a canonical adapter nor a legacy implementation exists."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported provider: {provider}")


# ---------------------------------------------------------------------------
# Classification tables
# ---------------------------------------------------------------------------

# Ordered: first match wins.
_MESSAGE_PATTERNS: list[tuple[ErrorCategory, re.Pattern[str]]] = [
    (ErrorCategory.AUTH, re.compile(
        r"unauthori[sz]ed|invalid[\s_-]*(credential|token|password|sign|key|user|account|session)"
        r"|wrong[\s_-]*(password|sign|credential)|incorrect[\s_-]*(password|credential)"
        r"|expired|not[\s_-]*exist|login[\s_-]*fail|authentication[\s_-]*fail|auth[\s_-]*fail"
        r"|no cookies",
        re.IGNORECASE,
    )),
    (ErrorCategory.RATE_LIMIT, re.compile(
        r"rate[\s_-]*limit|too many requests|too frequent|frequency|quota|throttl",
        re.IGNORECASE,
    )),
    (ErrorCategory.TIMEOUT, re.compile(
        r"time[\s_-]*out|timed out|etimedout|aborted",
        re.IGNORECASE,
    )),
    (ErrorCategory.PERMISSION, re.compile(
        r"permission|forbidden|access denied|not allowed|no privilege|insufficient scope|not entitled",
        re.IGNORECASE,
    )),
    (ErrorCategory.NOT_FOUND, re.compile(
        r"not found|no such|does not contain",
        re.IGNORECASE,
    )),
    (ErrorCategory.PARSE, re.compile(
        r"json|unexpected token|html|parse|<!doctype|malformed",
        re.IGNORECASE,
    )),
    (ErrorCategory.PROVIDER_DOWN, re.compile(
        r"network|dns|getaddrinfo|econnrefused|econnreset|connection (refused|reset|error)"
        r"|connect(ion)? ?error|tls|ssl|certificate|service unavailable|bad gateway",
        re.IGNORECASE,
    )),
]

_MESSAGE_FIELDS = ("message", "msg", "error", "error_msg")
_STATUS_FIELDS = ("status", "statusCode", "status_code")


def category_for_status(status_code: int | None) -> ErrorCategory | None:
    """Map an HTTP status to a category, or None if it does not decide one."""
    if status_code is None:
        return None
    if status_code in (401, 403):
        return ErrorCategory.AUTH
    if status_code == 404:
        return ErrorCategory.NOT_FOUND
    if status_code == 429:
        return ErrorCategory.RATE_LIMIT
    if status_code >= 500:
        return ErrorCategory.PROVIDER_DOWN
    return None


def category_for_message(message: str) -> ErrorCategory:
    for category, pattern in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return category
    return ErrorCategory.UNKNOWN


def _extract_message(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        for key in _MESSAGE_FIELDS:
            value = raw.get(key)
            if value:
                return str(value)
        return str(raw)
    if isinstance(raw, BaseException):
        return str(raw) or type(raw).__name__
    return str(raw)


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _extract_status(raw: Any) -> int | None:
    if isinstance(raw, dict):
        for key in _STATUS_FIELDS:
            if key in raw:
                return _as_int(raw[key])
        return None
    for attr in ("status_code", "status"):
        value = getattr(raw, attr, None)
        if value is not None:
            return _as_int(value)
    response = getattr(raw, "response", None)
    if response is not None:
        return _as_int(getattr(response, "status_code", None))
    return None


def normalize_error(
    raw: Any,
    provider: str,
    status_code: int | None = None,
    provider_error_code: str | None = None,
) -> ProviderError:
    """
    Classify any raw failure into a ProviderError.

    Already-normalized errors are returned unchanged. An explicit
    ``status_code`` overrides anything found on the raw value.
    """
    if isinstance(raw, ProviderError):
        return raw

    message = _extract_message(raw)
    status = status_code if status_code is not None else _extract_status(raw)

    category = category_for_status(status) or category_for_message(message)
    return ProviderError(
        category=category,
        provider=provider,
        message=message,
        status_code=status,
        provider_error_code=provider_error_code,
    )
