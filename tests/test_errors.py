"""Test error normalization."""
import httpx
import pytest

from core.integrations.errors import (
    CredentialValidationError,
    ErrorCategory,
    ProviderError,
    UnsupportedProviderError,
    category_for_status,
    normalize_error,
)


@pytest.mark.parametrize("status,expected", [
    (401, ErrorCategory.AUTH),
    (403, ErrorCategory.AUTH),
    (404, ErrorCategory.NOT_FOUND),
    (429, ErrorCategory.RATE_LIMIT),
    (500, ErrorCategory.PROVIDER_DOWN),
    (503, ErrorCategory.PROVIDER_DOWN),
])
def test_status_decides_category(status, expected):
    assert category_for_status(status) == expected


def test_status_400_falls_through_to_message():
    assert category_for_status(400) is None
    err = normalize_error({"status": 400, "message": "Invalid token"}, "solarman_business")
    assert err.category == ErrorCategory.AUTH
    assert err.status_code == 400


@pytest.mark.parametrize("message,expected", [
    ("Invalid token", ErrorCategory.AUTH),
    ("Login failed for user", ErrorCategory.AUTH),
    ("Session expired, please login", ErrorCategory.AUTH),
    ("Rate limit exceeded", ErrorCategory.RATE_LIMIT),
    ("Request frequency too high", ErrorCategory.RATE_LIMIT),
    ("Request timed out after 15000ms", ErrorCategory.TIMEOUT),
    ("Access denied for this resource", ErrorCategory.PERMISSION),
    ("Plant not found", ErrorCategory.NOT_FOUND),
    ("Unexpected token < in JSON at position 0", ErrorCategory.PARSE),
    ("getaddrinfo ENOTFOUND api.example.com", ErrorCategory.PROVIDER_DOWN),
    ("something odd happened", ErrorCategory.UNKNOWN),
])
def test_message_patterns(message, expected):
    assert normalize_error(message, "solis_cloud").category == expected


def test_explicit_status_overrides_message():
    err = normalize_error("Invalid token", "fox_ess", status_code=503)
    assert err.category == ErrorCategory.PROVIDER_DOWN
    assert err.retryable is True


def test_status_read_from_exception_response():
    request = httpx.Request("GET", "https://api.example.com/x")
    response = httpx.Response(429, request=request)
    exc = httpx.HTTPStatusError("boom", request=request, response=response)
    err = normalize_error(exc, "growatt")
    assert err.category == ErrorCategory.RATE_LIMIT
    assert err.status_code == 429


def test_provider_error_passes_through_unchanged():
    original = ProviderError(ErrorCategory.PERMISSION, "enphase", "nope")
    assert normalize_error(original, "other") is original


def test_dict_message_fields():
    err = normalize_error({"msg": "wrong password"}, "growatt", provider_error_code="502")
    assert err.category == ErrorCategory.AUTH
    assert err.message == "wrong password"
    assert err.provider_error_code == "502"


def test_retryable_only_for_transient_categories():
    assert ProviderError(ErrorCategory.RATE_LIMIT, "p", "m").retryable
    assert ProviderError(ErrorCategory.TIMEOUT, "p", "m").retryable
    assert not ProviderError(ErrorCategory.AUTH, "p", "m").retryable
    assert not ProviderError(ErrorCategory.PARSE, "p", "m").retryable


def test_provider_error_is_read_only():
    err = ProviderError(ErrorCategory.AUTH, "p", "m", status_code=401)
    with pytest.raises(AttributeError):
        err.category = ErrorCategory.UNKNOWN
    assert err.to_dict() == {
        "category": "AUTH",
        "provider": "p",
        "status_code": 401,
        "provider_error_code": None,
        "message": "m",
        "retryable": False,
    }


def test_credential_and_provider_lookup_errors():
    assert str(CredentialValidationError("apiId", "KeyID")) == "Missing: apiId (KeyID)"
    assert isinstance(UnsupportedProviderError("x"), LookupError)
