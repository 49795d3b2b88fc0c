"""
Credential hygiene helpers.

One denylist-driven helper set applied at three boundaries:
- Logging: mask values under sensitive-looking keys and query params
- Outbound headers: masked before they are ever printed
- Persistence: strip password-equivalent keys from credential/token maps
"""
from __future__ import annotations
from typing import Any, Iterable, Mapping
import re

import httpx

SENSITIVE_KEY_PATTERN = re.compile(
    r"token|secret|password|passwd|pwd|senha|apikey|api_key|^key$|authorization|cookie|signature",
    re.IGNORECASE,
)

# Keys that must never be persisted, whatever the adapter returned.
PERSISTENCE_DENYLIST: frozenset[str] = frozenset({
    "password",
    "userPassword",
    "user_password",
    "senha",
    "passwd",
    "pwd",
    "appSecret",
    "app_secret",
})

# Session-renewal material. Stripped like the denylist unless the adapter
# declares it needs it to log in again.
REAUTH_FIELD = "reauth_secret"


def mask_value(value: str) -> str:
    """Keep the first/last four characters of long values."""
    if len(value) > 8:
        return f"{value[:4]}****{value[-4:]}"
    return "****"


def mask_mapping(
    obj: Mapping[str, Any],
    pattern: re.Pattern[str] = SENSITIVE_KEY_PATTERN,
) -> dict[str, Any]:
    """Return a copy of ``obj`` with sensitive string values masked (recursive)."""
    masked: dict[str, Any] = {}
    for key, value in obj.items():
        if isinstance(value, Mapping):
            masked[key] = mask_mapping(value, pattern)
        elif isinstance(value, str) and pattern.search(str(key)):
            masked[key] = mask_value(value)
        else:
            masked[key] = value
    return masked


def mask_url(url: str | httpx.URL, pattern: re.Pattern[str] = SENSITIVE_KEY_PATTERN) -> str:
    """Mask query parameters whose names look sensitive."""
    try:
        parsed = httpx.URL(str(url))
    except (httpx.InvalidURL, TypeError, ValueError):
        return str(url)
    params = [
        (key, mask_value(value) if pattern.search(key) else value)
        for key, value in parsed.params.multi_items()
    ]
    if not params:
        return str(parsed)
    return str(parsed.copy_with(params=params))


def strip_sensitive(
    data: Mapping[str, Any] | None,
    denylist: Iterable[str] = PERSISTENCE_DENYLIST,
    keep: Iterable[str] = (),
) -> dict[str, Any]:
    """Drop denylisted keys (and the reauth field unless kept) from a map."""
    if not data:
        return {}
    blocked = set(denylist) | {REAUTH_FIELD}
    blocked -= set(keep)
    return {k: v for k, v in data.items() if k not in blocked}


def public_fields(data: Mapping[str, Any] | None, pattern: re.Pattern[str] = SENSITIVE_KEY_PATTERN) -> dict[str, Any]:
    """Only the keys that do not look sensitive (identifiers such as appId, email)."""
    if not data:
        return {}
    return {k: v for k, v in data.items() if not pattern.search(str(k))}


def find_sensitive_keys(data: Mapping[str, Any], denylist: Iterable[str] = PERSISTENCE_DENYLIST) -> list[str]:
    """List denylisted keys present in ``data`` (used by persistence guards)."""
    blocked = set(denylist)
    return [k for k in data if k in blocked]
