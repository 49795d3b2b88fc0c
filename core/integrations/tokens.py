"""
Token expiry bookkeeping for stored integration tokens.

Tokens are persisted as plain JSON maps; ``expires_at`` is an ISO-8601
UTC timestamp. A map without ``expires_at`` never expires (signature-based
vendors).
"""
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def expires_at_from_ttl(seconds: int | float, now: datetime | None = None) -> str:
    return ((now or utcnow()) + timedelta(seconds=float(seconds))).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string or epoch seconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_expired(tokens: Mapping[str, Any] | None, skew_seconds: int = 0, now: datetime | None = None) -> bool:
    """True when ``tokens['expires_at']`` is in the past (minus ``skew_seconds``)."""
    if not tokens:
        return False
    expires_at = parse_timestamp(tokens.get("expires_at"))
    if expires_at is None:
        return False
    return (now or utcnow()) >= expires_at - timedelta(seconds=skew_seconds)
