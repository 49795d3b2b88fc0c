"""Dataclass-based configuration for the monitoring sync core.

Thresholds, timeouts and secrets are grouped in frozen dataclasses:
- Type safety (IDE autocompletion, mypy checking)
- Sensible defaults out of the box
- Immutability (frozen=True prevents accidental mutation)
- Overrides from environment variables

The batch-trigger secret is only ever read from the environment.
"""

import logging
import os
from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HttpConfig:
    """Per-request timeout and retry policy for vendor calls."""

    timeout_ms: int = 15_000
    max_retries: int = 2
    backoff_base_ms: int = 1_000
    backoff_max_ms: int = 10_000
    jitter_ms: int = 500


@dataclass(frozen=True)
class SyncConfig:
    """Sync orchestration settings."""

    sync_error_max_len: int = 500
    token_expiry_skew_seconds: int = 60
    solis_min_call_interval_s: float = 2.0
    write_audit_trail: bool = True
    write_readings: bool = True


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MonitoringConfig:
    """Complete configuration for the monitoring core.

    Usage::

        config = MonitoringConfig.from_env()
        client = ProviderHttpClient("solis_cloud", base_url, config=config.http)
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    cron_secret: str | None = None
    log_level: str = "INFO"

    @classmethod
    def default(cls) -> "MonitoringConfig":
        """Create config with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "MONITORING_") -> "MonitoringConfig":
        """Create config from environment variables.

        Example: MONITORING_HTTP_TIMEOUT_MS=20000, CRON_SECRET=...
        """
        http_overrides = {}
        timeout = os.getenv(f"{prefix}HTTP_TIMEOUT_MS")
        if timeout:
            http_overrides["timeout_ms"] = int(timeout)
        retries = os.getenv(f"{prefix}HTTP_MAX_RETRIES")
        if retries:
            http_overrides["max_retries"] = int(retries)

        sync_overrides = {}
        max_len = os.getenv(f"{prefix}SYNC_ERROR_MAX_LEN")
        if max_len:
            sync_overrides["sync_error_max_len"] = int(max_len)
        interval = os.getenv(f"{prefix}SOLIS_MIN_CALL_INTERVAL_S")
        if interval:
            sync_overrides["solis_min_call_interval_s"] = float(interval)
        audit = os.getenv(f"{prefix}WRITE_AUDIT_TRAIL")
        if audit:
            sync_overrides["write_audit_trail"] = audit.lower() == "true"
        readings = os.getenv(f"{prefix}WRITE_READINGS")
        if readings:
            sync_overrides["write_readings"] = readings.lower() == "true"

        return cls(
            http=HttpConfig(**http_overrides),
            sync=SyncConfig(**sync_overrides),
            cron_secret=os.getenv("CRON_SECRET") or None,
            log_level=os.getenv(f"{prefix}LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
