"""
Solar monitoring integrations: the vendor-agnostic adapter framework.

- ProviderAdapter / AuthResult: the contract every vendor implements
- ProviderHttpClient: timeout, bounded retry, masked logging, safe parsing
- normalize_error / ProviderError: eight-category failure taxonomy
- DataNormalizer and canonical entities (plants, devices, alarms, metrics)
- run_health_check: OK / DEGRADED / FAIL probe

The adapter registry lives in ``core.integrations.registry`` (it imports
every provider module, so it is not re-exported here).
"""
from core.integrations.adapter_base import (
    AuthResult,
    ProviderAdapter,
)
from core.integrations.errors import (
    CredentialValidationError,
    ErrorCategory,
    ProviderError,
    UnsupportedProviderError,
    normalize_error,
)
from core.integrations.health import (
    HealthCheckResult,
    HealthStatus,
    run_health_check,
)
from core.integrations.http_client import (
    ProviderHttpClient,
    ProviderResponse,
    backoff_delay_ms,
)
from core.integrations.normalizer import (
    DailyMetrics,
    DataNormalizer,
    FieldMapping,
    NormalizedAlarm,
    NormalizedDevice,
    NormalizedDeviceGroup,
    NormalizedPlant,
    SchemaMapping,
    TRANSFORMS,
)

__all__ = [
    # Adapter
    "AuthResult",
    "ProviderAdapter",
    # Errors
    "CredentialValidationError",
    "ErrorCategory",
    "ProviderError",
    "UnsupportedProviderError",
    "normalize_error",
    # Health
    "HealthCheckResult",
    "HealthStatus",
    "run_health_check",
    # HTTP
    "ProviderHttpClient",
    "ProviderResponse",
    "backoff_delay_ms",
    # Normalizer
    "DailyMetrics",
    "DataNormalizer",
    "FieldMapping",
    "NormalizedAlarm",
    "NormalizedDevice",
    "NormalizedDeviceGroup",
    "NormalizedPlant",
    "SchemaMapping",
    "TRANSFORMS",
]
