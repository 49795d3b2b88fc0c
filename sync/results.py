"""
Sync modes and result envelopes.

Per-entity work returns an EntityResult instead of raising across the
sync loop; the orchestrator collects failures into the SyncResult.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from core.integrations.errors import ProviderError, normalize_error

T = TypeVar("T")


class SyncMode(str, Enum):
    DISCOVER = "discover"  # list plants, persist nothing
    PLANTS = "plants"
    METRICS = "metrics"
    FULL = "full"

    @property
    def syncs_plants(self) -> bool:
        return self in (SyncMode.PLANTS, SyncMode.FULL)

    @property
    def syncs_metrics(self) -> bool:
        return self in (SyncMode.METRICS, SyncMode.FULL)


@dataclass
class EntityResult(Generic[T]):
    """Outcome of one entity operation (a plant upsert, a metrics fetch...)."""
    entity: str
    value: T | None = None
    error: ProviderError | None = None

    @classmethod
    def ok(cls, entity: str, value: T | None = None) -> "EntityResult[T]":
        return cls(entity=entity, value=value)

    @classmethod
    def fail(cls, entity: str, error: Exception, provider: str) -> "EntityResult[T]":
        return cls(entity=entity, error=normalize_error(error, provider))

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        if self.error is None:
            return f"{self.entity}: ok"
        return f"{self.entity}: {self.error.message}"


@dataclass
class SyncResult:
    """What one sync invocation did."""
    provider: str
    mode: SyncMode
    plants_upserted: int = 0
    metrics_upserted: int = 0
    devices_upserted: int = 0
    alarms_upserted: int = 0
    status: str | None = None
    # Stored tokens had expired and could not be refreshed; nothing else ran.
    token_expired: bool = False
    discovered_plants: list[dict[str, Any]] | None = None
    failures: list[EntityResult[Any]] = field(default_factory=list)

    def record(self, result: EntityResult[Any]) -> bool:
        """Keep a failed result; return whether the operation succeeded."""
        if not result.is_ok:
            self.failures.append(result)
        return result.is_ok

    @property
    def errors(self) -> list[str]:
        return [f.describe() for f in self.failures]

    @property
    def error_categories(self) -> list[str]:
        return [f.error.category.value for f in self.failures if f.error is not None]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "provider": self.provider,
            "mode": self.mode.value,
            "status": self.status,
            "plants_upserted": self.plants_upserted,
            "metrics_upserted": self.metrics_upserted,
            "devices_upserted": self.devices_upserted,
            "alarms_upserted": self.alarms_upserted,
            "errors": self.errors,
            "error_categories": self.error_categories,
        }
        if self.discovered_plants is not None:
            data["discovered_plants"] = self.discovered_plants
        return data
