"""
Canonical monitoring schemas and vendor -> canonical field mapping.

Every adapter produces the same small set of entities:
- NormalizedPlant: one physical installation
- NormalizedDevice / NormalizedDeviceGroup: inverters, loggers, meters per station
- NormalizedAlarm: vendor alarm/event with 3-level severity
- DailyMetrics: today's power/energy snapshot for one plant

Plant field mappings are declared per adapter (dot-notation paths with
fallbacks) and applied by DataNormalizer.
"""
from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

class PlantStatus(str, Enum):
    NORMAL = "normal"
    OFFLINE = "offline"
    ALARM = "alarm"
    NO_COMMUNICATION = "no_communication"
    UNKNOWN = "unknown"


class AlarmSeverity(str, Enum):
    INFO = "info"
    WARN = "warn"
    CRITICAL = "critical"


# Metrics metadata markers
REASON_KEY = "reason"
BLOCKED_KEY = "blocked"


# ---------------------------------------------------------------------------
# Canonical schemas
# ---------------------------------------------------------------------------

@dataclass
class NormalizedPlant:
    """Vendor-agnostic plant (station) representation."""
    external_id: str
    name: str
    capacity_kw: float | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    status: str = PlantStatus.UNKNOWN.value
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizedDevice:
    """Vendor-agnostic device (inverter, logger, meter...)."""
    provider_device_id: str
    type: str
    model: str | None = None
    serial: str | None = None
    status: str = "unknown"
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizedDeviceGroup:
    """Devices of one station, keyed by the provider-side station id."""
    station_id: str
    devices: list[NormalizedDevice] = field(default_factory=list)


@dataclass
class NormalizedAlarm:
    """Vendor-agnostic alarm. Open while ``ends_at`` is absent."""
    provider_event_id: str
    provider_plant_id: str
    severity: str
    type: str
    title: str
    starts_at: str
    provider_device_id: str | None = None
    message: str | None = None
    ends_at: str | None = None

    @property
    def is_open(self) -> bool:
        return not self.ends_at

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["is_open"] = self.is_open
        return data


@dataclass
class DailyMetrics:
    """Daily snapshot for one plant. All-null with a ``reason`` when the vendor had no data."""
    power_kw: float | None = None
    energy_kwh: float | None = None
    total_energy_kwh: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def no_data(cls, reason: str = "no_data", **extra: Any) -> "DailyMetrics":
        return cls(metadata={REASON_KEY: reason, **extra})

    @classmethod
    def blocked(cls, reason: str) -> "DailyMetrics":
        """Marker for vendors whose account scope does not allow metrics."""
        return cls(metadata={REASON_KEY: reason, BLOCKED_KEY: True})

    @property
    def is_blocked(self) -> bool:
        return bool(self.metadata.get(BLOCKED_KEY))

    @property
    def has_data(self) -> bool:
        return any(v is not None for v in (self.power_kw, self.energy_kwh, self.total_energy_kwh))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def to_float(value: Any) -> float | None:
    """Lenient numeric conversion; None/'' stay None."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def first_present(data: Mapping[str, Any] | None, *keys: str) -> Any:
    """First non-None value among ``keys`` (dot-notation allowed)."""
    if not data:
        return None
    for key in keys:
        value = get_nested(data, key)
        if value is not None:
            return value
    return None


def get_nested(data: Mapping[str, Any], path: str) -> Any:
    """Access nested dict values via dot notation (e.g. 'page.records')."""
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
        if current is None:
            return None
    return current


def ms_to_iso(value: Any) -> str | None:
    """Epoch milliseconds -> ISO-8601 UTC."""
    number = to_float(value)
    if number is None:
        return None
    return datetime.fromtimestamp(number / 1000, tz=timezone.utc).isoformat()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def map_status(raw: Any, mapping: Mapping[str, str], default: str = PlantStatus.UNKNOWN.value) -> str:
    return mapping.get(str(raw), default)


# ---------------------------------------------------------------------------
# Field mapping
# ---------------------------------------------------------------------------

TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "str": lambda v: str(v) if v is not None else "",
    "strip": lambda v: str(v).strip() if v else "",
    "optional_str": to_str,
    "float": to_float,
    "kw_from_w": lambda v: to_float(v) / 1000 if to_float(v) is not None else None,
    "ms_to_iso": ms_to_iso,
}


@dataclass
class FieldMapping:
    """Maps source vendor field(s) to a canonical target field."""
    source_field: str | tuple[str, ...]  # Dot-notation path, or fallbacks in order
    target_field: str
    transform: str | None = None
    default: Any = None


@dataclass
class SchemaMapping:
    """Complete mapping config for an adapter + entity type."""
    adapter_name: str
    entity_type: str  # plant
    mappings: list[FieldMapping] = field(default_factory=list)


class DataNormalizer:
    """Normalizes vendor records to canonical schemas using registered mappings."""

    def __init__(self):
        self._mappings: dict[str, SchemaMapping] = {}  # key: {adapter}:{entity_type}

    def register_mapping(self, mapping: SchemaMapping) -> None:
        key = f"{mapping.adapter_name}:{mapping.entity_type}"
        self._mappings[key] = mapping

    def get_mapping(self, adapter_name: str, entity_type: str) -> SchemaMapping | None:
        return self._mappings.get(f"{adapter_name}:{entity_type}")

    def normalize(self, adapter_name: str, entity_type: str, raw: Mapping[str, Any]) -> dict[str, Any]:
        """Apply the registered mapping. Unmapped adapters yield only ``metadata``."""
        result: dict[str, Any] = {"metadata": dict(raw)}
        mapping = self.get_mapping(adapter_name, entity_type)
        if not mapping:
            return result

        for fm in mapping.mappings:
            sources = fm.source_field if isinstance(fm.source_field, tuple) else (fm.source_field,)
            value = first_present(raw, *sources)
            if value is None:
                value = fm.default

            if fm.transform and fm.transform in TRANSFORMS:
                try:
                    value = TRANSFORMS[fm.transform](value)
                except (ValueError, TypeError, KeyError):
                    value = fm.default

            result[fm.target_field] = value

        return result

    def normalize_plant(
        self,
        adapter_name: str,
        raw: Mapping[str, Any],
        status: str = PlantStatus.UNKNOWN.value,
    ) -> NormalizedPlant:
        """Shorthand: normalize and return a NormalizedPlant."""
        data = self.normalize(adapter_name, "plant", raw)
        data.setdefault("external_id", "")
        data.setdefault("name", "")
        data["status"] = status
        return NormalizedPlant(**{k: v for k, v in data.items() if k in NormalizedPlant.__dataclass_fields__})


# Shared instance; provider modules register their plant mappings at import.
default_normalizer = DataNormalizer()
