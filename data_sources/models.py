"""
Data Source Models - Environmental snapshot structures.

Provides strict typing for environmental indicators across all provider
tiers. Snapshots are immutable once produced.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from core.clock import from_iso8601


class SourceStatus(Enum):
    """Health status of a data source."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class HazardType(Enum):
    """Insurable climate event categories."""
    DROUGHT = "DROUGHT"
    FLOOD = "FLOOD"
    CROP_STRESS = "CROP_STRESS"


class Confidence(Enum):
    """Confidence flag attached to every snapshot."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class SourceTier(Enum):
    """
    Ranked data source tiers.

    Lower rank = higher priority and higher confidence.
    """
    PRIMARY = "PRIMARY"
    FALLBACK_1 = "FALLBACK_1"
    FALLBACK_2 = "FALLBACK_2"
    SIMULATED = "SIMULATED"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @property
    def confidence(self) -> Confidence:
        if self == SourceTier.PRIMARY:
            return Confidence.HIGH
        if self == SourceTier.SIMULATED:
            return Confidence.LOW
        return Confidence.MEDIUM

    @property
    def is_binding(self) -> bool:
        """Whether data from this tier may drive a payout decision."""
        return self != SourceTier.SIMULATED

    @classmethod
    def lowest(cls, tiers: Iterable["SourceTier"]) -> "SourceTier":
        """Lowest-confidence tier of a collection."""
        return max(tiers, key=lambda t: t.rank)


_TIER_RANK = {
    SourceTier.PRIMARY: 0,
    SourceTier.FALLBACK_1: 1,
    SourceTier.FALLBACK_2: 2,
    SourceTier.SIMULATED: 99,
}


class FloodRiskLevel(Enum):
    """Qualitative flood risk category, ordered."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return ["LOW", "MEDIUM", "HIGH", "CRITICAL"].index(self.value)


@dataclass(frozen=True)
class Location:
    """Insured parcel location."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")

    def cache_key(self) -> str:
        return f"{self.latitude:.4f},{self.longitude:.4f}"

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


# Indicator fields each hazard depends on. Used to assemble snapshots
# from partial, per-hazard cache entries.
HAZARD_FIELDS: Dict[HazardType, FrozenSet[str]] = {
    HazardType.DROUGHT: frozenset({
        "consecutive_dry_days",
        "max_temperature_c",
        "soil_moisture",
        "vegetation_index",
        "vegetation_trend_14d",
    }),
    HazardType.FLOOD: frozenset({
        "flood_risk_level",
        "flood_probability_7d",
    }),
    HazardType.CROP_STRESS: frozenset({
        "vegetation_index",
        "vegetation_trend_14d",
        "water_stress_index",
    }),
}


@dataclass(frozen=True)
class EnvironmentalIndicators:
    """
    Per-hazard indicator set.

    Every field is optional: a provider that cannot observe a signal
    leaves it as None and rules treat it as not satisfied.
    """
    consecutive_dry_days: Optional[int] = None
    max_temperature_c: Optional[float] = None
    soil_moisture: Optional[float] = None
    vegetation_index: Optional[float] = None
    vegetation_trend_14d: Optional[float] = None
    water_stress_index: Optional[float] = None
    flood_risk_level: Optional[FloodRiskLevel] = None
    flood_probability_7d: Optional[float] = None
    soil_quality: Dict[str, float] = field(default_factory=dict)

    def restricted_to(self, hazards: Iterable[HazardType]) -> "EnvironmentalIndicators":
        """Copy keeping only the fields the given hazards depend on."""
        keep = set()
        for hazard in hazards:
            keep |= HAZARD_FIELDS[hazard]
        cleared = {
            f.name: None
            for f in fields(self)
            if f.name != "soil_quality" and f.name not in keep
        }
        return replace(self, **cleared)

    @classmethod
    def merge(cls, parts: List["EnvironmentalIndicators"]) -> "EnvironmentalIndicators":
        """First non-None value wins per field; callers order parts by confidence."""
        values: Dict[str, Any] = {}
        soil: Dict[str, float] = {}
        for part in parts:
            for f in fields(part):
                if f.name == "soil_quality":
                    if not soil and part.soil_quality:
                        soil = dict(part.soil_quality)
                    continue
                value = getattr(part, f.name)
                if value is not None and values.get(f.name) is None:
                    values[f.name] = value
        return cls(soil_quality=soil, **values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consecutive_dry_days": self.consecutive_dry_days,
            "max_temperature_c": self.max_temperature_c,
            "soil_moisture": self.soil_moisture,
            "vegetation_index": self.vegetation_index,
            "vegetation_trend_14d": self.vegetation_trend_14d,
            "water_stress_index": self.water_stress_index,
            "flood_risk_level": self.flood_risk_level.value if self.flood_risk_level else None,
            "flood_probability_7d": self.flood_probability_7d,
            "soil_quality": dict(self.soil_quality),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnvironmentalIndicators":
        """
        Build from a normalized payload.

        Raises:
            ValueError / TypeError: On malformed values
        """
        def _float(key: str) -> Optional[float]:
            value = data.get(key)
            return None if value is None else float(value)

        dry_days = data.get("consecutive_dry_days")
        flood_level = data.get("flood_risk_level")
        soil = data.get("soil_quality") or {}
        if not isinstance(soil, dict):
            raise TypeError("soil_quality must be a mapping")

        return cls(
            consecutive_dry_days=None if dry_days is None else int(dry_days),
            max_temperature_c=_float("max_temperature_c"),
            soil_moisture=_float("soil_moisture"),
            vegetation_index=_float("vegetation_index"),
            vegetation_trend_14d=_float("vegetation_trend_14d"),
            water_stress_index=_float("water_stress_index"),
            flood_risk_level=FloodRiskLevel(str(flood_level).upper()) if flood_level else None,
            flood_probability_7d=_float("flood_probability_7d"),
            soil_quality={str(k): float(v) for k, v in soil.items()},
        )


@dataclass(frozen=True)
class EnvironmentalSnapshot:
    """
    One fetched set of environmental indicators for a location and time.

    `tier` is the lowest-confidence tier any part of the snapshot came
    from; `hazard_tiers` records the tier per hazard and
    `hazard_indicators` the indicators each hazard's own part supplied.
    Trigger rules look at one hazard at a time through `for_hazard`.
    """
    location: Location
    timestamp: datetime
    indicators: EnvironmentalIndicators
    tier: SourceTier
    source_name: str
    hazards: FrozenSet[HazardType] = frozenset()
    hazard_tiers: Dict[HazardType, SourceTier] = field(default_factory=dict)
    hazard_indicators: Dict[HazardType, EnvironmentalIndicators] = field(default_factory=dict)

    @property
    def confidence(self) -> Confidence:
        return self.tier.confidence

    @property
    def is_binding(self) -> bool:
        return self.tier.is_binding

    def tier_for(self, hazard: HazardType) -> SourceTier:
        return self.hazard_tiers.get(hazard, self.tier)

    def indicators_for(self, hazard: HazardType) -> EnvironmentalIndicators:
        own = self.hazard_indicators.get(hazard)
        return own if own is not None else self.indicators.restricted_to([hazard])

    def for_hazard(self, hazard: HazardType) -> "EnvironmentalSnapshot":
        """Single-hazard view with that hazard's own tier and indicators."""
        tier = self.tier_for(hazard)
        return replace(
            self,
            indicators=self.indicators_for(hazard),
            tier=tier,
            hazards=frozenset({hazard}),
            hazard_tiers={hazard: tier},
            hazard_indicators={},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "indicators": self.indicators.to_dict(),
            "tier": self.tier.value,
            "confidence": self.confidence.value,
            "source_name": self.source_name,
            "hazards": sorted(h.value for h in self.hazards),
            "hazard_tiers": {h.value: t.value for h, t in self.hazard_tiers.items()},
            "hazard_indicators": {h.value: i.to_dict() for h, i in self.hazard_indicators.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnvironmentalSnapshot":
        return cls(
            location=Location(**data["location"]),
            timestamp=from_iso8601(data["timestamp"]),
            indicators=EnvironmentalIndicators.from_dict(data["indicators"]),
            tier=SourceTier(data["tier"]),
            source_name=data["source_name"],
            hazards=frozenset(HazardType(h) for h in data.get("hazards", [])),
            hazard_tiers={
                HazardType(h): SourceTier(t)
                for h, t in data.get("hazard_tiers", {}).items()
            },
            hazard_indicators={
                HazardType(h): EnvironmentalIndicators.from_dict(i)
                for h, i in data.get("hazard_indicators", {}).items()
            },
        )


@dataclass
class SourceHealth:
    """Health status of a provider."""
    status: SourceStatus
    last_check: datetime
    consecutive_failures: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    uptime_percentage: float = 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "consecutive_failures": self.consecutive_failures,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "uptime_percentage": round(self.uptime_percentage, 2),
        }


@dataclass(frozen=True)
class SourceIncident:
    """A recorded provider failure."""
    source_name: str
    tier: SourceTier
    incident_type: str
    timestamp: datetime
    error_message: str
    location: Optional[str] = None


@dataclass(frozen=True)
class GatewayResult:
    """Snapshot plus the tiers consulted to produce it."""
    snapshot: EnvironmentalSnapshot
    tier: SourceTier
    attempted_tiers: List[SourceTier] = field(default_factory=list)
    cache_hits: FrozenSet[HazardType] = frozenset()
