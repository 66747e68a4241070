"""
Scoring Engine - Configuration.

============================================================
WEIGHT PROFILES
============================================================
Three use-cases, three profiles:
- hazard risk (one profile per hazard), range [0, 1]
- premium multiplier, range [0.8, 2.0]
- credit score, range [0, 1000]

Profiles are validated when built; ScoringConfig.validate() adds the
cross-checks that need the whole configuration.
============================================================
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict

from core.exceptions import ConfigurationError
from data_sources.models import HazardType
from scoring_engine.composite_score import WeightProfile


logger = logging.getLogger(__name__)


# Sub-score keys each hazard scorer produces.
HAZARD_SUBSCORE_KEYS = {
    HazardType.DROUGHT: frozenset({"dry_days", "vegetation", "heat", "soil_dryness"}),
    HazardType.FLOOD: frozenset({"risk_level", "probability"}),
    HazardType.CROP_STRESS: frozenset({"vegetation", "vegetation_decline", "water_stress"}),
}

PREMIUM_SUBSCORE_KEYS = frozenset({"drought_risk", "flood_risk", "crop_stress_risk", "soil_risk"})

CREDIT_SUBSCORE_KEYS = frozenset({
    "repayment_history",
    "payout_history",
    "yield_stability",
    "tenure",
    "soil_quality",
})


def _default_hazard_profiles() -> Dict[HazardType, WeightProfile]:
    return {
        HazardType.DROUGHT: WeightProfile(
            "drought_risk",
            {"dry_days": 0.3, "vegetation": 0.3, "heat": 0.2, "soil_dryness": 0.2},
        ),
        HazardType.FLOOD: WeightProfile(
            "flood_risk",
            {"risk_level": 0.6, "probability": 0.4},
        ),
        HazardType.CROP_STRESS: WeightProfile(
            "crop_stress_risk",
            {"vegetation": 0.45, "vegetation_decline": 0.2, "water_stress": 0.35},
        ),
    }


def _default_premium_profile() -> WeightProfile:
    return WeightProfile(
        "premium",
        {"drought_risk": 0.35, "flood_risk": 0.3, "crop_stress_risk": 0.2, "soil_risk": 0.15},
        scale_min=0.8,
        scale_max=2.0,
    )


def _default_credit_profile() -> WeightProfile:
    return WeightProfile(
        "credit",
        {
            "repayment_history": 0.35,
            "payout_history": 0.15,
            "yield_stability": 0.2,
            "tenure": 0.1,
            "soil_quality": 0.2,
        },
        scale_min=0.0,
        scale_max=1000.0,
    )


def _default_credit_bands() -> Dict[str, float]:
    return {"FAIR": 500.0, "GOOD": 650.0, "EXCELLENT": 800.0}


@dataclass
class IndicatorRanges:
    """Anchors used to normalize raw indicators into [0, 1] stress sub-scores."""

    dry_days_saturation: float = 40.0
    """Dry-day count that maps to full stress."""

    vegetation_healthy: float = 0.6
    """Vegetation index at or above which vegetation stress is zero."""

    vegetation_decline_saturation: float = 0.3
    """14-day decline that maps to full stress."""

    temperature_baseline_c: float = 25.0
    temperature_extreme_c: float = 45.0

    soil_moisture_saturation: float = 0.4
    """Soil moisture at or above which dryness stress is zero."""

    def validate(self) -> None:
        for name in (
            "dry_days_saturation",
            "vegetation_healthy",
            "vegetation_decline_saturation",
            "soil_moisture_saturation",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(
                    f"{name} must be positive",
                    config_key=f"scoring.indicator_ranges.{name}",
                    actual_value=getattr(self, name),
                )
        if self.temperature_extreme_c <= self.temperature_baseline_c:
            raise ConfigurationError(
                "temperature_extreme_c must exceed temperature_baseline_c",
                config_key="scoring.indicator_ranges.temperature_extreme_c",
            )


@dataclass
class ScoringConfig:
    """All weight profiles and normalization anchors."""

    hazard_profiles: Dict[HazardType, WeightProfile] = field(default_factory=_default_hazard_profiles)
    premium_profile: WeightProfile = field(default_factory=_default_premium_profile)
    credit_profile: WeightProfile = field(default_factory=_default_credit_profile)
    indicator_ranges: IndicatorRanges = field(default_factory=IndicatorRanges)

    premium_base_rate: Decimal = Decimal("0.05")
    """Premium as a share of insured value at multiplier 1.0."""

    credit_bands: Dict[str, float] = field(default_factory=_default_credit_bands)
    """Lower bound of each rating above POOR."""

    def validate(self) -> None:
        """
        Validate cross-profile configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        for hazard in HazardType:
            profile = self.hazard_profiles.get(hazard)
            if profile is None:
                raise ConfigurationError(
                    f"No risk profile for hazard {hazard.value}",
                    config_key="scoring.hazard_profiles",
                )
            _check_keys(profile, HAZARD_SUBSCORE_KEYS[hazard])
            if (profile.scale_min, profile.scale_max) != (0.0, 1.0):
                raise ConfigurationError(
                    f"Hazard profile '{profile.name}' must use the [0, 1] scale",
                    config_key=f"scoring.{profile.name}.scale",
                )

        _check_keys(self.premium_profile, PREMIUM_SUBSCORE_KEYS)
        _check_keys(self.credit_profile, CREDIT_SUBSCORE_KEYS)

        if self.premium_base_rate <= 0:
            raise ConfigurationError(
                "premium_base_rate must be positive",
                config_key="scoring.premium_base_rate",
                actual_value=self.premium_base_rate,
            )

        bands = [self.credit_bands.get(k) for k in ("FAIR", "GOOD", "EXCELLENT")]
        if None in bands or not bands == sorted(bands):
            raise ConfigurationError(
                "credit_bands must define ascending FAIR, GOOD, EXCELLENT bounds",
                config_key="scoring.credit_bands",
                actual_value=self.credit_bands,
            )

        self.indicator_ranges.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringConfig":
        config = cls()

        for key, profile_data in (data.get("hazard_profiles") or {}).items():
            try:
                hazard = HazardType(str(key).upper())
            except ValueError as e:
                raise ConfigurationError(
                    f"Unknown hazard '{key}'",
                    config_key="scoring.hazard_profiles",
                    actual_value=key,
                ) from e
            config.hazard_profiles[hazard] = WeightProfile.from_dict(
                f"{hazard.value.lower()}_risk", profile_data
            )

        if "premium_profile" in data:
            config.premium_profile = WeightProfile.from_dict("premium", data["premium_profile"])
        if "credit_profile" in data:
            config.credit_profile = WeightProfile.from_dict("credit", data["credit_profile"])
        if "indicator_ranges" in data:
            config.indicator_ranges = IndicatorRanges(
                **{k: float(v) for k, v in data["indicator_ranges"].items()}
            )
        if "premium_base_rate" in data:
            config.premium_base_rate = Decimal(str(data["premium_base_rate"]))
        if "credit_bands" in data:
            config.credit_bands = {str(k).upper(): float(v) for k, v in data["credit_bands"].items()}

        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hazard_profiles": {h.value: p.to_dict() for h, p in self.hazard_profiles.items()},
            "premium_profile": self.premium_profile.to_dict(),
            "credit_profile": self.credit_profile.to_dict(),
            "premium_base_rate": str(self.premium_base_rate),
            "credit_bands": dict(self.credit_bands),
        }


def _check_keys(profile: WeightProfile, expected: frozenset) -> None:
    if profile.keys != expected:
        raise ConfigurationError(
            f"Profile '{profile.name}' keys {sorted(profile.keys)} "
            f"do not match sub-scores {sorted(expected)}",
            config_key=f"scoring.{profile.name}.weights",
        )
