"""
Trigger Engine - Configuration.

============================================================
HAZARD THRESHOLDS
============================================================
Every threshold used by the hazard rules lives here. Rule code
reads thresholds from these objects only.

- Drought: at-least-k-of-4 indicators
- Flood: CRITICAL, or HIGH with probability over a band threshold
- Crop stress: persistence over a trailing window
============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict

from core.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


@dataclass
class DroughtThresholds:
    """Drought fires when at least `min_indicators` of 4 indicators hold."""

    dry_days_threshold: int = 21
    """Consecutive dry days must exceed this."""

    vegetation_critical: float = 0.25
    """Vegetation index below this is critical."""

    vegetation_decline_critical: float = -0.15
    """14-day vegetation trend below this is a critical decline."""

    max_temperature_ceiling_c: float = 35.0
    """Max temperature must exceed this."""

    soil_moisture_floor: float = 0.2
    """Soil moisture must be below this."""

    min_indicators: int = 3

    def validate(self) -> None:
        if not 1 <= self.min_indicators <= 4:
            raise ConfigurationError(
                "min_indicators must be between 1 and 4",
                config_key="triggers.drought.min_indicators",
                actual_value=self.min_indicators,
            )
        if self.dry_days_threshold < 0:
            raise ConfigurationError(
                "dry_days_threshold must be non-negative",
                config_key="triggers.drought.dry_days_threshold",
                actual_value=self.dry_days_threshold,
            )
        if not 0.0 < self.vegetation_critical < 1.0:
            raise ConfigurationError(
                "vegetation_critical must be in (0, 1)",
                config_key="triggers.drought.vegetation_critical",
                actual_value=self.vegetation_critical,
            )
        if self.vegetation_decline_critical >= 0:
            raise ConfigurationError(
                "vegetation_decline_critical must be negative",
                config_key="triggers.drought.vegetation_decline_critical",
                actual_value=self.vegetation_decline_critical,
            )
        if not 0.0 < self.soil_moisture_floor < 1.0:
            raise ConfigurationError(
                "soil_moisture_floor must be in (0, 1)",
                config_key="triggers.drought.soil_moisture_floor",
                actual_value=self.soil_moisture_floor,
            )


@dataclass
class FloodThresholds:
    """Flood fires on CRITICAL, or on HIGH with probability > threshold."""

    probability_threshold: float = 0.7

    band_overrides: Dict[str, float] = field(default_factory=dict)
    """Probability threshold per policy severity band."""

    def threshold_for(self, severity_band: str) -> float:
        return self.band_overrides.get(severity_band, self.probability_threshold)

    def validate(self) -> None:
        values = {"default": self.probability_threshold, **self.band_overrides}
        for band, value in values.items():
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(
                    f"Flood probability threshold for '{band}' must be in [0, 1]",
                    config_key=f"triggers.flood.{band}",
                    actual_value=value,
                )


@dataclass
class CropStressThresholds:
    """Crop stress requires persistence, not a single reading."""

    vegetation_floor: float = 0.3
    window_days: int = 14
    water_stress_threshold: float = 0.6

    def validate(self) -> None:
        if self.window_days < 1:
            raise ConfigurationError(
                "window_days must be at least 1",
                config_key="triggers.crop_stress.window_days",
                actual_value=self.window_days,
            )
        if not 0.0 < self.vegetation_floor < 1.0:
            raise ConfigurationError(
                "vegetation_floor must be in (0, 1)",
                config_key="triggers.crop_stress.vegetation_floor",
                actual_value=self.vegetation_floor,
            )
        if not 0.0 <= self.water_stress_threshold <= 1.0:
            raise ConfigurationError(
                "water_stress_threshold must be in [0, 1]",
                config_key="triggers.crop_stress.water_stress_threshold",
                actual_value=self.water_stress_threshold,
            )


@dataclass
class TriggerConfig:
    """Thresholds for all hazard rules."""

    drought: DroughtThresholds = field(default_factory=DroughtThresholds)
    flood: FloodThresholds = field(default_factory=FloodThresholds)
    crop_stress: CropStressThresholds = field(default_factory=CropStressThresholds)

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: If any threshold is invalid
        """
        self.drought.validate()
        self.flood.validate()
        self.crop_stress.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerConfig":
        try:
            flood = dict(data.get("flood") or {})
            overrides = {str(k): float(v) for k, v in (flood.pop("band_overrides", None) or {}).items()}
            return cls(
                drought=DroughtThresholds(**(data.get("drought") or {})),
                flood=FloodThresholds(band_overrides=overrides, **flood),
                crop_stress=CropStressThresholds(**(data.get("crop_stress") or {})),
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown trigger setting: {e}", config_key="triggers") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "drought": vars(self.drought).copy(),
            "flood": {
                "probability_threshold": self.flood.probability_threshold,
                "band_overrides": dict(self.flood.band_overrides),
            },
            "crop_stress": vars(self.crop_stress).copy(),
        }
