"""
Scoring Engine - Hazard Risk Score.

============================================================
RESPONSIBILITY
============================================================
Computes a per-hazard risk score from a snapshot's indicators.

- Normalizes raw indicators into [0, 1] stress sub-scores
- Aggregates them with the hazard's weight profile
- Produces a risk score in [0, 1], higher = worse
- The score is used as payout severity

============================================================
DESIGN PRINCIPLES
============================================================
- Missing indicators contribute zero stress
- Transparent score decomposition
- Configurable anchors, no thresholds hard-coded here

============================================================
"""

from typing import Dict, Optional

from data_sources.models import EnvironmentalIndicators, HazardType
from scoring_engine.composite_score import CompositeScore, CompositeScorer, clamp01
from scoring_engine.config import IndicatorRanges, ScoringConfig


FLOOD_LEVEL_STRESS = {
    "LOW": 0.0,
    "MEDIUM": 1.0 / 3.0,
    "HIGH": 2.0 / 3.0,
    "CRITICAL": 1.0,
}


class HazardRiskScorer:
    """
    Per-hazard composite risk.

    Usage:
        scorer = HazardRiskScorer(config)
        risk = scorer.score(HazardType.DROUGHT, snapshot.indicators)
        risk.value  # severity in [0, 1]
    """

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        scorer: Optional[CompositeScorer] = None,
    ) -> None:
        self._config = config or ScoringConfig()
        self._scorer = scorer or CompositeScorer()

    def subscores(self, hazard: HazardType, indicators: EnvironmentalIndicators) -> Dict[str, float]:
        """Normalized stress sub-scores for one hazard."""
        ranges = self._config.indicator_ranges
        if hazard == HazardType.DROUGHT:
            return {
                "dry_days": _dry_days_stress(indicators, ranges),
                "vegetation": _vegetation_stress(indicators, ranges),
                "heat": _heat_stress(indicators, ranges),
                "soil_dryness": _soil_dryness(indicators, ranges),
            }
        if hazard == HazardType.FLOOD:
            level = indicators.flood_risk_level
            probability = indicators.flood_probability_7d
            return {
                "risk_level": FLOOD_LEVEL_STRESS[level.value] if level else 0.0,
                "probability": clamp01(probability) if probability is not None else 0.0,
            }
        if hazard == HazardType.CROP_STRESS:
            water = indicators.water_stress_index
            return {
                "vegetation": _vegetation_stress(indicators, ranges),
                "vegetation_decline": _decline_stress(indicators, ranges),
                "water_stress": clamp01(water) if water is not None else 0.0,
            }
        raise ValueError(f"Unsupported hazard: {hazard}")

    def score(self, hazard: HazardType, indicators: EnvironmentalIndicators) -> CompositeScore:
        profile = self._config.hazard_profiles[hazard]
        return self._scorer.score(self.subscores(hazard, indicators), profile)


def _dry_days_stress(ind: EnvironmentalIndicators, ranges: IndicatorRanges) -> float:
    if ind.consecutive_dry_days is None:
        return 0.0
    return clamp01(ind.consecutive_dry_days / ranges.dry_days_saturation)


def _vegetation_stress(ind: EnvironmentalIndicators, ranges: IndicatorRanges) -> float:
    if ind.vegetation_index is None:
        return 0.0
    return clamp01((ranges.vegetation_healthy - ind.vegetation_index) / ranges.vegetation_healthy)


def _decline_stress(ind: EnvironmentalIndicators, ranges: IndicatorRanges) -> float:
    if ind.vegetation_trend_14d is None:
        return 0.0
    return clamp01(-ind.vegetation_trend_14d / ranges.vegetation_decline_saturation)


def _heat_stress(ind: EnvironmentalIndicators, ranges: IndicatorRanges) -> float:
    if ind.max_temperature_c is None:
        return 0.0
    span = ranges.temperature_extreme_c - ranges.temperature_baseline_c
    return clamp01((ind.max_temperature_c - ranges.temperature_baseline_c) / span)


def _soil_dryness(ind: EnvironmentalIndicators, ranges: IndicatorRanges) -> float:
    if ind.soil_moisture is None:
        return 0.0
    return clamp01(1.0 - ind.soil_moisture / ranges.soil_moisture_saturation)
