"""
Trigger Engine - Hazard Rules.

============================================================
RULES
============================================================
DROUGHT      at least k of 4: dry days, vegetation, heat, soil moisture
FLOOD        CRITICAL, or HIGH with 7-day probability > band threshold
CROP_STRESS  current vegetation below floor AND every observation in
             the trailing window below floor AND every day of the window
             observed AND water stress above threshold

A missing indicator is never satisfied. Rules return a RuleResult;
"not triggered" is a normal value, never an exception.
============================================================
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Sequence

from data_sources.models import (
    EnvironmentalSnapshot,
    FloodRiskLevel,
    HazardType,
)
from policy_registry.types import Policy
from trigger_engine.config import (
    CropStressThresholds,
    DroughtThresholds,
    FloodThresholds,
)
from trigger_engine.types import RuleOutcome, RuleResult


class HazardRule(ABC):
    """Decision rule for one hazard."""

    hazard: HazardType

    @abstractmethod
    def evaluate(
        self,
        policy: Policy,
        snapshot: EnvironmentalSnapshot,
        history: Sequence[EnvironmentalSnapshot],
    ) -> RuleResult:
        pass


# ============================================================
# DROUGHT
# ============================================================

class DroughtRule(HazardRule):
    """At-least-k-of-n: tolerates one noisy or missing indicator."""

    hazard = HazardType.DROUGHT

    def __init__(self, thresholds: DroughtThresholds) -> None:
        self._t = thresholds

    def evaluate(self, policy, snapshot, history) -> RuleResult:
        t = self._t
        ind = snapshot.indicators

        dry_days = ind.consecutive_dry_days
        ndvi = ind.vegetation_index
        trend = ind.vegetation_trend_14d
        temp = ind.max_temperature_c
        soil = ind.soil_moisture

        ndvi_critical = ndvi is not None and ndvi < t.vegetation_critical
        trend_critical = trend is not None and trend < t.vegetation_decline_critical

        outcomes = [
            RuleOutcome(
                "dry_days_exceeded",
                dry_days is not None and dry_days > t.dry_days_threshold,
                observed=dry_days,
                threshold=t.dry_days_threshold,
                comparison=f"> {t.dry_days_threshold}",
            ),
            RuleOutcome(
                "vegetation_critical",
                ndvi_critical or trend_critical,
                observed={"index": ndvi, "trend_14d": trend},
                threshold={"index": t.vegetation_critical, "trend_14d": t.vegetation_decline_critical},
                comparison=f"index < {t.vegetation_critical} or trend < {t.vegetation_decline_critical}",
            ),
            RuleOutcome(
                "max_temperature_exceeded",
                temp is not None and temp > t.max_temperature_ceiling_c,
                observed=temp,
                threshold=t.max_temperature_ceiling_c,
                comparison=f"> {t.max_temperature_ceiling_c}",
            ),
            RuleOutcome(
                "soil_moisture_below_floor",
                soil is not None and soil < t.soil_moisture_floor,
                observed=soil,
                threshold=t.soil_moisture_floor,
                comparison=f"< {t.soil_moisture_floor}",
            ),
        ]

        satisfied = sum(1 for o in outcomes if o.satisfied)
        return RuleResult(
            triggered=satisfied >= t.min_indicators,
            outcomes=outcomes,
            details={"indicators_satisfied": satisfied, "min_indicators": t.min_indicators},
        )


# ============================================================
# FLOOD
# ============================================================

class FloodRule(HazardRule):
    """Two paths: qualitative CRITICAL, or HIGH plus quantitative probability."""

    hazard = HazardType.FLOOD

    def __init__(self, thresholds: FloodThresholds) -> None:
        self._t = thresholds

    def evaluate(self, policy, snapshot, history) -> RuleResult:
        level = snapshot.indicators.flood_risk_level
        probability = snapshot.indicators.flood_probability_7d
        threshold = self._t.threshold_for(policy.coverage.severity_band)

        critical = level == FloodRiskLevel.CRITICAL
        high_probable = (
            level == FloodRiskLevel.HIGH
            and probability is not None
            and probability > threshold
        )

        outcomes = [
            RuleOutcome(
                "risk_level_critical",
                critical,
                observed=level.value if level else None,
                threshold=FloodRiskLevel.CRITICAL.value,
                comparison="== CRITICAL",
            ),
            RuleOutcome(
                "high_risk_with_probability",
                high_probable,
                observed={"level": level.value if level else None, "probability_7d": probability},
                threshold=threshold,
                comparison=f"level == HIGH and probability > {threshold}",
            ),
        ]
        return RuleResult(
            triggered=critical or high_probable,
            outcomes=outcomes,
            details={"severity_band": policy.coverage.severity_band, "probability_threshold": threshold},
        )


# ============================================================
# CROP STRESS
# ============================================================

class CropStressRule(HazardRule):
    """
    Persistence rule over actual historical snapshots.

    A single sub-floor reading is recorded as advisory evidence only.
    """

    hazard = HazardType.CROP_STRESS

    def __init__(self, thresholds: CropStressThresholds) -> None:
        self._t = thresholds

    def evaluate(self, policy, snapshot, history) -> RuleResult:
        t = self._t
        current = snapshot.indicators.vegetation_index
        water = snapshot.indicators.water_stress_index
        current_below = current is not None and current < t.vegetation_floor

        window_end = snapshot.timestamp.date()
        window_start = window_end - timedelta(days=t.window_days - 1)

        observations = self._observations(snapshot, history)
        in_window = [
            s for s in observations
            if window_start <= s.timestamp.date() <= window_end
        ]

        all_below = bool(in_window) and all(
            s.indicators.vegetation_index < t.vegetation_floor for s in in_window
        )
        covered = {s.timestamp.date() for s in in_window}
        missing_days: List[str] = [
            (window_start + timedelta(days=i)).isoformat()
            for i in range(t.window_days)
            if window_start + timedelta(days=i) not in covered
        ]
        water_elevated = water is not None and water > t.water_stress_threshold

        outcomes = [
            RuleOutcome(
                "vegetation_below_floor",
                current_below,
                observed=current,
                threshold=t.vegetation_floor,
                comparison=f"< {t.vegetation_floor}",
            ),
            RuleOutcome(
                "persisted_in_window",
                all_below,
                observed=[s.indicators.vegetation_index for s in in_window],
                threshold=t.vegetation_floor,
                comparison=f"all < {t.vegetation_floor} over {t.window_days} days",
            ),
            RuleOutcome(
                "window_fully_observed",
                not missing_days,
                observed=len(covered),
                threshold=t.window_days,
                comparison=f"{t.window_days} of {t.window_days} days observed",
            ),
            RuleOutcome(
                "water_stress_elevated",
                water_elevated,
                observed=water,
                threshold=t.water_stress_threshold,
                comparison=f"> {t.water_stress_threshold}",
            ),
        ]

        return RuleResult(
            triggered=all(o.satisfied for o in outcomes),
            outcomes=outcomes,
            details={
                "advisory_single_reading_below_floor": current_below,
                "window_start": window_start.isoformat(),
                "window_end": window_end.isoformat(),
                "observation_count": len(in_window),
                "missing_days": missing_days,
            },
        )

    @staticmethod
    def _observations(
        snapshot: EnvironmentalSnapshot,
        history: Sequence[EnvironmentalSnapshot],
    ) -> List[EnvironmentalSnapshot]:
        """Binding history plus the current snapshot, de-duplicated."""
        unique: Dict[tuple, EnvironmentalSnapshot] = {}
        for s in list(history) + [snapshot]:
            if s is not snapshot and not s.is_binding:
                continue
            if s.indicators.vegetation_index is None:
                continue
            unique[(s.timestamp, s.source_name)] = s
        return sorted(unique.values(), key=lambda s: s.timestamp)


def build_rules(drought: DroughtThresholds, flood: FloodThresholds, crop_stress: CropStressThresholds) -> Dict[HazardType, HazardRule]:
    return {
        HazardType.DROUGHT: DroughtRule(drought),
        HazardType.FLOOD: FloodRule(flood),
        HazardType.CROP_STRESS: CropStressRule(crop_stress),
    }
