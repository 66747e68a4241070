"""
Scoring Engine - Composite Score.

============================================================
RESPONSIBILITY
============================================================
One weighted-aggregation primitive shared by every scorer.

- Combines normalized sub-scores with named weights
- Maps the weighted sum into a bounded output range
- Provides score decomposition for explainability

============================================================
DESIGN PRINCIPLES
============================================================
- Pure and deterministic: same inputs, same value and breakdown
- Weights are validated once, when the profile is built
- Key mismatch between sub-scores and weights is a configuration
  error, never silently tolerated
- Transparent component contribution

============================================================
COMPOSITE LOGIC
============================================================
    weighted = sum(weight[k] * subscore[k])
    value    = scale_min + weighted * (scale_max - scale_min)

Used with three profiles: hazard risk [0, 1], premium multiplier
[0.8, 2.0] and credit score [0, 1000].

============================================================
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple, Union

from core.exceptions import ConfigurationError


WEIGHT_SUM_TOLERANCE = 1e-6
VALUE_PRECISION = 6


# ============================================================
# WEIGHT PROFILE
# ============================================================

@dataclass(frozen=True)
class WeightProfile:
    """
    Named weight configuration for one use-case.

    Raises ConfigurationError on construction if weights are empty,
    negative or do not sum to 1.0.
    """

    name: str
    weights: Mapping[str, float]
    scale_min: float = 0.0
    scale_max: float = 1.0

    def __post_init__(self) -> None:
        weights = dict(self.weights)
        object.__setattr__(self, "weights", weights)

        if not weights:
            raise ConfigurationError(
                f"Weight profile '{self.name}' has no weights",
                config_key=f"scoring.{self.name}.weights",
            )

        for key, weight in weights.items():
            if not isinstance(weight, (int, float)) or math.isnan(weight) or weight < 0:
                raise ConfigurationError(
                    f"Weight '{key}' in profile '{self.name}' must be a non-negative number",
                    config_key=f"scoring.{self.name}.weights.{key}",
                    actual_value=weight,
                )

        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ConfigurationError(
                f"Weights in profile '{self.name}' sum to {total}, expected 1.0",
                config_key=f"scoring.{self.name}.weights",
                actual_value=total,
            )

        if self.scale_max <= self.scale_min:
            raise ConfigurationError(
                f"Profile '{self.name}' has an empty or inverted scale",
                config_key=f"scoring.{self.name}.scale",
                actual_value=(self.scale_min, self.scale_max),
            )

    @property
    def keys(self) -> frozenset:
        return frozenset(self.weights)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "weights": dict(self.weights),
            "scale_min": self.scale_min,
            "scale_max": self.scale_max,
        }

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "WeightProfile":
        if "weights" not in data:
            raise ConfigurationError(f"Profile '{name}' is missing 'weights'", config_key=f"scoring.{name}")
        return cls(
            name=name,
            weights={str(k): float(v) for k, v in data["weights"].items()},
            scale_min=float(data.get("scale_min", 0.0)),
            scale_max=float(data.get("scale_max", 1.0)),
        )


# ============================================================
# COMPOSITE SCORE
# ============================================================

@dataclass(frozen=True)
class ScoreComponent:
    """One named sub-score and its contribution."""
    name: str
    subscore: float
    weight: float
    contribution: float


@dataclass(frozen=True)
class CompositeScore:
    """
    Bounded composite value with its breakdown.

    No identity and no lifecycle: always recomputed.
    """

    value: float
    scale_min: float
    scale_max: float
    profile_name: str
    breakdown: Tuple[ScoreComponent, ...] = field(default_factory=tuple)

    @property
    def normalized(self) -> float:
        """Weighted sum in [0, 1] before scaling."""
        return round(
            (self.value - self.scale_min) / (self.scale_max - self.scale_min),
            VALUE_PRECISION,
        )

    def component(self, name: str) -> ScoreComponent:
        for item in self.breakdown:
            if item.name == name:
                return item
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile_name,
            "value": self.value,
            "scale": [self.scale_min, self.scale_max],
            "breakdown": {
                c.name: {
                    "subscore": c.subscore,
                    "weight": c.weight,
                    "contribution": c.contribution,
                }
                for c in self.breakdown
            },
        }


# ============================================================
# SCORER
# ============================================================

class CompositeScorer:
    """
    Stateless weighted aggregation.

    Usage:
        scorer = CompositeScorer()
        result = scorer.score({"a": 0.5, "b": 1.0}, profile)
    """

    def score(
        self,
        subscores: Mapping[str, float],
        weights: Union[WeightProfile, Mapping[str, float]],
    ) -> CompositeScore:
        """
        Aggregate sub-scores with a weight profile.

        Raises:
            ConfigurationError: If sub-score keys do not match the weights
            ValueError: If a sub-score is outside [0, 1]
        """
        profile = weights if isinstance(weights, WeightProfile) else WeightProfile("adhoc", weights)

        provided = frozenset(subscores)
        if provided != profile.keys:
            raise ConfigurationError(
                f"Sub-score keys do not match profile '{profile.name}': "
                f"missing={sorted(profile.keys - provided)} "
                f"unexpected={sorted(provided - profile.keys)}",
                config_key=f"scoring.{profile.name}.weights",
            )

        components = []
        weighted = 0.0
        for name in sorted(profile.weights):
            value = float(subscores[name])
            if math.isnan(value) or not 0.0 <= value <= 1.0:
                raise ValueError(f"Sub-score '{name}' must be in [0, 1], got {value}")
            weight = profile.weights[name]
            contribution = weight * value
            weighted += contribution
            components.append(ScoreComponent(
                name=name,
                subscore=round(value, VALUE_PRECISION),
                weight=weight,
                contribution=round(contribution, VALUE_PRECISION),
            ))

        # Guard against float drift past 1.0
        weighted = min(max(weighted, 0.0), 1.0)
        value = profile.scale_min + weighted * (profile.scale_max - profile.scale_min)

        return CompositeScore(
            value=round(value, VALUE_PRECISION),
            scale_min=profile.scale_min,
            scale_max=profile.scale_max,
            profile_name=profile.name,
            breakdown=tuple(components),
        )


def explain(score: CompositeScore, top: int = 3) -> str:
    """
    Human-readable explanation of a composite score.

    Lists the dominant contributors, largest first.
    """
    ranked = sorted(score.breakdown, key=lambda c: (-c.contribution, c.name))
    parts = [
        f"{c.name}={c.subscore:.2f} x {c.weight:.2f}"
        for c in ranked[:top]
    ]
    return (
        f"{score.profile_name}: {score.value:g} "
        f"(range {score.scale_min:g}-{score.scale_max:g}); "
        f"main factors: {', '.join(parts)}"
    )


def clamp01(value: float) -> float:
    """Clamp a value into [0, 1]."""
    return min(max(value, 0.0), 1.0)
