"""
Scoring Engine - Premium Multiplier.

============================================================
RESPONSIBILITY
============================================================
Prices cover from location risk.

- Aggregates per-hazard risk and soil risk into a multiplier
  in [0.8, 2.0] via the shared composite primitive
- premium = base rate * insured value * multiplier

============================================================
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

from data_sources.models import HazardType
from policy_registry.types import Policy
from scoring_engine.composite_score import CompositeScore, CompositeScorer, clamp01
from scoring_engine.config import ScoringConfig


CENTS = Decimal("0.01")

_HAZARD_KEYS = {
    HazardType.DROUGHT: "drought_risk",
    HazardType.FLOOD: "flood_risk",
    HazardType.CROP_STRESS: "crop_stress_risk",
}


@dataclass(frozen=True)
class PremiumQuote:
    """Priced premium with its derivation."""
    policy_id: str
    insured_value: Decimal
    base_rate: Decimal
    multiplier: float
    premium: Decimal
    score: CompositeScore

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "insured_value": str(self.insured_value),
            "base_rate": str(self.base_rate),
            "multiplier": self.multiplier,
            "premium": str(self.premium),
            "score": self.score.to_dict(),
        }


def build_premium_subscores(
    hazard_risk: Mapping[HazardType, float],
    soil_quality: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """
    Assemble premium sub-scores.

    Hazards without a risk value contribute zero. Soil risk is the
    inverse of the mean soil-quality sub-score; unknown soil is
    treated as average (0.5).
    """
    subscores = {key: clamp01(hazard_risk.get(hazard, 0.0)) for hazard, key in _HAZARD_KEYS.items()}
    if soil_quality:
        quality = sum(soil_quality.values()) / len(soil_quality)
        subscores["soil_risk"] = clamp01(1.0 - quality)
    else:
        subscores["soil_risk"] = 0.5
    return subscores


class PremiumCalculator:
    """
    Usage:
        calc = PremiumCalculator(config)
        quote = calc.quote(policy, build_premium_subscores(risks, soil))
    """

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        scorer: Optional[CompositeScorer] = None,
    ) -> None:
        self._config = config or ScoringConfig()
        self._scorer = scorer or CompositeScorer()

    def multiplier(self, risk_subscores: Mapping[str, float]) -> CompositeScore:
        return self._scorer.score(risk_subscores, self._config.premium_profile)

    def quote(self, policy: Policy, risk_subscores: Mapping[str, float]) -> PremiumQuote:
        score = self.multiplier(risk_subscores)
        insured_value = policy.insured_value
        premium = (
            self._config.premium_base_rate * insured_value * Decimal(str(score.value))
        ).quantize(CENTS, rounding=ROUND_HALF_UP)

        return PremiumQuote(
            policy_id=policy.policy_id,
            insured_value=insured_value,
            base_rate=self._config.premium_base_rate,
            multiplier=score.value,
            premium=premium,
            score=score,
        )
