"""
Scoring Engine - Credit Score.

============================================================
RESPONSIBILITY
============================================================
Creditworthiness on a [0, 1000] scale for partner lenders.

- Same composite primitive, credit weight profile
- Sub-scores are normalized to [0, 1], higher = better
- Rating bands: POOR / FAIR / GOOD / EXCELLENT

============================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from scoring_engine.composite_score import CompositeScore, CompositeScorer
from scoring_engine.config import ScoringConfig


class CreditRating(Enum):
    POOR = "POOR"
    FAIR = "FAIR"
    GOOD = "GOOD"
    EXCELLENT = "EXCELLENT"


@dataclass(frozen=True)
class CreditFactors:
    """Normalized borrower factors, each in [0, 1]."""
    repayment_history: float
    payout_history: float
    yield_stability: float
    tenure: float
    soil_quality: float

    def to_subscores(self) -> Dict[str, float]:
        return {
            "repayment_history": self.repayment_history,
            "payout_history": self.payout_history,
            "yield_stability": self.yield_stability,
            "tenure": self.tenure,
            "soil_quality": self.soil_quality,
        }


@dataclass(frozen=True)
class CreditAssessment:
    score: CompositeScore
    rating: CreditRating

    @property
    def value(self) -> float:
        return self.score.value

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "rating": self.rating.value, "score": self.score.to_dict()}


class CreditScorer:

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        scorer: Optional[CompositeScorer] = None,
    ) -> None:
        self._config = config or ScoringConfig()
        self._scorer = scorer or CompositeScorer()

    def assess(self, factors: CreditFactors) -> CreditAssessment:
        score = self._scorer.score(factors.to_subscores(), self._config.credit_profile)
        return CreditAssessment(score=score, rating=self.rate(score.value))

    def rate(self, value: float) -> CreditRating:
        bands = self._config.credit_bands
        if value >= bands["EXCELLENT"]:
            return CreditRating.EXCELLENT
        if value >= bands["GOOD"]:
            return CreditRating.GOOD
        if value >= bands["FAIR"]:
            return CreditRating.FAIR
        return CreditRating.POOR
