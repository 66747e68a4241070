"""
Scoring Engine Package.

One pure weighted-aggregation primitive reused by three call sites.

Modules:
- composite_score: WeightProfile, CompositeScorer, CompositeScore, explain
- risk_score: per-hazard risk, used as payout severity
- premium_score: premium multiplier and quotes
- credit_score: creditworthiness on a [0, 1000] scale
"""

from scoring_engine.composite_score import (
    CompositeScore,
    CompositeScorer,
    ScoreComponent,
    WeightProfile,
    explain,
)
from scoring_engine.config import IndicatorRanges, ScoringConfig
from scoring_engine.credit_score import (
    CreditAssessment,
    CreditFactors,
    CreditRating,
    CreditScorer,
)
from scoring_engine.premium_score import (
    PremiumCalculator,
    PremiumQuote,
    build_premium_subscores,
)
from scoring_engine.risk_score import HazardRiskScorer


__all__ = [
    "CompositeScore",
    "CompositeScorer",
    "ScoreComponent",
    "WeightProfile",
    "explain",
    "IndicatorRanges",
    "ScoringConfig",
    "CreditAssessment",
    "CreditFactors",
    "CreditRating",
    "CreditScorer",
    "PremiumCalculator",
    "PremiumQuote",
    "build_premium_subscores",
    "HazardRiskScorer",
]
