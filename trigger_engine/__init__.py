"""
Trigger Engine Package.

Applies hazard-specific rules to environmental snapshots and produces
TriggerEvaluations with supporting evidence.
"""

from trigger_engine.config import (
    CropStressThresholds,
    DroughtThresholds,
    FloodThresholds,
    TriggerConfig,
)
from trigger_engine.evaluator import TriggerEvaluator
from trigger_engine.ledger import EvaluationLedger
from trigger_engine.rules import CropStressRule, DroughtRule, FloodRule, HazardRule
from trigger_engine.types import RuleOutcome, RuleResult, TriggerEvaluation


__all__ = [
    "CropStressThresholds",
    "DroughtThresholds",
    "FloodThresholds",
    "TriggerConfig",
    "TriggerEvaluator",
    "EvaluationLedger",
    "CropStressRule",
    "DroughtRule",
    "FloodRule",
    "HazardRule",
    "RuleOutcome",
    "RuleResult",
    "TriggerEvaluation",
]
