"""
Trigger Engine - Evaluator.

============================================================
PURPOSE
============================================================
Turns a snapshot (plus trailing history) into one TriggerEvaluation
per covered hazard.

============================================================
GUARANTEES
============================================================
- Never raises for a non-match
- A hazard supplied by a non-binding tier never yields triggered=True;
  the rule's own outcome is kept as advisory evidence
- Evidence always carries raw indicators, rule outcomes, source
  tiers and the hazard risk breakdown
============================================================
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Mapping, Optional, Sequence

from core.clock import ClockFactory, ClockProtocol
from data_sources.models import EnvironmentalSnapshot, HazardType
from policy_registry.types import Policy
from scoring_engine.composite_score import explain
from scoring_engine.risk_score import HazardRiskScorer
from trigger_engine.config import TriggerConfig
from trigger_engine.rules import HazardRule, build_rules
from trigger_engine.types import TriggerEvaluation


logger = logging.getLogger(__name__)


def _new_evaluation_id() -> str:
    return f"eval-{uuid.uuid4().hex}"


class TriggerEvaluator:
    """
    Per-hazard trigger decisions.

    Usage:
        evaluator = TriggerEvaluator(trigger_config, HazardRiskScorer(scoring_config))
        evaluation = evaluator.evaluate(policy, HazardType.DROUGHT, snapshot, history)
    """

    def __init__(
        self,
        config: Optional[TriggerConfig] = None,
        risk_scorer: Optional[HazardRiskScorer] = None,
        clock: Optional[ClockProtocol] = None,
        id_factory: Callable[[], str] = _new_evaluation_id,
    ) -> None:
        self._config = config or TriggerConfig()
        self._risk_scorer = risk_scorer or HazardRiskScorer()
        self._clock = clock or ClockFactory.get_clock()
        self._id_factory = id_factory
        self._rules = build_rules(self._config.drought, self._config.flood, self._config.crop_stress)

    @property
    def window_days(self) -> int:
        """Trailing window the crop stress rule needs."""
        return self._config.crop_stress.window_days

    def rule_for(self, hazard: HazardType) -> HazardRule:
        return self._rules[hazard]

    def evaluate(
        self,
        policy: Policy,
        hazard: HazardType,
        snapshot: EnvironmentalSnapshot,
        history: Sequence[EnvironmentalSnapshot] = (),
        sweep_time: Optional[datetime] = None,
    ) -> TriggerEvaluation:
        """Evaluate one hazard for one policy."""
        view = snapshot.for_hazard(hazard)
        history = [s.for_hazard(hazard) for s in history]
        result = self._rules[hazard].evaluate(policy, view, history)
        risk = self._risk_scorer.score(hazard, view.indicators)

        # Binding follows the tier that supplied this hazard, not the snapshot's lowest.
        binding = view.is_binding
        triggered = result.triggered and binding

        evidence = {
            "indicators": view.indicators.to_dict(),
            "rules": [o.to_dict() for o in result.outcomes],
            "rule_details": result.details,
            "source": {
                "tier": view.tier.value,
                "hazard_tier": view.tier.value,
                "snapshot_tier": snapshot.tier.value,
                "confidence": view.confidence.value,
                "source_name": snapshot.source_name,
                "snapshot_timestamp": snapshot.timestamp.isoformat(),
                "history_tiers": sorted({s.tier.value for s in history}),
                "history_count": len(history),
            },
            "risk": risk.to_dict(),
            "risk_explanation": explain(risk),
        }
        if not binding:
            evidence["advisory"] = {
                "would_have_triggered": result.triggered,
                "reason": f"{view.tier.value} tier data is not binding",
            }

        now = self._clock.now()
        evaluation = TriggerEvaluation(
            evaluation_id=self._id_factory(),
            policy_id=policy.policy_id,
            hazard=hazard,
            triggered=triggered,
            binding=binding,
            severity=risk.value,
            tier=view.tier,
            evaluated_at=now,
            sweep_time=sweep_time or now,
            evidence=evidence,
        )

        if triggered:
            logger.info(
                f"TRIGGER {policy.policy_id}/{hazard.value} severity={risk.value:.3f} "
                f"tier={view.tier.value}"
            )
        elif result.triggered:
            logger.info(
                f"Advisory only: {policy.policy_id}/{hazard.value} would trigger "
                f"on {view.tier.value} data"
            )
        else:
            logger.debug(f"No trigger for {policy.policy_id}/{hazard.value}")

        return evaluation

    def evaluate_all(
        self,
        policy: Policy,
        snapshot: EnvironmentalSnapshot,
        histories: Optional[Mapping[HazardType, Sequence[EnvironmentalSnapshot]]] = None,
        sweep_time: Optional[datetime] = None,
    ) -> List[TriggerEvaluation]:
        """One evaluation per hazard the policy covers."""
        histories = histories or {}
        hazards = sorted(policy.coverage.covered_hazards, key=lambda h: h.value)
        return [
            self.evaluate(policy, hazard, snapshot, histories.get(hazard, ()), sweep_time)
            for hazard in hazards
        ]
