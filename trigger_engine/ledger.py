"""
Trigger Engine - Evaluation Ledger.

Keeps the latest evaluation per (policy, hazard). Evaluations are
totally ordered by sweep time; an evaluation from an older sweep never
replaces a newer one.
"""

import logging
from typing import Dict, List, Optional, Tuple

from data_sources.models import HazardType
from trigger_engine.types import TriggerEvaluation


logger = logging.getLogger(__name__)


class EvaluationLedger:
    """In-process record of the current evaluation per slot."""

    def __init__(self) -> None:
        self._latest: Dict[Tuple[str, HazardType], TriggerEvaluation] = {}
        self._rejected = 0

    def record(self, evaluation: TriggerEvaluation) -> bool:
        """
        Record an evaluation.

        Returns:
            False if a newer sweep's evaluation is already recorded
        """
        key = (evaluation.policy_id, evaluation.hazard)
        current = self._latest.get(key)
        if current is not None and evaluation.sweep_time < current.sweep_time:
            self._rejected += 1
            logger.warning(
                f"Rejected out-of-order evaluation {evaluation.evaluation_id} for "
                f"{evaluation.policy_id}/{evaluation.hazard.value}: sweep "
                f"{evaluation.sweep_time.isoformat()} < {current.sweep_time.isoformat()}"
            )
            return False
        self._latest[key] = evaluation
        return True

    def latest(self, policy_id: str, hazard: HazardType) -> Optional[TriggerEvaluation]:
        return self._latest.get((policy_id, hazard))

    def for_policy(self, policy_id: str) -> List[TriggerEvaluation]:
        return [e for (pid, _), e in self._latest.items() if pid == policy_id]

    @property
    def rejected_count(self) -> int:
        return self._rejected

    def __len__(self) -> int:
        return len(self._latest)
