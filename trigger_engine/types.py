"""
Trigger Engine - Types.

============================================================
PURPOSE
============================================================
Immutable results of trigger evaluation.

A TriggerEvaluation is created once per sweep per policy per hazard,
never mutated, and superseded by the next sweep's evaluation.
============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.clock import from_iso8601
from data_sources.models import HazardType, SourceTier


@dataclass(frozen=True)
class RuleOutcome:
    """One boolean indicator of a hazard rule."""

    name: str
    satisfied: bool
    observed: Any = None
    threshold: Any = None
    comparison: str = ""
    """Human-readable comparison, e.g. '> 21'."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "satisfied": self.satisfied,
            "observed": self.observed,
            "threshold": self.threshold,
            "comparison": self.comparison,
        }


@dataclass(frozen=True)
class RuleResult:
    """Raw outcome of a hazard rule, before tier gating."""
    triggered: bool
    outcomes: List[RuleOutcome] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TriggerEvaluation:
    """
    Decision for one (policy, hazard) in one sweep.

    `triggered` is only ever True when `binding` is True. For
    non-binding (simulated) snapshots the rule's own result is kept in
    the advisory evidence.
    """

    evaluation_id: str
    policy_id: str
    hazard: HazardType
    triggered: bool
    binding: bool
    severity: float
    """Hazard risk composite in [0, 1]."""

    tier: SourceTier
    evaluated_at: datetime
    sweep_time: datetime
    evidence: Dict[str, Any] = field(default_factory=dict)

    @property
    def would_have_triggered(self) -> bool:
        advisory = self.evidence.get("advisory") or {}
        return bool(advisory.get("would_have_triggered", self.triggered))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evaluation_id": self.evaluation_id,
            "policy_id": self.policy_id,
            "hazard": self.hazard.value,
            "triggered": self.triggered,
            "binding": self.binding,
            "severity": self.severity,
            "tier": self.tier.value,
            "evaluated_at": self.evaluated_at.isoformat(),
            "sweep_time": self.sweep_time.isoformat(),
            "evidence": self.evidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerEvaluation":
        return cls(
            evaluation_id=data["evaluation_id"],
            policy_id=data["policy_id"],
            hazard=HazardType(data["hazard"]),
            triggered=bool(data["triggered"]),
            binding=bool(data["binding"]),
            severity=float(data["severity"]),
            tier=SourceTier(data["tier"]),
            evaluated_at=from_iso8601(data["evaluated_at"]),
            sweep_time=from_iso8601(data["sweep_time"]),
            evidence=dict(data.get("evidence") or {}),
        )


def summarize(evaluations: List[TriggerEvaluation]) -> Optional[str]:
    """One-line summary of triggered hazards, for logs."""
    fired = [f"{e.policy_id}/{e.hazard.value}" for e in evaluations if e.triggered]
    return ", ".join(fired) if fired else None
