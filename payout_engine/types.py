"""
Payout Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Payout Engine.

CRITICAL PRINCIPLE:
    "At most one open payout per (policy, hazard)."

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from core.clock import from_iso8601
from data_sources.models import HazardType


# ============================================================
# PAYOUT LIFECYCLE STATES
# ============================================================

class PayoutState(Enum):
    """
    Payout lifecycle state.

    State Machine:

    TRIGGERED
        │
        ▼
    VALIDATING ──────────────────────────► FAILED ──► COMPENSATED
        │                                    ▲   │         │
        ▼                                    │   └──► CLOSED ◄┘
    AMOUNT_COMPUTED ─────────────────────────┤
        │                                    │
        ▼                                    │
    INITIATED ──► IN_PROGRESS ──► CONFIRMED  │
        │             │   ▲                  │
        └──────► DELAYED_ESCALATED ──────────┘

    Any state before FAILED can transition to CANCELLED (operator only).
    FAILED and COMPENSATED resolve through CLOSED.
    """

    TRIGGERED = "TRIGGERED"
    """Created from a binding trigger evaluation."""

    VALIDATING = "VALIDATING"
    """Policy and evaluation checks."""

    AMOUNT_COMPUTED = "AMOUNT_COMPUTED"
    """Amount fixed from coverage terms and severity."""

    INITIATED = "INITIATED"
    """Transfer request accepted by the payment port."""

    IN_PROGRESS = "IN_PROGRESS"
    """Payment port reports the transfer pending."""

    DELAYED_ESCALATED = "DELAYED_ESCALATED"
    """SLA breached; operator alerted, compensation accruing."""

    CONFIRMED = "CONFIRMED"
    """Transfer succeeded. Terminal."""

    FAILED = "FAILED"
    """Permanent failure; awaiting operator action."""

    COMPENSATED = "COMPENSATED"
    """Owed delay compensation settled after a failure."""

    CLOSED = "CLOSED"
    """Closed by an operator. Terminal."""

    CANCELLED = "CANCELLED"
    """Cancelled by an operator. Terminal."""

    def is_terminal(self) -> bool:
        """Terminal states are immutable."""
        return self in {
            PayoutState.CONFIRMED,
            PayoutState.CLOSED,
            PayoutState.CANCELLED,
        }

    def is_open(self) -> bool:
        """Open payouts occupy the (policy, hazard) slot."""
        return not self.is_terminal()

    def is_in_flight(self) -> bool:
        """A transfer has been requested and not yet resolved."""
        return self in {
            PayoutState.INITIATED,
            PayoutState.IN_PROGRESS,
            PayoutState.DELAYED_ESCALATED,
        }

    def allows_cancel(self) -> bool:
        return self.is_open() and self not in {PayoutState.FAILED, PayoutState.COMPENSATED}


class TransferStatus(Enum):
    """Status reported by a payment gateway."""
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class CompensationStatus(Enum):
    """
    Delay compensation transfer status.

    Only SUCCEEDED and SETTLED count as paid.
    """

    PENDING = "PENDING"
    """Transfer requested; awaiting the provider."""

    SUCCEEDED = "SUCCEEDED"
    """Provider confirmed the transfer."""

    FAILED = "FAILED"
    """Provider rejected the transfer; compensation still owed."""

    SETTLED = "SETTLED"
    """Recorded by an operator as settled out of band."""


class OutcomeKind(Enum):
    """Result of handing a trigger evaluation to the payout manager."""

    CREATED = "CREATED"
    """A new payout was created and driven forward."""

    MERGED = "MERGED"
    """An open payout exists; evaluation added as supporting evidence."""

    SUPPRESSED = "SUPPRESSED"
    """Inside the cooldown window of a previous payout."""

    IGNORED = "IGNORED"
    """Evaluation not triggered or not binding."""


# ============================================================
# VALUE OBJECTS
# ============================================================

@dataclass(frozen=True)
class TransferHandle:
    """Opaque reference to a transfer at a payment gateway."""

    handle_id: str
    provider: str
    idempotency_key: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class StageEntry:
    """One append-only stage history entry."""

    from_state: Optional[PayoutState]
    to_state: PayoutState
    timestamp: datetime
    reason: str = ""
    actor: str = "system"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.value if self.from_state else None,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "actor": self.actor,
            "details": self.details,
        }


@dataclass(frozen=True)
class AmountBreakdown:
    """Auditable derivation of a payout amount."""

    sum_insured_per_ha: Decimal
    farm_size_ha: Decimal
    insured_value: Decimal
    severity: Decimal
    min_payout_fraction: Decimal
    payout_fraction: Decimal
    uncapped_amount: Decimal
    max_payout: Decimal
    capped: bool
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sum_insured_per_ha": str(self.sum_insured_per_ha),
            "farm_size_ha": str(self.farm_size_ha),
            "insured_value": str(self.insured_value),
            "severity": str(self.severity),
            "min_payout_fraction": str(self.min_payout_fraction),
            "payout_fraction": str(self.payout_fraction),
            "uncapped_amount": str(self.uncapped_amount),
            "max_payout": str(self.max_payout),
            "capped": self.capped,
            "amount": str(self.amount),
        }


# ============================================================
# PAYOUT RECORD
# ============================================================

@dataclass
class Payout:
    """
    Payout record, owned by the payout manager for its whole lifecycle.

    Mutated only through the state machine and the manager.
    """

    payout_id: str
    policy_id: str
    hazard: HazardType
    evaluation_id: str
    """Originating trigger evaluation."""

    holder_id: str
    """Notification recipient, copied from the policy at creation."""

    recipient: str
    """Payment account, copied from the policy at creation."""

    payment_provider: str
    currency: str = "KES"

    state: PayoutState = PayoutState.TRIGGERED
    amount: Decimal = Decimal("0")
    amount_breakdown: Dict[str, Any] = field(default_factory=dict)
    severity: float = 0.0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    initiated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    stage_history: List[StageEntry] = field(default_factory=list)
    supporting_evaluation_ids: List[str] = field(default_factory=list)

    transfer_handle: Optional[str] = None
    retry_count: int = 0
    last_error: Optional[str] = None

    escalated: bool = False
    escalated_at: Optional[datetime] = None
    compensation_amount: Decimal = Decimal("0")
    compensation_handle: Optional[str] = None
    compensation_status: Optional[CompensationStatus] = None
    compensation_attempts: int = 0
    """Compensation transfer keys issued; a new key follows each provider rejection."""

    manual_intervention: bool = False
    resolution_reason: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @property
    def idempotency_key(self) -> str:
        return f"payout-{self.payout_id}"

    @property
    def compensation_idempotency_key(self) -> str:
        key = f"payout-{self.payout_id}-compensation"
        return key if self.compensation_attempts <= 1 else f"{key}-{self.compensation_attempts}"

    @property
    def slot_key(self) -> str:
        return slot_key(self.policy_id, self.hazard)

    @property
    def is_open(self) -> bool:
        return self.state.is_open()

    @property
    def compensation_paid(self) -> bool:
        return self.compensation_status in (CompensationStatus.SUCCEEDED, CompensationStatus.SETTLED)

    @property
    def compensation_owed(self) -> bool:
        """Compensation accrued with no transfer pending or paid."""
        return (
            self.compensation_amount > 0
            and self.compensation_status in (None, CompensationStatus.FAILED)
        )

    @property
    def total_paid(self) -> Decimal:
        """Principal plus compensation actually paid; zero until confirmed."""
        if self.state != PayoutState.CONFIRMED:
            return Decimal("0")
        return self.amount + (self.compensation_amount if self.compensation_paid else Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payout_id": self.payout_id,
            "policy_id": self.policy_id,
            "hazard": self.hazard.value,
            "evaluation_id": self.evaluation_id,
            "holder_id": self.holder_id,
            "recipient": self.recipient,
            "payment_provider": self.payment_provider,
            "currency": self.currency,
            "state": self.state.value,
            "amount": str(self.amount),
            "amount_breakdown": self.amount_breakdown,
            "severity": self.severity,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "initiated_at": _iso(self.initiated_at),
            "confirmed_at": _iso(self.confirmed_at),
            "stage_history": [e.to_dict() for e in self.stage_history],
            "supporting_evaluation_ids": list(self.supporting_evaluation_ids),
            "idempotency_key": self.idempotency_key,
            "transfer_handle": self.transfer_handle,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "escalated": self.escalated,
            "escalated_at": _iso(self.escalated_at),
            "compensation_amount": str(self.compensation_amount),
            "compensation_handle": self.compensation_handle,
            "compensation_status": self.compensation_status.value if self.compensation_status else None,
            "compensation_attempts": self.compensation_attempts,
            "compensation_paid": self.compensation_paid,
            "total_paid": str(self.total_paid),
            "manual_intervention": self.manual_intervention,
            "resolution_reason": self.resolution_reason,
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
        }


@dataclass(frozen=True)
class PayoutOutcome:
    """What handle_trigger did."""

    kind: OutcomeKind
    payout: Optional[Payout] = None
    reason: str = ""

    @property
    def payout_id(self) -> Optional[str]:
        return self.payout.payout_id if self.payout else None


def slot_key(policy_id: str, hazard: HazardType) -> str:
    """Key of the (policy, hazard) slot guarded by the single-writer lock."""
    return f"{policy_id}|{hazard.value}"


def stage_entry_from_dict(data: Dict[str, Any]) -> StageEntry:
    return StageEntry(
        from_state=PayoutState(data["from_state"]) if data.get("from_state") else None,
        to_state=PayoutState(data["to_state"]),
        timestamp=from_iso8601(data["timestamp"]),
        reason=data.get("reason", ""),
        actor=data.get("actor", "system"),
        details=dict(data.get("details") or {}),
    )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
