"""
Payout Engine - Payout State Machine.

============================================================
PURPOSE
============================================================
Manages payout lifecycle with strict state transitions.

STATE MACHINE:

    TRIGGERED ──► VALIDATING ──► AMOUNT_COMPUTED ──► INITIATED
                      │                │                 │
                      ▼                ▼                 ▼
                   FAILED ◄─────────────────────── IN_PROGRESS ──► CONFIRMED
                    │   │                            ▲    │
                    │   ▼                            │    ▼
                    │  COMPENSATED            DELAYED_ESCALATED
                    │   │
                    ▼   ▼
                    CLOSED

    Any state before FAILED can transition to CANCELLED (operator only).
    FAILED and COMPENSATED resolve only through CLOSED.

INVARIANTS:
- Terminal states are final
- Every transition not in the table raises StateTransitionError
- Stage history is append-only with monotonic timestamps

============================================================
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import StateTransitionError
from payout_engine.types import Payout, PayoutState, StageEntry


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[PayoutState, Set[PayoutState]] = {
    PayoutState.TRIGGERED: {
        PayoutState.VALIDATING,
        PayoutState.CANCELLED,
    },
    PayoutState.VALIDATING: {
        PayoutState.AMOUNT_COMPUTED,
        PayoutState.FAILED,
        PayoutState.CANCELLED,
    },
    PayoutState.AMOUNT_COMPUTED: {
        PayoutState.INITIATED,
        PayoutState.FAILED,
        PayoutState.CANCELLED,
    },
    PayoutState.INITIATED: {
        PayoutState.IN_PROGRESS,
        PayoutState.DELAYED_ESCALATED,
        PayoutState.FAILED,
        PayoutState.CANCELLED,
    },
    PayoutState.IN_PROGRESS: {
        PayoutState.CONFIRMED,
        PayoutState.DELAYED_ESCALATED,
        PayoutState.FAILED,
        PayoutState.CANCELLED,
    },
    PayoutState.DELAYED_ESCALATED: {
        PayoutState.IN_PROGRESS,
        PayoutState.FAILED,
        PayoutState.CANCELLED,
    },
    PayoutState.FAILED: {
        PayoutState.COMPENSATED,
        PayoutState.CLOSED,
    },
    PayoutState.COMPENSATED: {
        PayoutState.CLOSED,
    },
    # Terminal states - no transitions out
    PayoutState.CONFIRMED: set(),
    PayoutState.CLOSED: set(),
    PayoutState.CANCELLED: set(),
}

OPERATOR_ONLY_TARGETS: Set[PayoutState] = {
    PayoutState.CANCELLED,
    PayoutState.CLOSED,
    PayoutState.COMPENSATED,
}

SYSTEM_ACTOR = "system"


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for state transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(
        from_state: PayoutState,
        to_state: PayoutState,
        actor: str = SYSTEM_ACTOR,
    ) -> tuple[bool, str]:
        """
        Check if transition is allowed.

        Returns:
            Tuple of (allowed, reason)
        """
        # Same state is always valid (idempotent)
        if from_state == to_state:
            return True, "Same state"

        if from_state.is_terminal():
            return False, f"Cannot transition from terminal state {from_state.value}"

        if to_state not in VALID_TRANSITIONS.get(from_state, set()):
            return False, f"Invalid transition: {from_state.value} -> {to_state.value}"

        if to_state in OPERATOR_ONLY_TARGETS and actor == SYSTEM_ACTOR:
            return False, f"{to_state.value} requires an operator"

        return True, "Valid transition"


# ============================================================
# PAYOUT STATE MACHINE
# ============================================================

class PayoutStateMachine:
    """
    State machine for one payout.

    Manages state transitions with:
    - Guard checks
    - Append-only stage history
    - Listener notification
    """

    def __init__(self, payout: Payout, clock: Optional[ClockProtocol] = None):
        self._payout = payout
        self._clock = clock or ClockFactory.get_clock()
        self._listeners: List[Callable[[Payout, StageEntry], None]] = []

    @property
    def current_state(self) -> PayoutState:
        return self._payout.state

    @property
    def payout(self) -> Payout:
        return self._payout

    @property
    def history(self) -> List[StageEntry]:
        return list(self._payout.stage_history)

    def add_listener(self, listener: Callable[[Payout, StageEntry], None]) -> None:
        """Add a transition listener."""
        self._listeners.append(listener)

    def can_transition_to(self, target_state: PayoutState, actor: str = SYSTEM_ACTOR) -> tuple[bool, str]:
        return TransitionGuard.can_transition(self.current_state, target_state, actor)

    def record_creation(self, reason: str = "Trigger evaluation") -> StageEntry:
        """First history entry; only valid on an empty history."""
        if self._payout.stage_history:
            raise StateTransitionError(
                f"Payout {self._payout.payout_id} already has history",
                payout_id=self._payout.payout_id,
                to_state=self._payout.state.value,
            )
        entry = StageEntry(
            from_state=None,
            to_state=self._payout.state,
            timestamp=self._next_timestamp(),
            reason=reason,
            details={"evaluation_id": self._payout.evaluation_id},
        )
        self._payout.stage_history.append(entry)
        self._payout.created_at = self._payout.created_at or entry.timestamp
        self._payout.updated_at = entry.timestamp
        return entry

    def transition_to(
        self,
        target_state: PayoutState,
        reason: str = "",
        actor: str = SYSTEM_ACTOR,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[StageEntry]:
        """
        Transition to a new state.

        Returns:
            The appended StageEntry, or None for a same-state no-op

        Raises:
            StateTransitionError: If transition is not allowed
        """
        allowed, guard_reason = self.can_transition_to(target_state, actor)

        if not allowed:
            raise StateTransitionError(
                f"Cannot transition {self._payout.payout_id} from "
                f"{self.current_state.value} to {target_state.value}: {guard_reason}",
                payout_id=self._payout.payout_id,
                from_state=self.current_state.value,
                to_state=target_state.value,
            )

        # Same state - no-op
        if self.current_state == target_state:
            return None

        entry = StageEntry(
            from_state=self.current_state,
            to_state=target_state,
            timestamp=self._next_timestamp(),
            reason=reason,
            actor=actor,
            details=details or {},
        )

        self._payout.state = target_state
        self._payout.updated_at = entry.timestamp

        if target_state == PayoutState.INITIATED:
            self._payout.initiated_at = entry.timestamp
        elif target_state == PayoutState.CONFIRMED:
            self._payout.confirmed_at = entry.timestamp
        elif target_state == PayoutState.DELAYED_ESCALATED:
            self._payout.escalated = True
            self._payout.escalated_at = entry.timestamp
        elif target_state in (PayoutState.CANCELLED, PayoutState.CLOSED):
            self._payout.resolution_reason = reason
            self._payout.resolved_by = actor
            self._payout.resolved_at = entry.timestamp

        self._payout.stage_history.append(entry)

        for listener in self._listeners:
            try:
                listener(self._payout, entry)
            except Exception as e:
                logger.error(f"Payout listener error: {e}")

        logger.info(
            f"Payout {self._payout.payout_id}: "
            f"{entry.from_state.value} -> {entry.to_state.value} ({reason})"
        )

        return entry

    def record_note(
        self,
        reason: str,
        actor: str = SYSTEM_ACTOR,
        details: Optional[Dict[str, Any]] = None,
    ) -> StageEntry:
        """
        Append a same-state history entry.

        Used for events that do not move the payout, such as compensation
        updates on a CONFIRMED payout. Allowed in every state.
        """
        entry = StageEntry(
            from_state=self.current_state,
            to_state=self.current_state,
            timestamp=self._next_timestamp(),
            reason=reason,
            actor=actor,
            details=details or {},
        )
        self._payout.stage_history.append(entry)
        self._payout.updated_at = entry.timestamp
        logger.info(f"Payout {self._payout.payout_id}: note in {self.current_state.value} ({reason})")
        return entry

    def _next_timestamp(self) -> datetime:
        """Clock time, never earlier than the last history entry."""
        now = self._clock.now()
        if self._payout.stage_history:
            last = self._payout.stage_history[-1].timestamp
            if now < last:
                return last
        return now

    # --------------------------------------------------------
    # CONVENIENCE METHODS
    # --------------------------------------------------------

    def mark_validating(self, reason: str = "Validating policy") -> Optional[StageEntry]:
        return self.transition_to(PayoutState.VALIDATING, reason)

    def mark_amount_computed(self, details: Dict[str, Any]) -> Optional[StageEntry]:
        return self.transition_to(PayoutState.AMOUNT_COMPUTED, "Amount computed", details=details)

    def mark_initiated(self, handle_id: str) -> Optional[StageEntry]:
        self._payout.transfer_handle = handle_id
        return self.transition_to(
            PayoutState.INITIATED,
            "Transfer initiated",
            details={"transfer_handle": handle_id},
        )

    def mark_in_progress(self, reason: str = "Transfer pending") -> Optional[StageEntry]:
        return self.transition_to(PayoutState.IN_PROGRESS, reason)

    def mark_confirmed(self, details: Optional[Dict[str, Any]] = None) -> Optional[StageEntry]:
        return self.transition_to(PayoutState.CONFIRMED, "Transfer succeeded", details=details)

    def mark_escalated(self, hours_late: float, compensation: str) -> Optional[StageEntry]:
        return self.transition_to(
            PayoutState.DELAYED_ESCALATED,
            "SLA breached",
            details={"hours_late": round(hours_late, 4), "compensation": compensation},
        )

    def mark_failed(self, reason: str, details: Optional[Dict[str, Any]] = None) -> Optional[StageEntry]:
        self._payout.last_error = reason
        return self.transition_to(PayoutState.FAILED, reason, details=details)

    def mark_cancelled(self, reason: str, actor: str) -> Optional[StageEntry]:
        return self.transition_to(PayoutState.CANCELLED, reason, actor=actor)

    def mark_compensated(self, actor: str, details: Optional[Dict[str, Any]] = None) -> Optional[StageEntry]:
        return self.transition_to(PayoutState.COMPENSATED, "Compensation settled", actor=actor, details=details)

    def mark_closed(self, reason: str, actor: str) -> Optional[StageEntry]:
        return self.transition_to(PayoutState.CLOSED, reason, actor=actor)
