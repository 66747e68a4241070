"""
Payout Engine - Escalation Scheduling.

============================================================
PURPOSE
============================================================
Deferred SLA re-checks without blocking waits.

A payout is scheduled at initiated_at + SLA when it is initiated.
Each sweep (and each escalation tick) pops the due entries; an
escalated payout is re-scheduled every recheck interval so that
its compensation keeps accruing.

Rescheduling a payout supersedes its previous entry. Stale heap
entries are skipped when popped.
============================================================
"""

import heapq
import itertools
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from payout_engine.amount import quantize_money
from payout_engine.config import CompensationConfig, EscalationConfig
from payout_engine.types import Payout


logger = logging.getLogger(__name__)


def hours_late(payout: Payout, now: datetime, sla_hours: float) -> float:
    """Hours past the SLA deadline; zero if not late or never initiated."""
    if payout.initiated_at is None:
        return 0.0
    deadline = payout.initiated_at + timedelta(hours=sla_hours)
    return max(0.0, (now - deadline).total_seconds() / 3600.0)


def compute_compensation(amount: Decimal, late_hours: float, config: CompensationConfig) -> Decimal:
    """amount * daily_rate * hours_late / 24, capped at cap_fraction * amount."""
    if late_hours <= 0 or amount <= 0:
        return Decimal("0.00")
    raw = amount * config.daily_rate * Decimal(str(late_hours)) / Decimal("24")
    cap = amount * config.cap_fraction
    return quantize_money(min(raw, cap))


class EscalationScheduler:
    """Min-heap of (due_at, seq, payout_id)."""

    def __init__(self, config: EscalationConfig) -> None:
        self._config = config
        self._heap: List[Tuple[datetime, int, str]] = []
        self._current: Dict[str, Tuple[datetime, int]] = {}
        self._seq = itertools.count()

    @property
    def config(self) -> EscalationConfig:
        return self._config

    def deadline_for(self, payout: Payout) -> datetime:
        if payout.initiated_at is None:
            raise ValueError(f"Payout {payout.payout_id} has not been initiated")
        return payout.initiated_at + timedelta(hours=self._config.sla_hours)

    def schedule(self, payout_id: str, due_at: datetime) -> None:
        seq = next(self._seq)
        self._current[payout_id] = (due_at, seq)
        heapq.heappush(self._heap, (due_at, seq, payout_id))
        logger.debug(f"Escalation check for {payout_id} scheduled at {due_at.isoformat()}")

    def schedule_deadline(self, payout: Payout) -> datetime:
        due_at = self.deadline_for(payout)
        self.schedule(payout.payout_id, due_at)
        return due_at

    def schedule_recheck(self, payout_id: str, now: datetime) -> datetime:
        due_at = now + timedelta(hours=self._config.recheck_interval_hours)
        self.schedule(payout_id, due_at)
        return due_at

    def cancel(self, payout_id: str) -> None:
        self._current.pop(payout_id, None)

    def pop_due(self, now: datetime) -> List[str]:
        """Remove and return payout ids whose check is due, earliest first."""
        due: List[str] = []
        while self._heap and self._heap[0][0] <= now:
            due_at, seq, payout_id = heapq.heappop(self._heap)
            if self._current.get(payout_id) != (due_at, seq):
                continue
            del self._current[payout_id]
            due.append(payout_id)
        return due

    def next_due(self) -> Optional[datetime]:
        times = [due for due, _ in self._current.values()]
        return min(times) if times else None

    def rebuild(self, payouts: Iterable[Payout], now: datetime) -> int:
        """Reschedule in-flight payouts loaded from a repository after restart."""
        count = 0
        for payout in payouts:
            if not payout.state.is_in_flight() or payout.initiated_at is None:
                continue
            if payout.escalated:
                self.schedule(payout.payout_id, now)
            else:
                self.schedule_deadline(payout)
            count += 1
        return count

    def __len__(self) -> int:
        return len(self._current)

    def __contains__(self, payout_id: str) -> bool:
        return payout_id in self._current
