"""
Payout Engine - Repository.

============================================================
PURPOSE
============================================================
Persistence port for payouts and trigger evaluations, plus the
in-memory implementation.

CRITICAL REQUIREMENTS:
- create() is the transactional check-and-create: it refuses a
  second open payout for the same (policy, hazard)
- Callers always receive copies; a record changes only through save()

============================================================
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from core.exceptions import InvariantViolation, PayoutNotFound
from data_sources.models import HazardType
from payout_engine.types import CompensationStatus, Payout, PayoutState, slot_key
from trigger_engine.types import TriggerEvaluation


logger = logging.getLogger(__name__)


# ============================================================
# REPOSITORY PORT
# ============================================================

class PayoutRepository(ABC):
    """Storage for payouts and the evaluations that caused them."""

    # --------------------------------------------------------
    # PAYOUTS
    # --------------------------------------------------------

    @abstractmethod
    async def create(self, payout: Payout) -> None:
        """
        Insert a new payout.

        Raises:
            InvariantViolation: An open payout already holds the slot
        """
        pass

    @abstractmethod
    async def save(self, payout: Payout) -> None:
        """
        Update an existing payout.

        Raises:
            PayoutNotFound: Unknown payout id
        """
        pass

    @abstractmethod
    async def get(self, payout_id: str) -> Optional[Payout]:
        pass

    @abstractmethod
    async def find_open(self, policy_id: str, hazard: HazardType) -> Optional[Payout]:
        pass

    @abstractmethod
    async def latest_confirmed(self, policy_id: str, hazard: HazardType) -> Optional[Payout]:
        """Most recently created CONFIRMED payout for the slot."""
        pass

    @abstractmethod
    async def find_by_transfer_handle(self, handle_id: str) -> Optional[Payout]:
        pass

    @abstractmethod
    async def list_payouts(self, state: Optional[PayoutState] = None, limit: int = 100) -> List[Payout]:
        """Newest first."""
        pass

    async def list_in_flight(self) -> List[Payout]:
        result: List[Payout] = []
        for state in (PayoutState.INITIATED, PayoutState.IN_PROGRESS, PayoutState.DELAYED_ESCALATED):
            result.extend(await self.list_payouts(state=state, limit=10_000))
        return result

    async def list_compensation_pending(self) -> List[Payout]:
        """CONFIRMED payouts whose compensation transfer awaits the provider."""
        confirmed = await self.list_payouts(state=PayoutState.CONFIRMED, limit=10_000)
        return [p for p in confirmed if p.compensation_status == CompensationStatus.PENDING]

    # --------------------------------------------------------
    # EVALUATIONS
    # --------------------------------------------------------

    @abstractmethod
    async def save_evaluation(self, evaluation: TriggerEvaluation) -> None:
        pass

    @abstractmethod
    async def get_evaluation(self, evaluation_id: str) -> Optional[TriggerEvaluation]:
        pass

    async def close(self) -> None:
        pass


# ============================================================
# IN-MEMORY REPOSITORY
# ============================================================

class InMemoryPayoutRepository(PayoutRepository):
    """Process-local repository; the default for single-process runs and tests."""

    def __init__(self) -> None:
        self._payouts: Dict[str, Payout] = {}
        self._open_slots: Dict[str, str] = {}
        self._by_handle: Dict[str, str] = {}
        self._evaluations: Dict[str, TriggerEvaluation] = {}
        self._lock = asyncio.Lock()

    async def create(self, payout: Payout) -> None:
        async with self._lock:
            key = payout.slot_key
            existing_id = self._open_slots.get(key)
            if existing_id is not None:
                raise InvariantViolation(
                    f"Open payout {existing_id} already exists for {key}",
                    policy_id=payout.policy_id,
                    hazard=payout.hazard.value,
                    existing_payout_id=existing_id,
                )
            if payout.payout_id in self._payouts:
                raise ValueError(f"Duplicate payout id {payout.payout_id}")
            self._store(payout)

    async def save(self, payout: Payout) -> None:
        async with self._lock:
            if payout.payout_id not in self._payouts:
                raise PayoutNotFound(f"Payout {payout.payout_id} not found", context={"payout_id": payout.payout_id})
            self._store(payout)

    def _store(self, payout: Payout) -> None:
        stored = copy.deepcopy(payout)
        self._payouts[payout.payout_id] = stored
        key = payout.slot_key
        if payout.is_open:
            self._open_slots[key] = payout.payout_id
        elif self._open_slots.get(key) == payout.payout_id:
            del self._open_slots[key]
        for handle in (payout.transfer_handle, payout.compensation_handle):
            if handle:
                self._by_handle[handle] = payout.payout_id

    async def get(self, payout_id: str) -> Optional[Payout]:
        payout = self._payouts.get(payout_id)
        return copy.deepcopy(payout) if payout else None

    async def find_open(self, policy_id: str, hazard: HazardType) -> Optional[Payout]:
        payout_id = self._open_slots.get(slot_key(policy_id, hazard))
        return await self.get(payout_id) if payout_id else None

    async def latest_confirmed(self, policy_id: str, hazard: HazardType) -> Optional[Payout]:
        confirmed = [
            p for p in self._payouts.values()
            if p.policy_id == policy_id and p.hazard == hazard and p.state == PayoutState.CONFIRMED
        ]
        if not confirmed:
            return None
        return copy.deepcopy(max(confirmed, key=lambda p: p.created_at))

    async def find_by_transfer_handle(self, handle_id: str) -> Optional[Payout]:
        payout_id = self._by_handle.get(handle_id)
        return await self.get(payout_id) if payout_id else None

    async def list_payouts(self, state: Optional[PayoutState] = None, limit: int = 100) -> List[Payout]:
        payouts = [p for p in self._payouts.values() if state is None or p.state == state]
        payouts.sort(key=lambda p: p.created_at, reverse=True)
        return [copy.deepcopy(p) for p in payouts[:limit]]

    async def save_evaluation(self, evaluation: TriggerEvaluation) -> None:
        self._evaluations[evaluation.evaluation_id] = evaluation

    async def get_evaluation(self, evaluation_id: str) -> Optional[TriggerEvaluation]:
        return self._evaluations.get(evaluation_id)

    def __len__(self) -> int:
        return len(self._payouts)
