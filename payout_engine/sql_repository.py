"""
Payout Engine - SQL Repository.

============================================================
PURPOSE
============================================================
Database operations for payout persistence (SQLAlchemy async).

RESPONSIBILITIES:
- Save/load payouts with their stage history
- Save/load trigger evaluations
- Enforce one open payout per (policy, hazard) via the unique
  open_slot_key column, so the invariant holds across processes

CRITICAL REQUIREMENTS:
- Every write is one transaction
- Stage history rows are only appended

============================================================
"""

import logging
from typing import List, Optional

from sqlalchemy import desc, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.clock import ensure_utc
from core.exceptions import InvariantViolation, PayoutNotFound
from data_sources.models import HazardType
from payout_engine.models import Base, PayoutModel, PayoutStageModel, TriggerEvaluationModel
from payout_engine.repository import PayoutRepository
from payout_engine.types import CompensationStatus, Payout, PayoutState, StageEntry, slot_key
from trigger_engine.types import TriggerEvaluation


logger = logging.getLogger(__name__)


# ============================================================
# SQL PAYOUT REPOSITORY
# ============================================================

class SqlPayoutRepository(PayoutRepository):
    """
    Repository for payout persistence.

    Usage:
        repository = await SqlPayoutRepository.from_url("sqlite+aiosqlite:///payouts.db")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], engine: Optional[AsyncEngine] = None):
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    async def from_url(cls, url: str, create_schema: bool = True, echo: bool = False) -> "SqlPayoutRepository":
        engine = create_async_engine(url, echo=echo)
        if create_schema:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, expire_on_commit=False)
        logger.info(f"Payout repository connected: {engine.url.render_as_string(hide_password=True)}")
        return cls(factory, engine)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    # --------------------------------------------------------
    # PAYOUT OPERATIONS
    # --------------------------------------------------------

    async def create(self, payout: Payout) -> None:
        async with self._session_factory() as session:
            model = PayoutModel(payout_id=payout.payout_id, stages=[])
            self._apply(model, payout)
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                existing = await self._open_model(session, payout.policy_id, payout.hazard)
                raise InvariantViolation(
                    f"Open payout already exists for {payout.slot_key}",
                    policy_id=payout.policy_id,
                    hazard=payout.hazard.value,
                    existing_payout_id=existing.payout_id if existing else None,
                    cause=e,
                ) from e

    async def save(self, payout: Payout) -> None:
        async with self._session_factory() as session:
            model = await self._get_model(session, payout.payout_id)
            if model is None:
                raise PayoutNotFound(f"Payout {payout.payout_id} not found", context={"payout_id": payout.payout_id})
            self._apply(model, payout)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise InvariantViolation(
                    f"Open payout already exists for {payout.slot_key}",
                    policy_id=payout.policy_id,
                    hazard=payout.hazard.value,
                    cause=e,
                ) from e

    async def get(self, payout_id: str) -> Optional[Payout]:
        async with self._session_factory() as session:
            model = await self._get_model(session, payout_id)
            return self._to_payout(model) if model else None

    async def find_open(self, policy_id: str, hazard: HazardType) -> Optional[Payout]:
        async with self._session_factory() as session:
            model = await self._open_model(session, policy_id, hazard)
            return self._to_payout(model) if model else None

    async def latest_confirmed(self, policy_id: str, hazard: HazardType) -> Optional[Payout]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PayoutModel)
                .where(
                    PayoutModel.policy_id == policy_id,
                    PayoutModel.hazard == hazard.value,
                    PayoutModel.state == PayoutState.CONFIRMED.value,
                )
                .order_by(desc(PayoutModel.created_at))
                .limit(1)
            )
            model = result.scalar_one_or_none()
            return self._to_payout(model) if model else None

    async def find_by_transfer_handle(self, handle_id: str) -> Optional[Payout]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PayoutModel).where(
                    or_(
                        PayoutModel.transfer_handle == handle_id,
                        PayoutModel.compensation_handle == handle_id,
                    )
                )
            )
            model = result.scalars().first()
            return self._to_payout(model) if model else None

    async def list_payouts(self, state: Optional[PayoutState] = None, limit: int = 100) -> List[Payout]:
        async with self._session_factory() as session:
            query = select(PayoutModel)
            if state is not None:
                query = query.where(PayoutModel.state == state.value)
            query = query.order_by(desc(PayoutModel.created_at)).limit(limit)
            result = await session.execute(query)
            return [self._to_payout(m) for m in result.scalars().all()]

    # --------------------------------------------------------
    # EVALUATION OPERATIONS
    # --------------------------------------------------------

    async def save_evaluation(self, evaluation: TriggerEvaluation) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TriggerEvaluationModel).where(
                    TriggerEvaluationModel.evaluation_id == evaluation.evaluation_id
                )
            )
            if result.scalar_one_or_none() is not None:
                return
            session.add(TriggerEvaluationModel(
                evaluation_id=evaluation.evaluation_id,
                policy_id=evaluation.policy_id,
                hazard=evaluation.hazard.value,
                triggered=evaluation.triggered,
                binding=evaluation.binding,
                severity=evaluation.severity,
                tier=evaluation.tier.value,
                evaluated_at=evaluation.evaluated_at,
                sweep_time=evaluation.sweep_time,
                payload=evaluation.to_dict(),
            ))
            await session.commit()

    async def get_evaluation(self, evaluation_id: str) -> Optional[TriggerEvaluation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TriggerEvaluationModel).where(TriggerEvaluationModel.evaluation_id == evaluation_id)
            )
            model = result.scalar_one_or_none()
            return TriggerEvaluation.from_dict(model.payload) if model else None

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    @staticmethod
    async def _get_model(session: AsyncSession, payout_id: str) -> Optional[PayoutModel]:
        result = await session.execute(select(PayoutModel).where(PayoutModel.payout_id == payout_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def _open_model(session: AsyncSession, policy_id: str, hazard: HazardType) -> Optional[PayoutModel]:
        result = await session.execute(
            select(PayoutModel).where(PayoutModel.open_slot_key == slot_key(policy_id, hazard))
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(model: PayoutModel, payout: Payout) -> None:
        """Copy a payout onto its row and append new stage entries."""
        model.policy_id = payout.policy_id
        model.hazard = payout.hazard.value
        model.evaluation_id = payout.evaluation_id
        model.open_slot_key = payout.slot_key if payout.is_open else None
        model.holder_id = payout.holder_id
        model.recipient = payout.recipient
        model.payment_provider = payout.payment_provider
        model.currency = payout.currency
        model.state = payout.state.value
        model.amount = payout.amount
        model.amount_breakdown = dict(payout.amount_breakdown)
        model.severity = payout.severity
        model.created_at = payout.created_at
        model.updated_at = payout.updated_at
        model.initiated_at = payout.initiated_at
        model.confirmed_at = payout.confirmed_at
        model.supporting_evaluation_ids = list(payout.supporting_evaluation_ids)
        model.transfer_handle = payout.transfer_handle
        model.retry_count = payout.retry_count
        model.last_error = payout.last_error
        model.escalated = payout.escalated
        model.escalated_at = payout.escalated_at
        model.compensation_amount = payout.compensation_amount
        model.compensation_handle = payout.compensation_handle
        model.compensation_status = payout.compensation_status.value if payout.compensation_status else None
        model.compensation_attempts = payout.compensation_attempts
        model.manual_intervention = payout.manual_intervention
        model.resolution_reason = payout.resolution_reason
        model.resolved_by = payout.resolved_by
        model.resolved_at = payout.resolved_at

        stored = len(model.stages)
        if len(payout.stage_history) < stored:
            raise ValueError(f"Stage history of payout {payout.payout_id} is append-only")
        for seq, entry in enumerate(payout.stage_history[stored:], start=stored):
            model.stages.append(PayoutStageModel(
                payout_id=payout.payout_id,
                seq=seq,
                from_state=entry.from_state.value if entry.from_state else None,
                to_state=entry.to_state.value,
                timestamp=entry.timestamp,
                reason=entry.reason,
                actor=entry.actor,
                details=dict(entry.details),
            ))

    @staticmethod
    def _to_payout(model: PayoutModel) -> Payout:
        return Payout(
            payout_id=model.payout_id,
            policy_id=model.policy_id,
            hazard=HazardType(model.hazard),
            evaluation_id=model.evaluation_id,
            holder_id=model.holder_id,
            recipient=model.recipient,
            payment_provider=model.payment_provider,
            currency=model.currency,
            state=PayoutState(model.state),
            amount=model.amount,
            amount_breakdown=dict(model.amount_breakdown or {}),
            severity=model.severity,
            created_at=_utc(model.created_at),
            updated_at=_utc(model.updated_at),
            initiated_at=_utc(model.initiated_at),
            confirmed_at=_utc(model.confirmed_at),
            stage_history=[
                StageEntry(
                    from_state=PayoutState(s.from_state) if s.from_state else None,
                    to_state=PayoutState(s.to_state),
                    timestamp=ensure_utc(s.timestamp),
                    reason=s.reason or "",
                    actor=s.actor,
                    details=dict(s.details or {}),
                )
                for s in model.stages
            ],
            supporting_evaluation_ids=list(model.supporting_evaluation_ids or []),
            transfer_handle=model.transfer_handle,
            retry_count=model.retry_count,
            last_error=model.last_error,
            escalated=model.escalated,
            escalated_at=_utc(model.escalated_at),
            compensation_amount=model.compensation_amount,
            compensation_handle=model.compensation_handle,
            compensation_status=CompensationStatus(model.compensation_status) if model.compensation_status else None,
            compensation_attempts=model.compensation_attempts or 0,
            manual_intervention=model.manual_intervention,
            resolution_reason=model.resolution_reason,
            resolved_by=model.resolved_by,
            resolved_at=_utc(model.resolved_at),
        )


def _utc(value):
    return ensure_utc(value) if value is not None else None
