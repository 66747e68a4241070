"""
SQL Payout Repository Tests.

============================================================
PURPOSE
============================================================
Tests for payout persistence with SQLAlchemy (aiosqlite).

TEST CATEGORIES:
- Round trip of payouts and stage history
- Open slot uniqueness
- Lookups by slot, handle and state
- Trigger evaluation storage

============================================================
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.clock import MockClock
from core.exceptions import InvariantViolation, PayoutNotFound
from data_sources.models import HazardType, Location, SourceTier
from payout_engine.adapters.mock import MockPaymentGateway
from payout_engine.adapters.registry import PaymentGatewayRegistry
from payout_engine.manager import PayoutManager
from payout_engine.sql_repository import SqlPayoutRepository
from payout_engine.state_machine import PayoutStateMachine
from payout_engine.types import CompensationStatus, OutcomeKind, Payout, PayoutState, TransferStatus
from policy_registry.types import CoverageTerms, Policy
from trigger_engine.types import TriggerEvaluation


T0 = datetime(2026, 3, 15, 6, 0, tzinfo=timezone.utc)


def make_policy() -> Policy:
    return Policy(
        policy_id="P1",
        location=Location(-0.4167, 36.95),
        crop_type="maize",
        farm_size_ha=Decimal("2"),
        coverage=CoverageTerms(
            sum_insured_per_ha=Decimal("50000"),
            max_payout=Decimal("100000"),
            covered_hazards=frozenset({HazardType.DROUGHT}),
        ),
        holder_id="holder-1",
        payment_account="254700000001",
    )


def make_evaluation(evaluation_id: str = "eval-1", evidence=None) -> TriggerEvaluation:
    return TriggerEvaluation(
        evaluation_id=evaluation_id,
        policy_id="P1",
        hazard=HazardType.DROUGHT,
        triggered=True,
        binding=True,
        severity=0.6275,
        tier=SourceTier.PRIMARY,
        evaluated_at=T0,
        sweep_time=T0,
        evidence=evidence or {},
    )


async def open_repository(tmp_path) -> SqlPayoutRepository:
    return await SqlPayoutRepository.from_url(f"sqlite+aiosqlite:///{tmp_path / 'payouts.db'}")


def registry_for(gateway: MockPaymentGateway) -> PaymentGatewayRegistry:
    gateways = PaymentGatewayRegistry()
    gateways.register(gateway, default=True)
    return gateways


def new_payout(payout_id: str, policy_id: str = "P1", hazard: HazardType = HazardType.DROUGHT,
               clock: MockClock = None) -> Payout:
    payout = Payout(
        payout_id=payout_id,
        policy_id=policy_id,
        hazard=hazard,
        evaluation_id=f"eval-{payout_id}",
        holder_id="holder-1",
        recipient="254700000001",
        payment_provider="mock",
    )
    PayoutStateMachine(payout, clock or MockClock(T0)).record_creation()
    return payout


# ============================================================
# PAYOUT PERSISTENCE TESTS
# ============================================================

class TestPayoutPersistence:
    """Tests for create/save/get."""

    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            clock = MockClock(T0)
            payout = new_payout("po-1", clock=clock)
            await repository.create(payout)

            machine = PayoutStateMachine(payout, clock)
            machine.mark_validating()
            payout.amount = Decimal("72062.50")
            payout.amount_breakdown = {"amount": "72062.50"}
            machine.mark_amount_computed({"amount": "72062.50"})
            clock.advance(seconds=5)
            machine.mark_initiated("mock-abc")
            await repository.save(payout)

            loaded = await repository.get("po-1")

            assert loaded.state == PayoutState.INITIATED
            assert loaded.amount == Decimal("72062.50")
            assert loaded.transfer_handle == "mock-abc"
            assert loaded.initiated_at == T0 + timedelta(seconds=5)
            assert loaded.created_at.tzinfo is not None
            assert [e.to_state for e in loaded.stage_history] == [
                PayoutState.TRIGGERED,
                PayoutState.VALIDATING,
                PayoutState.AMOUNT_COMPUTED,
                PayoutState.INITIATED,
            ]
            assert loaded.stage_history[2].details == {"amount": "72062.50"}
        finally:
            await repository.close()

    @pytest.mark.asyncio
    async def test_missing(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            assert await repository.get("nope") is None
            with pytest.raises(PayoutNotFound):
                await repository.save(new_payout("nope"))
        finally:
            await repository.close()

    @pytest.mark.asyncio
    async def test_history_is_append_only(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            payout = new_payout("po-1")
            PayoutStateMachine(payout, MockClock(T0)).mark_validating()
            await repository.create(payout)

            payout.stage_history = payout.stage_history[:1]
            with pytest.raises(ValueError):
                await repository.save(payout)
        finally:
            await repository.close()


# ============================================================
# OPEN SLOT TESTS
# ============================================================

class TestOpenSlot:
    """Tests for the one-open-payout-per-slot constraint."""

    @pytest.mark.asyncio
    async def test_second_open_payout_rejected(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            await repository.create(new_payout("po-1"))

            with pytest.raises(InvariantViolation) as exc_info:
                await repository.create(new_payout("po-2"))

            assert exc_info.value.context["existing_payout_id"] == "po-1"
            # Another hazard is a different slot.
            await repository.create(new_payout("po-3", hazard=HazardType.FLOOD))
        finally:
            await repository.close()

    @pytest.mark.asyncio
    async def test_terminal_payout_frees_slot(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            payout = new_payout("po-1")
            await repository.create(payout)
            assert (await repository.find_open("P1", HazardType.DROUGHT)).payout_id == "po-1"

            PayoutStateMachine(payout, MockClock(T0)).mark_cancelled("test", "ops")
            await repository.save(payout)

            assert await repository.find_open("P1", HazardType.DROUGHT) is None
            await repository.create(new_payout("po-2"))
        finally:
            await repository.close()


# ============================================================
# QUERY TESTS
# ============================================================

class TestQueries:
    """Tests for lookups used by the manager."""

    @pytest.mark.asyncio
    async def test_latest_confirmed(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            for index, payout_id in enumerate(("po-1", "po-2")):
                clock = MockClock(T0 + timedelta(days=index))
                payout = new_payout(payout_id, clock=clock)
                await repository.create(payout)
                machine = PayoutStateMachine(payout, clock)
                machine.mark_validating()
                machine.mark_amount_computed({})
                machine.mark_initiated(f"mock-{payout_id}")
                machine.mark_in_progress()
                machine.mark_confirmed()
                await repository.save(payout)

            latest = await repository.latest_confirmed("P1", HazardType.DROUGHT)
            assert latest.payout_id == "po-2"
            assert await repository.latest_confirmed("P1", HazardType.FLOOD) is None
        finally:
            await repository.close()

    @pytest.mark.asyncio
    async def test_find_by_handle(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            payout = new_payout("po-1")
            payout.transfer_handle = "mock-main"
            payout.compensation_handle = "mock-comp"
            await repository.create(payout)

            assert (await repository.find_by_transfer_handle("mock-main")).payout_id == "po-1"
            assert (await repository.find_by_transfer_handle("mock-comp")).payout_id == "po-1"
            assert await repository.find_by_transfer_handle("mock-other") is None
        finally:
            await repository.close()

    @pytest.mark.asyncio
    async def test_list_by_state_newest_first(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            for index in range(3):
                clock = MockClock(T0 + timedelta(hours=index))
                await repository.create(new_payout(f"po-{index}", policy_id=f"P{index}", clock=clock))

            payouts = await repository.list_payouts(limit=2)
            assert [p.payout_id for p in payouts] == ["po-2", "po-1"]
            assert await repository.list_payouts(state=PayoutState.CONFIRMED) == []
            assert len(await repository.list_in_flight()) == 0
        finally:
            await repository.close()


# ============================================================
# EVALUATION TESTS
# ============================================================

class TestEvaluations:
    """Tests for trigger evaluation storage."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, tmp_path):
        repository = await open_repository(tmp_path)
        try:
            evaluation = make_evaluation(evidence={"rule": "drought", "dry_days": 25})
            await repository.save_evaluation(evaluation)
            await repository.save_evaluation(evaluation)

            loaded = await repository.get_evaluation("eval-1")
            assert loaded == evaluation
            assert await repository.get_evaluation("eval-2") is None
        finally:
            await repository.close()


# ============================================================
# MANAGER INTEGRATION
# ============================================================

class TestManagerWithSql:
    """The manager lifecycle against the SQL repository."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, tmp_path):
        repository = await open_repository(tmp_path)
        clock = MockClock(T0)
        gateway = MockPaymentGateway()
        manager = PayoutManager(repository=repository, gateways=registry_for(gateway), clock=clock)
        try:
            outcome = await manager.handle_trigger(make_policy(), make_evaluation())
            assert outcome.kind == OutcomeKind.CREATED

            merged = await manager.handle_trigger(make_policy(), make_evaluation("eval-2"))
            assert merged.kind == OutcomeKind.MERGED

            gateway.set_status(outcome.payout.transfer_handle, TransferStatus.SUCCEEDED)
            await manager.apply_transfer_update(outcome.payout.transfer_handle, TransferStatus.SUCCEEDED)

            stored = await repository.get(outcome.payout_id)
            assert stored.state == PayoutState.CONFIRMED
            assert stored.supporting_evaluation_ids == ["eval-2"]
            assert len(stored.stage_history) == 6
            assert (await repository.get_evaluation("eval-2")).policy_id == "P1"
        finally:
            await manager.close_resources()

    @pytest.mark.asyncio
    async def test_compensation_status_persisted(self, tmp_path):
        """Test that pending compensation survives a reload and is polled to completion."""
        repository = await open_repository(tmp_path)
        clock = MockClock(T0)
        gateway = MockPaymentGateway()
        manager = PayoutManager(repository=repository, gateways=registry_for(gateway), clock=clock)
        try:
            outcome = await manager.handle_trigger(make_policy(), make_evaluation())
            clock.set_time(T0 + timedelta(hours=50))
            await manager.process_due_escalations()
            gateway.set_status(outcome.payout.transfer_handle, TransferStatus.SUCCEEDED)
            await manager.apply_transfer_update(outcome.payout.transfer_handle, TransferStatus.SUCCEEDED)

            pending = await repository.list_compensation_pending()
            assert [p.payout_id for p in pending] == [outcome.payout_id]
            assert pending[0].compensation_status == CompensationStatus.PENDING
            assert pending[0].compensation_attempts == 1

            gateway.set_status(pending[0].compensation_handle, TransferStatus.SUCCEEDED)
            assert await manager.poll_in_flight() == {"compensation:SUCCEEDED": 1}

            stored = await repository.get(outcome.payout_id)
            assert stored.compensation_status == CompensationStatus.SUCCEEDED
            assert stored.compensation_paid is True
            assert await repository.list_compensation_pending() == []
        finally:
            await manager.close_resources()
