"""
Orchestrator - Sweep.

============================================================
RESPONSIBILITY
============================================================
One sweep over the active policy book:

    for each policy (bounded by a semaphore):
        fetch snapshot -> record -> trailing windows ->
        evaluate every covered hazard -> hand triggers to payouts
    then poll in-flight transfers and run due SLA checks

- Each policy unit is isolated: its exception is captured in its
  PolicyUnitResult and never affects other units
- Evaluations go through the ledger, which drops out-of-order ones

============================================================
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import DataUnavailable
from data_sources.gateway import EnvironmentalDataGateway
from data_sources.models import EnvironmentalSnapshot, HazardType
from orchestrator.models import PolicyUnitResult, SweepResult
from payout_engine.alerting import OperatorAlerter, create_data_unavailable_alert
from payout_engine.manager import PayoutManager
from policy_registry.base import PolicyRegistryPort
from policy_registry.types import Policy
from trigger_engine.evaluator import TriggerEvaluator
from trigger_engine.ledger import EvaluationLedger
from trigger_engine.types import summarize


logger = logging.getLogger(__name__)


class SweepEngine:
    """
    Runs sweeps and escalation ticks.

    Usage:
        engine = SweepEngine(gateway, registry, evaluator, payouts)
        result = await engine.run_sweep()
    """

    def __init__(
        self,
        gateway: EnvironmentalDataGateway,
        registry: PolicyRegistryPort,
        evaluator: TriggerEvaluator,
        payouts: PayoutManager,
        ledger: Optional[EvaluationLedger] = None,
        alerter: Optional[OperatorAlerter] = None,
        max_concurrency: int = 10,
        clock: Optional[ClockProtocol] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._gateway = gateway
        self._registry = registry
        self._evaluator = evaluator
        self._payouts = payouts
        self._ledger = ledger or EvaluationLedger()
        self._alerter = alerter
        self._max_concurrency = max_concurrency
        self._clock = clock or ClockFactory.get_clock()
        self._last_result: Optional[SweepResult] = None
        self._sweep_count = 0

    @property
    def ledger(self) -> EvaluationLedger:
        return self._ledger

    @property
    def last_result(self) -> Optional[SweepResult]:
        return self._last_result

    @property
    def sweep_count(self) -> int:
        return self._sweep_count

    # --------------------------------------------------------
    # SWEEP
    # --------------------------------------------------------

    async def run_sweep(self, sweep_time: Optional[datetime] = None) -> SweepResult:
        """Run one sweep; never raises for a single policy's failure."""
        sweep_time = sweep_time or self._clock.now()
        result = SweepResult(
            sweep_id=uuid.uuid4().hex[:12],
            sweep_time=sweep_time,
            started_at=self._clock.now(),
        )

        policies = await self._registry.list_active_policies()
        logger.info(f"Sweep {result.sweep_id} started: {len(policies)} active policies")

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(policy: Policy) -> PolicyUnitResult:
            async with semaphore:
                return await self._run_unit(policy, sweep_time)

        result.units = list(await asyncio.gather(*(bounded(p) for p in policies)))

        result.polled = await self._payouts.poll_in_flight()
        result.escalated = await self._payouts.process_due_escalations()
        result.completed_at = self._clock.now()

        self._last_result = result
        self._sweep_count += 1

        logger.info(
            f"Sweep {result.sweep_id} complete in {result.duration_seconds:.2f}s: "
            f"policies={result.policies} failed={result.failed} triggered={result.triggered} "
            f"outcomes={result.outcome_counts()} escalated={len(result.escalated)}"
        )
        return result

    async def run_escalation_tick(self) -> Dict[str, object]:
        """Poll in-flight transfers and run due SLA checks between sweeps."""
        polled = await self._payouts.poll_in_flight()
        escalated = await self._payouts.process_due_escalations()
        return {"polled": polled, "escalated": escalated}

    # --------------------------------------------------------
    # POLICY UNIT
    # --------------------------------------------------------

    async def _run_unit(self, policy: Policy, sweep_time: datetime) -> PolicyUnitResult:
        start = time.perf_counter()
        try:
            unit = await self._process_policy(policy, sweep_time)
        except DataUnavailable as e:
            logger.warning(f"Policy {policy.policy_id}: {e}")
            if self._alerter is not None:
                await self._alerter.send_alert(
                    create_data_unavailable_alert(policy.policy_id, list(e.attempted_tiers))
                )
            unit = PolicyUnitResult(
                policy_id=policy.policy_id,
                success=False,
                error=str(e),
                error_type=type(e).__name__,
            )
        except Exception as e:
            logger.error(f"Policy unit {policy.policy_id} failed: {e}", exc_info=True)
            unit = PolicyUnitResult(
                policy_id=policy.policy_id,
                success=False,
                error=str(e),
                error_type=type(e).__name__,
            )
        unit.duration_ms = (time.perf_counter() - start) * 1000
        return unit

    async def _process_policy(self, policy: Policy, sweep_time: datetime) -> PolicyUnitResult:
        hazards = policy.coverage.covered_hazards
        window_days = self._evaluator.window_days
        since = sweep_time - timedelta(days=window_days)

        fetched = await self._gateway.fetch_snapshot(policy.location, hazards, since)
        snapshot = fetched.snapshot
        await self._registry.record_snapshot(policy.policy_id, snapshot)

        histories: Dict[HazardType, List[EnvironmentalSnapshot]] = {}
        for hazard in hazards:
            histories[hazard] = await self._registry.get_trailing_window(policy.policy_id, hazard, window_days)

        evaluations = self._evaluator.evaluate_all(policy, snapshot, histories, sweep_time)

        unit = PolicyUnitResult(
            policy_id=policy.policy_id,
            success=True,
            tier=snapshot.tier.value,
            evaluations=len(evaluations),
        )

        fired = summarize(evaluations)
        if fired:
            logger.info(f"Triggered: {fired}")

        for evaluation in evaluations:
            if not self._ledger.record(evaluation):
                continue
            if evaluation.triggered:
                unit.triggered.append(evaluation.hazard.value)
            outcome = await self._payouts.handle_trigger(policy, evaluation)
            unit.outcomes[evaluation.hazard.value] = outcome.kind.value

        return unit
