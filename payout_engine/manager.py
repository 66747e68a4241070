"""
Payout Engine - Payout Manager.

============================================================
PURPOSE
============================================================
Owns every payout from trigger to terminal state.

RESPONSIBILITIES:
- Single-writer check-and-create per (policy, hazard)
- Amount computation and transfer initiation with bounded retries
- Status polling and payment callbacks
- SLA escalation with delay compensation
- Operator actions (cancel, settle or retry compensation, close)

CRITICAL REQUIREMENTS:
- At most one open payout per (policy, hazard)
- Transfer initiation is idempotent (key payout-{id})
- Every failure alerts the operator; holders only see templates
- No blocking waits for escalation: deferred checks on a heap

============================================================
"""

import asyncio
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import (
    InvariantViolation,
    PaymentError,
    PaymentPermanent,
    PaymentTransient,
    PayoutNotFound,
    StateTransitionError,
)
from notifications.base import NotificationDispatcher, NotificationKind
from payout_engine.adapters.base import PaymentGatewayPort
from payout_engine.adapters.mock import MockPaymentGateway
from payout_engine.adapters.registry import PaymentGatewayRegistry
from payout_engine.alerting import (
    Alert,
    OperatorAlerter,
    RecordingAlerter,
    create_compensation_failed_alert,
    create_escalation_alert,
    create_payout_failed_alert,
)
from payout_engine.amount import PayoutAmountCalculator
from payout_engine.config import PayoutConfig
from payout_engine.escalation import EscalationScheduler, compute_compensation, hours_late
from payout_engine.repository import InMemoryPayoutRepository, PayoutRepository
from payout_engine.state_machine import PayoutStateMachine
from payout_engine.types import (
    CompensationStatus,
    OutcomeKind,
    Payout,
    PayoutOutcome,
    PayoutState,
    TransferHandle,
    TransferStatus,
    slot_key,
)
from policy_registry.types import Policy
from trigger_engine.types import TriggerEvaluation


logger = logging.getLogger(__name__)


def _new_payout_id() -> str:
    return uuid.uuid4().hex


class PayoutManager:
    """
    Payout lifecycle manager.

    Usage:
        manager = PayoutManager(repository, gateways, config)
        outcome = await manager.handle_trigger(policy, evaluation)
        await manager.poll_in_flight()
        await manager.process_due_escalations()
    """

    def __init__(
        self,
        repository: Optional[PayoutRepository] = None,
        gateways: Optional[PaymentGatewayRegistry] = None,
        config: Optional[PayoutConfig] = None,
        clock: Optional[ClockProtocol] = None,
        alerter: Optional[OperatorAlerter] = None,
        notifier: Optional[NotificationDispatcher] = None,
        calculator: Optional[PayoutAmountCalculator] = None,
        id_factory: Callable[[], str] = _new_payout_id,
    ):
        self._repository = repository or InMemoryPayoutRepository()
        if gateways is None:
            gateways = PaymentGatewayRegistry()
            gateways.register(MockPaymentGateway(), default=True)
        self._gateways = gateways
        self._config = config or PayoutConfig()
        self._clock = clock or ClockFactory.get_clock()
        self._alerter = alerter or RecordingAlerter()
        self._notifier = notifier or NotificationDispatcher()
        self._calculator = calculator or PayoutAmountCalculator()
        self._id_factory = id_factory

        self._scheduler = EscalationScheduler(self._config.escalation)
        self._slot_locks: Dict[str, asyncio.Lock] = {}

    @property
    def repository(self) -> PayoutRepository:
        return self._repository

    @property
    def scheduler(self) -> EscalationScheduler:
        return self._scheduler

    @property
    def config(self) -> PayoutConfig:
        return self._config

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._slot_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._slot_locks[key] = lock
        return lock

    def _machine(self, payout: Payout) -> PayoutStateMachine:
        return PayoutStateMachine(payout, self._clock)

    # --------------------------------------------------------
    # TRIGGER HANDLING
    # --------------------------------------------------------

    async def handle_trigger(self, policy: Policy, evaluation: TriggerEvaluation) -> PayoutOutcome:
        """
        Turn a trigger evaluation into (at most) one payout.

        Returns:
            PayoutOutcome with kind CREATED, MERGED, SUPPRESSED or IGNORED
        """
        if evaluation.policy_id != policy.policy_id:
            raise ValueError(
                f"Evaluation {evaluation.evaluation_id} is for {evaluation.policy_id}, "
                f"not {policy.policy_id}"
            )

        if not evaluation.triggered:
            return PayoutOutcome(OutcomeKind.IGNORED, reason="not triggered")
        if not evaluation.binding:
            return PayoutOutcome(OutcomeKind.IGNORED, reason=f"{evaluation.tier.value} data is not binding")

        key = slot_key(policy.policy_id, evaluation.hazard)
        async with self._lock_for(key):
            await self._repository.save_evaluation(evaluation)

            existing = await self._repository.find_open(policy.policy_id, evaluation.hazard)
            if existing is not None:
                return await self._merge(existing, evaluation)

            previous = await self._repository.latest_confirmed(policy.policy_id, evaluation.hazard)
            if previous is not None and self._in_cooldown(previous):
                logger.info(
                    f"Suppressed trigger {evaluation.evaluation_id} for {key}: "
                    f"cooldown after payout {previous.payout_id}"
                )
                return PayoutOutcome(
                    OutcomeKind.SUPPRESSED,
                    payout=previous,
                    reason=f"cooldown after payout {previous.payout_id}",
                )

            payout = Payout(
                payout_id=self._id_factory(),
                policy_id=policy.policy_id,
                hazard=evaluation.hazard,
                evaluation_id=evaluation.evaluation_id,
                holder_id=policy.holder_id,
                recipient=policy.payment_account,
                payment_provider=policy.payment_provider,
                currency=self._config.currency,
                severity=evaluation.severity,
            )
            machine = self._machine(payout)
            machine.record_creation(f"Trigger {evaluation.evaluation_id}")

            try:
                await self._repository.create(payout)
            except InvariantViolation as e:
                # Another process took the slot between find_open and create.
                logger.info(f"Absorbed invariant violation: {e}")
                existing = await self._repository.find_open(policy.policy_id, evaluation.hazard)
                if existing is None:
                    raise
                return await self._merge(existing, evaluation)

            logger.info(
                f"Payout {payout.payout_id} created for {key} "
                f"(severity={evaluation.severity:.3f})"
            )
            await self._drive(policy, payout, machine, evaluation)
            return PayoutOutcome(OutcomeKind.CREATED, payout=payout)

    def _in_cooldown(self, previous: Payout) -> bool:
        if previous.created_at is None:
            return False
        return self._clock.now() < previous.created_at + timedelta(hours=self._config.cooldown_hours)

    async def _merge(self, payout: Payout, evaluation: TriggerEvaluation) -> PayoutOutcome:
        if (
            evaluation.evaluation_id != payout.evaluation_id
            and evaluation.evaluation_id not in payout.supporting_evaluation_ids
        ):
            payout.supporting_evaluation_ids.append(evaluation.evaluation_id)
            payout.updated_at = self._clock.now()
            await self._repository.save(payout)
        logger.info(
            f"Merged evaluation {evaluation.evaluation_id} into open payout "
            f"{payout.payout_id} ({payout.state.value})"
        )
        return PayoutOutcome(OutcomeKind.MERGED, payout=payout, reason=f"open payout {payout.payout_id}")

    async def _drive(
        self,
        policy: Policy,
        payout: Payout,
        machine: PayoutStateMachine,
        evaluation: TriggerEvaluation,
    ) -> None:
        """TRIGGERED -> VALIDATING -> AMOUNT_COMPUTED -> INITIATED."""
        machine.mark_validating()

        problem = self._validate(policy, payout, evaluation)
        if problem is None:
            try:
                breakdown = self._calculator.compute(policy, evaluation.severity)
            except ValueError as e:
                problem = f"Amount computation failed: {e}"
        if problem is not None:
            await self._fail(payout, machine, problem, code="VALIDATION")
            return

        payout.amount = breakdown.amount
        payout.amount_breakdown = breakdown.to_dict()
        machine.mark_amount_computed({"amount": str(breakdown.amount), "capped": breakdown.capped})
        await self._repository.save(payout)

        await self._initiate(payout, machine)

    @staticmethod
    def _validate(policy: Policy, payout: Payout, evaluation: TriggerEvaluation) -> Optional[str]:
        if not policy.is_active:
            return f"Policy {policy.policy_id} is {policy.status.value}"
        if not policy.covers(payout.hazard):
            return f"Policy {policy.policy_id} does not cover {payout.hazard.value}"
        if not evaluation.binding:
            return f"Evaluation {evaluation.evaluation_id} is not binding"
        return None

    # --------------------------------------------------------
    # TRANSFER INITIATION
    # --------------------------------------------------------

    async def _initiate(self, payout: Payout, machine: PayoutStateMachine) -> None:
        gateway = self._gateways.get(payout.payment_provider)
        metadata = {
            "payout_id": payout.payout_id,
            "policy_id": payout.policy_id,
            "hazard": payout.hazard.value,
        }
        try:
            handle = await self._initiate_with_retries(
                gateway, payout.idempotency_key, payout.recipient, payout.amount, metadata, payout,
            )
        except PaymentError as e:
            await self._fail(payout, machine, f"Transfer initiation failed: {e}", code=e.code)
            return

        machine.mark_initiated(handle.handle_id)
        await self._repository.save(payout)
        due = self._scheduler.schedule_deadline(payout)
        logger.info(
            f"Payout {payout.payout_id} initiated: {payout.currency} {payout.amount} "
            f"handle={handle.handle_id}, SLA check at {due.isoformat()}"
        )

    async def _initiate_with_retries(
        self,
        gateway: PaymentGatewayPort,
        idempotency_key: str,
        recipient: str,
        amount: Decimal,
        metadata: Dict[str, Any],
        payout: Optional[Payout] = None,
    ) -> TransferHandle:
        """
        Initiate a transfer with bounded exponential backoff.

        Only PaymentTransient (including timeouts) is retried; the same
        idempotency key is sent on every attempt.

        Raises:
            PaymentPermanent: Immediately
            PaymentTransient: After max_retries retries
        """
        retry_config = self._config.retry
        delay = retry_config.initial_delay_seconds
        last_error: Optional[PaymentTransient] = None

        for attempt in range(retry_config.max_retries + 1):
            if payout is not None:
                payout.retry_count = attempt
            try:
                return await asyncio.wait_for(
                    gateway.initiate_transfer(idempotency_key, recipient, amount, metadata),
                    timeout=self._config.timeout.initiate_timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                last_error = PaymentTransient(
                    f"initiate_transfer timed out after {self._config.timeout.initiate_timeout_seconds}s",
                    provider=gateway.provider_id,
                    code="TIMEOUT",
                    cause=e,
                )
            except PaymentTransient as e:
                last_error = e

            if attempt < retry_config.max_retries:
                logger.warning(
                    f"Transfer {idempotency_key} attempt {attempt + 1} failed: {last_error}. "
                    f"Retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                delay = min(delay * retry_config.backoff_multiplier, retry_config.max_delay_seconds)

        logger.error(f"Transfer {idempotency_key}: retries exhausted ({retry_config.max_retries})")
        raise last_error

    # --------------------------------------------------------
    # STATUS UPDATES
    # --------------------------------------------------------

    async def _poll_transfer(self, gateway: PaymentGatewayPort, handle: TransferHandle) -> TransferStatus:
        """
        Ask the provider for a transfer's status within the poll timeout.

        Raises:
            PaymentTransient: Timeout or retryable provider error
            PaymentPermanent: Provider rejected the query
        """
        timeout = self._config.timeout.poll_timeout_seconds
        try:
            return await asyncio.wait_for(gateway.poll_status(handle), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PaymentTransient(
                f"poll_status timed out after {timeout}s",
                provider=gateway.provider_id,
                code="TIMEOUT",
                cause=e,
            ) from e

    async def poll_in_flight(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Poll the payment gateway for every in-flight payout and every
        pending compensation transfer.

        Returns:
            Counts of observed statuses (plus "errors"); compensation
            transfers are counted under "compensation:<status>"
        """
        counts: Counter = Counter()
        for payout in await self._repository.list_in_flight():
            if not payout.transfer_handle:
                continue
            gateway = self._gateways.get(payout.payment_provider)
            handle = TransferHandle(
                handle_id=payout.transfer_handle,
                provider=gateway.provider_id,
                idempotency_key=payout.idempotency_key,
            )
            try:
                status = await self._poll_transfer(gateway, handle)
            except PaymentTransient as e:
                logger.warning(f"Poll of payout {payout.payout_id} failed: {e}")
                counts["errors"] += 1
                continue
            except PaymentPermanent as e:
                logger.error(f"Gateway rejected poll of payout {payout.payout_id}: {e}")
                counts["errors"] += 1
                await self._apply_status(payout.payout_id, TransferStatus.FAILED, "poll", reason=str(e))
                continue

            counts[status.value] += 1
            await self._apply_status(payout.payout_id, status, "poll")

        for payout in await self._repository.list_compensation_pending():
            gateway = self._gateways.get(payout.payment_provider)
            handle = TransferHandle(
                handle_id=payout.compensation_handle,
                provider=gateway.provider_id,
                idempotency_key=payout.compensation_idempotency_key,
            )
            reason = None
            try:
                status = await self._poll_transfer(gateway, handle)
            except PaymentTransient as e:
                logger.warning(f"Poll of compensation for payout {payout.payout_id} failed: {e}")
                counts["errors"] += 1
                continue
            except PaymentPermanent as e:
                logger.error(f"Gateway rejected poll of compensation for payout {payout.payout_id}: {e}")
                counts["errors"] += 1
                status, reason = TransferStatus.FAILED, str(e)

            counts[f"compensation:{status.value}"] += 1
            await self._apply_compensation_status(
                payout.payout_id, handle.handle_id, status, "poll", reason=reason,
            )

        if counts:
            logger.info(f"Polled in-flight payouts: {dict(counts)}")
        return dict(counts)

    async def apply_transfer_update(self, handle_id: str, reported: TransferStatus) -> Payout:
        """
        Payment callback path.

        The pushed status is only a hint: the transfer is re-polled at its
        provider and the provider's answer is what gets applied.

        Raises:
            PayoutNotFound: No payout owns the handle
            PaymentError: The provider could not confirm the status
        """
        payout = await self._repository.find_by_transfer_handle(handle_id)
        if payout is None:
            raise PayoutNotFound(f"No payout for transfer {handle_id}", context={"handle_id": handle_id})

        is_compensation = handle_id == payout.compensation_handle
        if not is_compensation and handle_id != payout.transfer_handle:
            logger.info(f"Ignoring callback for superseded transfer {handle_id} of payout {payout.payout_id}")
            return payout

        gateway = self._gateways.get(payout.payment_provider)
        handle = TransferHandle(
            handle_id=handle_id,
            provider=gateway.provider_id,
            idempotency_key=payout.compensation_idempotency_key if is_compensation else payout.idempotency_key,
        )
        status = await self._poll_transfer(gateway, handle)
        if status != reported:
            logger.warning(
                f"Callback for transfer {handle_id} reported {reported.value} "
                f"but the provider reports {status.value}; applying {status.value}"
            )

        if is_compensation:
            return await self._apply_compensation_status(payout.payout_id, handle_id, status, "callback")
        return await self._apply_status(payout.payout_id, status, "callback")

    async def _apply_status(
        self,
        payout_id: str,
        status: TransferStatus,
        source: str,
        reason: Optional[str] = None,
    ) -> Payout:
        payout = await self._require(payout_id)
        async with self._lock_for(payout.slot_key):
            payout = await self._require(payout_id)
            if not payout.state.is_in_flight():
                logger.debug(f"Ignoring {status.value} ({source}) for payout {payout_id} in {payout.state.value}")
                return payout

            machine = self._machine(payout)

            if status == TransferStatus.PENDING:
                if payout.state == PayoutState.INITIATED:
                    machine.mark_in_progress(f"Transfer pending ({source})")
                    await self._repository.save(payout)

            elif status == TransferStatus.SUCCEEDED:
                if payout.state != PayoutState.IN_PROGRESS:
                    late = payout.state == PayoutState.DELAYED_ESCALATED
                    machine.mark_in_progress("Late confirmation" if late else f"Transfer progressing ({source})")
                await self._confirm(payout, machine)

            elif status == TransferStatus.FAILED:
                await self._fail(
                    payout, machine,
                    reason or f"Payment gateway reported transfer failure ({source})",
                    code="TRANSFER_FAILED",
                )

            return payout

    async def _confirm(self, payout: Payout, machine: PayoutStateMachine) -> None:
        late = hours_late(payout, self._clock.now(), self._config.escalation.sla_hours)
        if late > 0:
            payout.compensation_amount = compute_compensation(payout.amount, late, self._config.compensation)

        compensation_error = None
        if payout.compensation_owed:
            compensation_error = await self._send_compensation(payout)

        machine.mark_confirmed({
            "hours_late": round(late, 4),
            "compensation": str(payout.compensation_amount),
            "compensation_status": payout.compensation_status.value if payout.compensation_status else None,
        })
        self._scheduler.cancel(payout.payout_id)
        await self._repository.save(payout)

        logger.info(
            f"Payout {payout.payout_id} CONFIRMED: principal {payout.currency} {payout.amount}, "
            f"compensation {payout.compensation_amount}"
        )
        if compensation_error is not None:
            await self._alert(create_compensation_failed_alert(
                payout.payout_id, payout.policy_id, payout.compensation_amount, str(compensation_error),
            ))
        compensation_sent = payout.compensation_status == CompensationStatus.PENDING
        await self._notify(payout, NotificationKind.PAYOUT_CONFIRMED, {
            "compensation": str(payout.compensation_amount) if compensation_sent else "0",
        })

    async def _send_compensation(self, payout: Payout) -> Optional[PaymentError]:
        """
        Initiate the delay compensation transfer.

        A fresh key is issued for the first attempt and after a transfer the
        provider rejected; a failed initiation reuses its key.

        Returns:
            The initiation error, or None when the transfer is PENDING
        """
        if payout.compensation_attempts == 0 or payout.compensation_handle:
            payout.compensation_attempts += 1
            payout.compensation_handle = None

        gateway = self._gateways.get(payout.payment_provider)
        try:
            handle = await self._initiate_with_retries(
                gateway,
                payout.compensation_idempotency_key,
                payout.recipient,
                payout.compensation_amount,
                {
                    "payout_id": payout.payout_id,
                    "kind": "delay_compensation",
                    "attempt": payout.compensation_attempts,
                },
            )
        except PaymentError as e:
            payout.compensation_status = CompensationStatus.FAILED
            payout.last_error = f"Compensation transfer failed: {e}"
            payout.manual_intervention = True
            logger.error(f"Payout {payout.payout_id}: {payout.last_error}")
            return e

        payout.compensation_handle = handle.handle_id
        payout.compensation_status = CompensationStatus.PENDING
        return None

    async def _apply_compensation_status(
        self,
        payout_id: str,
        handle_id: str,
        status: TransferStatus,
        source: str,
        reason: Optional[str] = None,
    ) -> Payout:
        payout = await self._require(payout_id)
        async with self._lock_for(payout.slot_key):
            payout = await self._require(payout_id)
            if (
                handle_id != payout.compensation_handle
                or payout.compensation_status != CompensationStatus.PENDING
                or status == TransferStatus.PENDING
            ):
                logger.debug(
                    f"Compensation transfer {handle_id} of payout {payout_id}: {status.value} ({source}), "
                    f"recorded status {payout.compensation_status.value if payout.compensation_status else None}"
                )
                return payout

            details = {"transfer_handle": handle_id, "compensation": str(payout.compensation_amount)}
            if status == TransferStatus.SUCCEEDED:
                payout.compensation_status = CompensationStatus.SUCCEEDED
                payout.manual_intervention = False
                self._machine(payout).record_note(f"Compensation transfer succeeded ({source})", details=details)
            else:
                payout.compensation_status = CompensationStatus.FAILED
                payout.last_error = reason or f"Payment gateway reported compensation transfer failure ({source})"
                payout.manual_intervention = True
                self._machine(payout).record_note(payout.last_error, details=details)
            await self._repository.save(payout)

        if payout.compensation_status == CompensationStatus.FAILED:
            logger.error(f"Payout {payout_id}: {payout.last_error}")
            await self._alert(create_compensation_failed_alert(
                payout_id, payout.policy_id, payout.compensation_amount, payout.last_error,
            ))
        else:
            logger.info(f"Payout {payout_id} compensation paid: total {payout.currency} {payout.total_paid}")
        return payout

    async def _fail(
        self,
        payout: Payout,
        machine: PayoutStateMachine,
        reason: str,
        code: Optional[str] = None,
    ) -> None:
        if payout.escalated:
            late = hours_late(payout, self._clock.now(), self._config.escalation.sla_hours)
            payout.compensation_amount = compute_compensation(payout.amount, late, self._config.compensation)

        machine.mark_failed(reason, details={"code": code} if code else None)
        payout.manual_intervention = True
        self._scheduler.cancel(payout.payout_id)
        await self._repository.save(payout)

        logger.error(f"Payout {payout.payout_id} FAILED: {reason}")
        await self._alert(create_payout_failed_alert(payout.payout_id, payout.policy_id, reason, code))
        await self._notify(payout, NotificationKind.MANUAL_FOLLOW_UP)

    # --------------------------------------------------------
    # ESCALATION
    # --------------------------------------------------------

    async def process_due_escalations(self, now: Optional[datetime] = None) -> List[str]:
        """
        Run every SLA check that is due.

        Returns:
            Ids of payouts that newly entered DELAYED_ESCALATED
        """
        now = now or self._clock.now()
        escalated: List[str] = []
        for payout_id in self._scheduler.pop_due(now):
            if await self._check_escalation(payout_id, now):
                escalated.append(payout_id)
        return escalated

    async def _check_escalation(self, payout_id: str, now: datetime) -> bool:
        payout = await self._repository.get(payout_id)
        if payout is None:
            logger.warning(f"Escalation check for unknown payout {payout_id}")
            return False

        async with self._lock_for(payout.slot_key):
            payout = await self._require(payout_id)
            if not payout.state.is_in_flight():
                return False

            late = hours_late(payout, now, self._config.escalation.sla_hours)
            payout.compensation_amount = compute_compensation(payout.amount, late, self._config.compensation)
            newly_escalated = payout.state != PayoutState.DELAYED_ESCALATED

            if newly_escalated:
                self._machine(payout).mark_escalated(late, str(payout.compensation_amount))
            else:
                payout.updated_at = self._clock.now()
            await self._repository.save(payout)
            self._scheduler.schedule_recheck(payout_id, now)

        if newly_escalated:
            logger.warning(
                f"Payout {payout_id} escalated: {late:.1f}h past SLA, "
                f"compensation {payout.currency} {payout.compensation_amount}"
            )
            await self._alert(create_escalation_alert(
                payout_id, payout.policy_id, late, payout.compensation_amount,
            ))
            await self._notify(payout, NotificationKind.PAYOUT_DELAYED)
        else:
            logger.info(f"Payout {payout_id} still delayed; compensation now {payout.compensation_amount}")
        return newly_escalated

    async def recover(self) -> int:
        """Reschedule SLA checks for in-flight payouts after a restart."""
        payouts = await self._repository.list_in_flight()
        count = self._scheduler.rebuild(payouts, self._clock.now())
        if count:
            logger.info(f"Recovered {count} in-flight payouts")
        return count

    # --------------------------------------------------------
    # OPERATOR ACTIONS
    # --------------------------------------------------------

    async def cancel(self, payout_id: str, reason: str, actor: str) -> Payout:
        """
        Cancel a payout that has not reached FAILED or a terminal state.

        Raises:
            PayoutNotFound, StateTransitionError
        """
        payout = await self._require(payout_id)
        async with self._lock_for(payout.slot_key):
            payout = await self._require(payout_id)
            in_flight = payout.state.is_in_flight()
            self._machine(payout).mark_cancelled(reason, actor)
            self._scheduler.cancel(payout_id)
            await self._repository.save(payout)

        if in_flight:
            logger.warning(
                f"Payout {payout_id} cancelled by {actor} with transfer "
                f"{payout.transfer_handle} in flight; reconcile with the provider"
            )
        return payout

    async def settle_compensation(self, payout_id: str, actor: str, reference: Optional[str] = None) -> Payout:
        """
        Record out-of-band settlement of owed delay compensation.

        FAILED payouts move to COMPENSATED. CONFIRMED payouts whose
        compensation transfer failed keep their state and get a settlement
        note in the stage history.

        Raises:
            PayoutNotFound, StateTransitionError
        """
        payout = await self._require(payout_id)
        async with self._lock_for(payout.slot_key):
            payout = await self._require(payout_id)
            if payout.state not in (PayoutState.FAILED, PayoutState.CONFIRMED) or not payout.compensation_owed:
                raise StateTransitionError(
                    f"Payout {payout_id} has no compensation owed "
                    f"(state={payout.state.value}, compensation={payout.compensation_amount})",
                    payout_id=payout_id,
                    from_state=payout.state.value,
                    to_state=PayoutState.COMPENSATED.value,
                )
            details = {"compensation": str(payout.compensation_amount), "reference": reference}
            payout.compensation_status = CompensationStatus.SETTLED
            machine = self._machine(payout)
            if payout.state == PayoutState.FAILED:
                machine.mark_compensated(actor, details)
            else:
                payout.manual_intervention = False
                machine.record_note("Compensation settled", actor=actor, details=details)
            await self._repository.save(payout)

        logger.info(f"Payout {payout_id}: compensation {payout.compensation_amount} settled by {actor}")
        return payout

    async def retry_compensation(self, payout_id: str, actor: str) -> Payout:
        """
        Re-send a failed compensation transfer on a CONFIRMED payout.

        Raises:
            PayoutNotFound, StateTransitionError
        """
        payout = await self._require(payout_id)
        async with self._lock_for(payout.slot_key):
            payout = await self._require(payout_id)
            if payout.state != PayoutState.CONFIRMED or not payout.compensation_owed:
                status = payout.compensation_status.value if payout.compensation_status else None
                raise StateTransitionError(
                    f"Payout {payout_id} has no failed compensation to retry "
                    f"(state={payout.state.value}, compensation_status={status})",
                    payout_id=payout_id,
                    from_state=payout.state.value,
                    to_state=payout.state.value,
                )
            previous_handle = payout.compensation_handle
            error = await self._send_compensation(payout)
            self._machine(payout).record_note("Compensation transfer retried", actor=actor, details={
                "previous_handle": previous_handle,
                "transfer_handle": payout.compensation_handle,
                "idempotency_key": payout.compensation_idempotency_key,
                "error": str(error) if error else None,
            })
            await self._repository.save(payout)

        if error is not None:
            await self._alert(create_compensation_failed_alert(
                payout_id, payout.policy_id, payout.compensation_amount, str(error),
            ))
        else:
            logger.info(f"Payout {payout_id}: compensation transfer re-sent by {actor} as {payout.compensation_handle}")
        return payout

    async def close(self, payout_id: str, reason: str, actor: str) -> Payout:
        """
        Close a FAILED or COMPENSATED payout, freeing its slot.

        Raises:
            PayoutNotFound, StateTransitionError
        """
        payout = await self._require(payout_id)
        async with self._lock_for(payout.slot_key):
            payout = await self._require(payout_id)
            self._machine(payout).mark_closed(reason, actor)
            await self._repository.save(payout)
        return payout

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    async def get_payout(self, payout_id: str) -> Payout:
        return await self._require(payout_id)

    async def list_payouts(self, state: Optional[PayoutState] = None, limit: int = 100) -> List[Payout]:
        return await self._repository.list_payouts(state=state, limit=limit)

    async def get_summary(self) -> Dict[str, Any]:
        payouts = await self._repository.list_payouts(limit=100_000)
        by_state = Counter(p.state.value for p in payouts)
        return {
            "total": len(payouts),
            "by_state": dict(by_state),
            "scheduled_checks": len(self._scheduler),
            "manual_intervention": sum(1 for p in payouts if p.manual_intervention and p.is_open),
        }

    async def _require(self, payout_id: str) -> Payout:
        payout = await self._repository.get(payout_id)
        if payout is None:
            raise PayoutNotFound(f"Payout {payout_id} not found", context={"payout_id": payout_id})
        return payout

    # --------------------------------------------------------
    # SIDE CHANNELS
    # --------------------------------------------------------

    async def _alert(self, alert: Alert) -> None:
        alert.timestamp = alert.timestamp or self._clock.now()
        try:
            await self._alerter.send_alert(alert)
        except Exception:
            logger.exception(f"Alerter failed for {alert.alert_type.value}: {alert.message}")

    async def _notify(self, payout: Payout, kind: NotificationKind, extra: Optional[Dict[str, Any]] = None) -> None:
        payload = {
            "payout_id": payout.payout_id,
            "amount": str(payout.amount),
            "currency": payout.currency,
            **(extra or {}),
        }
        await self._notifier.dispatch(payout.holder_id, kind, payload)

    async def close_resources(self) -> None:
        await self._gateways.close_all()
        await self._alerter.close()
        await self._notifier.close()
        await self._repository.close()
