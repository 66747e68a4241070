"""
Payout Engine Package.

============================================================
PURPOSE
============================================================
Drives each payout from trigger to a terminal state.

CRITICAL PRINCIPLES:
- At most one open payout per (policy, hazard)
- Idempotent transfer initiation
- Stalled payouts are escalated and compensated

============================================================

Quick Start:
    from payout_engine import PayoutManager, PayoutConfig

    manager = PayoutManager(config=PayoutConfig())
    outcome = await manager.handle_trigger(policy, evaluation)
    await manager.poll_in_flight()
    await manager.process_due_escalations()
"""

from payout_engine.adapters import (
    HttpMobileMoneyGateway,
    MockPaymentConfig,
    MockPaymentGateway,
    PaymentGatewayPort,
    PaymentGatewayRegistry,
)
from payout_engine.alerting import (
    Alert,
    AlertingConfig,
    AlertSeverity,
    AlertType,
    OperatorAlerter,
    RecordingAlerter,
    TelegramAlerter,
)
from payout_engine.amount import PayoutAmountCalculator, quantize_money
from payout_engine.config import (
    CompensationConfig,
    EscalationConfig,
    PayoutConfig,
    RetryConfig,
    TimeoutConfig,
)
from payout_engine.escalation import EscalationScheduler, compute_compensation, hours_late
from payout_engine.manager import PayoutManager
from payout_engine.repository import InMemoryPayoutRepository, PayoutRepository
from payout_engine.sql_repository import SqlPayoutRepository
from payout_engine.state_machine import VALID_TRANSITIONS, PayoutStateMachine, TransitionGuard
from payout_engine.types import (
    AmountBreakdown,
    CompensationStatus,
    OutcomeKind,
    Payout,
    PayoutOutcome,
    PayoutState,
    StageEntry,
    TransferHandle,
    TransferStatus,
)


__all__ = [
    "HttpMobileMoneyGateway",
    "MockPaymentConfig",
    "MockPaymentGateway",
    "PaymentGatewayPort",
    "PaymentGatewayRegistry",
    "Alert",
    "AlertingConfig",
    "AlertSeverity",
    "AlertType",
    "OperatorAlerter",
    "RecordingAlerter",
    "TelegramAlerter",
    "PayoutAmountCalculator",
    "quantize_money",
    "CompensationConfig",
    "EscalationConfig",
    "PayoutConfig",
    "RetryConfig",
    "TimeoutConfig",
    "EscalationScheduler",
    "compute_compensation",
    "hours_late",
    "PayoutManager",
    "InMemoryPayoutRepository",
    "PayoutRepository",
    "SqlPayoutRepository",
    "VALID_TRANSITIONS",
    "PayoutStateMachine",
    "TransitionGuard",
    "AmountBreakdown",
    "CompensationStatus",
    "OutcomeKind",
    "Payout",
    "PayoutOutcome",
    "PayoutState",
    "StageEntry",
    "TransferHandle",
    "TransferStatus",
]
