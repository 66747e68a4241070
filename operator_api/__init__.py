"""
Operator API Package.

aiohttp application exposing payout queries, operator actions
(cancel, close, settle or retry compensation) and payment provider callbacks.
"""

from operator_api.app import OperatorAPI, create_app
from operator_api.schemas import (
    CancelRequest,
    CloseRequest,
    PaymentCallback,
    RetryCompensationRequest,
    SettleRequest,
)


__all__ = [
    "OperatorAPI",
    "create_app",
    "CancelRequest",
    "CloseRequest",
    "PaymentCallback",
    "RetryCompensationRequest",
    "SettleRequest",
]
