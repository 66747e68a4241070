"""
Payment gateway adapters.
"""

from payout_engine.adapters.base import PaymentGatewayPort, map_transfer_status
from payout_engine.adapters.mobile_money import HttpMobileMoneyGateway
from payout_engine.adapters.mock import MockPaymentConfig, MockPaymentGateway, MockTransfer
from payout_engine.adapters.registry import PaymentGatewayRegistry


__all__ = [
    "PaymentGatewayPort",
    "map_transfer_status",
    "HttpMobileMoneyGateway",
    "MockPaymentConfig",
    "MockPaymentGateway",
    "MockTransfer",
    "PaymentGatewayRegistry",
]
