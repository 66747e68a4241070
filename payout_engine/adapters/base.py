"""
Payout Engine - Payment Gateway Port.

============================================================
PURPOSE
============================================================
Abstract interface for payment gateways (mobile money, bank).

DESIGN PRINCIPLES:
- Gateway-agnostic interface
- initiate_transfer is idempotent by idempotency_key
- Errors are PaymentTransient (retry) or PaymentPermanent (stop)

============================================================
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional

from payout_engine.types import TransferHandle, TransferStatus


STATUS_ALIASES: Dict[str, TransferStatus] = {
    "PENDING": TransferStatus.PENDING,
    "PROCESSING": TransferStatus.PENDING,
    "QUEUED": TransferStatus.PENDING,
    "SUCCEEDED": TransferStatus.SUCCEEDED,
    "SUCCESS": TransferStatus.SUCCEEDED,
    "COMPLETED": TransferStatus.SUCCEEDED,
    "FAILED": TransferStatus.FAILED,
    "REJECTED": TransferStatus.FAILED,
    "REVERSED": TransferStatus.FAILED,
}


def map_transfer_status(status: str) -> Optional[TransferStatus]:
    """Map a provider status string to TransferStatus, None if unknown."""
    return STATUS_ALIASES.get(str(status).strip().upper())


class PaymentGatewayPort(ABC):
    """
    Abstract payment gateway.

    Implementations must return the same handle for a repeated
    idempotency_key and must never create a second transfer for it.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Identifier used by policies to select this gateway."""
        pass

    @abstractmethod
    async def initiate_transfer(
        self,
        idempotency_key: str,
        recipient: str,
        amount: Decimal,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransferHandle:
        """
        Request a transfer.

        Raises:
            PaymentTransient: Timeouts, 5xx, rate limits
            PaymentPermanent: Invalid recipient, rejected transfer
        """
        pass

    @abstractmethod
    async def poll_status(self, handle: TransferHandle) -> TransferStatus:
        """
        Current status of a transfer.

        Raises:
            PaymentTransient: Status temporarily unavailable
            PaymentPermanent: Unknown handle
        """
        pass

    async def close(self) -> None:
        """Release resources."""
        pass
