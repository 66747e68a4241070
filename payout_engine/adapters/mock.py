"""
Payout Engine - Mock Payment Gateway.

============================================================
PURPOSE
============================================================
In-process payment gateway for tests and dry runs.

FEATURES:
- Idempotent by key (a repeated key returns the original handle)
- Scripted status sequences per transfer
- Error injection (next N calls raise a given error)
- Configurable latency
- Full call tracking

============================================================
"""

import asyncio
import logging
import random
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional

from core.exceptions import PaymentError, PaymentPermanent
from payout_engine.adapters.base import PaymentGatewayPort
from payout_engine.types import TransferHandle, TransferStatus


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class MockPaymentConfig:
    """Configuration for the mock gateway."""

    provider_id: str = "mock"

    min_latency_ms: float = 0.0
    """Minimum simulated latency."""

    max_latency_ms: float = 0.0
    """Maximum simulated latency."""

    default_status: TransferStatus = TransferStatus.PENDING
    """Status reported once a transfer's script is exhausted."""

    invalid_recipients: List[str] = field(default_factory=list)
    """Recipients rejected with PaymentPermanent."""


# ============================================================
# MOCK TRANSFER
# ============================================================

@dataclass
class MockTransfer:
    """Mock transfer state."""

    handle_id: str
    idempotency_key: str
    recipient: str
    amount: Decimal
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: TransferStatus = TransferStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================
# MOCK PAYMENT GATEWAY
# ============================================================

class MockPaymentGateway(PaymentGatewayPort):
    """
    Mock payment gateway.

    Usage:
        gateway = MockPaymentGateway()
        gateway.inject_error(PaymentTransient("timeout"), count=2)
        handle = await gateway.initiate_transfer("payout-1", "254700000000", Decimal("10"))
        gateway.set_status(handle.handle_id, TransferStatus.SUCCEEDED)
    """

    def __init__(self, config: Optional[MockPaymentConfig] = None):
        self._config = config or MockPaymentConfig()
        self._transfers: Dict[str, MockTransfer] = {}
        self._by_key: Dict[str, str] = {}
        self._scripts: Dict[str, Deque[TransferStatus]] = {}
        self._injected: Deque[PaymentError] = deque()
        self._poll_errors: Deque[PaymentError] = deque()
        self.initiate_calls = 0
        self.poll_calls = 0

    @property
    def provider_id(self) -> str:
        return self._config.provider_id

    @property
    def transfers(self) -> List[MockTransfer]:
        return list(self._transfers.values())

    @property
    def transfer_count(self) -> int:
        """Number of distinct transfers created."""
        return len(self._transfers)

    # --------------------------------------------------------
    # TEST CONTROLS
    # --------------------------------------------------------

    def inject_error(self, error: PaymentError, count: int = 1) -> None:
        """Next `count` initiate calls raise `error`."""
        for _ in range(count):
            self._injected.append(error)

    def inject_poll_error(self, error: PaymentError, count: int = 1) -> None:
        for _ in range(count):
            self._poll_errors.append(error)

    def script_statuses(self, handle_id: str, *statuses: TransferStatus) -> None:
        """Statuses returned by successive polls of a transfer."""
        self._scripts.setdefault(handle_id, deque()).extend(statuses)

    def set_status(self, handle_id: str, status: TransferStatus) -> None:
        transfer = self._transfers.get(handle_id)
        if transfer is None:
            raise KeyError(handle_id)
        transfer.status = status
        self._scripts.pop(handle_id, None)

    def transfer_for_key(self, idempotency_key: str) -> Optional[MockTransfer]:
        handle_id = self._by_key.get(idempotency_key)
        return self._transfers.get(handle_id) if handle_id else None

    def reset(self) -> None:
        self._transfers.clear()
        self._by_key.clear()
        self._scripts.clear()
        self._injected.clear()
        self._poll_errors.clear()
        self.initiate_calls = 0
        self.poll_calls = 0

    # --------------------------------------------------------
    # PORT
    # --------------------------------------------------------

    async def initiate_transfer(
        self,
        idempotency_key: str,
        recipient: str,
        amount: Decimal,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransferHandle:
        self.initiate_calls += 1
        await self._simulate_latency()

        if self._injected:
            raise self._injected.popleft()

        existing = self._by_key.get(idempotency_key)
        if existing is not None:
            transfer = self._transfers[existing]
            logger.debug(f"Mock gateway: duplicate key {idempotency_key} -> {existing}")
            return self._handle(transfer)

        if recipient in self._config.invalid_recipients:
            raise PaymentPermanent(
                f"Invalid recipient {recipient}",
                provider=self.provider_id,
                code="INVALID_RECIPIENT",
            )

        transfer = MockTransfer(
            handle_id=f"mock-{uuid.uuid4().hex[:12]}",
            idempotency_key=idempotency_key,
            recipient=recipient,
            amount=amount,
            metadata=dict(metadata or {}),
            status=self._config.default_status,
        )
        self._transfers[transfer.handle_id] = transfer
        self._by_key[idempotency_key] = transfer.handle_id
        logger.info(f"Mock gateway: transfer {transfer.handle_id} for {amount} to {recipient}")
        return self._handle(transfer)

    async def poll_status(self, handle: TransferHandle) -> TransferStatus:
        self.poll_calls += 1
        await self._simulate_latency()

        if self._poll_errors:
            raise self._poll_errors.popleft()

        transfer = self._transfers.get(handle.handle_id)
        if transfer is None:
            raise PaymentPermanent(
                f"Unknown transfer {handle.handle_id}",
                provider=self.provider_id,
                code="UNKNOWN_TRANSFER",
            )

        script = self._scripts.get(handle.handle_id)
        if script:
            transfer.status = script.popleft()
        return transfer.status

    def _handle(self, transfer: MockTransfer) -> TransferHandle:
        return TransferHandle(
            handle_id=transfer.handle_id,
            provider=self.provider_id,
            idempotency_key=transfer.idempotency_key,
            created_at=transfer.created_at,
        )

    async def _simulate_latency(self) -> None:
        if self._config.max_latency_ms <= 0:
            return
        latency = random.uniform(self._config.min_latency_ms, self._config.max_latency_ms)
        await asyncio.sleep(latency / 1000.0)
