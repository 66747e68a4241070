"""
Pydantic Schemas for the Operator API.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from payout_engine.adapters.base import map_transfer_status
from payout_engine.types import TransferStatus


# =============================================================
# OPERATOR ACTIONS
# =============================================================

class CancelRequest(BaseModel):
    """Cancel an open payout."""
    reason: str = Field(..., min_length=1, max_length=500)
    actor: str = Field(..., min_length=1, max_length=64)


class CloseRequest(BaseModel):
    """Close a FAILED or COMPENSATED payout."""
    reason: str = Field(..., min_length=1, max_length=500)
    actor: str = Field(..., min_length=1, max_length=64)


class SettleRequest(BaseModel):
    """Record an out-of-band compensation settlement (FAILED or CONFIRMED payouts)."""
    actor: str = Field(..., min_length=1, max_length=64)
    reference: Optional[str] = Field(None, max_length=128)


class RetryCompensationRequest(BaseModel):
    """Re-send a failed compensation transfer."""
    actor: str = Field(..., min_length=1, max_length=64)


# =============================================================
# PAYMENT CALLBACKS
# =============================================================

class PaymentCallback(BaseModel):
    """Asynchronous transfer status pushed by a payment provider."""
    transfer_id: str = Field(..., min_length=1, max_length=128)
    status: TransferStatus

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        if isinstance(value, str):
            return map_transfer_status(value) or value.strip().upper()
        return value
