"""
Payout Engine - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for payout persistence.

TABLES:
- payouts: Payout records
- payout_stage_entries: Append-only stage history
- trigger_evaluations: Evaluations that created or supported payouts

INVARIANT ENFORCEMENT:
- payouts.open_slot_key is "<policy_id>|<hazard>" while the payout
  is open and NULL afterwards. The unique constraint allows any
  number of closed payouts per slot but only one open one, across
  processes.

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ============================================================
# BASE
# ============================================================

class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


# ============================================================
# PAYOUT MODEL
# ============================================================

class PayoutModel(Base):
    """Persisted payout record."""

    __tablename__ = "payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identifiers
    payout_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    policy_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    hazard: Mapped[str] = mapped_column(String(32), nullable=False)
    evaluation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    open_slot_key: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)

    # Parties
    holder_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient: Mapped[str] = mapped_column(String(128), nullable=False)
    payment_provider: Mapped[str] = mapped_column(String(64), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="KES")

    # State and amounts
    state: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    amount_breakdown: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    severity: Mapped[float] = mapped_column(Float, default=0.0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    initiated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Transfer tracking
    supporting_evaluation_ids: Mapped[List[str]] = mapped_column(JSON, default=list)
    transfer_handle: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    # Escalation
    escalated: Mapped[bool] = mapped_column(Boolean, default=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    compensation_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    compensation_handle: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    compensation_status: Mapped[Optional[str]] = mapped_column(String(16))
    compensation_attempts: Mapped[int] = mapped_column(Integer, default=0)

    # Operator resolution
    manual_intervention: Mapped[bool] = mapped_column(Boolean, default=False)
    resolution_reason: Mapped[Optional[str]] = mapped_column(Text)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(64))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    stages: Mapped[List["PayoutStageModel"]] = relationship(
        back_populates="payout",
        order_by="PayoutStageModel.seq",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_payouts_slot_created", "policy_id", "hazard", "created_at"),
    )


# ============================================================
# STAGE HISTORY MODEL
# ============================================================

class PayoutStageModel(Base):
    """One stage history entry. Rows are only ever inserted."""

    __tablename__ = "payout_stage_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payout_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("payouts.payout_id"), nullable=False, index=True,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    from_state: Mapped[Optional[str]] = mapped_column(String(32))
    to_state: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="")
    actor: Mapped[str] = mapped_column(String(64), default="system")
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    payout: Mapped[PayoutModel] = relationship(back_populates="stages")

    __table_args__ = (
        UniqueConstraint("payout_id", "seq", name="uq_payout_stage_seq"),
    )


# ============================================================
# TRIGGER EVALUATION MODEL
# ============================================================

class TriggerEvaluationModel(Base):
    """Persisted trigger evaluation with full evidence."""

    __tablename__ = "trigger_evaluations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    policy_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    hazard: Mapped[str] = mapped_column(String(32), nullable=False)
    triggered: Mapped[bool] = mapped_column(Boolean, nullable=False)
    binding: Mapped[bool] = mapped_column(Boolean, nullable=False)
    severity: Mapped[float] = mapped_column(Float, nullable=False)
    tier: Mapped[str] = mapped_column(String(32), nullable=False)
    evaluated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sweep_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
