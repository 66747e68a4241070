"""
Payout Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Payout Engine.

CRITICAL CONSTRAINTS:
- Bounded retries with exponential backoff
- Every payment call bounded by a timeout
- Escalation SLA and compensation rate externally supplied

============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict

from core.exceptions import ConfigurationError


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for transfer initiation.

    Only PaymentTransient is retried.
    """

    max_retries: int = 3
    """Maximum number of retry attempts after the first call."""

    initial_delay_seconds: float = 1.0
    """Initial delay before first retry."""

    max_delay_seconds: float = 30.0
    """Maximum delay between retries."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:

    initiate_timeout_seconds: float = 10.0
    """Timeout for one initiate_transfer call."""

    poll_timeout_seconds: float = 10.0
    """Timeout for one poll_status call."""


# ============================================================
# ESCALATION / COMPENSATION
# ============================================================

@dataclass
class EscalationConfig:
    """Stall detection relative to INITIATED."""

    sla_hours: float = 48.0
    """Hours after initiation before a payout is escalated."""

    recheck_interval_hours: float = 1.0
    """How often compensation is recomputed for escalated payouts."""


@dataclass
class CompensationConfig:
    """
    Delay compensation.

    compensation = amount * daily_rate * hours_late / 24,
    capped at cap_fraction * amount.
    """

    daily_rate: Decimal = Decimal("0.05")
    cap_fraction: Decimal = Decimal("0.25")


# ============================================================
# MAIN CONFIGURATION
# ============================================================

@dataclass
class PayoutConfig:
    """Complete payout engine configuration."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    escalation: EscalationConfig = field(default_factory=EscalationConfig)
    compensation: CompensationConfig = field(default_factory=CompensationConfig)

    cooldown_hours: float = 720.0
    """No new payout for a slot this long after a confirmed one."""

    currency: str = "KES"

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: If configuration is invalid
        """
        if self.retry.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", config_key="payout.retry.max_retries",
                                     actual_value=self.retry.max_retries)
        if self.retry.initial_delay_seconds < 0 or self.retry.max_delay_seconds < 0:
            raise ConfigurationError("Retry delays must be >= 0", config_key="payout.retry")
        if self.retry.backoff_multiplier < 1.0:
            raise ConfigurationError("backoff_multiplier must be >= 1", config_key="payout.retry.backoff_multiplier",
                                     actual_value=self.retry.backoff_multiplier)
        if self.timeout.initiate_timeout_seconds <= 0 or self.timeout.poll_timeout_seconds <= 0:
            raise ConfigurationError("Payment timeouts must be positive", config_key="payout.timeout")
        if self.escalation.sla_hours <= 0:
            raise ConfigurationError("SLA must be positive", config_key="payout.escalation.sla_hours",
                                     actual_value=self.escalation.sla_hours)
        if self.escalation.recheck_interval_hours <= 0:
            raise ConfigurationError("recheck_interval_hours must be positive",
                                     config_key="payout.escalation.recheck_interval_hours")
        if self.compensation.daily_rate < 0:
            raise ConfigurationError("daily_rate must be >= 0", config_key="payout.compensation.daily_rate",
                                     actual_value=self.compensation.daily_rate)
        if not Decimal("0") <= self.compensation.cap_fraction <= Decimal("1"):
            raise ConfigurationError("cap_fraction must be in [0, 1]", config_key="payout.compensation.cap_fraction",
                                     actual_value=self.compensation.cap_fraction)
        if self.cooldown_hours < 0:
            raise ConfigurationError("cooldown_hours must be >= 0", config_key="payout.cooldown_hours")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PayoutConfig":
        try:
            compensation = data.get("compensation") or {}
            return cls(
                retry=RetryConfig(**(data.get("retry") or {})),
                timeout=TimeoutConfig(**(data.get("timeout") or {})),
                escalation=EscalationConfig(**(data.get("escalation") or {})),
                compensation=CompensationConfig(
                    daily_rate=Decimal(str(compensation.get("daily_rate", "0.05"))),
                    cap_fraction=Decimal(str(compensation.get("cap_fraction", "0.25"))),
                ),
                cooldown_hours=float(data.get("cooldown_hours", 720.0)),
                currency=str(data.get("currency", "KES")),
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown payout setting: {e}", config_key="payout") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "retry": vars(self.retry).copy(),
            "timeout": vars(self.timeout).copy(),
            "escalation": vars(self.escalation).copy(),
            "compensation": {
                "daily_rate": str(self.compensation.daily_rate),
                "cap_fraction": str(self.compensation.cap_fraction),
            },
            "cooldown_hours": self.cooldown_hours,
            "currency": self.currency,
        }
