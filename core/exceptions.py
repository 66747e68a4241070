"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the error taxonomy shared by every package.

- Data-tier failures are absorbed inside the gateway
- Configuration errors are fatal at startup only
- Payment failures carry their retryability
- Invariant violations are absorbed by the payout manager

============================================================
EXCEPTION HIERARCHY
============================================================
ParametricEngineError (base)
├── ConfigurationError
├── DataError
│   ├── ProviderUnavailable
│   └── DataUnavailable
├── PaymentError
│   ├── PaymentTransient
│   └── PaymentPermanent
├── PayoutError
│   ├── InvariantViolation
│   ├── StateTransitionError
│   └── PayoutNotFound

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for operator alerting."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Handled locally (fallback, merge)."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class ParametricEngineError(Exception):
    """
    Base exception for all engine errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_retryable(self) -> bool:
        """Check if a retry may succeed."""
        return self.classification == ErrorClassification.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        return self.message


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(ParametricEngineError):
    """Invalid weights, thresholds or timeouts. Fatal at startup."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)
        self.config_key = config_key


# ============================================================
# DATA ERRORS
# ============================================================

class DataError(ParametricEngineError):
    """Base class for environmental data errors."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT


class ProviderUnavailable(DataError):
    """One provider tier failed (timeout, rate limit, bad payload)."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        tier: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if source_name:
            context["source_name"] = source_name
        if tier:
            context["tier"] = tier

        super().__init__(message, context=context, **kwargs)
        self.source_name = source_name
        self.tier = tier


class DataUnavailable(DataError):
    """Every tier, including the simulated default, failed."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        attempted_tiers: Optional[List[str]] = None,
        location: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context["attempted_tiers"] = list(attempted_tiers or [])
        if location:
            context["location"] = location

        super().__init__(message, context=context, **kwargs)
        self.attempted_tiers = list(attempted_tiers or [])


# ============================================================
# PAYMENT ERRORS
# ============================================================

class PaymentError(ParametricEngineError):
    """Base class for payment port errors."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        code: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if provider:
            context["provider"] = provider
        if code:
            context["code"] = code

        super().__init__(message, context=context, **kwargs)
        self.provider = provider
        self.code = code


class PaymentTransient(PaymentError):
    """Retryable payment failure (timeout, 5xx, rate limit)."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT


class PaymentPermanent(PaymentError):
    """Permanent payment failure (invalid recipient, rejected)."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE


# ============================================================
# PAYOUT ERRORS
# ============================================================

class PayoutError(ParametricEngineError):
    """Base class for payout lifecycle errors."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class InvariantViolation(PayoutError):
    """
    Second open payout attempted for the same (policy, hazard).

    Never surfaced to callers as fatal: the payout manager merges the
    trigger into the existing payout's evidence.
    """

    default_severity = Severity.LOW
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        policy_id: str,
        hazard: str,
        existing_payout_id: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context.update({
            "policy_id": policy_id,
            "hazard": hazard,
            "existing_payout_id": existing_payout_id,
        })
        super().__init__(message, context=context, **kwargs)
        self.policy_id = policy_id
        self.hazard = hazard
        self.existing_payout_id = existing_payout_id


class StateTransitionError(PayoutError):
    """Transition not present in the payout transition table."""

    def __init__(
        self,
        message: str,
        payout_id: Optional[str] = None,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context.update({
            "payout_id": payout_id,
            "from_state": from_state,
            "to_state": to_state,
        })
        super().__init__(message, context=context, **kwargs)
        self.payout_id = payout_id
        self.from_state = from_state
        self.to_state = to_state


class PayoutNotFound(PayoutError):
    """No payout with the given id or transfer handle."""

    default_severity = Severity.LOW


__all__ = [
    "Severity",
    "ErrorClassification",
    "ParametricEngineError",
    "ConfigurationError",
    "DataError",
    "ProviderUnavailable",
    "DataUnavailable",
    "PaymentError",
    "PaymentTransient",
    "PaymentPermanent",
    "PayoutError",
    "InvariantViolation",
    "StateTransitionError",
    "PayoutNotFound",
]
