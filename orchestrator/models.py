"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the sweep orchestrator.

- Engine status
- Per-policy unit results and sweep results
- Orchestrator configuration

============================================================
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# ENGINE STATUS
# ============================================================

class EngineStatus(Enum):
    """Lifecycle of the long-running engine."""

    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"

    @property
    def is_active(self) -> bool:
        return self == EngineStatus.RUNNING


# ============================================================
# SWEEP RESULTS
# ============================================================

@dataclass
class PolicyUnitResult:
    """Outcome of fetch -> score -> evaluate -> payout for one policy."""

    policy_id: str
    success: bool
    tier: Optional[str] = None
    evaluations: int = 0
    triggered: List[str] = field(default_factory=list)
    """Hazards that triggered with binding data."""

    outcomes: Dict[str, str] = field(default_factory=dict)
    """Hazard -> payout outcome kind."""

    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "success": self.success,
            "tier": self.tier,
            "evaluations": self.evaluations,
            "triggered": list(self.triggered),
            "outcomes": dict(self.outcomes),
            "error": self.error,
            "error_type": self.error_type,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class SweepResult:
    """Result of one sweep over all active policies."""

    sweep_id: str
    sweep_time: datetime
    started_at: datetime
    completed_at: Optional[datetime] = None
    units: List[PolicyUnitResult] = field(default_factory=list)
    polled: Dict[str, int] = field(default_factory=dict)
    escalated: List[str] = field(default_factory=list)

    @property
    def policies(self) -> int:
        return len(self.units)

    @property
    def failed(self) -> int:
        return sum(1 for u in self.units if not u.success)

    @property
    def triggered(self) -> int:
        return sum(len(u.triggered) for u in self.units)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def outcome_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for unit in self.units:
            for kind in unit.outcomes.values():
                counts[kind] = counts.get(kind, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sweep_id": self.sweep_id,
            "sweep_time": self.sweep_time.isoformat(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "policies": self.policies,
            "failed": self.failed,
            "triggered": self.triggered,
            "outcomes": self.outcome_counts(),
            "polled": dict(self.polled),
            "escalated": list(self.escalated),
            "units": [u.to_dict() for u in self.units],
        }


# ============================================================
# ORCHESTRATOR CONFIGURATION
# ============================================================

LOG_FORMATS = ("json", "text")


@dataclass
class OrchestratorConfig:
    """Configuration for the sweep loop and process runtime."""

    sweep_interval_seconds: int = 3600
    """Seconds between sweeps (hourly aligns to the hour)."""

    max_concurrency: int = 10
    """Policy units processed at once."""

    escalation_tick_seconds: int = 300
    """Polling and SLA checks between sweeps."""

    shutdown_timeout_seconds: int = 30

    log_level: str = "INFO"
    log_format: str = "text"
    correlation_id_prefix: str = "pce"

    policies_path: Optional[str] = None
    """YAML file with the policy book."""

    database_url: Optional[str] = None
    """SQLAlchemy async URL; in-memory repository when unset."""

    operator_api_enabled: bool = False
    operator_api_host: str = "127.0.0.1"
    operator_api_port: int = 8080

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Create config from environment variables."""
        return cls(
            sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", "3600")),
            max_concurrency=int(os.getenv("MAX_CONCURRENCY", "10")),
            escalation_tick_seconds=int(os.getenv("ESCALATION_TICK_SECONDS", "300")),
            shutdown_timeout_seconds=int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
            policies_path=os.getenv("POLICIES_PATH"),
            database_url=os.getenv("DATABASE_URL"),
            operator_api_enabled=os.getenv("OPERATOR_API_ENABLED", "false").lower() == "true",
            operator_api_host=os.getenv("OPERATOR_API_HOST", "127.0.0.1"),
            operator_api_port=int(os.getenv("OPERATOR_API_PORT", "8080")),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrchestratorConfig":
        return cls(**data)

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        if self.sweep_interval_seconds < 1:
            errors.append("sweep_interval_seconds must be >= 1")
        if self.max_concurrency < 1:
            errors.append("max_concurrency must be >= 1")
        if self.escalation_tick_seconds < 1:
            errors.append("escalation_tick_seconds must be >= 1")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"log_level {self.log_level!r} is not a logging level")
        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {LOG_FORMATS}")
        if not 0 < self.operator_api_port < 65536:
            errors.append("operator_api_port must be a valid TCP port")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sweep_interval_seconds": self.sweep_interval_seconds,
            "max_concurrency": self.max_concurrency,
            "escalation_tick_seconds": self.escalation_tick_seconds,
            "shutdown_timeout_seconds": self.shutdown_timeout_seconds,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "correlation_id_prefix": self.correlation_id_prefix,
            "policies_path": self.policies_path,
            "database_url": self.database_url,
            "operator_api_enabled": self.operator_api_enabled,
            "operator_api_host": self.operator_api_host,
            "operator_api_port": self.operator_api_port,
        }
