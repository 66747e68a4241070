"""
Policy Registry - In-memory implementation.

Used for tests, demos and single-process deployments. Policies can be
seeded from a YAML file.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml

from core.clock import ClockFactory, ClockProtocol
from data_sources.models import EnvironmentalSnapshot, HazardType
from policy_registry.base import PolicyRegistryPort
from policy_registry.types import Policy, PolicyStatus


logger = logging.getLogger(__name__)


class InMemoryPolicyRegistry(PolicyRegistryPort):
    """
    Dict-backed policy registry with snapshot history.

    History older than `retention_days` is pruned on write.
    """

    def __init__(
        self,
        policies: Optional[Iterable[Policy]] = None,
        clock: Optional[ClockProtocol] = None,
        retention_days: int = 60,
    ) -> None:
        self._clock = clock or ClockFactory.get_clock()
        self._retention = timedelta(days=retention_days)
        self._policies: Dict[str, Policy] = {}
        self._history: Dict[str, List[EnvironmentalSnapshot]] = {}
        self._lock = asyncio.Lock()

        for policy in policies or []:
            self.add_policy(policy)

    def add_policy(self, policy: Policy) -> None:
        if policy.policy_id in self._policies:
            logger.warning(f"Policy {policy.policy_id} already registered, replacing")
        self._policies[policy.policy_id] = policy

    def set_status(self, policy_id: str, status: PolicyStatus) -> Policy:
        """Replace the stored view with a new status."""
        policy = replace(self._policies[policy_id], status=status)
        self._policies[policy_id] = policy
        logger.info(f"Policy {policy_id} status -> {status.value}")
        return policy

    async def list_active_policies(self) -> List[Policy]:
        return [p for p in self._policies.values() if p.is_active]

    async def get_policy(self, policy_id: str) -> Optional[Policy]:
        return self._policies.get(policy_id)

    async def record_snapshot(self, policy_id: str, snapshot: EnvironmentalSnapshot) -> None:
        async with self._lock:
            history = self._history.setdefault(policy_id, [])
            history.append(snapshot)
            history.sort(key=lambda s: s.timestamp)

            cutoff = self._clock.now() - self._retention
            self._history[policy_id] = [s for s in history if s.timestamp >= cutoff]

    async def get_trailing_window(
        self,
        policy_id: str,
        hazard: HazardType,
        days: int,
    ) -> List[EnvironmentalSnapshot]:
        cutoff = self._clock.now() - timedelta(days=days)
        return [
            s for s in self._history.get(policy_id, [])
            if s.timestamp >= cutoff and hazard in s.hazards
        ]

    def __len__(self) -> int:
        return len(self._policies)

    @classmethod
    def from_yaml(
        cls,
        path: Path,
        clock: Optional[ClockProtocol] = None,
    ) -> "InMemoryPolicyRegistry":
        """
        Load policies from a YAML file with a top-level `policies` list.

        Raises:
            ValueError: If a record is malformed
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        policies = [Policy.from_dict(record) for record in data.get("policies", [])]
        logger.info(f"Loaded {len(policies)} policies from {path}")
        return cls(policies=policies, clock=clock)
