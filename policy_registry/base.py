"""
Policy Registry - Read port.

The registry is an external collaborator. The engine only reads from it:
the active policy list for a sweep, and the trailing window of prior
snapshots needed by persistence-based rules.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from data_sources.models import EnvironmentalSnapshot, HazardType
from policy_registry.types import Policy


class PolicyRegistryPort(ABC):
    """Read-only access to policies and their snapshot history."""

    @abstractmethod
    async def list_active_policies(self) -> List[Policy]:
        """All policies with status ACTIVE."""
        pass

    @abstractmethod
    async def get_policy(self, policy_id: str) -> Optional[Policy]:
        pass

    @abstractmethod
    async def get_trailing_window(
        self,
        policy_id: str,
        hazard: HazardType,
        days: int,
    ) -> List[EnvironmentalSnapshot]:
        """
        Snapshots recorded for a policy over the last `days` days.

        Returns snapshots covering `hazard`, oldest first.
        """
        pass

    async def record_snapshot(self, policy_id: str, snapshot: EnvironmentalSnapshot) -> None:
        """Store a snapshot for later trailing-window reads. Optional."""
        return None
