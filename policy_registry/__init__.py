"""
Policy Registry Package.

Read port onto the external policy registry plus an in-memory
implementation with snapshot history for persistence rules.
"""

from policy_registry.base import PolicyRegistryPort
from policy_registry.memory import InMemoryPolicyRegistry
from policy_registry.types import CoverageTerms, Policy, PolicyStatus


__all__ = [
    "PolicyRegistryPort",
    "InMemoryPolicyRegistry",
    "CoverageTerms",
    "Policy",
    "PolicyStatus",
]
