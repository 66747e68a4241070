"""
Policy Registry - Types.

============================================================
PURPOSE
============================================================
Read-only policy view used by a sweep cycle.

Policies are owned by an external registry. The engine holds an
immutable snapshot of each policy per sweep and never mutates it.
============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, FrozenSet

from data_sources.models import HazardType, Location


class PolicyStatus(Enum):
    """Policy lifecycle status (owned by the external registry)."""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class CoverageTerms:
    """
    Coverage terms of a policy.

    Payout = sum_insured_per_ha * farm_size_ha * payout_fraction,
    capped at max_payout.
    """

    sum_insured_per_ha: Decimal
    """Insured value per hectare."""

    max_payout: Decimal
    """Hard cap on a single payout."""

    covered_hazards: FrozenSet[HazardType] = field(default_factory=frozenset)

    min_payout_fraction: Decimal = Decimal("0.25")
    """Share of insured value paid at zero severity once triggered."""

    severity_band: str = "standard"
    """Band used to look up hazard threshold overrides."""

    def __post_init__(self) -> None:
        if self.sum_insured_per_ha <= 0:
            raise ValueError("sum_insured_per_ha must be positive")
        if self.max_payout <= 0:
            raise ValueError("max_payout must be positive")
        if not Decimal("0") <= self.min_payout_fraction <= Decimal("1"):
            raise ValueError("min_payout_fraction must be in [0, 1]")

    def covers(self, hazard: HazardType) -> bool:
        return hazard in self.covered_hazards

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sum_insured_per_ha": str(self.sum_insured_per_ha),
            "max_payout": str(self.max_payout),
            "covered_hazards": sorted(h.value for h in self.covered_hazards),
            "min_payout_fraction": str(self.min_payout_fraction),
            "severity_band": self.severity_band,
        }


@dataclass(frozen=True)
class Policy:
    """Immutable per-sweep view of an insurance policy."""

    policy_id: str
    location: Location
    crop_type: str
    farm_size_ha: Decimal
    coverage: CoverageTerms
    holder_id: str
    """Notification recipient."""

    payment_account: str
    """Payment recipient (e.g. mobile-money number)."""

    payment_provider: str = "default"
    """Key into the payment gateway registry."""

    status: PolicyStatus = PolicyStatus.ACTIVE

    def __post_init__(self) -> None:
        if self.farm_size_ha <= 0:
            raise ValueError("farm_size_ha must be positive")

    @property
    def is_active(self) -> bool:
        return self.status == PolicyStatus.ACTIVE

    @property
    def insured_value(self) -> Decimal:
        return self.coverage.sum_insured_per_ha * self.farm_size_ha

    def covers(self, hazard: HazardType) -> bool:
        return self.coverage.covers(hazard)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "location": self.location.to_dict(),
            "crop_type": self.crop_type,
            "farm_size_ha": str(self.farm_size_ha),
            "coverage": self.coverage.to_dict(),
            "holder_id": self.holder_id,
            "payment_account": self.payment_account,
            "payment_provider": self.payment_provider,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Policy":
        """
        Build a policy from a plain mapping (YAML/JSON).

        Raises:
            ValueError: On missing or malformed fields
        """
        try:
            coverage = data["coverage"]
            return cls(
                policy_id=str(data["policy_id"]),
                location=Location(**data["location"]),
                crop_type=str(data["crop_type"]),
                farm_size_ha=Decimal(str(data["farm_size_ha"])),
                coverage=CoverageTerms(
                    sum_insured_per_ha=Decimal(str(coverage["sum_insured_per_ha"])),
                    max_payout=Decimal(str(coverage["max_payout"])),
                    covered_hazards=frozenset(
                        HazardType(str(h).upper()) for h in coverage.get("covered_hazards", [])
                    ),
                    min_payout_fraction=Decimal(str(coverage.get("min_payout_fraction", "0.25"))),
                    severity_band=str(coverage.get("severity_band", "standard")),
                ),
                holder_id=str(data["holder_id"]),
                payment_account=str(data["payment_account"]),
                payment_provider=str(data.get("payment_provider", "default")),
                status=PolicyStatus(str(data.get("status", "ACTIVE")).upper()),
            )
        except (KeyError, TypeError, InvalidOperation) as e:
            raise ValueError(f"Invalid policy record: {e}") from e
