"""
Payout Engine - Amount Calculation.

payout_fraction = min_fraction + (1 - min_fraction) * severity
amount          = min(sum_insured_per_ha * farm_size_ha * payout_fraction, max_payout)

Amounts are quantised to cents with ROUND_HALF_UP.
"""

import math
from decimal import ROUND_HALF_UP, Decimal

from policy_registry.types import Policy
from payout_engine.types import AmountBreakdown


CENTS = Decimal("0.01")
SEVERITY_PRECISION = Decimal("0.000001")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class PayoutAmountCalculator:
    """Derives payout amounts from coverage terms and trigger severity."""

    def compute(self, policy: Policy, severity: float) -> AmountBreakdown:
        """
        Compute the payout amount for a policy.

        Args:
            policy: Covered policy
            severity: Trigger severity in [0, 1]

        Raises:
            ValueError: If severity is outside [0, 1] or not finite
        """
        if not math.isfinite(severity) or not 0.0 <= severity <= 1.0:
            raise ValueError(f"severity must be in [0, 1], got {severity}")

        terms = policy.coverage
        sev = Decimal(str(severity)).quantize(SEVERITY_PRECISION, rounding=ROUND_HALF_UP)
        min_fraction = terms.min_payout_fraction
        fraction = min_fraction + (Decimal("1") - min_fraction) * sev

        insured_value = policy.insured_value
        uncapped = quantize_money(insured_value * fraction)
        capped = uncapped > terms.max_payout
        amount = quantize_money(terms.max_payout) if capped else uncapped

        return AmountBreakdown(
            sum_insured_per_ha=terms.sum_insured_per_ha,
            farm_size_ha=policy.farm_size_ha,
            insured_value=insured_value,
            severity=sev,
            min_payout_fraction=min_fraction,
            payout_fraction=fraction,
            uncapped_amount=uncapped,
            max_payout=terms.max_payout,
            capped=capped,
            amount=amount,
        )
