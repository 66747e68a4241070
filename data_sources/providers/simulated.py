"""
Simulated Default Source - Deterministic synthetic last tier.

Synthesized locally so it practically never fails. Values are seeded from
the location and the UTC day, so repeated sweeps on the same day see the
same numbers. Snapshots from this tier are never binding.
"""

import hashlib
import logging
import random
from datetime import datetime
from typing import FrozenSet, Optional

from core.clock import ClockProtocol
from data_sources.base import BaseEnvironmentalSource
from data_sources.models import (
    EnvironmentalIndicators,
    EnvironmentalSnapshot,
    FloodRiskLevel,
    HazardType,
    Location,
    SourceTier,
)


logger = logging.getLogger(__name__)


class SimulatedDefaultSource(BaseEnvironmentalSource):
    """Always-succeeding synthetic provider."""

    def __init__(
        self,
        name: str = "simulated_default",
        timeout_seconds: float = 1.0,
        clock: Optional[ClockProtocol] = None,
        **kwargs,
    ) -> None:
        kwargs.pop("tier", None)
        super().__init__(
            name=name,
            tier=SourceTier.SIMULATED,
            timeout_seconds=timeout_seconds,
            clock=clock,
            **kwargs,
        )

    def _rng(self, location: Location) -> random.Random:
        seed_text = f"{location.cache_key()}|{self._clock.today().isoformat()}"
        seed = int(hashlib.sha256(seed_text.encode("utf-8")).hexdigest()[:16], 16)
        return random.Random(seed)

    async def get(
        self,
        location: Location,
        hazards: FrozenSet[HazardType],
        since: Optional[datetime] = None,
    ) -> EnvironmentalSnapshot:
        rng = self._rng(location)

        indicators = EnvironmentalIndicators(
            consecutive_dry_days=rng.randint(0, 30),
            max_temperature_c=round(rng.uniform(22.0, 40.0), 1),
            soil_moisture=round(rng.uniform(0.1, 0.45), 3),
            vegetation_index=round(rng.uniform(0.15, 0.8), 3),
            vegetation_trend_14d=round(rng.uniform(-0.2, 0.1), 3),
            water_stress_index=round(rng.uniform(0.0, 1.0), 3),
            flood_risk_level=rng.choice(list(FloodRiskLevel)),
            flood_probability_7d=round(rng.uniform(0.0, 1.0), 3),
            soil_quality={
                "ph": round(rng.uniform(0.3, 0.9), 3),
                "organic_carbon": round(rng.uniform(0.2, 0.8), 3),
                "drainage": round(rng.uniform(0.2, 0.9), 3),
            },
        )

        logger.debug(f"[{self.name}] Synthesized snapshot for {location.cache_key()}")
        return self._build_snapshot(location, hazards, indicators)
