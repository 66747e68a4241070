"""
Open-Meteo Source - Public weather and flood API adapter.

Endpoints used:
- /v1/forecast - daily precipitation and max temperature, hourly soil moisture
- /v1/flood    - daily river discharge (GloFAS)

No authentication required. Open-Meteo has no vegetation signal, so this
provider answers only the weather-derived drought indicators and flood.
"""

import logging
from datetime import datetime
from statistics import mean
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import aiohttp

from core.clock import ClockProtocol
from data_sources.base import BaseEnvironmentalSource
from data_sources.exceptions import NormalizationError, ProviderUnavailable
from data_sources.models import (
    EnvironmentalIndicators,
    EnvironmentalSnapshot,
    FloodRiskLevel,
    HazardType,
    Location,
    SourceTier,
)


logger = logging.getLogger(__name__)


class OpenMeteoSource(BaseEnvironmentalSource):
    """
    Open-Meteo fallback provider.

    Derivations:
    - consecutive_dry_days: trailing days with precipitation < DRY_DAY_MM
    - max_temperature_c: max daily maximum over the last week
    - soil_moisture: latest hourly 0-1cm volumetric soil moisture
    - flood_risk_level: forecast peak discharge / recent mean discharge
    - flood_probability_7d: share of forecast days above the flood ratio
    """

    FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
    FLOOD_URL = "https://flood-api.open-meteo.com/v1/flood"

    SUPPORTED_HAZARDS = frozenset({HazardType.DROUGHT, HazardType.FLOOD})

    DRY_DAY_MM = 1.0
    PAST_DAYS = 30
    FLOOD_FORECAST_DAYS = 7
    FLOOD_DAY_RATIO = 1.5

    # (minimum discharge ratio, level), highest first
    DISCHARGE_LEVELS: List[Tuple[float, FloodRiskLevel]] = [
        (3.0, FloodRiskLevel.CRITICAL),
        (2.0, FloodRiskLevel.HIGH),
        (1.5, FloodRiskLevel.MEDIUM),
    ]

    def __init__(
        self,
        name: str = "open_meteo",
        tier: SourceTier = SourceTier.FALLBACK_1,
        timeout_seconds: float = 15.0,
        base_url: Optional[str] = None,
        flood_base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[ClockProtocol] = None,
        **kwargs,
    ) -> None:
        super().__init__(
            name=name,
            tier=tier,
            timeout_seconds=timeout_seconds,
            session=session,
            clock=clock,
            **kwargs,
        )
        self._forecast_url = base_url or self.FORECAST_URL
        self._flood_url = flood_base_url or self.FLOOD_URL

    async def get(
        self,
        location: Location,
        hazards: FrozenSet[HazardType],
        since: Optional[datetime] = None,
    ) -> EnvironmentalSnapshot:
        covered = hazards & self.SUPPORTED_HAZARDS
        if not covered:
            raise ProviderUnavailable(
                f"{self.name} has no signal for {sorted(h.value for h in hazards)}",
                source_name=self.name,
                tier=self.tier.value,
            )

        values: Dict[str, Any] = {}
        if HazardType.DROUGHT in covered:
            values.update(await self._fetch_weather(location))
        if HazardType.FLOOD in covered:
            values.update(await self._fetch_flood(location))

        return self._build_snapshot(location, hazards, EnvironmentalIndicators(**values))

    # =========================================================
    # WEATHER
    # =========================================================

    async def _fetch_weather(self, location: Location) -> Dict[str, Any]:
        data = await self._make_request("GET", self._forecast_url, params={
            "latitude": location.latitude,
            "longitude": location.longitude,
            "daily": "precipitation_sum,temperature_2m_max",
            "hourly": "soil_moisture_0_to_1cm",
            "past_days": self.PAST_DAYS,
            "forecast_days": 1,
            "timezone": "UTC",
        })

        try:
            daily = data["daily"]
            precipitation = list(daily["precipitation_sum"])
            temperatures = list(daily["temperature_2m_max"])
            soil = list(data.get("hourly", {}).get("soil_moisture_0_to_1cm") or [])
        except (KeyError, TypeError) as e:
            raise NormalizationError(
                f"Missing forecast field: {e}",
                source_name=self.name,
                tier=self.tier.value,
                raw_data=data,
            ) from e

        return {
            "consecutive_dry_days": self._trailing_dry_days(precipitation),
            "max_temperature_c": self._recent_max(temperatures, days=7),
            "soil_moisture": self._latest(soil),
        }

    def _trailing_dry_days(self, precipitation: List[Optional[float]]) -> Optional[int]:
        series = list(precipitation)
        # Today's value is partial and often null.
        while series and series[-1] is None:
            series.pop()
        if not series:
            return None

        count = 0
        for value in reversed(series):
            if value is None or float(value) >= self.DRY_DAY_MM:
                break
            count += 1
        return count

    @staticmethod
    def _recent_max(values: List[Optional[float]], days: int) -> Optional[float]:
        recent = [float(v) for v in values[-days:] if v is not None]
        return max(recent) if recent else None

    @staticmethod
    def _latest(values: List[Optional[float]]) -> Optional[float]:
        for value in reversed(values):
            if value is not None:
                return float(value)
        return None

    # =========================================================
    # FLOOD
    # =========================================================

    async def _fetch_flood(self, location: Location) -> Dict[str, Any]:
        data = await self._make_request("GET", self._flood_url, params={
            "latitude": location.latitude,
            "longitude": location.longitude,
            "daily": "river_discharge",
            "past_days": self.PAST_DAYS,
            "forecast_days": self.FLOOD_FORECAST_DAYS,
        })

        try:
            days = list(data["daily"]["time"])
            discharge = list(data["daily"]["river_discharge"])
        except (KeyError, TypeError) as e:
            raise NormalizationError(
                f"Missing flood field: {e}",
                source_name=self.name,
                tier=self.tier.value,
                raw_data=data,
            ) from e

        today = self._clock.today().isoformat()
        past = [float(v) for d, v in zip(days, discharge) if d < today and v is not None]
        future = [float(v) for d, v in zip(days, discharge) if d >= today and v is not None]

        if not past or not future:
            raise NormalizationError(
                "Not enough river discharge data",
                source_name=self.name,
                tier=self.tier.value,
                field_name="river_discharge",
            )

        baseline = mean(past)
        if baseline <= 0:
            raise NormalizationError(
                "Non-positive baseline discharge",
                source_name=self.name,
                tier=self.tier.value,
                field_name="river_discharge",
            )

        ratio = max(future) / baseline
        level = FloodRiskLevel.LOW
        for minimum, candidate in self.DISCHARGE_LEVELS:
            if ratio >= minimum:
                level = candidate
                break

        window = future[:self.FLOOD_FORECAST_DAYS]
        flooded_days = sum(1 for v in window if v > baseline * self.FLOOD_DAY_RATIO)

        return {
            "flood_risk_level": level,
            "flood_probability_7d": round(flooded_days / len(window), 4),
        }
