"""
HTTP Snapshot Source - Upstream environmental signal service adapter.

Calls a service that already returns normalized indicators:

    GET {base_url}/snapshots?lat=..&lon=..&hazards=DROUGHT,FLOOD[&since=..]

    {"indicators": {"consecutive_dry_days": 25, "vegetation_index": 0.22, ...}}

Imagery processing happens upstream; vegetation index arrives as a number.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional

import aiohttp

from core.clock import ClockProtocol
from data_sources.base import BaseEnvironmentalSource
from data_sources.exceptions import NormalizationError
from data_sources.models import (
    EnvironmentalIndicators,
    EnvironmentalSnapshot,
    HazardType,
    Location,
    SourceTier,
)


logger = logging.getLogger(__name__)


class HttpSnapshotSource(BaseEnvironmentalSource):
    """
    Primary environmental signal provider.

    Authentication is an optional bearer token.
    """

    SNAPSHOT_PATH = "/snapshots"

    def __init__(
        self,
        base_url: str,
        name: str = "primary",
        tier: SourceTier = SourceTier.PRIMARY,
        timeout_seconds: float = 10.0,
        api_key: Optional[str] = None,
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
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key

    def _auth_headers(self) -> Dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    async def get(
        self,
        location: Location,
        hazards: FrozenSet[HazardType],
        since: Optional[datetime] = None,
    ) -> EnvironmentalSnapshot:
        params = {
            "lat": f"{location.latitude:.6f}",
            "lon": f"{location.longitude:.6f}",
            "hazards": ",".join(sorted(h.value for h in hazards)),
        }
        if since is not None:
            params["since"] = since.isoformat()

        data = await self._make_request(
            "GET",
            f"{self._base_url}{self.SNAPSHOT_PATH}",
            params=params,
            headers=self._auth_headers(),
        )

        indicators = self._normalize(data)
        logger.debug(f"[{self.name}] Snapshot for {location.cache_key()}: {indicators.to_dict()}")
        return self._build_snapshot(location, hazards, indicators)

    def _normalize(self, data) -> EnvironmentalIndicators:
        if not isinstance(data, dict):
            raise NormalizationError(
                "Expected a JSON object",
                source_name=self.name,
                tier=self.tier.value,
                raw_data=data,
            )
        payload = data.get("indicators", data)
        if not isinstance(payload, dict):
            raise NormalizationError(
                "'indicators' must be an object",
                source_name=self.name,
                tier=self.tier.value,
                raw_data=data,
                field_name="indicators",
            )
        try:
            return EnvironmentalIndicators.from_dict(payload)
        except (TypeError, ValueError) as e:
            raise NormalizationError(
                f"Malformed indicator payload: {e}",
                source_name=self.name,
                tier=self.tier.value,
                raw_data=payload,
            ) from e
