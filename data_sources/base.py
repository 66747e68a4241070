"""
Base Environmental Data Source - Abstract interface for all providers.

All providers MUST implement this interface to ensure:
- Isolation
- Replaceability
- Fail-safety

A provider answers `get(location, hazards, since)` with a snapshot tagged
with its own tier, or raises ProviderUnavailable. Retry and fallback are
the gateway's job, never the provider's.
"""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import aiohttp

from core.clock import ClockFactory, ClockProtocol
from data_sources.exceptions import (
    FetchError,
    NormalizationError,
    ProviderUnavailable,
    RateLimitError,
)
from data_sources.models import (
    EnvironmentalIndicators,
    EnvironmentalSnapshot,
    HazardType,
    Location,
    SourceHealth,
    SourceIncident,
    SourceStatus,
    SourceTier,
)


logger = logging.getLogger(__name__)


class BaseEnvironmentalSource(ABC):
    """
    Abstract base class for all environmental data sources.

    Each implementation must:
    1. Implement get() - Fetch and normalize a snapshot
    2. Declare its tier and timeout

    Features:
    - Health tracking (HEALTHY / DEGRADED / UNAVAILABLE)
    - Incident logging
    - Shared aiohttp request helper with status classification
    """

    DEFAULT_TIMEOUT = 10.0
    DEGRADED_THRESHOLD = 3  # consecutive failures before degraded
    UNAVAILABLE_THRESHOLD = 5  # consecutive failures before unavailable

    def __init__(
        self,
        name: str,
        tier: SourceTier,
        timeout_seconds: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[ClockProtocol] = None,
        degraded_threshold: int = DEGRADED_THRESHOLD,
        unavailable_threshold: int = UNAVAILABLE_THRESHOLD,
        max_incidents: int = 100,
    ) -> None:
        self._name = name
        self._tier = tier
        self._timeout = timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._clock = clock or ClockFactory.get_clock()
        self._degraded_threshold = degraded_threshold
        self._unavailable_threshold = unavailable_threshold

        # Health tracking
        self._health = SourceHealth(
            status=SourceStatus.UNKNOWN,
            last_check=self._clock.now(),
        )
        self._request_count = 0
        self._success_count = 0

        # Incident log
        self._incidents: List[SourceIncident] = []
        self._max_incidents = max_incidents

    @property
    def name(self) -> str:
        return self._name

    @property
    def tier(self) -> SourceTier:
        return self._tier

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @abstractmethod
    async def get(
        self,
        location: Location,
        hazards: FrozenSet[HazardType],
        since: Optional[datetime] = None,
    ) -> EnvironmentalSnapshot:
        """
        Fetch a snapshot for a location.

        Args:
            location: Parcel location
            hazards: Hazards whose indicators are needed
            since: Optional lower bound for observations

        Returns:
            Snapshot tagged with this provider's tier

        Raises:
            ProviderUnavailable: On any provider-level failure
        """
        pass

    # =========================================================
    # SNAPSHOT HELPERS
    # =========================================================

    def _build_snapshot(
        self,
        location: Location,
        hazards: Iterable[HazardType],
        indicators: EnvironmentalIndicators,
    ) -> EnvironmentalSnapshot:
        hazard_set = frozenset(hazards)
        return EnvironmentalSnapshot(
            location=location,
            timestamp=self._clock.now(),
            indicators=indicators.restricted_to(hazard_set),
            tier=self._tier,
            source_name=self._name,
            hazards=hazard_set,
            hazard_tiers={h: self._tier for h in hazard_set},
        )

    # =========================================================
    # HTTP
    # =========================================================

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "ParametricCoverEngine/1.0",
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Make HTTP request with error classification."""
        session = await self._get_session()

        start_time = time.time()
        try:
            async with session.request(
                method,
                url,
                params=params,
                headers=headers,
            ) as response:
                latency_ms = (time.time() - start_time) * 1000

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        "Rate limit exceeded",
                        source_name=self.name,
                        tier=self.tier.value,
                        retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        f"HTTP {response.status}",
                        source_name=self.name,
                        tier=self.tier.value,
                        status_code=response.status,
                        response_body=body[:1000],
                        request_url=url,
                    )

                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise NormalizationError(
                        f"Response is not valid JSON: {e}",
                        source_name=self.name,
                        tier=self.tier.value,
                    ) from e

                logger.debug(f"[{self.name}] Request completed in {latency_ms:.1f}ms")
                return data

        except aiohttp.ClientError as e:
            raise FetchError(
                f"Connection error: {e}",
                source_name=self.name,
                tier=self.tier.value,
                request_url=url,
                cause=e,
            ) from e

    # =========================================================
    # HEALTH TRACKING
    # =========================================================

    def record_success(self) -> None:
        """Record a successful call."""
        self._request_count += 1
        self._success_count += 1
        self._health.consecutive_failures = 0
        self._health.last_check = self._clock.now()

        if self._health.status != SourceStatus.HEALTHY:
            if self._health.status != SourceStatus.UNKNOWN:
                logger.info(f"[{self.name}] Recovered to HEALTHY status")
            self._health.status = SourceStatus.HEALTHY

    def record_failure(
        self,
        error: ProviderUnavailable,
        location: Optional[Location] = None,
    ) -> None:
        """Record a failed call and update status."""
        now = self._clock.now()
        self._request_count += 1
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = now
        self._health.last_check = now

        failures = self._health.consecutive_failures
        if failures >= self._unavailable_threshold:
            if self._health.status != SourceStatus.UNAVAILABLE:
                self._health.status = SourceStatus.UNAVAILABLE
                logger.error(f"[{self.name}] Marked UNAVAILABLE after {failures} failures")
        elif failures >= self._degraded_threshold:
            if self._health.status != SourceStatus.DEGRADED:
                self._health.status = SourceStatus.DEGRADED
                logger.warning(f"[{self.name}] Marked DEGRADED after {failures} failures")

        self._incidents.append(SourceIncident(
            source_name=self.name,
            tier=self.tier,
            incident_type=type(error).__name__,
            timestamp=now,
            error_message=str(error),
            location=location.cache_key() if location else None,
        ))
        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

    def get_health(self) -> SourceHealth:
        """Get current health status."""
        if self._request_count > 0:
            self._health.uptime_percentage = self._success_count / self._request_count * 100
        return self._health

    def get_incidents(self, limit: int = 10) -> List[SourceIncident]:
        return self._incidents[-limit:]

    def is_healthy(self) -> bool:
        return self._health.status == SourceStatus.HEALTHY

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseEnvironmentalSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(name={self.name}, tier={self.tier.value}, "
            f"status={self._health.status.value})>"
        )
