"""
Data Sources Package - Environmental Data Gateway.

Provides pluggable, fail-safe environmental data sources for the
parametric cover engine.

Features:
- Isolated, replaceable providers ranked by tier
- Normalized indicator format across all sources
- Automatic fallback, ending in a deterministic simulated default
- Per-hazard snapshot cache
- Health monitoring with incident logging

Quick Start:
    from data_sources import (
        EnvironmentalDataGateway,
        GatewayConfig,
        HazardType,
        Location,
    )

    async def fetch():
        gateway = EnvironmentalDataGateway.from_config(GatewayConfig())
        result = await gateway.fetch_snapshot(
            Location(-1.2921, 36.8219),
            {HazardType.DROUGHT, HazardType.FLOOD},
        )
        print(result.snapshot.tier, result.snapshot.indicators)

Adding New Providers:
    1. Create class extending BaseEnvironmentalSource
    2. Implement get(location, hazards, since)
    3. Register with the gateway
    4. No changes needed to trigger or payout logic
"""

from data_sources.base import BaseEnvironmentalSource
from data_sources.cache import SnapshotCache
from data_sources.config import GatewayConfig, ProviderSettings
from data_sources.exceptions import (
    DataUnavailable,
    FetchError,
    NormalizationError,
    ProviderTimeoutError,
    ProviderUnavailable,
    RateLimitError,
)
from data_sources.gateway import EnvironmentalDataGateway, build_source
from data_sources.models import (
    Confidence,
    EnvironmentalIndicators,
    EnvironmentalSnapshot,
    FloodRiskLevel,
    GatewayResult,
    HazardType,
    Location,
    SourceHealth,
    SourceIncident,
    SourceStatus,
    SourceTier,
)
from data_sources.providers import (
    HttpSnapshotSource,
    OpenMeteoSource,
    SimulatedDefaultSource,
)


__all__ = [
    # Gateway
    "EnvironmentalDataGateway",
    "build_source",
    "SnapshotCache",
    "GatewayConfig",
    "ProviderSettings",
    # Base
    "BaseEnvironmentalSource",
    # Providers
    "HttpSnapshotSource",
    "OpenMeteoSource",
    "SimulatedDefaultSource",
    # Models
    "Confidence",
    "EnvironmentalIndicators",
    "EnvironmentalSnapshot",
    "FloodRiskLevel",
    "GatewayResult",
    "HazardType",
    "Location",
    "SourceHealth",
    "SourceIncident",
    "SourceStatus",
    "SourceTier",
    # Exceptions
    "DataUnavailable",
    "FetchError",
    "NormalizationError",
    "ProviderTimeoutError",
    "ProviderUnavailable",
    "RateLimitError",
]
