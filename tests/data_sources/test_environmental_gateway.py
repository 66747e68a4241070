"""
Environmental Data Gateway Tests.

============================================================
PURPOSE
============================================================
Tests for tiered fetch, fallback, caching and providers.

TEST CATEGORIES:
- Fallback order and tier tagging
- Per-hazard cache behaviour
- Failure handling (timeouts, unexpected errors, all tiers down)
- Provider health tracking
- HTTP snapshot provider against a local aiohttp server
- Simulated default provider
- Gateway configuration

============================================================
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.clock import MockClock
from core.exceptions import ConfigurationError, DataUnavailable, ProviderUnavailable
from data_sources.base import BaseEnvironmentalSource
from data_sources.cache import SnapshotCache
from data_sources.config import GatewayConfig, ProviderSettings
from data_sources.exceptions import FetchError, NormalizationError, RateLimitError
from data_sources.gateway import EnvironmentalDataGateway, build_source
from data_sources.models import (
    EnvironmentalIndicators,
    FloodRiskLevel,
    HazardType,
    Location,
    SourceStatus,
    SourceTier,
)
from data_sources.providers import HttpSnapshotSource, OpenMeteoSource, SimulatedDefaultSource


NOW = datetime(2026, 3, 15, 6, 0, tzinfo=timezone.utc)
LOCATION = Location(-0.4167, 36.95)
ALL_HAZARDS = frozenset(HazardType)

DROUGHT_INDICATORS = EnvironmentalIndicators(
    consecutive_dry_days=25,
    max_temperature_c=39.0,
    soil_moisture=0.18,
    vegetation_index=0.22,
    water_stress_index=0.7,
    flood_risk_level=FloodRiskLevel.LOW,
    flood_probability_7d=0.05,
)


# ============================================================
# TEST SOURCE
# ============================================================

class ScriptedSource(BaseEnvironmentalSource):
    """Source that returns fixed indicators, raises, or hangs."""

    def __init__(
        self,
        name: str,
        tier: SourceTier,
        clock: MockClock,
        indicators: Optional[EnvironmentalIndicators] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        timeout_seconds: float = 1.0,
    ) -> None:
        super().__init__(name=name, tier=tier, timeout_seconds=timeout_seconds, clock=clock)
        self.indicators = indicators or DROUGHT_INDICATORS
        self.error = error
        self.delay = delay
        self.calls: List[frozenset] = []

    async def get(self, location, hazards, since=None):
        self.calls.append(frozenset(hazards))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self._build_snapshot(location, hazards, self.indicators)


def unavailable(name: str) -> ProviderUnavailable:
    return ProviderUnavailable(f"{name} down", source_name=name)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def gateway(clock):
    return EnvironmentalDataGateway(clock=clock)


# ============================================================
# FALLBACK TESTS
# ============================================================

class TestFallback:
    """Tests for tier ordering and fallback."""

    @pytest.mark.asyncio
    async def test_primary_answers(self, gateway, clock):
        """Test that the primary tier answers when healthy."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock)
        fallback = ScriptedSource("fallback", SourceTier.FALLBACK_1, clock)
        gateway.register(fallback)
        gateway.register(primary)

        result = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})

        assert gateway.list_sources() == ["primary", "fallback"]
        assert result.tier == SourceTier.PRIMARY
        assert result.snapshot.source_name == "primary"
        assert result.attempted_tiers == [SourceTier.PRIMARY]
        assert fallback.calls == []

    @pytest.mark.asyncio
    async def test_fallback_order_without_retrying(self, gateway, clock):
        """Test that a failed tier is not retried within a fetch."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock, error=unavailable("primary"))
        fallback_1 = ScriptedSource("f1", SourceTier.FALLBACK_1, clock, error=unavailable("f1"))
        fallback_2 = ScriptedSource("f2", SourceTier.FALLBACK_2, clock)
        for source in (fallback_2, primary, fallback_1):
            gateway.register(source)

        result = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})

        assert result.tier == SourceTier.FALLBACK_2
        assert result.snapshot.is_binding is True
        assert result.attempted_tiers == [SourceTier.PRIMARY, SourceTier.FALLBACK_1, SourceTier.FALLBACK_2]
        assert len(primary.calls) == 1
        assert len(fallback_1.calls) == 1

    @pytest.mark.asyncio
    async def test_simulated_is_last_resort(self, gateway, clock):
        """Test that the simulated tier answers when everything else fails."""
        gateway.register(ScriptedSource("primary", SourceTier.PRIMARY, clock, error=unavailable("primary")))
        gateway.register(SimulatedDefaultSource(clock=clock))

        result = await gateway.fetch_snapshot(LOCATION, ALL_HAZARDS)

        assert result.tier == SourceTier.SIMULATED
        assert result.snapshot.is_binding is False
        assert result.snapshot.hazards == ALL_HAZARDS

    @pytest.mark.asyncio
    async def test_all_tiers_fail(self, gateway, clock):
        """Test DataUnavailable lists every attempted tier."""
        gateway.register(ScriptedSource("primary", SourceTier.PRIMARY, clock, error=unavailable("primary")))
        gateway.register(ScriptedSource("sim", SourceTier.SIMULATED, clock, error=unavailable("sim")))

        with pytest.raises(DataUnavailable) as exc_info:
            await gateway.fetch_snapshot(LOCATION, {HazardType.FLOOD})

        assert exc_info.value.attempted_tiers == ["PRIMARY", "SIMULATED"]
        assert exc_info.value.context["location"] == LOCATION.cache_key()

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, gateway, clock):
        """Test that a provider exceeding its timeout is treated as unavailable."""
        slow = ScriptedSource("slow", SourceTier.PRIMARY, clock, delay=5.0, timeout_seconds=0.05)
        fallback = ScriptedSource("fallback", SourceTier.FALLBACK_1, clock)
        gateway.register(slow)
        gateway.register(fallback)

        result = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})

        assert result.tier == SourceTier.FALLBACK_1
        health = gateway.get_all_health()["slow"]
        assert health.consecutive_failures == 1
        assert "Timed out" in health.last_error

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, gateway, clock):
        """Test that a provider bug does not escape the gateway."""
        gateway.register(ScriptedSource("buggy", SourceTier.PRIMARY, clock, error=KeyError("daily")))
        gateway.register(ScriptedSource("fallback", SourceTier.FALLBACK_1, clock))

        result = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})

        assert result.tier == SourceTier.FALLBACK_1
        assert "Unexpected provider error" in gateway.get_all_health()["buggy"].last_error

    @pytest.mark.asyncio
    async def test_snapshot_restricted_to_requested_hazards(self, gateway, clock):
        """Test that indicators for unrequested hazards are dropped."""
        gateway.register(ScriptedSource("primary", SourceTier.PRIMARY, clock))

        result = await gateway.fetch_snapshot(LOCATION, {HazardType.FLOOD})

        indicators = result.snapshot.indicators
        assert indicators.flood_risk_level == FloodRiskLevel.LOW
        assert indicators.consecutive_dry_days is None
        assert result.snapshot.tier_for(HazardType.FLOOD) == SourceTier.PRIMARY

    @pytest.mark.asyncio
    async def test_empty_hazards_rejected(self, gateway):
        with pytest.raises(ValueError):
            await gateway.fetch_snapshot(LOCATION, set())

    def test_duplicate_registration(self, gateway, clock):
        """Test that source names are unique."""
        gateway.register(ScriptedSource("primary", SourceTier.PRIMARY, clock))
        with pytest.raises(ValueError):
            gateway.register(ScriptedSource("primary", SourceTier.FALLBACK_1, clock))


# ============================================================
# CACHE TESTS
# ============================================================

class TestSnapshotCaching:
    """Tests for the per-hazard cache."""

    @pytest.mark.asyncio
    async def test_cache_hit_within_ttl(self, gateway, clock):
        """Test that a second fetch in the same TTL bucket hits the cache."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock)
        gateway.register(primary)

        await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})
        clock.advance(minutes=10)
        result = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})

        assert len(primary.calls) == 1
        assert result.cache_hits == frozenset({HazardType.DROUGHT})
        assert result.attempted_tiers == []
        assert result.tier == SourceTier.PRIMARY

    @pytest.mark.asyncio
    async def test_cache_expires(self, gateway, clock):
        """Test that a new TTL bucket refetches."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock)
        gateway.register(primary)

        await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})
        clock.advance(hours=1)
        await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})

        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_only_missing_hazards_fetched(self, gateway, clock):
        """Test partial cache hits request only the missing hazards."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock)
        gateway.register(primary)

        await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})
        result = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT, HazardType.FLOOD})

        assert primary.calls[-1] == frozenset({HazardType.FLOOD})
        assert result.snapshot.hazards == frozenset({HazardType.DROUGHT, HazardType.FLOOD})
        assert result.snapshot.indicators.consecutive_dry_days == 25
        assert result.snapshot.indicators.flood_risk_level == FloodRiskLevel.LOW

    @pytest.mark.asyncio
    async def test_assembled_tier_is_lowest(self, gateway, clock):
        """Test that mixing tiers reports the lowest-confidence one."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock)
        fallback = ScriptedSource("fallback", SourceTier.FALLBACK_1, clock)
        gateway.register(primary)
        gateway.register(fallback)

        await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})
        primary.error = unavailable("primary")
        result = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT, HazardType.FLOOD})

        assert result.tier == SourceTier.FALLBACK_1
        assert result.snapshot.tier_for(HazardType.DROUGHT) == SourceTier.PRIMARY
        assert result.snapshot.tier_for(HazardType.FLOOD) == SourceTier.FALLBACK_1

    @pytest.mark.asyncio
    async def test_hazards_keep_their_own_part(self, gateway, clock):
        """Test that a simulated drought part leaves cached primary crop data intact."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock)
        simulated = ScriptedSource(
            "simulated",
            SourceTier.SIMULATED,
            clock,
            indicators=EnvironmentalIndicators(consecutive_dry_days=3, vegetation_index=0.9),
        )
        gateway.register(primary)
        gateway.register(simulated)

        await gateway.fetch_snapshot(LOCATION, {HazardType.CROP_STRESS, HazardType.FLOOD})
        primary.error = unavailable("primary")
        result = await gateway.fetch_snapshot(LOCATION, set(HazardType))
        snapshot = result.snapshot

        assert result.tier == SourceTier.SIMULATED
        assert snapshot.tier_for(HazardType.FLOOD) == SourceTier.PRIMARY
        assert snapshot.tier_for(HazardType.CROP_STRESS) == SourceTier.PRIMARY
        assert snapshot.tier_for(HazardType.DROUGHT) == SourceTier.SIMULATED
        assert snapshot.indicators.vegetation_index == 0.22
        assert snapshot.for_hazard(HazardType.CROP_STRESS).indicators.vegetation_index == 0.22
        assert snapshot.for_hazard(HazardType.CROP_STRESS).is_binding is True
        drought = snapshot.for_hazard(HazardType.DROUGHT)
        assert drought.indicators.vegetation_index == 0.9
        assert drought.indicators.water_stress_index is None
        assert drought.is_binding is False

    @pytest.mark.asyncio
    async def test_simulated_not_cached(self, gateway, clock):
        """Test that simulated answers do not mask a recovered upstream."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock, error=unavailable("primary"))
        gateway.register(primary)
        gateway.register(SimulatedDefaultSource(clock=clock))

        first = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})
        primary.error = None
        second = await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})

        assert first.tier == SourceTier.SIMULATED
        assert second.tier == SourceTier.PRIMARY
        assert len(gateway.cache) == 1

    def test_cache_stats_and_purge(self, clock):
        """Test hit/miss counters and expiry purge."""
        cache = SnapshotCache(ttl_for=lambda hazard: 60, clock=clock)
        source = ScriptedSource("primary", SourceTier.PRIMARY, clock)
        cache.put(source._build_snapshot(LOCATION, {HazardType.FLOOD}, DROUGHT_INDICATORS))

        assert cache.get(LOCATION, HazardType.FLOOD) is not None
        assert cache.get(LOCATION, HazardType.DROUGHT) is None
        assert cache.get_stats() == {"entries": 1, "hits": 1, "misses": 1}

        clock.advance(seconds=61)
        assert cache.purge_expired() == 1
        assert len(cache) == 0


# ============================================================
# HEALTH TESTS
# ============================================================

class TestSourceHealth:
    """Tests for provider health tracking."""

    @pytest.mark.asyncio
    async def test_degraded_then_recovered(self, gateway, clock):
        """Test consecutive failure thresholds and recovery."""
        primary = ScriptedSource("primary", SourceTier.PRIMARY, clock, error=unavailable("primary"))
        gateway.register(primary)
        gateway.register(SimulatedDefaultSource(clock=clock))

        for _ in range(3):
            await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})
        assert gateway.get_all_health()["primary"].status == SourceStatus.DEGRADED
        assert len(primary.get_incidents()) == 3

        primary.error = None
        await gateway.fetch_snapshot(LOCATION, {HazardType.DROUGHT})
        health = gateway.get_all_health()["primary"]
        assert health.status == SourceStatus.HEALTHY
        assert health.consecutive_failures == 0
        assert health.to_dict()["status"] == "healthy"


# ============================================================
# HTTP SNAPSHOT PROVIDER TESTS
# ============================================================

class TestHttpSnapshotSource:
    """Tests for the primary HTTP provider against a local server."""

    @pytest.mark.asyncio
    async def test_fetch_and_normalize(self, clock):
        """Test query parameters, auth header and payload parsing."""
        seen = {}

        async def handler(request: web.Request) -> web.Response:
            seen["query"] = dict(request.query)
            seen["auth"] = request.headers.get("Authorization")
            return web.json_response({"indicators": {
                "consecutive_dry_days": 25,
                "vegetation_index": 0.22,
                "flood_risk_level": "high",
                "flood_probability_7d": 0.8,
            }})

        app = web.Application()
        app.router.add_get("/snapshots", handler)

        async with TestServer(app) as server:
            source = HttpSnapshotSource(str(server.make_url("/")), api_key="secret", clock=clock)
            try:
                snapshot = await source.get(
                    LOCATION,
                    frozenset({HazardType.FLOOD, HazardType.DROUGHT}),
                    since=NOW - timedelta(days=14),
                )
            finally:
                await source.close()

        assert seen["auth"] == "Bearer secret"
        assert seen["query"]["hazards"] == "DROUGHT,FLOOD"
        assert seen["query"]["lat"] == "-0.416700"
        assert "since" in seen["query"]
        assert snapshot.tier == SourceTier.PRIMARY
        assert snapshot.timestamp == NOW
        assert snapshot.indicators.flood_risk_level == FloodRiskLevel.HIGH
        assert snapshot.indicators.consecutive_dry_days == 25

    @pytest.mark.asyncio
    async def test_flat_payload(self, clock):
        """Test a payload without an 'indicators' wrapper."""
        async def handler(request):
            return web.json_response({"flood_risk_level": "CRITICAL"})

        app = web.Application()
        app.router.add_get("/snapshots", handler)

        async with TestServer(app) as server:
            source = HttpSnapshotSource(str(server.make_url("/")), clock=clock)
            try:
                snapshot = await source.get(LOCATION, frozenset({HazardType.FLOOD}))
            finally:
                await source.close()

        assert snapshot.indicators.flood_risk_level == FloodRiskLevel.CRITICAL

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error_type", [
        (429, RateLimitError),
        (503, FetchError),
        (404, FetchError),
    ])
    async def test_http_errors(self, clock, status, error_type):
        """Test HTTP error classification."""
        async def handler(request):
            return web.Response(status=status, text="nope")

        app = web.Application()
        app.router.add_get("/snapshots", handler)

        async with TestServer(app) as server:
            source = HttpSnapshotSource(str(server.make_url("/")), clock=clock)
            try:
                with pytest.raises(error_type) as exc_info:
                    await source.get(LOCATION, frozenset({HazardType.FLOOD}))
            finally:
                await source.close()

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_malformed_payload(self, clock):
        """Test that garbage bodies raise NormalizationError."""
        async def handler(request):
            return web.Response(text="not json", content_type="application/json")

        app = web.Application()
        app.router.add_get("/snapshots", handler)

        async with TestServer(app) as server:
            source = HttpSnapshotSource(str(server.make_url("/")), clock=clock)
            try:
                with pytest.raises(NormalizationError):
                    await source.get(LOCATION, frozenset({HazardType.FLOOD}))
            finally:
                await source.close()


# ============================================================
# OTHER PROVIDER TESTS
# ============================================================

class TestProviders:
    """Tests for the simulated and Open-Meteo providers."""

    @pytest.mark.asyncio
    async def test_simulated_is_deterministic(self, clock):
        """Test that the simulated source is seeded by location and day."""
        source = SimulatedDefaultSource(clock=clock)

        first = await source.get(LOCATION, ALL_HAZARDS)
        clock.advance(hours=2)
        second = await source.get(LOCATION, ALL_HAZARDS)
        clock.advance(days=1)
        third = await source.get(LOCATION, ALL_HAZARDS)

        assert first.indicators == second.indicators
        assert first.indicators != third.indicators
        assert first.tier == SourceTier.SIMULATED

    def test_simulated_ignores_tier_setting(self, clock):
        source = SimulatedDefaultSource(clock=clock, tier=SourceTier.PRIMARY)
        assert source.tier == SourceTier.SIMULATED

    @pytest.mark.asyncio
    async def test_open_meteo_without_supported_hazard(self, clock):
        """Test that Open-Meteo declines crop stress."""
        source = OpenMeteoSource(clock=clock)
        with pytest.raises(ProviderUnavailable):
            await source.get(LOCATION, frozenset({HazardType.CROP_STRESS}))

    @pytest.mark.asyncio
    async def test_open_meteo_weather_and_flood(self, clock):
        """Test dry-day counting and discharge-based flood levels."""
        async def forecast(request):
            return web.json_response({
                "daily": {
                    "precipitation_sum": [5.0, 0.0, 0.2, 0.0, 0.0, None],
                    "temperature_2m_max": [30.0, 31.5, 36.2, 33.0, 34.0, None],
                },
                "hourly": {"soil_moisture_0_to_1cm": [0.21, 0.19, None]},
            })

        async def flood(request):
            return web.json_response({
                "daily": {
                    "time": ["2026-03-13", "2026-03-14", "2026-03-15", "2026-03-16", "2026-03-17"],
                    "river_discharge": [10.0, 10.0, 35.0, 32.0, 12.0],
                },
            })

        app = web.Application()
        app.router.add_get("/forecast", forecast)
        app.router.add_get("/flood", flood)

        async with TestServer(app) as server:
            source = OpenMeteoSource(
                base_url=str(server.make_url("/forecast")),
                flood_base_url=str(server.make_url("/flood")),
                clock=clock,
            )
            try:
                snapshot = await source.get(LOCATION, frozenset({HazardType.DROUGHT, HazardType.FLOOD}))
            finally:
                await source.close()

        indicators = snapshot.indicators
        assert indicators.consecutive_dry_days == 4
        assert indicators.max_temperature_c == 36.2
        assert indicators.soil_moisture == 0.19
        assert indicators.flood_risk_level == FloodRiskLevel.CRITICAL
        assert snapshot.tier == SourceTier.FALLBACK_1


# ============================================================
# CONFIGURATION TESTS
# ============================================================

class TestGatewayConfig:
    """Tests for gateway configuration."""

    def test_defaults_are_valid(self):
        config = GatewayConfig()
        config.validate()
        assert [p.tier for p in config.providers] == [SourceTier.FALLBACK_1, SourceTier.SIMULATED]

    def test_simulated_must_be_last(self):
        """Test that the chain must end with the simulated tier."""
        config = GatewayConfig(providers=[
            ProviderSettings(name="sim", kind="simulated", tier=SourceTier.SIMULATED),
            ProviderSettings(name="primary", kind="http", tier=SourceTier.PRIMARY, base_url="http://x"),
        ])
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_api_key_masked(self):
        settings = ProviderSettings(
            name="primary", kind="http", tier=SourceTier.PRIMARY, base_url="http://x", api_key="secret",
        )
        assert settings.to_dict()["api_key"] != "secret"

    def test_from_config_builds_chain(self, clock):
        """Test building providers from configuration."""
        config = GatewayConfig(providers=[
            ProviderSettings(name="primary", kind="http", tier=SourceTier.PRIMARY, base_url="http://x"),
            ProviderSettings(name="sim", kind="simulated", tier=SourceTier.SIMULATED),
        ])
        gateway = EnvironmentalDataGateway.from_config(config, clock=clock)
        assert gateway.list_sources() == ["primary", "sim"]

    def test_unknown_kind(self):
        settings = ProviderSettings(name="x", kind="carrier_pigeon", tier=SourceTier.FALLBACK_2)
        with pytest.raises(ValueError):
            build_source(settings, GatewayConfig())
