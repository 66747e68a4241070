"""
Data Sources - Configuration.

============================================================
GATEWAY CONFIGURATION
============================================================

All gateway parameters are configurable:
- Provider tiers, endpoints and per-provider timeouts
- Snapshot cache TTL per hazard
- Health tracking thresholds

Configuration can be loaded from:
- Default values
- A mapping (YAML section, see core.settings)
- Environment variables

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.exceptions import ConfigurationError
from data_sources.models import HazardType, SourceTier


logger = logging.getLogger(__name__)


PROVIDER_KINDS = ("http", "open_meteo", "simulated")


# =============================================================
# PROVIDER SETTINGS
# =============================================================


@dataclass
class ProviderSettings:
    """One configured provider tier."""

    name: str
    """Unique provider name (appears in snapshots and health)."""

    kind: str
    """Implementation: http, open_meteo or simulated."""

    tier: SourceTier
    """Tier the provider answers at."""

    timeout_seconds: float = 10.0
    """Hard bound on one provider call."""

    base_url: Optional[str] = None
    """Endpoint for HTTP-backed providers."""

    flood_base_url: Optional[str] = None
    """Secondary endpoint (Open-Meteo flood API)."""

    api_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderSettings":
        try:
            return cls(
                name=str(data["name"]),
                kind=str(data["kind"]),
                tier=SourceTier(str(data["tier"]).upper()),
                timeout_seconds=float(data.get("timeout_seconds", 10.0)),
                base_url=data.get("base_url"),
                flood_base_url=data.get("flood_base_url"),
                api_key=data.get("api_key"),
            )
        except (KeyError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid provider entry: {e}",
                config_key="gateway.providers",
                actual_value=data,
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "tier": self.tier.value,
            "timeout_seconds": self.timeout_seconds,
            "base_url": self.base_url,
            "flood_base_url": self.flood_base_url,
            "api_key": "***" if self.api_key else None,
        }


def _default_providers() -> List[ProviderSettings]:
    return [
        ProviderSettings(
            name="open_meteo",
            kind="open_meteo",
            tier=SourceTier.FALLBACK_1,
            timeout_seconds=15.0,
            base_url="https://api.open-meteo.com/v1/forecast",
            flood_base_url="https://flood-api.open-meteo.com/v1/flood",
        ),
        ProviderSettings(
            name="simulated_default",
            kind="simulated",
            tier=SourceTier.SIMULATED,
            timeout_seconds=1.0,
        ),
    ]


def _default_ttls() -> Dict[HazardType, int]:
    return {
        HazardType.DROUGHT: 3600,
        HazardType.FLOOD: 3600,
        HazardType.CROP_STRESS: 86400,
    }


# =============================================================
# GATEWAY CONFIG
# =============================================================


@dataclass
class GatewayConfig:
    """Configuration for the environmental data gateway."""

    providers: List[ProviderSettings] = field(default_factory=_default_providers)

    cache_ttl_seconds: Dict[HazardType, int] = field(default_factory=_default_ttls)
    """Freshness window per hazard. Weather signals short, vegetation long."""

    degraded_threshold: int = 3
    """Consecutive failures before a provider is DEGRADED."""

    unavailable_threshold: int = 5
    """Consecutive failures before a provider is UNAVAILABLE."""

    max_incidents: int = 100

    def ttl_for(self, hazard: HazardType) -> int:
        return self.cache_ttl_seconds.get(hazard, 3600)

    def validate(self) -> None:
        """
        Validate configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not self.providers:
            raise ConfigurationError("At least one provider is required", config_key="gateway.providers")

        names = [p.name for p in self.providers]
        if len(names) != len(set(names)):
            raise ConfigurationError("Provider names must be unique", config_key="gateway.providers", actual_value=names)

        for provider in self.providers:
            if provider.kind not in PROVIDER_KINDS:
                raise ConfigurationError(
                    f"Unknown provider kind '{provider.kind}'",
                    config_key=f"gateway.providers.{provider.name}.kind",
                    actual_value=provider.kind,
                )
            if provider.timeout_seconds <= 0:
                raise ConfigurationError(
                    "Provider timeout must be positive",
                    config_key=f"gateway.providers.{provider.name}.timeout_seconds",
                    actual_value=provider.timeout_seconds,
                )
            if provider.kind != "simulated" and not provider.base_url:
                raise ConfigurationError(
                    "HTTP providers need a base_url",
                    config_key=f"gateway.providers.{provider.name}.base_url",
                )

        if self.providers[-1].tier != SourceTier.SIMULATED:
            raise ConfigurationError(
                "The simulated default provider must be the last tier",
                config_key="gateway.providers",
                actual_value=names,
            )

        for hazard, ttl in self.cache_ttl_seconds.items():
            if ttl <= 0:
                raise ConfigurationError(
                    "Cache TTL must be positive",
                    config_key=f"gateway.cache_ttl_seconds.{hazard.value}",
                    actual_value=ttl,
                )

        if self.unavailable_threshold < self.degraded_threshold:
            raise ConfigurationError(
                "unavailable_threshold must be >= degraded_threshold",
                config_key="gateway.unavailable_threshold",
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewayConfig":
        config = cls()
        if "providers" in data:
            config.providers = [ProviderSettings.from_dict(p) for p in data["providers"]]
            config.providers.sort(key=lambda p: p.tier.rank)
        if "cache_ttl_seconds" in data:
            ttls = _default_ttls()
            for key, value in data["cache_ttl_seconds"].items():
                try:
                    ttls[HazardType(str(key).upper())] = int(value)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Unknown hazard in cache_ttl_seconds: {key}",
                        config_key="gateway.cache_ttl_seconds",
                        actual_value=key,
                    ) from e
            config.cache_ttl_seconds = ttls
        if "degraded_threshold" in data:
            config.degraded_threshold = int(data["degraded_threshold"])
        if "unavailable_threshold" in data:
            config.unavailable_threshold = int(data["unavailable_threshold"])
        return config

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - ENV_DATA_PRIMARY_URL: enables an http primary tier
        - ENV_DATA_PRIMARY_API_KEY
        - ENV_DATA_PRIMARY_TIMEOUT
        """
        config = cls()
        primary_url = os.getenv("ENV_DATA_PRIMARY_URL")
        if primary_url:
            config.providers.insert(0, ProviderSettings(
                name="primary",
                kind="http",
                tier=SourceTier.PRIMARY,
                timeout_seconds=float(os.getenv("ENV_DATA_PRIMARY_TIMEOUT", "10")),
                base_url=primary_url,
                api_key=os.getenv("ENV_DATA_PRIMARY_API_KEY"),
            ))
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providers": [p.to_dict() for p in self.providers],
            "cache_ttl_seconds": {h.value: ttl for h, ttl in self.cache_ttl_seconds.items()},
            "degraded_threshold": self.degraded_threshold,
            "unavailable_threshold": self.unavailable_threshold,
        }
