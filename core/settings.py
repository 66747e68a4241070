"""
Core - Engine Settings.

============================================================
PURPOSE
============================================================
Aggregates every module configuration into one object.

SOURCES (later wins):
1. Dataclass defaults
2. YAML file (engine.example.yaml shows every key)
3. Environment variables, optionally from a .env file

Settings are validated once at startup. Any invalid value
raises ConfigurationError before a single policy is swept.

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from data_sources.config import GatewayConfig
from orchestrator.models import OrchestratorConfig
from payout_engine.alerting import AlertingConfig
from payout_engine.config import PayoutConfig
from scoring_engine.config import ScoringConfig
from trigger_engine.config import TriggerConfig


logger = logging.getLogger(__name__)


PAYMENT_KINDS = ("mock", "mobile_money")
NOTIFIER_KINDS = ("logging", "webhook")


# =============================================================
# PAYMENT PROVIDERS
# =============================================================


@dataclass
class PaymentProviderSettings:
    """One payment gateway adapter."""

    provider_id: str = "mock"
    kind: str = "mock"
    base_url: Optional[str] = None

    api_key_env: Optional[str] = None
    """Environment variable holding the API key (never the key itself)."""

    timeout_seconds: float = 10.0
    default: bool = False

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_env) if self.api_key_env else None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentProviderSettings":
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(
                f"Invalid payment provider settings: {e}",
                config_key="payments.providers",
                actual_value=data,
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "kind": self.kind,
            "base_url": self.base_url,
            "api_key_env": self.api_key_env,
            "timeout_seconds": self.timeout_seconds,
            "default": self.default,
        }


# =============================================================
# NOTIFIER
# =============================================================


@dataclass
class NotifierSettings:
    """Policyholder notification channel."""

    kind: str = "logging"
    url: Optional[str] = None
    api_key_env: Optional[str] = None
    timeout_seconds: float = 10.0

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_env) if self.api_key_env else None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotifierSettings":
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(
                f"Invalid notifier settings: {e}",
                config_key="notifications",
                actual_value=data,
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "url": self.url,
            "api_key_env": self.api_key_env,
            "timeout_seconds": self.timeout_seconds,
        }


# =============================================================
# ENGINE SETTINGS
# =============================================================


def _default_payment_providers() -> List[PaymentProviderSettings]:
    return [PaymentProviderSettings(provider_id="mock", kind="mock", default=True)]


@dataclass
class EngineSettings:
    """Everything the engine needs to start."""

    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    triggers: TriggerConfig = field(default_factory=TriggerConfig)
    payouts: PayoutConfig = field(default_factory=PayoutConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    payment_providers: List[PaymentProviderSettings] = field(default_factory=_default_payment_providers)
    notifier: NotifierSettings = field(default_factory=NotifierSettings)

    # ---------------------------------------------------------
    # LOADING
    # ---------------------------------------------------------

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        env_file: Optional[Path] = None,
    ) -> "EngineSettings":
        """
        Load settings from YAML and the environment.

        Args:
            path: YAML file; defaults only when None
            env_file: .env file; python-dotenv searches upwards when None

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        load_dotenv(dotenv_path=env_file)

        data: Dict[str, Any] = {}
        if path is not None:
            path = Path(path)
            if not path.exists():
                raise ConfigurationError(f"Config file not found: {path}", config_key="config", actual_value=str(path))
            try:
                with open(path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Malformed YAML in {path}: {e}", config_key="config", cause=e) from e
            logger.info(f"Loaded settings from {path}")

        settings = cls.from_dict(data)
        settings.apply_env_overrides()
        return settings

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSettings":
        if not isinstance(data, dict):
            raise ConfigurationError("Settings root must be a mapping", config_key="config")

        settings = cls()
        if "gateway" in data:
            settings.gateway = GatewayConfig.from_dict(data["gateway"] or {})
        else:
            settings.gateway = GatewayConfig.from_env()
        if "scoring" in data:
            settings.scoring = ScoringConfig.from_dict(data["scoring"] or {})
        if "triggers" in data:
            settings.triggers = TriggerConfig.from_dict(data["triggers"] or {})
        if "payouts" in data:
            settings.payouts = PayoutConfig.from_dict(data["payouts"] or {})
        if "alerting" in data:
            try:
                settings.alerting = AlertingConfig.from_dict(data["alerting"] or {})
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid alerting settings: {e}", config_key="alerting") from e
        if "orchestrator" in data:
            try:
                settings.orchestrator = OrchestratorConfig.from_dict(data["orchestrator"] or {})
            except TypeError as e:
                raise ConfigurationError(f"Invalid orchestrator settings: {e}", config_key="orchestrator") from e

        payments = data.get("payments") or {}
        if "providers" in payments:
            settings.payment_providers = [
                PaymentProviderSettings.from_dict(p) for p in payments["providers"]
            ]
        if "notifications" in data:
            settings.notifier = NotifierSettings.from_dict(data["notifications"] or {})
        return settings

    def apply_env_overrides(self) -> None:
        """Environment variables that are set replace file values."""
        orch = self.orchestrator
        int_vars = {
            "SWEEP_INTERVAL_SECONDS": "sweep_interval_seconds",
            "MAX_CONCURRENCY": "max_concurrency",
            "ESCALATION_TICK_SECONDS": "escalation_tick_seconds",
            "SHUTDOWN_TIMEOUT_SECONDS": "shutdown_timeout_seconds",
            "OPERATOR_API_PORT": "operator_api_port",
        }
        for var, attr in int_vars.items():
            value = os.getenv(var)
            if value is None:
                continue
            try:
                setattr(orch, attr, int(value))
            except ValueError as e:
                raise ConfigurationError(f"{var} must be an integer", config_key=var, actual_value=value) from e

        str_vars = {
            "LOG_LEVEL": "log_level",
            "LOG_FORMAT": "log_format",
            "POLICIES_PATH": "policies_path",
            "DATABASE_URL": "database_url",
            "OPERATOR_API_HOST": "operator_api_host",
        }
        for var, attr in str_vars.items():
            value = os.getenv(var)
            if value:
                setattr(orch, attr, value)

        enabled = os.getenv("OPERATOR_API_ENABLED")
        if enabled is not None:
            orch.operator_api_enabled = enabled.lower() in ("1", "true", "yes")

    # ---------------------------------------------------------
    # VALIDATION
    # ---------------------------------------------------------

    def validate(self) -> None:
        """
        Validate every section.

        Raises:
            ConfigurationError: On the first invalid value
        """
        self.gateway.validate()
        self.scoring.validate()
        self.triggers.validate()
        self.payouts.validate()

        errors = self.orchestrator.validate()
        if errors:
            raise ConfigurationError(
                f"Invalid orchestrator settings: {', '.join(errors)}",
                config_key="orchestrator",
                actual_value=errors,
            )

        if not self.payment_providers:
            raise ConfigurationError("At least one payment provider is required", config_key="payments.providers")
        ids = [p.provider_id for p in self.payment_providers]
        if len(ids) != len(set(ids)):
            raise ConfigurationError("Payment provider ids must be unique", config_key="payments.providers", actual_value=ids)
        if sum(1 for p in self.payment_providers if p.default) > 1:
            raise ConfigurationError("Only one payment provider may be the default", config_key="payments.providers")
        for provider in self.payment_providers:
            if provider.kind not in PAYMENT_KINDS:
                raise ConfigurationError(
                    f"Unknown payment provider kind '{provider.kind}'",
                    config_key=f"payments.providers.{provider.provider_id}.kind",
                    actual_value=provider.kind,
                )
            if provider.kind == "mobile_money" and not provider.base_url:
                raise ConfigurationError(
                    "Mobile money providers need a base_url",
                    config_key=f"payments.providers.{provider.provider_id}.base_url",
                )

        if self.notifier.kind not in NOTIFIER_KINDS:
            raise ConfigurationError(
                f"Unknown notifier kind '{self.notifier.kind}'",
                config_key="notifications.kind",
                actual_value=self.notifier.kind,
            )
        if self.notifier.kind == "webhook" and not self.notifier.url:
            raise ConfigurationError("Webhook notifier needs a url", config_key="notifications.url")

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view with credentials masked."""
        orchestrator = self.orchestrator.to_dict()
        orchestrator["database_url"] = mask_url(orchestrator["database_url"])
        return {
            "gateway": self.gateway.to_dict(),
            "scoring": self.scoring.to_dict(),
            "triggers": self.triggers.to_dict(),
            "payouts": self.payouts.to_dict(),
            "alerting": self.alerting.to_dict(),
            "orchestrator": orchestrator,
            "payments": {"providers": [p.to_dict() for p in self.payment_providers]},
            "notifications": self.notifier.to_dict(),
        }


def mask_url(url: Optional[str]) -> Optional[str]:
    """Hide the password part of a database URL."""
    if not url or "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    if ":" not in credentials:
        return url
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
