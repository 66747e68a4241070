"""
Engine Settings Tests.

============================================================
PURPOSE
============================================================
Tests for settings loading, validation and the CLI entry point.

TEST CATEGORIES:
- YAML loading and environment overrides
- Validation errors
- Secret masking
- CLI --show-config

============================================================
"""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from core.exceptions import ConfigurationError
from core.settings import EngineSettings, mask_url
from orchestrator.cli import main


ENV_VARS = (
    "SWEEP_INTERVAL_SECONDS",
    "MAX_CONCURRENCY",
    "ESCALATION_TICK_SECONDS",
    "SHUTDOWN_TIMEOUT_SECONDS",
    "OPERATOR_API_PORT",
    "OPERATOR_API_HOST",
    "OPERATOR_API_ENABLED",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "POLICIES_PATH",
    "DATABASE_URL",
    "ENV_DATA_PRIMARY_URL",
)

ENGINE_YAML = """
orchestrator:
  max_concurrency: 4
  sweep_interval_seconds: 1800
  database_url: postgresql+asyncpg://svc:secret@db:5432/pce
payouts:
  escalation:
    sla_hours: 24
  compensation:
    daily_rate: 0.1
payments:
  providers:
    - provider_id: mpesa
      kind: mobile_money
      base_url: https://pay.example.com
      api_key_env: MPESA_API_KEY
      default: true
notifications:
  kind: webhook
  url: https://sms.example.com/notify
"""


@pytest.fixture
def clean_env(monkeypatch):
    for var in ENV_VARS:
        # Registered first so monkeypatch also removes values a .env file sets.
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(ENGINE_YAML)
    return path


# ============================================================
# LOADING TESTS
# ============================================================

class TestLoading:
    """Tests for EngineSettings.load."""

    def test_defaults(self, clean_env, tmp_path):
        settings = EngineSettings.load(env_file=tmp_path / "missing.env")
        settings.validate()

        assert settings.orchestrator.max_concurrency == 10
        assert settings.payouts.escalation.sla_hours == 48.0
        assert [p.provider_id for p in settings.payment_providers] == ["mock"]
        assert settings.notifier.kind == "logging"

    def test_yaml_values(self, clean_env, config_file, tmp_path, monkeypatch):
        monkeypatch.setenv("MPESA_API_KEY", "sk-live")

        settings = EngineSettings.load(config_file, env_file=tmp_path / "missing.env")
        settings.validate()

        assert settings.orchestrator.max_concurrency == 4
        assert settings.orchestrator.sweep_interval_seconds == 1800
        assert settings.payouts.escalation.sla_hours == 24
        assert settings.payouts.compensation.daily_rate == Decimal("0.1")
        provider = settings.payment_providers[0]
        assert provider.kind == "mobile_money"
        assert provider.api_key == "sk-live"
        assert settings.notifier.url == "https://sms.example.com/notify"

    def test_env_overrides_file(self, clean_env, config_file, tmp_path, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENCY", "3")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("OPERATOR_API_ENABLED", "yes")

        settings = EngineSettings.load(config_file, env_file=tmp_path / "missing.env")

        assert settings.orchestrator.max_concurrency == 3
        assert settings.orchestrator.log_level == "DEBUG"
        assert settings.orchestrator.operator_api_enabled is True
        assert settings.orchestrator.sweep_interval_seconds == 1800

    def test_dotenv_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MAX_CONCURRENCY=7\nPOLICIES_PATH=/srv/policies.yaml\n")

        settings = EngineSettings.load(env_file=env_file)

        assert settings.orchestrator.max_concurrency == 7
        assert settings.orchestrator.policies_path == "/srv/policies.yaml"

    def test_bad_integer_env(self, clean_env, tmp_path, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENCY", "lots")

        with pytest.raises(ConfigurationError) as exc_info:
            EngineSettings.load(env_file=tmp_path / "missing.env")

        assert "MAX_CONCURRENCY" in str(exc_info.value)

    def test_example_config_validates(self, clean_env, tmp_path):
        example = Path(__file__).parents[2] / "engine.example.yaml"

        settings = EngineSettings.load(example, env_file=tmp_path / "missing.env")
        settings.validate()

        assert settings.orchestrator.policies_path == "policies.example.yaml"
        assert [p.name for p in settings.gateway.providers] == ["open_meteo", "simulated_default"]

    def test_missing_file(self, clean_env, tmp_path):
        with pytest.raises(ConfigurationError):
            EngineSettings.load(tmp_path / "nope.yaml", env_file=tmp_path / "missing.env")

    @pytest.mark.parametrize("text", ["orchestrator: [unclosed", "- just\n- a list\n"])
    def test_malformed_file(self, clean_env, tmp_path, text):
        path = tmp_path / "engine.yaml"
        path.write_text(text)

        with pytest.raises(ConfigurationError):
            EngineSettings.load(path, env_file=tmp_path / "missing.env")


# ============================================================
# VALIDATION TESTS
# ============================================================

class TestValidation:
    """Tests for EngineSettings.validate."""

    @pytest.mark.parametrize("data", [
        {"orchestrator": {"max_concurrency": 0}},
        {"orchestrator": {"log_format": "xml"}},
        {"payouts": {"compensation": {"cap_fraction": 2}}},
        {"payouts": {"escalation": {"sla_hours": 0}}},
        {"payments": {"providers": []}},
        {"payments": {"providers": [{"provider_id": "a", "kind": "paypal"}]}},
        {"payments": {"providers": [{"provider_id": "mm", "kind": "mobile_money"}]}},
        {"payments": {"providers": [{"provider_id": "a"}, {"provider_id": "a"}]}},
        {"payments": {"providers": [
            {"provider_id": "a", "default": True},
            {"provider_id": "b", "default": True},
        ]}},
        {"notifications": {"kind": "webhook"}},
        {"notifications": {"kind": "carrier-pigeon"}},
    ])
    def test_invalid(self, clean_env, data):
        with pytest.raises(ConfigurationError):
            EngineSettings.from_dict(data).validate()

    @pytest.mark.parametrize("data", [
        {"orchestrator": {"bogus": 1}},
        {"payouts": {"retry": {"attempts": 3}}},
        {"payments": {"providers": [{"provider_id": "a", "secret": "x"}]}},
    ])
    def test_unknown_keys(self, clean_env, data):
        with pytest.raises(ConfigurationError):
            EngineSettings.from_dict(data)


# ============================================================
# MASKING TESTS
# ============================================================

class TestMasking:
    """Tests for credential masking."""

    @pytest.mark.parametrize("url,expected", [
        ("postgresql+asyncpg://svc:secret@db:5432/pce", "postgresql+asyncpg://svc:***@db:5432/pce"),
        ("sqlite+aiosqlite:///payouts.db", "sqlite+aiosqlite:///payouts.db"),
        ("postgresql://svc@db/pce", "postgresql://svc@db/pce"),
        (None, None),
    ])
    def test_mask_url(self, url, expected):
        assert mask_url(url) == expected

    def test_to_dict_masks_database_url(self, clean_env):
        settings = EngineSettings.from_dict(
            {"orchestrator": {"database_url": "postgresql+asyncpg://svc:secret@db/pce"}}
        )

        data = settings.to_dict()

        assert data["orchestrator"]["database_url"] == "postgresql+asyncpg://svc:***@db/pce"
        assert "secret" not in json.dumps(data)


# ============================================================
# CLI TESTS
# ============================================================

class TestCli:
    """Tests for the command-line entry point."""

    def test_show_config(self, clean_env, config_file, capsys):
        code = main(["--config", str(config_file), "--show-config", "--interval", "600"])

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["orchestrator"]["sweep_interval_seconds"] == 600
        assert data["orchestrator"]["max_concurrency"] == 4
        assert data["orchestrator"]["database_url"].endswith("svc:***@db:5432/pce")
        assert data["payments"]["providers"][0]["provider_id"] == "mpesa"

    def test_missing_config_exit_code(self, clean_env, tmp_path, capsys):
        code = main(["--config", str(tmp_path / "nope.yaml"), "--show-config"])

        assert code == 2
        assert "Config file not found" in capsys.readouterr().err

    def test_invalid_flag_value_exit_code(self, clean_env, config_file):
        assert main(["--config", str(config_file), "--max-concurrency", "0", "--show-config"]) == 2
