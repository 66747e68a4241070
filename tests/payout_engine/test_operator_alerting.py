"""
Operator Alerting Tests.

============================================================
PURPOSE
============================================================
Tests for operator alerts (Telegram channel and alert factories).

TEST CATEGORIES:
- Alert factories
- Severity filtering and rate limiting
- Delivery to the Telegram API

============================================================
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.clock import MockClock
from payout_engine.alerting import (
    Alert,
    AlertingConfig,
    AlertSeverity,
    AlertType,
    RecordingAlerter,
    TelegramAlerter,
    create_data_unavailable_alert,
    create_escalation_alert,
    create_payout_failed_alert,
)


NOW = datetime(2026, 3, 15, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def telegram_env(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "-100200")


def telegram_app(received):
    async def send_message(request: web.Request) -> web.Response:
        received.append((request.match_info["token"], await request.json()))
        return web.json_response({"ok": True})

    app = web.Application()
    app.router.add_post("/bot{token}/sendMessage", send_message)
    return app


def api_url(server: TestServer) -> str:
    return f"http://{server.host}:{server.port}/bot{{token}}/sendMessage"


# ============================================================
# ALERT FACTORY TESTS
# ============================================================

class TestAlertFactories:
    """Tests for alert helper functions."""

    def test_escalation_alert(self):
        alert = create_escalation_alert("po-1", "P1", 2.0, Decimal("300.26"))

        assert alert.alert_type == AlertType.PAYOUT_ESCALATED
        assert alert.severity == AlertSeverity.ERROR
        assert alert.details == {"hours_late": 2.0, "compensation": "300.26"}
        assert "2.0h late" in alert.message

    def test_failed_alert_is_critical(self):
        alert = create_payout_failed_alert("po-1", "P1", "rejected", "INVALID_RECIPIENT")

        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.details["error_code"] == "INVALID_RECIPIENT"

    def test_data_unavailable_alert(self):
        alert = create_data_unavailable_alert("P1", ["PRIMARY", "FALLBACK_1", "FALLBACK_2", "SIMULATED"])

        assert alert.policy_id == "P1"
        assert alert.details["attempted_tiers"] == "PRIMARY, FALLBACK_1, FALLBACK_2, SIMULATED"

    def test_severity_levels(self):
        levels = [s.level for s in (AlertSeverity.INFO, AlertSeverity.WARNING,
                                    AlertSeverity.ERROR, AlertSeverity.CRITICAL)]
        assert levels == sorted(levels)

    @pytest.mark.asyncio
    async def test_recording_alerter(self):
        alerter = RecordingAlerter()
        await alerter.send_alert(create_payout_failed_alert("po-1", "P1", "boom"))
        await alerter.send_alert(create_escalation_alert("po-2", "P1", 1.0, Decimal("1")))

        assert len(alerter.alerts) == 2
        assert [a.payout_id for a in alerter.of_type(AlertType.PAYOUT_FAILED)] == ["po-1"]


# ============================================================
# TELEGRAM ALERTER TESTS
# ============================================================

class TestTelegramAlerter:
    """Tests for TelegramAlerter."""

    def test_config_from_dict(self):
        config = AlertingConfig.from_dict({"min_severity": "error", "max_alerts_per_minute": 3})

        assert config.min_severity == AlertSeverity.ERROR
        assert config.max_alerts_per_minute == 3
        assert AlertingConfig.from_dict(config.to_dict()) == config

    @pytest.mark.asyncio
    async def test_unconfigured_logs_only(self, clock, monkeypatch, caplog):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
        alerter = TelegramAlerter(clock=clock)

        with caplog.at_level("WARNING"):
            delivered = await alerter.send_alert(create_payout_failed_alert("po-1", "P1", "boom"))

        assert alerter.is_configured is False
        assert delivered is False
        assert "PAYOUT_FAILED" in caplog.text
        assert len(alerter.get_history()) == 1
        assert alerter.get_history()[0].timestamp == NOW

    @pytest.mark.asyncio
    async def test_below_min_severity_dropped(self, clock, telegram_env):
        alerter = TelegramAlerter(AlertingConfig(min_severity=AlertSeverity.ERROR), clock=clock)
        alert = Alert(AlertType.DATA_UNAVAILABLE, AlertSeverity.WARNING, "no data")

        assert await alerter.send_alert(alert) is False
        assert alerter.get_history() == []

    @pytest.mark.asyncio
    async def test_disabled(self, clock, telegram_env):
        alerter = TelegramAlerter(AlertingConfig(enabled=False), clock=clock)
        assert await alerter.send_alert(create_payout_failed_alert("po-1", "P1", "boom")) is False

    @pytest.mark.asyncio
    async def test_delivers_and_rate_limits(self, clock, telegram_env, monkeypatch):
        received = []
        async with TestServer(telegram_app(received)) as server:
            alerter = TelegramAlerter(clock=clock)
            monkeypatch.setattr(alerter, "API_URL", api_url(server))
            try:
                first = await alerter.send_alert(create_escalation_alert("po-1", "P1", 2.0, Decimal("300.26")))
                second = await alerter.send_alert(create_escalation_alert("po-2", "P1", 2.0, Decimal("1")))
                clock.advance(seconds=6)
                third = await alerter.send_alert(create_payout_failed_alert("po-3", "P1", "boom"))
            finally:
                await alerter.close()

        assert (first, second, third) == (True, False, True)
        assert len(received) == 2
        token, body = received[0]
        assert token == "123:abc"
        assert body["chat_id"] == "-100200"
        assert body["parse_mode"] == "HTML"
        assert "<b>PAYOUT_ESCALATED</b>" in body["text"]
        assert "<code>po-1</code>" in body["text"]
        assert "compensation: 300.26" in body["text"]

    @pytest.mark.asyncio
    async def test_per_minute_cap(self, clock, telegram_env, monkeypatch):
        received = []
        config = AlertingConfig(min_interval_seconds=0, max_alerts_per_minute=2)
        async with TestServer(telegram_app(received)) as server:
            alerter = TelegramAlerter(config, clock=clock)
            monkeypatch.setattr(alerter, "API_URL", api_url(server))
            try:
                results = [
                    await alerter.send_alert(create_escalation_alert(f"po-{i}", "P1", 1.0, Decimal("1")))
                    for i in range(3)
                ]
                clock.set_time(NOW + timedelta(minutes=2))
                results.append(await alerter.send_alert(create_escalation_alert("po-9", "P1", 1.0, Decimal("1"))))
            finally:
                await alerter.close()

        assert results == [True, True, False, True]
        assert len(received) == 3

    @pytest.mark.asyncio
    async def test_critical_alerts_bypass_rate_limit(self, clock, telegram_env, monkeypatch):
        """Test that payout failures reach Telegram even in a burst."""
        received = []
        config = AlertingConfig(min_interval_seconds=60, max_alerts_per_minute=1)
        async with TestServer(telegram_app(received)) as server:
            alerter = TelegramAlerter(config, clock=clock)
            monkeypatch.setattr(alerter, "API_URL", api_url(server))
            try:
                escalation = await alerter.send_alert(create_escalation_alert("po-1", "P1", 1.0, Decimal("1")))
                failures = [
                    await alerter.send_alert(create_payout_failed_alert(f"po-{i}", "P1", "boom"))
                    for i in range(2, 5)
                ]
                dropped = await alerter.send_alert(create_escalation_alert("po-5", "P1", 1.0, Decimal("1")))
            finally:
                await alerter.close()

        assert escalation is True
        assert failures == [True, True, True]
        assert dropped is False
        assert len(received) == 4

    @pytest.mark.asyncio
    async def test_api_error(self, clock, telegram_env, monkeypatch):
        async def reject(request: web.Request) -> web.Response:
            return web.json_response({"ok": False}, status=400)

        app = web.Application()
        app.router.add_post("/bot{token}/sendMessage", reject)
        async with TestServer(app) as server:
            alerter = TelegramAlerter(clock=clock)
            monkeypatch.setattr(alerter, "API_URL", api_url(server))
            try:
                assert await alerter.send_alert(create_payout_failed_alert("po-1", "P1", "boom")) is False
            finally:
                await alerter.close()
