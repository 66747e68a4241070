"""
Payout Engine - Operator Alerting.

============================================================
PURPOSE
============================================================
Sends operator alerts for payout events.

ALERT TYPES:
- Payout escalated (SLA breached)
- Payout failed (manual intervention required)
- Compensation transfer failed
- Environmental data unavailable for a policy

SAFETY REQUIREMENTS:
- Every alert is logged, whether or not it is delivered
- Rate limiting to prevent spam

============================================================
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp

from core.clock import ClockFactory, ClockProtocol


logger = logging.getLogger(__name__)


# ============================================================
# ALERT TYPES
# ============================================================

class AlertSeverity(Enum):
    """Alert severity levels."""

    INFO = "INFO"
    """Informational."""

    WARNING = "WARNING"
    """Warning, needs attention."""

    ERROR = "ERROR"
    """Error condition."""

    CRITICAL = "CRITICAL"
    """Critical, immediate attention required."""

    @property
    def level(self) -> int:
        return {
            AlertSeverity.INFO: 0,
            AlertSeverity.WARNING: 1,
            AlertSeverity.ERROR: 2,
            AlertSeverity.CRITICAL: 3,
        }[self]


class AlertType(Enum):
    """Types of operator alerts."""

    PAYOUT_ESCALATED = "PAYOUT_ESCALATED"
    """Payout not confirmed within SLA."""

    PAYOUT_FAILED = "PAYOUT_FAILED"
    """Payout failed; manual intervention required."""

    COMPENSATION_FAILED = "COMPENSATION_FAILED"
    """Delay compensation transfer could not be initiated."""

    DATA_UNAVAILABLE = "DATA_UNAVAILABLE"
    """All environmental data tiers failed."""


@dataclass
class Alert:
    """An alert to be sent."""

    alert_type: AlertType
    severity: AlertSeverity
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    payout_id: Optional[str] = None
    policy_id: Optional[str] = None


# ============================================================
# ALERT CONFIGURATION
# ============================================================

@dataclass
class AlertingConfig:
    """Configuration for operator alerting."""

    enabled: bool = True

    telegram_bot_token_env: str = "TELEGRAM_BOT_TOKEN"
    """Environment variable for Telegram bot token."""

    telegram_chat_id_env: str = "TELEGRAM_CHAT_ID"
    """Environment variable for Telegram chat ID."""

    min_interval_seconds: float = 5.0
    """Minimum interval between delivered alerts."""

    max_alerts_per_minute: int = 10

    min_severity: AlertSeverity = AlertSeverity.WARNING
    """Minimum severity to deliver."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertingConfig":
        values = dict(data)
        if "min_severity" in values:
            values["min_severity"] = AlertSeverity(str(values["min_severity"]).upper())
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "telegram_bot_token_env": self.telegram_bot_token_env,
            "telegram_chat_id_env": self.telegram_chat_id_env,
            "min_interval_seconds": self.min_interval_seconds,
            "max_alerts_per_minute": self.max_alerts_per_minute,
            "min_severity": self.min_severity.value,
        }


# ============================================================
# ALERTER INTERFACE
# ============================================================

class OperatorAlerter(ABC):
    """Operator alert channel."""

    @abstractmethod
    async def send_alert(self, alert: Alert) -> bool:
        """
        Send an alert.

        Returns:
            Whether the alert was delivered
        """
        pass

    async def close(self) -> None:
        pass


class RecordingAlerter(OperatorAlerter):
    """Keeps every alert in memory. Used by tests and dry runs."""

    def __init__(self) -> None:
        self.alerts: List[Alert] = []

    async def send_alert(self, alert: Alert) -> bool:
        self.alerts.append(alert)
        logger.warning(f"ALERT [{alert.severity.value}] {alert.alert_type.value}: {alert.message}")
        return True

    def of_type(self, alert_type: AlertType) -> List[Alert]:
        return [a for a in self.alerts if a.alert_type == alert_type]


# ============================================================
# TELEGRAM ALERTER
# ============================================================

class TelegramAlerter(OperatorAlerter):
    """
    Sends alerts via Telegram.

    Features:
    - Rate limiting (CRITICAL alerts are never dropped)
    - Severity filtering
    - Falls back to logging when credentials are absent
    """

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(
        self,
        config: Optional[AlertingConfig] = None,
        clock: Optional[ClockProtocol] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._config = config or AlertingConfig()
        self._clock = clock or ClockFactory.get_clock()

        self._bot_token = os.environ.get(self._config.telegram_bot_token_env, "")
        self._chat_id = os.environ.get(self._config.telegram_chat_id_env, "")

        self._last_alert_time: Optional[datetime] = None
        self._alerts_this_minute: List[datetime] = []

        self._session = session
        self._owns_session = session is None

        self._history: List[Alert] = []
        self._max_history = 100

    @property
    def is_configured(self) -> bool:
        """Check if Telegram is configured."""
        return bool(self._bot_token and self._chat_id)

    async def send_alert(self, alert: Alert) -> bool:
        if alert.timestamp is None:
            alert.timestamp = self._clock.now()

        log = logger.error if alert.severity.level >= AlertSeverity.ERROR.level else logger.warning
        log(f"ALERT [{alert.severity.value}] {alert.alert_type.value}: {alert.message}")

        if not self._config.enabled:
            return False

        if alert.severity.level < self._config.min_severity.level:
            return False

        self._history.append(alert)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        if alert.severity != AlertSeverity.CRITICAL and not self._can_send():
            logger.warning(f"Alert rate limited: {alert.message}")
            return False

        return await self._send_telegram(alert)

    async def _send_telegram(self, alert: Alert) -> bool:
        if not self.is_configured:
            logger.debug(f"Telegram not configured, alert logged only: {alert.message}")
            return False

        payload = {
            "chat_id": self._chat_id,
            "text": self._format_message(alert),
            "parse_mode": "HTML",
        }

        try:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
                self._owns_session = True

            url = self.API_URL.format(token=self._bot_token)
            async with self._session.post(url, json=payload) as response:
                if response.status == 200:
                    self._record_sent()
                    logger.info(f"Alert sent: {alert.alert_type.value}")
                    return True
                body = await response.text()
                logger.error(f"Telegram API error {response.status}: {body}")
                return False

        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False

    def _format_message(self, alert: Alert) -> str:
        emoji = {
            AlertSeverity.INFO: "ℹ️",
            AlertSeverity.WARNING: "⚠️",
            AlertSeverity.ERROR: "❌",
            AlertSeverity.CRITICAL: "🚨",
        }.get(alert.severity, "📢")

        lines = [
            f"{emoji} <b>{alert.alert_type.value}</b>",
            f"<b>Severity:</b> {alert.severity.value}",
            f"<b>Time:</b> {alert.timestamp.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            "",
            alert.message,
        ]
        if alert.payout_id:
            lines.append(f"\n<b>Payout:</b> <code>{alert.payout_id}</code>")
        if alert.policy_id:
            lines.append(f"<b>Policy:</b> {alert.policy_id}")
        if alert.details:
            lines.append("\n<b>Details:</b>")
            for key, value in alert.details.items():
                lines.append(f"  • {key}: {value}")
        return "\n".join(lines)

    def _can_send(self) -> bool:
        now = self._clock.now()

        if self._last_alert_time:
            elapsed = (now - self._last_alert_time).total_seconds()
            if elapsed < self._config.min_interval_seconds:
                return False

        minute_ago = now - timedelta(minutes=1)
        self._alerts_this_minute = [t for t in self._alerts_this_minute if t > minute_ago]

        return len(self._alerts_this_minute) < self._config.max_alerts_per_minute

    def _record_sent(self) -> None:
        now = self._clock.now()
        self._last_alert_time = now
        self._alerts_this_minute.append(now)

    def get_history(self, limit: int = 10) -> List[Alert]:
        return self._history[-limit:]

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


# ============================================================
# ALERT HELPER FUNCTIONS
# ============================================================

def create_escalation_alert(
    payout_id: str,
    policy_id: str,
    hours_late: float,
    compensation: Decimal,
) -> Alert:
    return Alert(
        alert_type=AlertType.PAYOUT_ESCALATED,
        severity=AlertSeverity.ERROR,
        message=f"Payout {payout_id} not confirmed within SLA ({hours_late:.1f}h late)",
        payout_id=payout_id,
        policy_id=policy_id,
        details={"hours_late": round(hours_late, 2), "compensation": str(compensation)},
    )


def create_payout_failed_alert(
    payout_id: str,
    policy_id: str,
    error_message: str,
    error_code: Optional[str] = None,
) -> Alert:
    return Alert(
        alert_type=AlertType.PAYOUT_FAILED,
        severity=AlertSeverity.CRITICAL,
        message=f"Payout failed, manual intervention required: {error_message}",
        payout_id=payout_id,
        policy_id=policy_id,
        details={"error_code": error_code} if error_code else {},
    )


def create_compensation_failed_alert(
    payout_id: str,
    policy_id: str,
    compensation: Decimal,
    error_message: str,
) -> Alert:
    return Alert(
        alert_type=AlertType.COMPENSATION_FAILED,
        severity=AlertSeverity.ERROR,
        message=f"Compensation transfer for payout {payout_id} failed: {error_message}",
        payout_id=payout_id,
        policy_id=policy_id,
        details={"compensation": str(compensation)},
    )


def create_data_unavailable_alert(policy_id: str, attempted_tiers: List[str]) -> Alert:
    return Alert(
        alert_type=AlertType.DATA_UNAVAILABLE,
        severity=AlertSeverity.WARNING,
        message=f"No environmental data for policy {policy_id}",
        policy_id=policy_id,
        details={"attempted_tiers": ", ".join(attempted_tiers)},
    )
