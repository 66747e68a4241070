"""
Policyholder Notifications - Port and Dispatcher.

============================================================
PURPOSE
============================================================
Fire-and-forget messages to policyholders.

PRINCIPLES:
- Holders only ever receive templated messages
  (confirmed / delayed / manual follow-up)
- A notifier failure is logged and never propagated
  into the payout lifecycle

============================================================
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from notifications.messages import render


logger = logging.getLogger(__name__)


class NotificationKind(Enum):
    """Event kinds a policyholder can be told about."""

    PAYOUT_CONFIRMED = "PAYOUT_CONFIRMED"
    """Payout reached the holder's account."""

    PAYOUT_DELAYED = "PAYOUT_DELAYED"
    """Payout is late; compensation accruing."""

    MANUAL_FOLLOW_UP = "MANUAL_FOLLOW_UP"
    """Payout needs manual handling; an agent will follow up."""


class NotificationPort(ABC):
    """Delivery channel for policyholder messages."""

    @abstractmethod
    async def notify(self, recipient: str, event_kind: NotificationKind, payload: Dict[str, Any]) -> None:
        """
        Deliver one message.

        May raise on delivery failure; callers go through
        NotificationDispatcher, which absorbs it.
        """
        pass

    async def close(self) -> None:
        pass


class NotificationDispatcher:
    """
    Wraps a NotificationPort so that delivery never fails the caller.

    Usage:
        dispatcher = NotificationDispatcher(LoggingNotifier())
        await dispatcher.dispatch("holder-1", NotificationKind.PAYOUT_CONFIRMED, {...})
    """

    def __init__(self, port: Optional[NotificationPort] = None):
        self._port = port
        self._sent = 0
        self._failed = 0

    @property
    def port(self) -> Optional[NotificationPort]:
        return self._port

    async def dispatch(self, recipient: str, event_kind: NotificationKind, payload: Dict[str, Any]) -> bool:
        if self._port is None:
            logger.debug(f"No notifier configured; dropping {event_kind.value} for {recipient}")
            return False

        # Only whitelisted template fields reach the channel.
        message = render(event_kind.value, payload)
        safe_payload = {**{k: payload[k] for k in ("payout_id", "amount", "currency", "compensation") if k in payload},
                        "message": message}

        try:
            await self._port.notify(recipient, event_kind, safe_payload)
        except Exception as e:
            self._failed += 1
            logger.error(f"Notification {event_kind.value} to {recipient} failed: {e}")
            return False

        self._sent += 1
        logger.info(f"Notified {recipient}: {event_kind.value}")
        return True

    def get_stats(self) -> Dict[str, int]:
        return {"sent": self._sent, "failed": self._failed}

    async def close(self) -> None:
        if self._port is not None:
            await self._port.close()
