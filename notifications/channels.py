"""
Notification channels.

- LoggingNotifier: writes messages to the log (default for dry runs)
- RecordingNotifier: keeps messages in memory (tests)
- WebhookNotifier: POSTs JSON to an SMS/USSD relay over aiohttp
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from notifications.base import NotificationKind, NotificationPort


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentNotification:
    recipient: str
    event_kind: NotificationKind
    payload: Dict[str, Any]


class LoggingNotifier(NotificationPort):

    async def notify(self, recipient: str, event_kind: NotificationKind, payload: Dict[str, Any]) -> None:
        logger.info(f"[holder:{recipient}] {payload.get('message', event_kind.value)}")


class RecordingNotifier(NotificationPort):
    """In-memory notifier; set `fail` to simulate a broken channel."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[SentNotification] = []
        self.fail = fail

    async def notify(self, recipient: str, event_kind: NotificationKind, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("notification channel down")
        self.sent.append(SentNotification(recipient, event_kind, dict(payload)))

    def kinds_for(self, recipient: str) -> List[NotificationKind]:
        return [n.event_kind for n in self.sent if n.recipient == recipient]


class WebhookNotifier(NotificationPort):
    """
    Posts {"recipient", "event", "message"} to a relay endpoint.

    Non-2xx responses raise so the dispatcher can log them.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._url = url
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=headers,
            )
            self._owns_session = True
        return self._session

    async def notify(self, recipient: str, event_kind: NotificationKind, payload: Dict[str, Any]) -> None:
        session = await self._get_session()
        body = {"recipient": recipient, "event": event_kind.value, **payload}
        async with session.post(self._url, json=body) as response:
            if response.status >= 300:
                text = await response.text()
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=text[:200],
                )

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
