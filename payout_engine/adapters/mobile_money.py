"""
Payout Engine - HTTP Mobile Money Gateway.

============================================================
PURPOSE
============================================================
Payment gateway for a JSON mobile-money transfer API.

    POST {base_url}/transfers          create (Idempotency-Key header)
    GET  {base_url}/transfers/{id}     status

ERROR MAPPING:
- 408, 425, 429, 5xx, timeouts, connection errors -> PaymentTransient
- Other 4xx                                        -> PaymentPermanent
- Unparseable success body                         -> PaymentTransient
  (the idempotency key makes the retry safe)

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import PaymentPermanent, PaymentTransient
from payout_engine.adapters.base import PaymentGatewayPort, map_transfer_status
from payout_engine.types import TransferHandle, TransferStatus


logger = logging.getLogger(__name__)


TRANSIENT_STATUS_CODES = {408, 425, 429}


class HttpMobileMoneyGateway(PaymentGatewayPort):
    """
    Mobile money gateway over HTTP.

    Usage:
        gateway = HttpMobileMoneyGateway("https://pay.example.com/v1", api_key="...")
        handle = await gateway.initiate_transfer("payout-abc", "254700000000", Decimal("150.00"))
        status = await gateway.poll_status(handle)
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        provider_id: str = "mobile_money",
        currency: str = "KES",
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._provider_id = provider_id
        self._currency = currency
        self._timeout = timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._clock = clock or ClockFactory.get_clock()

    @property
    def provider_id(self) -> str:
        return self._provider_id

    async def initiate_transfer(
        self,
        idempotency_key: str,
        recipient: str,
        amount: Decimal,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransferHandle:
        payload = {
            "recipient": recipient,
            "amount": str(amount),
            "currency": self._currency,
            "reference": idempotency_key,
            "metadata": metadata or {},
        }
        data = await self._request(
            "POST",
            f"{self._base_url}/transfers",
            json=payload,
            headers={"Idempotency-Key": idempotency_key},
        )

        handle_id = data.get("transfer_id") or data.get("id") if isinstance(data, dict) else None
        if not handle_id:
            raise PaymentTransient(
                "Transfer response missing transfer_id",
                provider=self._provider_id,
                code="MALFORMED_RESPONSE",
            )

        logger.info(f"[{self._provider_id}] Transfer {handle_id} created for key {idempotency_key}")
        return TransferHandle(
            handle_id=str(handle_id),
            provider=self._provider_id,
            idempotency_key=idempotency_key,
            created_at=self._clock.now(),
        )

    async def poll_status(self, handle: TransferHandle) -> TransferStatus:
        data = await self._request("GET", f"{self._base_url}/transfers/{handle.handle_id}")

        raw = data.get("status") if isinstance(data, dict) else None
        status = map_transfer_status(raw) if raw is not None else None
        if status is None:
            raise PaymentTransient(
                f"Unrecognised transfer status {raw!r}",
                provider=self._provider_id,
                code="UNKNOWN_STATUS",
            )
        return status

    # =========================================================
    # HTTP
    # =========================================================

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=headers,
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        session = await self._get_session()
        try:
            async with session.request(method, url, json=json, headers=headers) as response:
                if response.status in TRANSIENT_STATUS_CODES or response.status >= 500:
                    body = await response.text()
                    raise PaymentTransient(
                        f"HTTP {response.status}: {body[:200]}",
                        provider=self._provider_id,
                        code=str(response.status),
                    )
                if response.status >= 400:
                    body = await response.text()
                    raise PaymentPermanent(
                        f"HTTP {response.status}: {body[:200]}",
                        provider=self._provider_id,
                        code=str(response.status),
                    )
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise PaymentTransient(
                        f"Response is not valid JSON: {e}",
                        provider=self._provider_id,
                        code="MALFORMED_RESPONSE",
                        cause=e,
                    ) from e
        except asyncio.TimeoutError as e:
            raise PaymentTransient(
                f"Timed out after {self._timeout}s",
                provider=self._provider_id,
                code="TIMEOUT",
                cause=e,
            ) from e
        except aiohttp.ClientError as e:
            raise PaymentTransient(
                f"Connection error: {e}",
                provider=self._provider_id,
                code="CONNECTION",
                cause=e,
            ) from e

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
