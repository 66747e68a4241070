"""
HTTP Mobile Money Gateway Tests.

============================================================
PURPOSE
============================================================
Tests for the mobile-money adapter against a local aiohttp server.

TEST CATEGORIES:
- Transfer creation and idempotency header
- Status polling and status aliases
- HTTP error classification
- Registry selection

============================================================
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.clock import MockClock
from core.exceptions import ConfigurationError, PaymentPermanent, PaymentTransient
from payout_engine.adapters.base import map_transfer_status
from payout_engine.adapters.mobile_money import HttpMobileMoneyGateway
from payout_engine.adapters.mock import MockPaymentGateway
from payout_engine.adapters.registry import PaymentGatewayRegistry
from payout_engine.types import TransferHandle, TransferStatus


NOW = datetime(2026, 3, 15, 6, 0, tzinfo=timezone.utc)


class FakeProvider:
    """Minimal mobile-money API keyed by Idempotency-Key."""

    def __init__(self) -> None:
        self.transfers = {}
        self.requests = []
        self.status = "PROCESSING"
        self.create_response = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/transfers", self.create)
        app.router.add_get("/transfers/{transfer_id}", self.get)
        return app

    async def create(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append((dict(request.headers), body))
        if self.create_response is not None:
            return self.create_response
        key = request.headers["Idempotency-Key"]
        transfer_id = self.transfers.setdefault(key, f"tx-{len(self.transfers) + 1}")
        return web.json_response({"transfer_id": transfer_id, "status": "QUEUED"}, status=201)

    async def get(self, request: web.Request) -> web.Response:
        if request.match_info["transfer_id"] not in self.transfers.values():
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response({"status": self.status})


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def clock():
    return MockClock(NOW)


def make_gateway(server: TestServer, clock: MockClock, **kwargs) -> HttpMobileMoneyGateway:
    return HttpMobileMoneyGateway(str(server.make_url("/")), api_key="sk-test", clock=clock, **kwargs)


# ============================================================
# TRANSFER CREATION TESTS
# ============================================================

class TestInitiateTransfer:
    """Tests for POST /transfers."""

    @pytest.mark.asyncio
    async def test_creates_transfer(self, provider, clock):
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                handle = await gateway.initiate_transfer(
                    "payout-po-1", "254700000001", Decimal("72062.50"), {"policy_id": "P1"},
                )
            finally:
                await gateway.close()

        assert handle.handle_id == "tx-1"
        assert handle.provider == "mobile_money"
        assert handle.idempotency_key == "payout-po-1"
        assert handle.created_at == NOW

        headers, body = provider.requests[0]
        assert headers["Idempotency-Key"] == "payout-po-1"
        assert headers["Authorization"] == "Bearer sk-test"
        assert body == {
            "recipient": "254700000001",
            "amount": "72062.50",
            "currency": "KES",
            "reference": "payout-po-1",
            "metadata": {"policy_id": "P1"},
        }

    @pytest.mark.asyncio
    async def test_repeated_key_same_transfer(self, provider, clock):
        """Test that a retried request maps to the original transfer."""
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                first = await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
                second = await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
            finally:
                await gateway.close()

        assert first.handle_id == second.handle_id
        assert len(provider.transfers) == 1

    @pytest.mark.asyncio
    async def test_id_field_accepted(self, provider, clock):
        provider.create_response = web.json_response({"id": 991})
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                handle = await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
            finally:
                await gateway.close()

        assert handle.handle_id == "991"

    @pytest.mark.asyncio
    async def test_missing_transfer_id(self, provider, clock):
        provider.create_response = web.json_response({"status": "QUEUED"})
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                with pytest.raises(PaymentTransient) as exc_info:
                    await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
            finally:
                await gateway.close()

        assert exc_info.value.code == "MALFORMED_RESPONSE"

    @pytest.mark.asyncio
    async def test_invalid_json(self, provider, clock):
        provider.create_response = web.Response(text="<html>", content_type="application/json")
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                with pytest.raises(PaymentTransient) as exc_info:
                    await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
            finally:
                await gateway.close()

        assert exc_info.value.code == "MALFORMED_RESPONSE"


# ============================================================
# ERROR CLASSIFICATION TESTS
# ============================================================

class TestErrorClassification:
    """Tests for HTTP status to error mapping."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [408, 425, 429, 500, 503])
    async def test_transient_statuses(self, provider, clock, status):
        provider.create_response = web.Response(status=status, text="try later")
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                with pytest.raises(PaymentTransient) as exc_info:
                    await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
            finally:
                await gateway.close()

        assert exc_info.value.code == str(status)
        assert exc_info.value.is_retryable

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403, 422])
    async def test_permanent_statuses(self, provider, clock, status):
        provider.create_response = web.Response(status=status, text="invalid recipient")
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                with pytest.raises(PaymentPermanent) as exc_info:
                    await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
            finally:
                await gateway.close()

        assert exc_info.value.code == str(status)
        assert "invalid recipient" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, clock):
        async def slow(request: web.Request) -> web.Response:
            await asyncio.sleep(1)
            return web.json_response({"transfer_id": "late"})

        app = web.Application()
        app.router.add_post("/transfers", slow)
        async with TestServer(app) as server:
            gateway = make_gateway(server, clock, timeout_seconds=0.05)
            try:
                with pytest.raises(PaymentTransient) as exc_info:
                    await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
            finally:
                await gateway.close()

        assert exc_info.value.code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_connection_refused(self, clock):
        gateway = HttpMobileMoneyGateway("http://127.0.0.1:1", clock=clock, timeout_seconds=2)
        try:
            with pytest.raises(PaymentTransient) as exc_info:
                await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
        finally:
            await gateway.close()

        assert exc_info.value.code == "CONNECTION"


# ============================================================
# STATUS POLLING TESTS
# ============================================================

class TestPollStatus:
    """Tests for GET /transfers/{id}."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw,expected", [
        ("PROCESSING", TransferStatus.PENDING),
        ("completed", TransferStatus.SUCCEEDED),
        ("REVERSED", TransferStatus.FAILED),
    ])
    async def test_status_aliases(self, provider, clock, raw, expected):
        provider.status = raw
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                handle = await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
                status = await gateway.poll_status(handle)
            finally:
                await gateway.close()

        assert status == expected

    @pytest.mark.asyncio
    async def test_unknown_status(self, provider, clock):
        provider.status = "ON_HOLD"
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            try:
                handle = await gateway.initiate_transfer("payout-po-1", "254700000001", Decimal("10"))
                with pytest.raises(PaymentTransient) as exc_info:
                    await gateway.poll_status(handle)
            finally:
                await gateway.close()

        assert exc_info.value.code == "UNKNOWN_STATUS"

    @pytest.mark.asyncio
    async def test_unknown_transfer(self, provider, clock):
        async with TestServer(provider.app()) as server:
            gateway = make_gateway(server, clock)
            handle = TransferHandle("tx-404", "mobile_money", "payout-x")
            try:
                with pytest.raises(PaymentPermanent):
                    await gateway.poll_status(handle)
            finally:
                await gateway.close()

    def test_map_transfer_status(self):
        assert map_transfer_status(" success ") == TransferStatus.SUCCEEDED
        assert map_transfer_status("queued") == TransferStatus.PENDING
        assert map_transfer_status("unknown") is None


# ============================================================
# REGISTRY TESTS
# ============================================================

class TestGatewayRegistry:
    """Tests for provider selection."""

    def test_first_registered_is_default(self, clock):
        registry = PaymentGatewayRegistry()
        mobile = HttpMobileMoneyGateway("http://pay.invalid", clock=clock)
        mock = MockPaymentGateway()
        registry.register(mobile)
        registry.register(mock)

        assert registry.default_provider == "mobile_money"
        assert registry.get("mock") is mock
        assert registry.get("unknown") is mobile
        assert registry.get("default") is mobile
        assert registry.list_providers() == ["mobile_money", "mock"]

    def test_explicit_default(self):
        registry = PaymentGatewayRegistry()
        first = MockPaymentGateway()
        registry.register(first)
        second = HttpMobileMoneyGateway("http://pay.invalid")
        registry.register(second, default=True)

        assert registry.get(None) is second

    def test_duplicate_rejected(self):
        registry = PaymentGatewayRegistry()
        registry.register(MockPaymentGateway())
        with pytest.raises(ValueError):
            registry.register(MockPaymentGateway())

    def test_empty_registry(self):
        with pytest.raises(ConfigurationError):
            PaymentGatewayRegistry().get("mock")
