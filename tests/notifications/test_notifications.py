"""
Policyholder Notification Tests.

============================================================
PURPOSE
============================================================
Tests for templated holder messages and delivery channels.

TEST CATEGORIES:
- Message templates
- Dispatcher failure isolation and payload whitelist
- Webhook channel

============================================================
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from notifications.base import NotificationDispatcher, NotificationKind
from notifications.channels import LoggingNotifier, RecordingNotifier, WebhookNotifier
from notifications.messages import TEMPLATES, render


PAYLOAD = {"payout_id": "po-1", "amount": "72062.50", "currency": "KES"}


# ============================================================
# TEMPLATE TESTS
# ============================================================

class TestTemplates:
    """Tests for holder message rendering."""

    def test_every_kind_has_template(self):
        assert set(TEMPLATES) == {k.value for k in NotificationKind}

    def test_confirmed_without_compensation(self):
        message = render("PAYOUT_CONFIRMED", {**PAYLOAD, "compensation": "0"})

        assert message == "Your insurance payout po-1 of KES 72062.50 has been sent."

    def test_confirmed_with_compensation(self):
        message = render("PAYOUT_CONFIRMED", {**PAYLOAD, "compensation": "1801.56"})

        assert message.endswith("It includes KES 1801.56 delay compensation.")

    def test_missing_fields_render_empty(self):
        message = render("MANUAL_FOLLOW_UP", {})
        assert "{" not in message
        assert "agent will contact you" in message

    def test_unknown_kind(self):
        with pytest.raises(KeyError):
            render("PAYOUT_STOLEN", PAYLOAD)


# ============================================================
# DISPATCHER TESTS
# ============================================================

class TestDispatcher:
    """Tests for NotificationDispatcher."""

    @pytest.mark.asyncio
    async def test_delivers_whitelisted_payload(self):
        port = RecordingNotifier()
        dispatcher = NotificationDispatcher(port)

        delivered = await dispatcher.dispatch(
            "holder-1",
            NotificationKind.PAYOUT_DELAYED,
            {**PAYLOAD, "recipient_account": "254700000001", "policy_id": "P1"},
        )

        assert delivered is True
        sent = port.sent[0]
        assert sent.recipient == "holder-1"
        assert set(sent.payload) == {"payout_id", "amount", "currency", "message"}
        assert "delayed" in sent.payload["message"]
        assert dispatcher.get_stats() == {"sent": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_failure_absorbed(self):
        """Test that a broken channel never raises into the caller."""
        dispatcher = NotificationDispatcher(RecordingNotifier(fail=True))

        delivered = await dispatcher.dispatch("holder-1", NotificationKind.PAYOUT_CONFIRMED, PAYLOAD)

        assert delivered is False
        assert dispatcher.get_stats() == {"sent": 0, "failed": 1}

    @pytest.mark.asyncio
    async def test_no_port(self):
        dispatcher = NotificationDispatcher()
        assert await dispatcher.dispatch("holder-1", NotificationKind.PAYOUT_CONFIRMED, PAYLOAD) is False

    @pytest.mark.asyncio
    async def test_logging_notifier(self, caplog):
        dispatcher = NotificationDispatcher(LoggingNotifier())

        with caplog.at_level("INFO"):
            assert await dispatcher.dispatch("holder-1", NotificationKind.MANUAL_FOLLOW_UP, PAYLOAD)

        assert "[holder:holder-1]" in caplog.text


# ============================================================
# WEBHOOK TESTS
# ============================================================

class TestWebhookNotifier:
    """Tests for the SMS/USSD relay channel."""

    @pytest.mark.asyncio
    async def test_posts_message(self):
        received = []

        async def relay(request: web.Request) -> web.Response:
            received.append((request.headers.get("Authorization"), await request.json()))
            return web.json_response({"queued": True}, status=202)

        app = web.Application()
        app.router.add_post("/notify", relay)
        async with TestServer(app) as server:
            notifier = WebhookNotifier(str(server.make_url("/notify")), api_key="relay-key")
            dispatcher = NotificationDispatcher(notifier)
            try:
                delivered = await dispatcher.dispatch("holder-1", NotificationKind.PAYOUT_CONFIRMED, PAYLOAD)
            finally:
                await dispatcher.close()

        assert delivered is True
        auth, body = received[0]
        assert auth == "Bearer relay-key"
        assert body["recipient"] == "holder-1"
        assert body["event"] == "PAYOUT_CONFIRMED"
        assert body["message"].startswith("Your insurance payout po-1")

    @pytest.mark.asyncio
    async def test_error_status_counted_as_failure(self):
        async def relay(request: web.Request) -> web.Response:
            return web.Response(status=503, text="relay down")

        app = web.Application()
        app.router.add_post("/notify", relay)
        async with TestServer(app) as server:
            dispatcher = NotificationDispatcher(WebhookNotifier(str(server.make_url("/notify"))))
            try:
                delivered = await dispatcher.dispatch("holder-1", NotificationKind.PAYOUT_DELAYED, PAYLOAD)
            finally:
                await dispatcher.close()

        assert delivered is False
        assert dispatcher.get_stats()["failed"] == 1
