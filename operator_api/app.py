"""
Operator API Endpoints.

============================================================
PURPOSE
============================================================
HTTP surface for operators and payment provider callbacks.

PRINCIPLES:
- Every mutating endpoint names its actor
- Cancel, close, settle and compensation retry are the only manual actions
- Callback statuses are re-checked with the provider before use
- Internal errors never leak to callers beyond a message

============================================================
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web
from pydantic import BaseModel, ValidationError

from core.exceptions import PaymentPermanent, PaymentTransient, PayoutNotFound, StateTransitionError
from operator_api.schemas import (
    CancelRequest,
    CloseRequest,
    PaymentCallback,
    RetryCompensationRequest,
    SettleRequest,
)
from payout_engine.manager import PayoutManager
from payout_engine.types import PayoutState


logger = logging.getLogger(__name__)


StatusProvider = Callable[[], Awaitable[Dict[str, Any]]]


# ============================================================
# JSON ENCODER
# ============================================================

class OperatorEncoder(json.JSONEncoder):
    """JSON encoder for payout data."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=OperatorEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(message: str, status: int) -> web.Response:
    return json_response({"status": "error", "error": message}, status=status)


# ============================================================
# API HANDLERS
# ============================================================

class OperatorAPI:
    """HTTP handlers over the payout manager."""

    def __init__(
        self,
        manager: PayoutManager,
        status_provider: Optional[StatusProvider] = None,
    ):
        self._manager = manager
        self._status_provider = status_provider

    async def _parse(self, request: web.Request, schema: type) -> BaseModel:
        try:
            body = await request.json()
        except json.JSONDecodeError as e:
            raise web.HTTPBadRequest(
                text=json.dumps({"status": "error", "error": f"Invalid JSON: {e}"}),
                content_type="application/json",
            )
        return schema.model_validate(body)

    async def _run(self, action: Callable[[], Awaitable[web.Response]]) -> web.Response:
        """Map domain errors onto HTTP status codes."""
        try:
            return await action()
        except ValidationError as e:
            return error_response(str(e), 400)
        except PayoutNotFound as e:
            return error_response(e.message, 404)
        except StateTransitionError as e:
            return error_response(e.message, 409)
        except PaymentTransient as e:
            return error_response(f"Payment provider unavailable: {e.message}", 503)
        except PaymentPermanent as e:
            return error_response(f"Payment provider rejected the request: {e.message}", 502)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"Operator API error: {e}", exc_info=True)
            return error_response("Internal error", 500)

    # --------------------------------------------------------
    # HEALTH
    # --------------------------------------------------------

    async def health(self, request: web.Request) -> web.Response:
        """GET /health"""
        async def action() -> web.Response:
            summary = await self._manager.get_summary()
            engine = await self._status_provider() if self._status_provider else {}
            return json_response({
                "status": "ok",
                "payouts": summary,
                "engine": engine,
            })
        return await self._run(action)

    # --------------------------------------------------------
    # PAYOUT QUERIES
    # --------------------------------------------------------

    async def get_payout(self, request: web.Request) -> web.Response:
        """GET /payouts/{payout_id}"""
        payout_id = request.match_info["payout_id"]

        async def action() -> web.Response:
            payout = await self._manager.get_payout(payout_id)
            return json_response({"status": "ok", "data": payout.to_dict()})
        return await self._run(action)

    async def list_payouts(self, request: web.Request) -> web.Response:
        """GET /payouts?state=&limit="""
        raw_state = request.query.get("state")
        raw_limit = request.query.get("limit", "100")

        try:
            state = PayoutState(raw_state.upper()) if raw_state else None
            limit = int(raw_limit)
        except ValueError:
            return error_response(f"Invalid query: state={raw_state!r} limit={raw_limit!r}", 400)
        if limit < 1:
            return error_response("limit must be >= 1", 400)

        async def action() -> web.Response:
            payouts = await self._manager.list_payouts(state=state, limit=limit)
            return json_response({
                "status": "ok",
                "count": len(payouts),
                "data": [p.to_dict() for p in payouts],
            })
        return await self._run(action)

    # --------------------------------------------------------
    # OPERATOR ACTIONS
    # --------------------------------------------------------

    async def cancel(self, request: web.Request) -> web.Response:
        """POST /payouts/{payout_id}/cancel"""
        payout_id = request.match_info["payout_id"]

        async def action() -> web.Response:
            body = await self._parse(request, CancelRequest)
            payout = await self._manager.cancel(payout_id, reason=body.reason, actor=body.actor)
            return json_response({"status": "ok", "data": payout.to_dict()})
        return await self._run(action)

    async def close(self, request: web.Request) -> web.Response:
        """POST /payouts/{payout_id}/close"""
        payout_id = request.match_info["payout_id"]

        async def action() -> web.Response:
            body = await self._parse(request, CloseRequest)
            payout = await self._manager.close(payout_id, reason=body.reason, actor=body.actor)
            return json_response({"status": "ok", "data": payout.to_dict()})
        return await self._run(action)

    async def settle_compensation(self, request: web.Request) -> web.Response:
        """POST /payouts/{payout_id}/settle-compensation"""
        payout_id = request.match_info["payout_id"]

        async def action() -> web.Response:
            body = await self._parse(request, SettleRequest)
            payout = await self._manager.settle_compensation(
                payout_id, actor=body.actor, reference=body.reference,
            )
            return json_response({"status": "ok", "data": payout.to_dict()})
        return await self._run(action)

    async def retry_compensation(self, request: web.Request) -> web.Response:
        """POST /payouts/{payout_id}/retry-compensation"""
        payout_id = request.match_info["payout_id"]

        async def action() -> web.Response:
            body = await self._parse(request, RetryCompensationRequest)
            payout = await self._manager.retry_compensation(payout_id, actor=body.actor)
            return json_response({"status": "ok", "data": payout.to_dict()})
        return await self._run(action)

    # --------------------------------------------------------
    # PAYMENT CALLBACKS
    # --------------------------------------------------------

    async def payment_callback(self, request: web.Request) -> web.Response:
        """
        POST /callbacks/payments

        Providers push {"transfer_id", "status"}. The manager re-polls the
        transfer and applies the provider's own status, so an unverified
        push cannot move a payout.
        """
        async def action() -> web.Response:
            body = await self._parse(request, PaymentCallback)
            logger.info(f"Payment callback: transfer={body.transfer_id} status={body.status.value}")
            payout = await self._manager.apply_transfer_update(body.transfer_id, body.status)
            return json_response({
                "status": "ok",
                "payout_id": payout.payout_id,
                "state": payout.state.value,
            })
        return await self._run(action)


# ============================================================
# APPLICATION FACTORY
# ============================================================

def create_app(
    manager: PayoutManager,
    status_provider: Optional[StatusProvider] = None,
) -> web.Application:
    """
    Create the operator API application.

    Returns an aiohttp Application with all routes configured.
    """
    api = OperatorAPI(manager, status_provider)

    app = web.Application()
    app.router.add_get("/health", api.health)
    app.router.add_get("/payouts", api.list_payouts)
    app.router.add_get("/payouts/{payout_id}", api.get_payout)
    app.router.add_post("/payouts/{payout_id}/cancel", api.cancel)
    app.router.add_post("/payouts/{payout_id}/close", api.close)
    app.router.add_post("/payouts/{payout_id}/settle-compensation", api.settle_compensation)
    app.router.add_post("/payouts/{payout_id}/retry-compensation", api.retry_compensation)
    app.router.add_post("/callbacks/payments", api.payment_callback)
    return app
