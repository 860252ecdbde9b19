"""Payee onboarding endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import require_actor
from task_market_service.services.payee_gateway import PayeeGateway

router = APIRouter()


def _payee_gateway() -> PayeeGateway:
    state = get_app_state()
    if state.payee_gateway is None:
        msg = "PayeeGateway not initialized"
        raise RuntimeError(msg)
    return state.payee_gateway


@router.post("/payouts/onboarding")
async def start_onboarding(request: Request) -> JSONResponse:
    """Create the caller's payout account if needed and return an onboarding link."""
    actor = require_actor(request)
    result = await _payee_gateway().start_onboarding(actor)
    return JSONResponse(status_code=200, content=result)


@router.get("/payouts/status")
async def payout_status(request: Request) -> JSONResponse:
    """Report whether the caller can receive funds."""
    actor = require_actor(request)
    result = await _payee_gateway().get_status(actor)
    return JSONResponse(status_code=200, content=result)
