"""Offer endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import optional_str, read_json, require_actor
from task_market_service.services.offer_ledger import OfferLedger

router = APIRouter()


def _offer_ledger() -> OfferLedger:
    state = get_app_state()
    if state.offer_ledger is None:
        msg = "OfferLedger not initialized"
        raise RuntimeError(msg)
    return state.offer_ledger


@router.post("/tasks/{task_id}/offers", status_code=201)
async def submit_offer(task_id: str, request: Request) -> JSONResponse:
    """Offer to do a requested task."""
    actor = require_actor(request)
    data = await read_json(request)
    result = _offer_ledger().submit_offer(
        task_id,
        actor,
        optional_str(data, "note"),
        data.get("proposed_price"),
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks/{task_id}/offers")
async def list_offers(task_id: str) -> dict[str, Any]:
    """List all offers on a task, newest first."""
    return {"task_id": task_id, "offers": _offer_ledger().list_offers(task_id)}
