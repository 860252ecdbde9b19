"""Dispute read and evidence endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import read_json, require_actor, string_list
from task_market_service.services.dispute_ledger import DisputeLedger

router = APIRouter()


def _dispute_ledger() -> DisputeLedger:
    state = get_app_state()
    if state.dispute_ledger is None:
        msg = "DisputeLedger not initialized"
        raise RuntimeError(msg)
    return state.dispute_ledger


@router.get("/disputes/{dispute_id}")
async def get_dispute(dispute_id: str, request: Request) -> JSONResponse:
    """Get a dispute; parties only."""
    actor = require_actor(request)
    return JSONResponse(status_code=200, content=_dispute_ledger().get_dispute(dispute_id, actor))


@router.post("/disputes/{dispute_id}/evidence")
async def add_evidence(dispute_id: str, request: Request) -> JSONResponse:
    """Append photos to the caller's side of a dispute."""
    actor = require_actor(request)
    data = await read_json(request)
    result = _dispute_ledger().append_evidence(dispute_id, actor, string_list(data, "photo_urls"))
    return JSONResponse(status_code=200, content=result)
