"""Extra-work and tip endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import (
    optional_str,
    read_json,
    require_actor,
    string_list,
)
from task_market_service.services.billing_manager import BillingManager

router = APIRouter()


def _billing_manager() -> BillingManager:
    state = get_app_state()
    if state.billing_manager is None:
        msg = "BillingManager not initialized"
        raise RuntimeError(msg)
    return state.billing_manager


# ---------------------------------------------------------------------------
# Extra work
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/extra-work", status_code=201)
async def request_extra_work(task_id: str, request: Request) -> JSONResponse:
    """Helper requests additional payment for extra work."""
    actor = require_actor(request)
    data = await read_json(request)
    result = _billing_manager().request_extra_work(
        task_id,
        actor,
        data.get("amount"),
        optional_str(data, "reason"),
        string_list(data, "photo_urls"),
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks/{task_id}/extra-work")
async def list_extra_work(task_id: str, request: Request) -> dict[str, Any]:
    """List extra-work requests on a task, newest first."""
    actor = require_actor(request)
    return {"task_id": task_id, "requests": _billing_manager().list_extra_work(task_id, actor)}


@router.post("/extra-work/{request_id}/accept")
async def accept_extra_work(request_id: str, request: Request) -> JSONResponse:
    """Poster accepts extra work and is sent to checkout."""
    actor = require_actor(request)
    result = await _billing_manager().accept_extra_work(request_id, actor)
    return JSONResponse(status_code=200, content=result)


@router.post("/extra-work/{request_id}/decline")
async def decline_extra_work(request_id: str, request: Request) -> JSONResponse:
    """Poster declines extra work."""
    actor = require_actor(request)
    result = _billing_manager().decline_extra_work(request_id, actor)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Tips
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/tip")
async def create_tip(task_id: str, request: Request) -> JSONResponse:
    """Poster tips the helper of a completed task."""
    actor = require_actor(request)
    data = await read_json(request)
    result = await _billing_manager().create_tip(task_id, actor, data.get("amount"))
    return JSONResponse(status_code=200, content=result)
