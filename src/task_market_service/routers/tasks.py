"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import (
    optional_actor,
    optional_bool,
    optional_str,
    query_bool,
    read_json,
    require_actor,
    required_str,
    string_list,
)
from task_market_service.services.task_manager import TaskManager

router = APIRouter()


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a new task."""
    actor = require_actor(request)
    data = await read_json(request)

    task_data: dict[str, Any] = {
        "title": optional_str(data, "title"),
        "description": optional_str(data, "description"),
        "category": optional_str(data, "category"),
        "zip_code": optional_str(data, "zip_code"),
        "area_description": optional_str(data, "area_description"),
        "full_address": optional_str(data, "full_address"),
        "price": data.get("price"),
        "photos_required": optional_bool(data, "photos_required"),
        "tools_required": optional_bool(data, "tools_required"),
        "tools_provided": optional_bool(data, "tools_provided"),
        "license_required": optional_bool(data, "license_required"),
        "task_photo_url": optional_str(data, "task_photo_url"),
        "photos": string_list(data, "photos"),
    }

    result = _task_manager().create_task(actor, task_data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# Listings (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """Discover tasks with optional filters."""
    params = request.query_params
    tasks = _task_manager().list_tasks(
        status=params.get("status"),
        zip_code=params.get("zip_code"),
        category=params.get("category"),
        tools_required=query_bool(params.get("tools_required"), "tools_required"),
        tools_provided=query_bool(params.get("tools_provided"), "tools_provided"),
        include_expired=bool(query_bool(params.get("include_expired"), "include_expired")),
    )
    return {"tasks": tasks}


@router.get("/tasks/mine")
async def list_my_tasks(request: Request) -> dict[str, Any]:
    """Tasks posted by the caller."""
    actor = require_actor(request)
    return {"tasks": _task_manager().list_posted(actor)}


@router.get("/jobs/mine")
async def list_my_jobs(request: Request) -> dict[str, Any]:
    """Tasks the caller was hired for."""
    actor = require_actor(request)
    return {"tasks": _task_manager().list_jobs(actor)}


@router.get("/tasks/needing-price-adjustment")
async def list_needing_price_adjustment(request: Request) -> dict[str, Any]:
    """The caller's open tasks currently flagged for a price prompt."""
    actor = require_actor(request)
    return {"tasks": _task_manager().list_needing_price_adjustment(actor)}


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, request: Request) -> JSONResponse:
    """Get task details; anonymous callers get the public view."""
    actor = optional_actor(request)
    return JSONResponse(status_code=200, content=_task_manager().get_task(task_id, actor))


# ---------------------------------------------------------------------------
# Hire
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/choose-helper")
async def choose_helper(task_id: str, request: Request) -> JSONResponse:
    """Start checkout to hire the helper behind a pending offer."""
    actor = require_actor(request)
    data = await read_json(request)
    result = await _task_manager().choose_helper(
        task_id,
        actor,
        offer_id=optional_str(data, "offer_id"),
        helper_id=optional_str(data, "helper_id"),
    )
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Progress, completion and cancellation
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/start")
async def start_work(task_id: str, request: Request) -> JSONResponse:
    """Helper starts work on an accepted task."""
    actor = require_actor(request)
    return JSONResponse(status_code=200, content=_task_manager().start_work(task_id, actor))


@router.post("/tasks/{task_id}/mark-done")
async def mark_done(task_id: str, request: Request) -> JSONResponse:
    """Helper reports the work as done."""
    actor = require_actor(request)
    return JSONResponse(status_code=200, content=_task_manager().mark_done(task_id, actor))


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, request: Request) -> JSONResponse:
    """Mark a hired task completed."""
    actor = require_actor(request)
    return JSONResponse(status_code=200, content=_task_manager().complete(task_id, actor))


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, request: Request) -> JSONResponse:
    """Cancel a requested or accepted task."""
    actor = require_actor(request)
    data = await read_json(request)
    canceled_by = required_str(data, "canceled_by")
    result = _task_manager().cancel(task_id, actor, canceled_by)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/dispute", status_code=201)
async def open_dispute(task_id: str, request: Request) -> JSONResponse:
    """Open a dispute on a hired task."""
    actor = require_actor(request)
    data = await read_json(request)

    state = get_app_state()
    if state.dispute_ledger is None:
        msg = "DisputeLedger not initialized"
        raise RuntimeError(msg)

    result = state.dispute_ledger.open_dispute(
        task_id,
        actor,
        optional_str(data, "reason"),
        string_list(data, "photo_urls"),
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# Price adjustment
# ---------------------------------------------------------------------------


@router.patch("/tasks/{task_id}/price")
async def adjust_price(task_id: str, request: Request) -> JSONResponse:
    """Reprice an open task that has no offers."""
    actor = require_actor(request)
    data = await read_json(request)
    result = _task_manager().adjust_price(task_id, actor, data.get("price"))
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/price-adjustment/acknowledge")
async def acknowledge_price_prompt(task_id: str, request: Request) -> JSONResponse:
    """Dismiss the price prompt and keep the current price."""
    actor = require_actor(request)
    result = _task_manager().acknowledge_price_prompt(task_id, actor)
    return JSONResponse(status_code=200, content=result)
