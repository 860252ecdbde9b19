"""Activity log endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from task_market_service.core.exceptions import ValidationError
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import require_actor
from task_market_service.services.activity_log import DEFAULT_LIMIT

router = APIRouter()


@router.get("/activity-logs")
async def list_activity(request: Request) -> dict[str, Any]:
    """List activity newest first, filtered by task_id and/or user_id."""
    require_actor(request)
    params = request.query_params

    limit = DEFAULT_LIMIT
    limit_raw = params.get("limit")
    if limit_raw is not None:
        try:
            limit = int(limit_raw)
        except ValueError as exc:
            raise ValidationError("limit must be an integer") from exc
        if limit <= 0:
            raise ValidationError("limit must be >= 1")

    state = get_app_state()
    if state.activity_log is None:
        msg = "ActivityLog not initialized"
        raise RuntimeError(msg)

    entries = state.activity_log.list_entries(
        task_id=params.get("task_id"),
        user_id=params.get("user_id"),
        limit=limit,
    )
    return {"entries": entries}
