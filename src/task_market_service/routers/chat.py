"""Task chat endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import (
    optional_bool,
    optional_str,
    read_json,
    require_actor,
)
from task_market_service.services.chat_service import ChatService

router = APIRouter()


def _chat_service() -> ChatService:
    state = get_app_state()
    if state.chat_service is None:
        msg = "ChatService not initialized"
        raise RuntimeError(msg)
    return state.chat_service


@router.get("/chat/threads")
async def list_threads(request: Request) -> dict[str, Any]:
    """Threads the caller participates in."""
    actor = require_actor(request)
    return {"threads": _chat_service().list_threads(actor)}


@router.get("/chat/threads/{thread_id}/messages")
async def list_messages(thread_id: str, request: Request) -> JSONResponse:
    """Messages in a thread, oldest first."""
    actor = require_actor(request)
    return JSONResponse(status_code=200, content=_chat_service().list_messages(thread_id, actor))


@router.post("/chat/threads/{thread_id}/messages", status_code=201)
async def post_message(thread_id: str, request: Request) -> JSONResponse:
    """Post a message, optionally marked as photo proof of work."""
    actor = require_actor(request)
    data = await read_json(request)
    result = _chat_service().post_message(
        thread_id,
        actor,
        optional_str(data, "text"),
        optional_str(data, "image_url"),
        optional_bool(data, "is_proof"),
    )
    return JSONResponse(status_code=201, content=result)
