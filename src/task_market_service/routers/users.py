"""User profile endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import read_json, require_actor, required_str
from task_market_service.services.user_manager import UserManager

router = APIRouter()


def _user_manager() -> UserManager:
    state = get_app_state()
    if state.user_manager is None:
        msg = "UserManager not initialized"
        raise RuntimeError(msg)
    return state.user_manager


@router.get("/users/me")
async def get_me(request: Request) -> JSONResponse:
    """Return the authenticated user's profile."""
    actor = require_actor(request)
    return JSONResponse(status_code=200, content=_user_manager().get_me(actor))


@router.put("/users/{user_id}")
async def update_profile(user_id: str, request: Request) -> JSONResponse:
    """Update name, phone and default zip code."""
    actor = require_actor(request)
    data = await read_json(request)
    result = _user_manager().update_profile(user_id, actor, data)
    return JSONResponse(status_code=200, content=result)


@router.put("/users/{user_id}/photo")
async def update_photo(user_id: str, request: Request) -> JSONResponse:
    """Set the profile photo URL."""
    actor = require_actor(request)
    data = await read_json(request)
    photo_url = required_str(data, "photo_url")
    result = _user_manager().update_photo(user_id, actor, photo_url)
    return JSONResponse(status_code=200, content=result)


@router.get("/users/{user_id}/has-photo")
async def has_photo(user_id: str) -> JSONResponse:
    """Report whether a user has a profile photo."""
    return JSONResponse(status_code=200, content=_user_manager().has_photo(user_id))
