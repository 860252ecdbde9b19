"""One-time code sign-in endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import read_json, required_str

router = APIRouter()


@router.post("/auth/request-code")
async def request_code(request: Request) -> JSONResponse:
    """Send a one-time sign-in code to an email address."""
    data = await read_json(request)
    email = required_str(data, "email")

    state = get_app_state()
    if state.identity_manager is None:
        msg = "IdentityManager not initialized"
        raise RuntimeError(msg)

    result = state.identity_manager.request_code(email)
    return JSONResponse(status_code=200, content=result)


@router.post("/auth/verify-code")
async def verify_code(request: Request) -> JSONResponse:
    """Exchange a one-time code for a session token."""
    data = await read_json(request)
    email = required_str(data, "email")
    code = required_str(data, "code")

    state = get_app_state()
    if state.identity_manager is None:
        msg = "IdentityManager not initialized"
        raise RuntimeError(msg)

    result = state.identity_manager.verify_code(email, code)
    return JSONResponse(status_code=200, content=result)
