"""Shared request validation helpers for task-market routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import AuthenticationError, ValidationError
from task_market_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ValidationError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body is not valid JSON", code="INVALID_JSON") from exc

    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", code="INVALID_JSON")

    return data


async def read_json(request: Request) -> dict[str, Any]:
    """Read the request body as a JSON object; an empty body is {}."""
    body = await request.body()
    return {} if body == b"" else parse_json_body(body)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Extract the session token from an Authorization header, if present."""
    if authorization is None:
        return None

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Authorization header must use Bearer scheme")

    token = authorization[len("Bearer ") :]
    if not token:
        raise AuthenticationError("Bearer token must not be empty")

    return token


def require_actor(request: Request) -> dict[str, Any]:
    """Resolve the authenticated caller or fail with 401."""
    state = get_app_state()
    if state.identity_manager is None:
        msg = "IdentityManager not initialized"
        raise RuntimeError(msg)
    token = extract_bearer_token(request.headers.get("authorization"))
    return state.identity_manager.resolve_actor(token)


def optional_actor(request: Request) -> dict[str, Any] | None:
    """Resolve the caller when an Authorization header is sent; None for anonymous reads."""
    if request.headers.get("authorization") is None:
        return None
    return require_actor(request)


def required_str(data: dict[str, Any], field_name: str) -> str:
    """Extract a non-empty string field."""
    if field_name not in data or data[field_name] is None:
        raise ValidationError(f"Missing required field: {field_name}")
    value = data[field_name]
    if not isinstance(value, str):
        raise ValidationError(f"Field '{field_name}' must be a string")
    if value.strip() == "":
        raise ValidationError(f"Field '{field_name}' must not be empty")
    return value


def optional_str(data: dict[str, Any], field_name: str) -> str | None:
    """Extract a string field that may be absent or null."""
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Field '{field_name}' must be a string")
    return value


def optional_bool(data: dict[str, Any], field_name: str) -> bool:
    """Extract a boolean flag, absent meaning false."""
    value = data.get(field_name)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"Field '{field_name}' must be a boolean")
    return value


def string_list(data: dict[str, Any], field_name: str) -> list[str]:
    """Extract a list of strings, absent meaning empty."""
    value = data.get(field_name)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"Field '{field_name}' must be a list of strings")
    return value


def query_bool(raw: str | None, name: str) -> bool | None:
    """Parse a true/false query parameter."""
    if raw is None:
        return None
    lowered = raw.lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ValidationError(f"{name} must be true or false")
