"""ASGI middleware enforcing JSON request bodies and a body size cap."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Signed payloads must reach the router byte-for-byte.
_RAW_BODY_PATHS = frozenset({"/webhooks/payments"})


class _BodyTooLarge(Exception):
    pass


def _reject(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


async def _read_body(receive: Receive, limit: int) -> bytes:
    """Drain the request stream, giving up as soon as ``limit`` is exceeded."""
    body = bytearray()
    more = True
    while more:
        message = await receive()
        body.extend(message.get("body", b""))
        if len(body) > limit:
            raise _BodyTooLarge
        more = bool(message.get("more_body", False))
    return bytes(body)


class RequestValidationMiddleware:
    """
    Rejects oversized bodies (413) and non-JSON bodies (415) before routing.

    Only non-empty POST/PUT/PATCH bodies are inspected, so action endpoints
    such as ``/start`` or ``/complete`` can be called without a body or a
    Content-Type. The payment webhook is passed through untouched.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] != "http"
            or scope.get("method") not in _BODY_METHODS
            or scope.get("path") in _RAW_BODY_PATHS
        ):
            await self.app(scope, receive, send)
            return

        try:
            body = await _read_body(receive, self.max_body_size)
        except _BodyTooLarge:
            response = _reject(
                413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size"
            )
            await response(scope, receive, send)
            return

        content_type = b""
        for name, value in scope.get("headers", []):
            if name == b"content-type":
                content_type = value.lower()
                break

        if body and not content_type.startswith(b"application/json"):
            response = _reject(
                415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json"
            )
            await response(scope, receive, send)
            return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if replayed:
                return {"type": "http.disconnect"}
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}

        await self.app(scope, replay, send)
