"""Service error taxonomy and exception handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "InvalidStateError",
    "NotFoundError",
    "PayeeSetupError",
    "PaymentError",
    "ServiceError",
    "UnreconciledEventError",
    "ValidationError",
    "WebhookSignatureError",
    "register_exception_handlers",
]


class ServiceError(Exception):
    """Error with a stable code, a human-readable message and an HTTP status."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details if details is not None else {}


class ValidationError(ServiceError):
    """Missing or out-of-range input."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(code, message, 400)


class AuthenticationError(ServiceError):
    """Missing, malformed or expired session credential."""

    def __init__(self, message: str, code: str = "UNAUTHENTICATED") -> None:
        super().__init__(code, message, 401)


class AuthorizationError(ServiceError):
    """Caller is not the party the action requires."""

    def __init__(self, message: str, code: str = "FORBIDDEN") -> None:
        super().__init__(code, message, 403)


class NotFoundError(ServiceError):
    """A referenced resource does not resolve."""

    def __init__(self, message: str, code: str = "NOT_FOUND") -> None:
        super().__init__(code, message, 404)


class InvalidStateError(ServiceError):
    """Action attempted outside the states that permit it."""

    def __init__(self, message: str, code: str = "INVALID_STATE") -> None:
        super().__init__(code, message, 400)


class PayeeSetupError(ServiceError):
    """Payee account missing, not payout-capable, or processor onboarding failed."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: str = "PAYEE_SETUP_ERROR",
    ) -> None:
        super().__init__(code, message, status_code)


class PaymentError(ServiceError):
    """Payment processor call failed."""

    def __init__(self, message: str, code: str = "PAYMENT_ERROR") -> None:
        super().__init__(code, message, 502)


class WebhookSignatureError(ServiceError):
    """Webhook signature header missing or not matching the shared secret."""

    def __init__(self, message: str) -> None:
        super().__init__("INVALID_SIGNATURE", message, 400)


class UnreconciledEventError(Exception):
    """A confirmed payment event cannot be applied and needs manual reconciliation."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    content: dict[str, Any] = {"error": exc.message, "code": exc.error}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={"error": "An unexpected error occurred", "code": "INTERNAL_ERROR"},
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={"error": "Method not allowed", "code": "METHOD_NOT_ALLOWED"},
        )
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"error": "Not found", "code": "NOT_FOUND"},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": "HTTP_ERROR"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
