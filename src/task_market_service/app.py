"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from task_market_service.config import get_settings
from task_market_service.core.exceptions import register_exception_handlers
from task_market_service.core.lifespan import lifespan
from task_market_service.core.middleware import RequestValidationMiddleware
from task_market_service.routers import (
    activity,
    auth,
    chat,
    disputes,
    extra_work,
    health,
    internal,
    offers,
    payouts,
    tasks,
    users,
    webhooks,
)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(auth.router, tags=["Auth"])
    app.include_router(users.router, tags=["Users"])
    app.include_router(payouts.router, tags=["Payouts"])
    app.include_router(tasks.router, tags=["Tasks"])
    app.include_router(offers.router, tags=["Offers"])
    app.include_router(extra_work.router, tags=["Billing"])
    app.include_router(disputes.router, tags=["Disputes"])
    app.include_router(chat.router, tags=["Chat"])
    app.include_router(activity.router, tags=["Activity"])
    app.include_router(webhooks.router, tags=["Webhooks"])
    app.include_router(internal.router, tags=["Internal"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
