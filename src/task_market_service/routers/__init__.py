"""API routers."""

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

__all__ = [
    "activity",
    "auth",
    "chat",
    "disputes",
    "extra_work",
    "health",
    "internal",
    "offers",
    "payouts",
    "tasks",
    "users",
    "webhooks",
]
