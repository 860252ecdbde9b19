"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from task_market_service.clients.payment_processor_client import PaymentProcessorClient
    from task_market_service.services.activity_log import ActivityLog
    from task_market_service.services.billing_manager import BillingManager
    from task_market_service.services.chat_service import ChatService
    from task_market_service.services.dispute_ledger import DisputeLedger
    from task_market_service.services.escrow_coordinator import EscrowCoordinator
    from task_market_service.services.identity_manager import IdentityManager
    from task_market_service.services.offer_ledger import OfferLedger
    from task_market_service.services.payee_gateway import PayeeGateway
    from task_market_service.services.payment_webhook import PaymentWebhook
    from task_market_service.services.price_adjustment_sweep import PriceAdjustmentSweep
    from task_market_service.services.task_manager import TaskManager
    from task_market_service.services.task_store import TaskStore
    from task_market_service.services.user_manager import UserManager
    from task_market_service.services.user_store import UserStore


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    payment_client: PaymentProcessorClient | None = None
    task_store: TaskStore | None = None
    user_store: UserStore | None = None
    activity_log: ActivityLog | None = None
    identity_manager: IdentityManager | None = None
    user_manager: UserManager | None = None
    payee_gateway: PayeeGateway | None = None
    escrow_coordinator: EscrowCoordinator | None = None
    offer_ledger: OfferLedger | None = None
    task_manager: TaskManager | None = None
    billing_manager: BillingManager | None = None
    dispute_ledger: DisputeLedger | None = None
    chat_service: ChatService | None = None
    payment_webhook: PaymentWebhook | None = None
    price_sweep: PriceAdjustmentSweep | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep processor client references in sync with the payment_client field."""
        super().__setattr__(name, value)

        if name != "payment_client" or value is None:
            return

        payee_gateway = self.__dict__.get("payee_gateway")
        if payee_gateway is not None:
            payee_gateway._client = value

        escrow_coordinator = self.__dict__.get("escrow_coordinator")
        if escrow_coordinator is not None:
            escrow_coordinator._client = value

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
