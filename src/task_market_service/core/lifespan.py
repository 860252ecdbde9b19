"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_market_service.clients.payment_processor_client import PaymentProcessorClient
from task_market_service.config import get_settings
from task_market_service.core.state import init_app_state
from task_market_service.logging import get_logger, setup_logging
from task_market_service.services.activity_log import ActivityLog
from task_market_service.services.billing_manager import BillingManager
from task_market_service.services.chat_service import ChatService
from task_market_service.services.dispute_ledger import DisputeLedger
from task_market_service.services.escrow_coordinator import EscrowCoordinator
from task_market_service.services.identity_manager import IdentityManager, OtpNotifier
from task_market_service.services.offer_ledger import OfferLedger
from task_market_service.services.payee_gateway import PayeeGateway
from task_market_service.services.payment_webhook import PaymentWebhook
from task_market_service.services.price_adjustment_sweep import PriceAdjustmentSweep
from task_market_service.services.session_tokens import SessionTokenIssuer
from task_market_service.services.task_manager import TaskManager
from task_market_service.services.task_store import TaskStore
from task_market_service.services.user_manager import UserManager
from task_market_service.services.user_store import UserStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from task_market_service.config import Settings
    from task_market_service.core.state import AppState


def build_services(settings: Settings, state: AppState) -> None:
    """Construct stores, clients and managers and attach them to state."""
    db_path = settings.database.path
    frontend_url = settings.urls.frontend_url

    # Stores share one SQLite file, each on its own connection
    task_store = TaskStore(db_path=db_path)
    user_store = UserStore(db_path=db_path)
    activity_log = ActivityLog(db_path=db_path)
    state.task_store = task_store
    state.user_store = user_store
    state.activity_log = activity_log

    payment_client = PaymentProcessorClient(
        base_url=settings.payment_processor.base_url,
        secret_key=settings.payment_processor.secret_key,
        timeout_seconds=settings.payment_processor.timeout_seconds,
    )

    state.identity_manager = IdentityManager(
        store=user_store,
        tokens=SessionTokenIssuer(
            secret=settings.auth.session_secret,
            ttl_seconds=settings.auth.token_ttl_seconds,
        ),
        notifier=OtpNotifier(),
        activity_log=activity_log,
        code_ttl_seconds=settings.otp.code_ttl_seconds,
    )
    state.user_manager = UserManager(
        store=user_store,
        task_store=task_store,
        activity_log=activity_log,
    )

    payee_gateway = PayeeGateway(client=payment_client, store=user_store, frontend_url=frontend_url)
    escrow_coordinator = EscrowCoordinator(
        client=payment_client,
        currency=settings.payment_processor.currency,
    )
    state.payee_gateway = payee_gateway
    state.escrow_coordinator = escrow_coordinator
    state.payment_client = payment_client

    offer_ledger = OfferLedger(store=task_store, activity_log=activity_log)
    state.offer_ledger = offer_ledger

    task_manager = TaskManager(
        store=task_store,
        user_store=user_store,
        offer_ledger=offer_ledger,
        payee_gateway=payee_gateway,
        escrow_coordinator=escrow_coordinator,
        activity_log=activity_log,
        pricing=settings.pricing,
        tasks_config=settings.tasks,
        frontend_url=frontend_url,
    )
    state.task_manager = task_manager

    billing_manager = BillingManager(
        store=task_store,
        user_store=user_store,
        escrow_coordinator=escrow_coordinator,
        activity_log=activity_log,
        platform_fee_percent=settings.pricing.platform_fee_percent,
        frontend_url=frontend_url,
    )
    state.billing_manager = billing_manager

    state.dispute_ledger = DisputeLedger(store=task_store, activity_log=activity_log)
    state.chat_service = ChatService(store=task_store)
    state.payment_webhook = PaymentWebhook(
        task_manager=task_manager,
        billing_manager=billing_manager,
        store=task_store,
        webhook_secret=settings.payment_processor.webhook_secret,
        tolerance_seconds=settings.payment_processor.webhook_tolerance_seconds,
    )
    state.price_sweep = PriceAdjustmentSweep(
        store=task_store,
        activity_log=activity_log,
        prompt_after_hours=settings.tasks.price_prompt_after_hours,
    )


async def close_services(state: AppState) -> None:
    """Release database connections and the HTTP client."""
    if state.task_store is not None:
        state.task_store.close()
    if state.user_store is not None:
        state.user_store.close()
    if state.activity_log is not None:
        state.activity_log.close()
    if state.payment_client is not None:
        await state.payment_client.close()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()
    build_services(settings, state)

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "payment_processor_base_url": settings.payment_processor.base_url,
            "platform_fee_percent": str(settings.pricing.platform_fee_percent),
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})
    await close_services(state)
