"""Service layer components."""

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

__all__ = [
    "ActivityLog",
    "BillingManager",
    "ChatService",
    "DisputeLedger",
    "EscrowCoordinator",
    "IdentityManager",
    "OfferLedger",
    "PayeeGateway",
    "PaymentWebhook",
    "PriceAdjustmentSweep",
    "TaskManager",
    "TaskStore",
    "UserManager",
    "UserStore",
]
