"""HTTP clients for the external payment processor."""

from task_market_service.clients.payment_processor_client import PaymentProcessorClient

__all__ = ["PaymentProcessorClient"]
