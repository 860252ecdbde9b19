"""Payment processor webhook endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state

router = APIRouter()


@router.post("/webhooks/payments")
async def payment_webhook(request: Request) -> JSONResponse:
    """Receive a signed processor event; the raw body is verified before parsing."""
    payload = await request.body()

    state = get_app_state()
    if state.payment_webhook is None:
        msg = "PaymentWebhook not initialized"
        raise RuntimeError(msg)

    result = await state.payment_webhook.handle(payload, request.headers.get("stripe-signature"))
    return JSONResponse(status_code=200, content=result)
