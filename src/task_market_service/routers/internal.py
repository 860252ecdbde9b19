"""Scheduler and operator endpoints guarded by a shared secret."""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.config import get_settings
from task_market_service.core.exceptions import AuthenticationError
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import optional_str, read_json, required_str
from task_market_service.schemas import PriceSweepResponse

router = APIRouter()


def _require_internal_secret(request: Request) -> None:
    received = request.headers.get("x-internal-secret")
    expected = get_settings().internal.cron_secret
    if received is None or not hmac.compare_digest(received, expected):
        raise AuthenticationError("Invalid internal secret")


@router.post("/internal/sweeps/price-adjustment", response_model=PriceSweepResponse)
async def run_price_sweep(request: Request) -> PriceSweepResponse:
    """Flag stale offer-less tasks for a price prompt."""
    _require_internal_secret(request)

    state = get_app_state()
    if state.price_sweep is None:
        msg = "PriceAdjustmentSweep not initialized"
        raise RuntimeError(msg)

    flagged = state.price_sweep.run_once()
    return PriceSweepResponse(flagged_count=len(flagged), task_ids=flagged)


@router.post("/internal/disputes/{dispute_id}/resolution")
async def record_resolution(dispute_id: str, request: Request) -> JSONResponse:
    """Record an operator's decision on a dispute."""
    _require_internal_secret(request)
    data = await read_json(request)

    state = get_app_state()
    if state.dispute_ledger is None:
        msg = "DisputeLedger not initialized"
        raise RuntimeError(msg)

    result = state.dispute_ledger.record_resolution(
        dispute_id,
        required_str(data, "status"),
        optional_str(data, "resolution"),
        data.get("amount_released"),
        data.get("amount_refunded"),
    )
    return JSONResponse(status_code=200, content=result)
