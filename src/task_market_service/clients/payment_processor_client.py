"""Async HTTP client for the payment processor REST API."""

from __future__ import annotations

from typing import Any

import httpx

from task_market_service.core.exceptions import PaymentError
from task_market_service.logging import get_logger


def encode_form(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """
    Flatten nested params into bracketed form fields.

    {"metadata": {"taskId": "t-1"}, "line_items": [{"quantity": 1}]} becomes
    [("metadata[taskId]", "t-1"), ("line_items[0][quantity]", "1")].
    None values are dropped; booleans are sent as "true"/"false".
    """
    fields: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            fields.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_name = f"{name}[{index}]"
                if isinstance(item, dict):
                    fields.extend(encode_form(item, item_name))
                else:
                    fields.append((item_name, str(item)))
        elif isinstance(value, bool):
            fields.append((name, "true" if value else "false"))
        else:
            fields.append((name, str(value)))
    return fields


class PaymentProcessorClient:
    """
    Client for the processor's connected-account and checkout primitives.

    Every call is bounded by the configured timeout. Transport failures and
    non-2xx responses surface as PaymentError (502); callers translate them
    to their own error where the taxonomy calls for it.
    """

    def __init__(self, base_url: str, secret_key: str, timeout_seconds: int) -> None:
        self._base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Authorization": f"Bearer {secret_key}"},
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        logger = get_logger(__name__)
        try:
            if method == "GET":
                response = await self._client.get(path)
            else:
                response = await self._client.post(path, data=dict(encode_form(params or {})))
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Payment processor connection failed",
                extra={"error": str(exc), "base_url": self._base_url, "path": path},
            )
            raise PaymentError(
                "Cannot connect to payment processor",
                code="PAYMENT_PROCESSOR_UNAVAILABLE",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Payment processor HTTP error",
                extra={"error": str(exc), "base_url": self._base_url, "path": path},
            )
            raise PaymentError(
                "Payment processor request failed",
                code="PAYMENT_PROCESSOR_UNAVAILABLE",
            ) from exc

        if 200 <= response.status_code < 300:
            result: dict[str, Any] = response.json()
            return result

        processor_message = ""
        try:
            error_body = response.json()
            error = error_body.get("error") if isinstance(error_body, dict) else None
            if isinstance(error, dict):
                processor_message = str(error.get("message", ""))
        except ValueError:
            processor_message = response.text[:200]

        logger.warning(
            "Payment processor rejected request",
            extra={
                "status_code": response.status_code,
                "path": path,
                "processor_message": processor_message,
            },
        )
        raise PaymentError(
            "Payment processor rejected the request",
            code="PAYMENT_PROCESSOR_ERROR",
        )

    # ------------------------------------------------------------------
    # Connected accounts
    # ------------------------------------------------------------------

    async def create_account(self, email: str | None) -> dict[str, Any]:
        """Create an express connected account able to receive transfers."""
        return await self._request(
            "POST",
            "/v1/accounts",
            {
                "type": "express",
                "email": email,
                "capabilities": {
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
            },
        )

    async def create_account_link(
        self,
        account_id: str,
        refresh_url: str,
        return_url: str,
    ) -> dict[str, Any]:
        """Create a time-boxed onboarding link for a connected account."""
        return await self._request(
            "POST",
            "/v1/account_links",
            {
                "account": account_id,
                "refresh_url": refresh_url,
                "return_url": return_url,
                "type": "account_onboarding",
            },
        )

    async def retrieve_account(self, account_id: str) -> dict[str, Any]:
        """Read a connected account's capability flags."""
        return await self._request("GET", f"/v1/accounts/{account_id}")

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_checkout_session(self, params: dict[str, Any]) -> dict[str, Any]:
        """Create a hosted checkout session."""
        return await self._request("POST", "/v1/checkout/sessions", params)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        """Read a payment intent, including its latest charge reference."""
        return await self._request("GET", f"/v1/payment_intents/{payment_intent_id}")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
