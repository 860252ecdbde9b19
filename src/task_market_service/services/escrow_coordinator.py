"""Escrowed checkout holds for hires, extra work and tips."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, NamedTuple

from task_market_service.core.exceptions import PaymentError
from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from task_market_service.clients.payment_processor_client import PaymentProcessorClient

HoldKind = Literal["hire", "extra_work", "tip"]


class HoldSession(NamedTuple):
    """A created checkout session awaiting payer completion."""

    session_id: str
    checkout_url: str


class EscrowCoordinator:
    """
    Requests processor holds and reads back completed ones.

    The hold kind is written verbatim into the session metadata under
    "type"; the webhook routes on it when the payment completes.
    """

    def __init__(self, client: PaymentProcessorClient, currency: str) -> None:
        self._client = client
        self._currency = currency
        self._logger = get_logger(__name__)

    async def create_hold(
        self,
        *,
        kind: HoldKind,
        amount_cents: int,
        title: str,
        description: str | None,
        metadata: dict[str, str],
        destination_account_id: str | None,
        platform_fee_cents: int | None,
        customer_email: str | None,
        success_url: str,
        cancel_url: str,
    ) -> HoldSession:
        """
        Create a checkout session holding amount_cents.

        With a destination account the captured funds transfer to it, minus
        platform_fee_cents when given. Without one, the platform keeps the
        full charge.

        Raises PaymentError (502) on any processor failure.
        """
        session_metadata = {**metadata, "type": kind}

        product_data: dict[str, Any] = {"name": title}
        if description:
            product_data["description"] = description[:500]

        payment_intent_data: dict[str, Any] = {"metadata": session_metadata}
        if destination_account_id is not None:
            payment_intent_data["transfer_data"] = {"destination": destination_account_id}
            if platform_fee_cents is not None:
                payment_intent_data["application_fee_amount"] = platform_fee_cents

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self._currency,
                        "product_data": product_data,
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "customer_email": customer_email,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": session_metadata,
            "payment_intent_data": payment_intent_data,
        }

        try:
            session = await self._client.create_checkout_session(params)
        except PaymentError:
            raise
        except Exception as exc:
            raise PaymentError("Payment processor checkout failed") from exc

        self._logger.info(
            "Checkout hold created",
            extra={
                "kind": kind,
                "session_id": session["id"],
                "amount_cents": amount_cents,
                "platform_fee_cents": platform_fee_cents,
            },
        )
        return HoldSession(session_id=str(session["id"]), checkout_url=str(session["url"]))

    async def retrieve_charge_id(self, payment_intent_id: str) -> str | None:
        """Return the latest charge id of a completed payment intent."""
        try:
            intent = await self._client.retrieve_payment_intent(payment_intent_id)
        except PaymentError:
            raise
        except Exception as exc:
            raise PaymentError("Payment processor lookup failed") from exc

        latest_charge = intent.get("latest_charge")
        if isinstance(latest_charge, dict):
            return str(latest_charge["id"])
        if latest_charge is None:
            return None
        return str(latest_charge)
