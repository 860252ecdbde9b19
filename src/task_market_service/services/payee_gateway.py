"""Payee account onboarding and payout capability checks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import PayeeSetupError, PaymentError
from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from task_market_service.clients.payment_processor_client import PaymentProcessorClient
    from task_market_service.services.user_store import UserStore


class PayeeGateway:
    """Wraps connected-account creation, onboarding links and status reads."""

    def __init__(
        self,
        client: PaymentProcessorClient,
        store: UserStore,
        frontend_url: str,
    ) -> None:
        self._client = client
        self._store = store
        self._frontend_url = frontend_url.rstrip("/")
        self._logger = get_logger(__name__)

    async def ensure_payee_account(self, user: dict[str, Any]) -> str:
        """Return the user's payee account id, creating and persisting one if missing."""
        if user.get("payee_account_id"):
            return str(user["payee_account_id"])

        try:
            account = await self._client.create_account(user.get("email"))
        except PaymentError as exc:
            raise PayeeSetupError(
                "Could not create payout account",
                status_code=502,
                code="PAYEE_ACCOUNT_CREATE_FAILED",
            ) from exc

        account_id = str(account["id"])
        if not self._store.set_payee_account_if_missing(user["id"], account_id):
            # A concurrent call stored its account first; keep that one.
            current = self._store.get_user(user["id"])
            if current is None or not current["payee_account_id"]:
                raise PayeeSetupError("User not found", status_code=400, code="USER_NOT_FOUND")
            self._logger.warning(
                "Discarding duplicate payee account",
                extra={"user_id": user["id"], "account_id": account_id},
            )
            return str(current["payee_account_id"])

        user["payee_account_id"] = account_id
        self._logger.info(
            "Payee account created",
            extra={"user_id": user["id"], "account_id": account_id},
        )
        return account_id

    async def start_onboarding(self, user: dict[str, Any]) -> dict[str, Any]:
        """Create (if needed) the payee account and return a fresh onboarding link."""
        if user.get("is_stub"):
            raise PayeeSetupError("User not found", code="USER_NOT_FOUND")
        account_id = await self.ensure_payee_account(user)
        try:
            link = await self._client.create_account_link(
                account_id,
                refresh_url=f"{self._frontend_url}/payouts/refresh",
                return_url=f"{self._frontend_url}/payouts/return",
            )
        except PaymentError as exc:
            raise PayeeSetupError(
                "Could not start payout onboarding",
                status_code=502,
                code="PAYEE_ONBOARDING_FAILED",
            ) from exc
        return {"url": link["url"], "account_id": account_id}

    async def get_status(self, user: dict[str, Any]) -> dict[str, Any]:
        """Report payout capability; no processor call when no account is stored."""
        account_id = user.get("payee_account_id")
        if not account_id:
            return {
                "has_account": False,
                "is_onboarded": False,
                "charges_enabled": False,
                "payouts_enabled": False,
            }
        try:
            account = await self._client.retrieve_account(str(account_id))
        except PaymentError as exc:
            raise PayeeSetupError(
                "Could not read payout account status",
                status_code=502,
                code="PAYEE_STATUS_UNAVAILABLE",
            ) from exc
        charges_enabled = bool(account.get("charges_enabled"))
        return {
            "has_account": True,
            "is_onboarded": bool(account.get("details_submitted")) and charges_enabled,
            "charges_enabled": charges_enabled,
            "payouts_enabled": bool(account.get("payouts_enabled")),
        }

    async def require_payouts_enabled(self, user: dict[str, Any]) -> str:
        """Return the payee account id, or fail if the user cannot receive funds."""
        status = await self.get_status(user)
        if not status["has_account"]:
            raise PayeeSetupError(
                "Helper has not set up payouts yet",
                code="PAYEE_NOT_CONFIGURED",
            )
        if not status["payouts_enabled"]:
            raise PayeeSetupError(
                "Helper's payout account cannot receive funds yet",
                code="PAYOUTS_DISABLED",
            )
        return str(user["payee_account_id"])
