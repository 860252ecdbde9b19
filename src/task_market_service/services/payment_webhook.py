"""Signed payment processor webhook: verification and event dispatch."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import TYPE_CHECKING, Any, NamedTuple

from task_market_service.core.exceptions import (
    UnreconciledEventError,
    ValidationError,
    WebhookSignatureError,
)
from task_market_service.logging import get_logger
from task_market_service.services.timestamps import now_iso, utc_now

if TYPE_CHECKING:
    from task_market_service.services.billing_manager import BillingManager
    from task_market_service.services.task_manager import TaskManager
    from task_market_service.services.task_store import TaskStore

CHECKOUT_COMPLETED = "checkout.session.completed"


class SignatureHeader(NamedTuple):
    """Parsed `t=<ts>,v1=<sig>[,v1=<sig>...]` header."""

    timestamp: int
    signatures: list[str]


def parse_signature_header(header: str | None) -> SignatureHeader:
    """Split a signature header into its timestamp and v1 signatures."""
    if not header:
        raise WebhookSignatureError("Missing signature header")

    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise WebhookSignatureError("Invalid signature timestamp") from exc
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None or len(signatures) == 0:
        raise WebhookSignatureError("Malformed signature header")
    return SignatureHeader(timestamp=timestamp, signatures=signatures)


def compute_signature(secret: str, timestamp: int, payload: bytes) -> str:
    """Hex HMAC-SHA256 of "<timestamp>.<payload>" under the shared secret."""
    signed = str(timestamp).encode() + b"." + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int,
) -> None:
    """
    Check the signature header against the raw request body.

    Raises WebhookSignatureError when the header is missing or malformed,
    the timestamp is outside the tolerance window, or no v1 signature
    matches.
    """
    parsed = parse_signature_header(header)

    age_seconds = int(utc_now().timestamp()) - parsed.timestamp
    if abs(age_seconds) > tolerance_seconds:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    expected = compute_signature(secret, parsed.timestamp, payload)
    if not any(hmac.compare_digest(expected, candidate) for candidate in parsed.signatures):
        raise WebhookSignatureError("Signature does not match")


class PaymentWebhook:
    """
    Entry point for processor events.

    Only checkout completions change state. Events that verify but cannot
    be applied are stored for manual reconciliation and still acknowledged,
    so the processor does not keep retrying them.
    """

    def __init__(
        self,
        task_manager: TaskManager,
        billing_manager: BillingManager,
        store: TaskStore,
        webhook_secret: str,
        tolerance_seconds: int,
    ) -> None:
        self._task_manager = task_manager
        self._billing_manager = billing_manager
        self._store = store
        self._webhook_secret = webhook_secret
        self._tolerance_seconds = tolerance_seconds
        self._logger = get_logger(__name__)

    async def handle(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """Verify, parse and apply one webhook delivery."""
        verify_signature(payload, signature_header, self._webhook_secret, self._tolerance_seconds)

        try:
            event = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValidationError("Webhook payload is not valid JSON", code="INVALID_JSON") from exc
        if not isinstance(event, dict):
            raise ValidationError("Webhook payload must be a JSON object", code="INVALID_JSON")

        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            self._logger.info("Ignoring webhook event", extra={"event_type": event_type})
            return {"received": True}

        data = event.get("data")
        session = data.get("object") if isinstance(data, dict) else None
        if not isinstance(session, dict) or "id" not in session:
            self._record_unreconciled(event, None, "missing_session")
            return {"received": True}

        try:
            await self._dispatch(session)
        except UnreconciledEventError as exc:
            self._record_unreconciled(event, str(session["id"]), exc.reason)
        return {"received": True}

    async def _dispatch(self, session: dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        kind = metadata.get("type")
        if kind == "tip":
            self._billing_manager.confirm_tip_paid(session)
        elif kind == "extra_work":
            self._billing_manager.confirm_extra_work_paid(session)
        else:
            await self._task_manager.confirm_hire(session)

    def _record_unreconciled(
        self,
        event: dict[str, Any],
        session_id: str | None,
        reason: str,
    ) -> None:
        self._logger.error(
            "Payment event could not be reconciled",
            extra={"event_id": event.get("id"), "session_id": session_id, "reason": reason},
        )
        self._store.insert_unreconciled_event(
            {
                "event_id": event.get("id"),
                "event_type": str(event.get("type")),
                "session_id": session_id,
                "reason": reason,
                "payload": json.dumps(event),
                "created_at": now_iso(),
            }
        )
