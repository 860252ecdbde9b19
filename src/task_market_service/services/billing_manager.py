"""Extra-work billing and tips on already-hired tasks."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    UnreconciledEventError,
    ValidationError,
)
from task_market_service.logging import get_logger
from task_market_service.services.fees import (
    MAX_AMOUNT_LABEL,
    from_cents,
    parse_amount,
    split_fee,
    to_cents,
)
from task_market_service.services.task_store import PendingExtraWorkError
from task_market_service.services.timestamps import now_iso

if TYPE_CHECKING:
    from decimal import Decimal

    from task_market_service.services.activity_log import ActivityLog
    from task_market_service.services.escrow_coordinator import EscrowCoordinator
    from task_market_service.services.task_store import TaskStore
    from task_market_service.services.user_store import UserStore

_EXTRA_WORK_REQUEST_STATUSES: tuple[str, ...] = ("accepted", "in_progress")
_EXTRA_WORK_ACCEPT_STATUSES: tuple[str, ...] = ("accepted", "in_progress", "worker_marked_done")
_MAX_REASON_LENGTH = 2000


def _positive_cents(value: object, label: str) -> int:
    amount = parse_amount(value)
    if amount is None or to_cents(amount) <= 0:
        raise ValidationError(
            f"{label} must be greater than zero and at most {MAX_AMOUNT_LABEL}",
            code="INVALID_AMOUNT",
        )
    return to_cents(amount)


def _extra_work_to_response(request: dict[str, Any]) -> dict[str, Any]:
    return {**request, "amount": from_cents(request["amount_cents"])}


class BillingManager:
    """
    Extra-work and tip state machines layered on a hired task.

    Each produces its own escrowed hold. Nothing is stored when the
    processor call fails; the paid transitions are applied only by the
    payment webhook.
    """

    def __init__(
        self,
        store: TaskStore,
        user_store: UserStore,
        escrow_coordinator: EscrowCoordinator,
        activity_log: ActivityLog,
        platform_fee_percent: Decimal,
        frontend_url: str,
    ) -> None:
        self._store = store
        self._user_store = user_store
        self._escrow_coordinator = escrow_coordinator
        self._activity_log = activity_log
        self._platform_fee_percent = platform_fee_percent
        self._frontend_url = frontend_url.rstrip("/")
        self._logger = get_logger(__name__)

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
        return task

    def _load_extra_work(self, request_id: str) -> dict[str, Any]:
        request = self._store.get_extra_work(request_id)
        if request is None:
            raise NotFoundError("Extra work request not found", code="EXTRA_WORK_NOT_FOUND")
        return request

    def _success_url(self, kind: str) -> str:
        return f"{self._frontend_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}&type={kind}"

    # ------------------------------------------------------------------
    # Extra work
    # ------------------------------------------------------------------

    def request_extra_work(
        self,
        task_id: str,
        actor: dict[str, Any],
        amount: object,
        reason: str | None,
        photo_urls: list[str],
    ) -> dict[str, Any]:
        """
        Helper asks the poster for additional payment.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: actor is not the hired helper
        3. INVALID_STATE: task not accepted/in_progress
        4. INVALID_AMOUNT / VALIDATION_ERROR (reason)
        5. EXTRA_WORK_PENDING: another request awaits a response
        """
        task = self._load_task(task_id)
        if task["helper_id"] is None or actor["id"] != task["helper_id"]:
            raise AuthorizationError("Only the hired helper can request extra work")
        if task["status"] not in _EXTRA_WORK_REQUEST_STATUSES:
            raise InvalidStateError(
                f"Cannot request extra work on a task in '{task['status']}' status"
            )

        amount_cents = _positive_cents(amount, "Amount")
        reason_text = (reason or "").strip()
        if reason_text == "":
            raise ValidationError("Reason is required")
        if len(reason_text) > _MAX_REASON_LENGTH:
            raise ValidationError(f"Reason must be at most {_MAX_REASON_LENGTH} characters")

        request = {
            "id": f"ew-{uuid.uuid4()}",
            "task_id": task_id,
            "helper_id": actor["id"],
            "amount_cents": amount_cents,
            "reason": reason_text,
            "photo_urls": photo_urls,
            "status": "pending",
            "checkout_session_id": None,
            "payment_intent_id": None,
            "platform_fee_cents": None,
            "created_at": now_iso(),
            "responded_at": None,
            "paid_at": None,
        }
        try:
            self._store.insert_extra_work(request)
        except PendingExtraWorkError as exc:
            raise ValidationError(
                "An extra work request is already awaiting a response",
                code="EXTRA_WORK_PENDING",
            ) from exc

        self._activity_log.record(
            "extra_work_requested",
            user_id=actor["id"],
            task_id=task_id,
            details={"extra_work_id": request["id"], "amount_cents": amount_cents},
        )
        return _extra_work_to_response(request)

    def list_extra_work(self, task_id: str, actor: dict[str, Any]) -> list[dict[str, Any]]:
        task = self._load_task(task_id)
        if actor["id"] not in (task["poster_id"], task["helper_id"]):
            raise AuthorizationError("Only the poster or hired helper can view extra work")
        return [_extra_work_to_response(r) for r in self._store.list_extra_work(task_id)]

    async def accept_extra_work(self, request_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        """
        Poster accepts a pending request and is sent to checkout for it.

        The fee split applies only when the current helper has a payee
        account; otherwise the full amount is charged to the platform.

        Error precedence:
        1. EXTRA_WORK_NOT_FOUND
        2. FORBIDDEN: actor is not the poster
        3. INVALID_STATE: request not pending, or task no longer hired
        4. PAYMENT_ERROR: processor failure, nothing stored
        """
        request = self._load_extra_work(request_id)
        task = self._load_task(request["task_id"])
        if actor["id"] != task["poster_id"]:
            raise AuthorizationError("Only the poster can accept extra work")
        if request["status"] != "pending":
            raise InvalidStateError(
                f"Cannot accept an extra work request in '{request['status']}' status"
            )
        if task["status"] not in _EXTRA_WORK_ACCEPT_STATUSES:
            raise InvalidStateError(
                f"Cannot accept extra work on a task in '{task['status']}' status"
            )

        helper = self._user_store.get_user(task["helper_id"]) if task["helper_id"] else None
        destination = helper["payee_account_id"] if helper is not None else None
        platform_fee_cents: int | None = None
        if destination:
            platform_fee_cents = split_fee(
                request["amount_cents"], self._platform_fee_percent
            ).platform_fee_cents

        hold = await self._escrow_coordinator.create_hold(
            kind="extra_work",
            amount_cents=request["amount_cents"],
            title=f"Extra work: {task['title']}",
            description=request["reason"],
            metadata={"taskId": task["id"], "extraWorkRequestId": request_id},
            destination_account_id=destination or None,
            platform_fee_cents=platform_fee_cents,
            customer_email=actor.get("email"),
            success_url=self._success_url("extra_work"),
            cancel_url=f"{self._frontend_url}/payment/cancel?task_id={task['id']}",
        )

        changed = self._store.update_extra_work(
            request_id,
            {
                "status": "accepted",
                "checkout_session_id": hold.session_id,
                "platform_fee_cents": platform_fee_cents,
                "responded_at": now_iso(),
            },
            expected_status="pending",
        )
        if changed == 0:
            raise InvalidStateError("Extra work request was already answered")

        self._activity_log.record(
            "extra_work_accepted",
            user_id=actor["id"],
            task_id=task["id"],
            details={"extra_work_id": request_id, "session_id": hold.session_id},
        )
        updated = self._load_extra_work(request_id)
        return {
            "checkout_url": hold.checkout_url,
            "session_id": hold.session_id,
            "extra_work": _extra_work_to_response(updated),
        }

    def decline_extra_work(self, request_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        """Poster declines a pending request; the task keeps its original price."""
        request = self._load_extra_work(request_id)
        task = self._load_task(request["task_id"])
        if actor["id"] != task["poster_id"]:
            raise AuthorizationError("Only the poster can decline extra work")
        if request["status"] != "pending":
            raise InvalidStateError(
                f"Cannot decline an extra work request in '{request['status']}' status"
            )
        changed = self._store.update_extra_work(
            request_id,
            {"status": "rejected", "responded_at": now_iso()},
            expected_status="pending",
        )
        if changed == 0:
            raise InvalidStateError("Extra work request was already answered")
        self._activity_log.record(
            "extra_work_declined",
            user_id=actor["id"],
            task_id=task["id"],
            details={"extra_work_id": request_id},
        )
        return _extra_work_to_response(self._load_extra_work(request_id))

    def confirm_extra_work_paid(self, session: dict[str, Any]) -> dict[str, Any]:
        """Apply a completed extra-work checkout. Idempotent per checkout session."""
        session_id = str(session["id"])
        metadata = session.get("metadata") or {}
        request_id = metadata.get("extraWorkRequestId")
        if not request_id:
            raise UnreconciledEventError(
                "missing_extra_work_id",
                "Checkout session has no extraWorkRequestId",
            )
        request = self._store.get_extra_work(request_id)
        if request is None:
            raise UnreconciledEventError(
                "extra_work_not_found",
                f"Extra work request {request_id} not found",
            )
        if request["status"] == "paid" and request["checkout_session_id"] == session_id:
            self._logger.info(
                "Duplicate extra work confirmation ignored",
                extra={"extra_work_id": request_id, "session_id": session_id},
            )
            return _extra_work_to_response(request)

        payment_intent = session.get("payment_intent")
        applied = self._store.mark_extra_work_paid(
            request_id,
            session_id,
            str(payment_intent) if payment_intent else None,
            now_iso(),
        )
        if not applied:
            current = self._store.get_extra_work(request_id)
            if (
                current is not None
                and current["status"] == "paid"
                and current["checkout_session_id"] == session_id
            ):
                return _extra_work_to_response(current)
            raise UnreconciledEventError(
                "extra_work_session_mismatch",
                f"Extra work request {request_id} is not awaiting this payment",
            )

        self._activity_log.record(
            "extra_work_paid",
            task_id=request["task_id"],
            details={"extra_work_id": request_id, "amount_cents": request["amount_cents"]},
        )
        return _extra_work_to_response(self._load_extra_work(request_id))

    # ------------------------------------------------------------------
    # Tips
    # ------------------------------------------------------------------

    async def create_tip(self, task_id: str, actor: dict[str, Any], amount: object) -> dict[str, Any]:
        """
        Poster tips the helper of a completed task, once. No platform fee.

        A tip whose checkout was never paid can be replaced by a new one; a
        late payment of the abandoned session is then left unreconciled.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: actor is not the poster
        3. INVALID_STATE: task not completed
        4. INVALID_AMOUNT
        5. TIP_EXISTS: a tip has already been paid
        6. PAYMENT_ERROR: processor failure, nothing stored
        """
        task = self._load_task(task_id)
        if actor["id"] != task["poster_id"]:
            raise AuthorizationError("Only the poster can tip the helper")
        if task["status"] != "completed":
            raise InvalidStateError("Tips can only be given on completed tasks")
        amount_cents = _positive_cents(amount, "Tip amount")
        if task["tip_status"] == "paid":
            raise ValidationError("Tip already given for this task", code="TIP_EXISTS")
        previous_session_id = task["tip_checkout_session_id"]

        helper = self._user_store.get_user(task["helper_id"]) if task["helper_id"] else None
        destination = helper["payee_account_id"] if helper is not None else None

        hold = await self._escrow_coordinator.create_hold(
            kind="tip",
            amount_cents=amount_cents,
            title=f"Tip for: {task['title']}",
            description=None,
            metadata={"taskId": task_id, "tipAmount": f"{from_cents(amount_cents):.2f}"},
            destination_account_id=destination or None,
            platform_fee_cents=None,
            customer_email=actor.get("email"),
            success_url=self._success_url("tip"),
            cancel_url=f"{self._frontend_url}/payment/cancel?task_id={task_id}",
        )

        changed = self._store.update_task(
            task_id,
            {
                "tip_amount_cents": amount_cents,
                "tip_status": "pending",
                "tip_checkout_session_id": hold.session_id,
                "tip_created_at": now_iso(),
            },
            expected_status="completed",
            where={
                "tip_checkout_session_id": previous_session_id,
                "tip_status": task["tip_status"],
            },
        )
        if changed == 0:
            raise ValidationError("Tip already given for this task", code="TIP_EXISTS")
        if previous_session_id is not None:
            self._logger.info(
                "Unpaid tip checkout replaced",
                extra={"task_id": task_id, "session_id": hold.session_id},
            )

        self._activity_log.record(
            "tip_requested",
            user_id=actor["id"],
            task_id=task_id,
            details={"amount_cents": amount_cents, "session_id": hold.session_id},
        )
        return {"checkout_url": hold.checkout_url, "session_id": hold.session_id}

    def confirm_tip_paid(self, session: dict[str, Any]) -> dict[str, Any]:
        """Apply a completed tip checkout. Idempotent per checkout session."""
        session_id = str(session["id"])
        metadata = session.get("metadata") or {}
        task_id = metadata.get("taskId")
        task = self._store.get_task(task_id) if task_id else None
        if task is None:
            raise UnreconciledEventError("task_not_found", f"Task {task_id} not found")
        if task["tip_checkout_session_id"] != session_id:
            raise UnreconciledEventError(
                "tip_session_mismatch",
                f"Task {task_id} has no tip awaiting this payment",
            )
        if task["tip_status"] == "paid":
            self._logger.info(
                "Duplicate tip confirmation ignored",
                extra={"task_id": task_id, "session_id": session_id},
            )
            return {"task_id": task_id, "tip_status": "paid"}

        payment_intent = session.get("payment_intent")
        self._store.update_task(
            task_id,
            {
                "tip_status": "paid",
                "tip_paid_at": now_iso(),
                "tip_payment_intent_id": str(payment_intent) if payment_intent else None,
            },
            expected_status=None,
            where={"tip_checkout_session_id": session_id, "tip_status": "pending"},
        )
        self._activity_log.record(
            "tip_paid",
            task_id=task_id,
            details={"amount_cents": task["tip_amount_cents"]},
        )
        return {"task_id": task_id, "tip_status": "paid"}
