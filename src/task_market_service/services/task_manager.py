"""Task lifecycle management: the task state machine and hire escrow saga."""

from __future__ import annotations

import secrets
import string
import uuid
from datetime import timedelta
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
    EMERGENCY_CATEGORY,
    MAX_AMOUNT_LABEL,
    TASK_CATEGORIES,
    from_cents,
    minimum_price_cents,
    parse_amount,
    split_fee,
    to_cents,
)
from task_market_service.services.task_store import DuplicateConfirmationCodeError
from task_market_service.services.timestamps import now_iso, to_iso, utc_now

if TYPE_CHECKING:
    from task_market_service.config import PricingConfig, TasksConfig
    from task_market_service.services.activity_log import ActivityLog
    from task_market_service.services.escrow_coordinator import EscrowCoordinator
    from task_market_service.services.offer_ledger import OfferLedger
    from task_market_service.services.payee_gateway import PayeeGateway
    from task_market_service.services.task_store import TaskStore
    from task_market_service.services.user_store import UserStore

_CONFIRMATION_ALPHABET = string.ascii_uppercase + string.digits
_CONFIRMATION_CODE_LENGTH = 6
_CONFIRMATION_CODE_ATTEMPTS = 5

# Statuses in which a hired task is still underway
_HIRED_STATUSES: tuple[str, ...] = ("accepted", "in_progress", "worker_marked_done")

# Fields shown only to the poster and the hired helper
_PRIVATE_FIELDS = ("full_address", "poster_email", "confirmation_code")


def _new_confirmation_code() -> str:
    return "".join(
        secrets.choice(_CONFIRMATION_ALPHABET) for _ in range(_CONFIRMATION_CODE_LENGTH)
    )


def _task_to_response(task: dict[str, Any]) -> dict[str, Any]:
    """Add decimal money views to a task row."""
    response = dict(task)
    response["price"] = from_cents(task["price_cents"])
    response["platform_fee"] = (
        from_cents(task["platform_fee_cents"]) if task["platform_fee_cents"] is not None else None
    )
    response["helper_amount"] = (
        from_cents(task["helper_amount_cents"]) if task["helper_amount_cents"] is not None else None
    )
    response["extra_amount_paid"] = from_cents(task["extra_amount_paid_cents"])
    response["tip_amount"] = (
        from_cents(task["tip_amount_cents"]) if task["tip_amount_cents"] is not None else None
    )
    return response


def _task_to_summary(task: dict[str, Any]) -> dict[str, Any]:
    """Public view of a task for discovery lists."""
    response = _task_to_response(task)
    for field_name in _PRIVATE_FIELDS:
        response.pop(field_name, None)
    return response


class TaskManager:
    """
    Manages the task lifecycle: creation, discovery, hire, progress,
    completion, cancellation and price adjustment.

    Every transition validates its precondition up front for a precise
    error, then re-checks it inside a conditional UPDATE; losing a race
    surfaces as InvalidStateError with the task untouched.
    """

    def __init__(
        self,
        store: TaskStore,
        user_store: UserStore,
        offer_ledger: OfferLedger,
        payee_gateway: PayeeGateway,
        escrow_coordinator: EscrowCoordinator,
        activity_log: ActivityLog,
        pricing: PricingConfig,
        tasks_config: TasksConfig,
        frontend_url: str,
    ) -> None:
        self._store = store
        self._user_store = user_store
        self._offer_ledger = offer_ledger
        self._payee_gateway = payee_gateway
        self._escrow_coordinator = escrow_coordinator
        self._activity_log = activity_log
        self._pricing = pricing
        self._tasks_config = tasks_config
        self._frontend_url = frontend_url.rstrip("/")
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
        return task

    def _reload(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task

    @staticmethod
    def _require_poster(task: dict[str, Any], actor: dict[str, Any], action: str) -> None:
        if actor["id"] != task["poster_id"]:
            raise AuthorizationError(f"Only the poster can {action}")

    @staticmethod
    def _require_helper(task: dict[str, Any], actor: dict[str, Any], action: str) -> None:
        if task["helper_id"] is None or actor["id"] != task["helper_id"]:
            raise AuthorizationError(f"Only the hired helper can {action}")

    @staticmethod
    def _require_status(task: dict[str, Any], allowed: tuple[str, ...], action: str) -> None:
        if task["status"] not in allowed:
            raise InvalidStateError(
                f"Cannot {action} a task in '{task['status']}' status",
            )

    def _apply_transition(
        self,
        task_id: str,
        updates: dict[str, Any],
        allowed: tuple[str, ...],
        action: str,
    ) -> dict[str, Any]:
        changed = self._store.update_task(task_id, updates, expected_status=allowed)
        if changed == 0:
            current = self._reload(task_id)
            raise InvalidStateError(f"Cannot {action} a task in '{current['status']}' status")
        return self._reload(task_id)

    def _minimum_price_cents(self, category: str) -> int:
        return minimum_price_cents(
            category,
            self._pricing.min_job_price_usd,
            self._pricing.emergency_min_price_usd,
        )

    def _validate_price(self, price: object, category: str) -> int:
        amount = parse_amount(price)
        if amount is None:
            raise ValidationError(
                f"Price is required and must be a number no greater than {MAX_AMOUNT_LABEL}",
                code="INVALID_PRICE",
            )
        price_cents = to_cents(amount)
        minimum = self._minimum_price_cents(category)
        if price_cents < minimum:
            if category == EMERGENCY_CATEGORY:
                message = f"Emergency tasks have a minimum price of ${minimum / 100:.2f}"
            else:
                message = f"Minimum task price is ${minimum / 100:.2f}"
            raise ValidationError(message, code="PRICE_BELOW_MINIMUM")
        return price_cents

    def _ensure_proof(self, task: dict[str, Any]) -> None:
        if task["photos_required"] and not self._store.has_proof_message(task["id"]):
            raise ValidationError(
                "Photo proof must be posted in the task chat before finishing this task",
                code="PROOF_REQUIRED",
            )

    # ------------------------------------------------------------------
    # Create and read
    # ------------------------------------------------------------------

    def create_task(self, actor: dict[str, Any], data: dict[str, Any]) -> dict[str, Any]:
        """
        Create a requested task owned by the actor.

        Error precedence:
        1. PROFILE_PHOTO_REQUIRED
        2. VALIDATION_ERROR: title, zip code
        3. INVALID_CATEGORY
        4. INVALID_PRICE / PRICE_BELOW_MINIMUM (inclusive minimum)
        """
        if not actor.get("profile_photo_url"):
            raise ValidationError(
                "Profile photo is required to post a task",
                code="PROFILE_PHOTO_REQUIRED",
            )

        title = (data.get("title") or "").strip()
        if title == "":
            raise ValidationError("Title is required")
        if len(title) > self._tasks_config.max_title_length:
            raise ValidationError(
                f"Title must be at most {self._tasks_config.max_title_length} characters"
            )

        zip_code = (data.get("zip_code") or "").strip()
        if zip_code == "":
            raise ValidationError("Zip code is required")

        category = data.get("category") or "other"
        if category not in TASK_CATEGORIES:
            raise ValidationError(f"Unknown category: {category}", code="INVALID_CATEGORY")

        price_cents = self._validate_price(data.get("price"), category)
        split = split_fee(price_cents, self._pricing.platform_fee_percent)

        photos = list(data.get("photos") or [])[: self._tasks_config.max_photos]

        created = utc_now()
        task_data: dict[str, Any] = {
            "id": f"t-{uuid.uuid4()}",
            "title": title,
            "description": data.get("description") or "",
            "category": category,
            "zip_code": zip_code,
            "area_description": data.get("area_description"),
            "full_address": data.get("full_address"),
            "price_cents": price_cents,
            "status": "requested",
            "poster_id": actor["id"],
            "poster_name": actor.get("name"),
            "poster_email": actor.get("email"),
            "poster_photo_url": actor.get("profile_photo_url"),
            "photos_required": bool(data.get("photos_required")),
            "tools_required": bool(data.get("tools_required")),
            "tools_provided": bool(data.get("tools_provided")),
            "license_required": bool(data.get("license_required")),
            "task_photo_url": data.get("task_photo_url"),
            "photos": photos,
            "platform_fee_cents": split.platform_fee_cents,
            "helper_amount_cents": split.payee_amount_cents,
            "payment_status": "pending",
            "created_at": to_iso(created),
            "expires_at": to_iso(created + timedelta(days=self._tasks_config.expiry_days)),
        }

        for _attempt in range(_CONFIRMATION_CODE_ATTEMPTS):
            task_data["confirmation_code"] = _new_confirmation_code()
            try:
                self._store.insert_task(task_data)
                break
            except DuplicateConfirmationCodeError:
                self._logger.info(
                    "Confirmation code collision, retrying",
                    extra={"task_id": task_data["id"]},
                )
        else:
            msg = "Could not allocate a unique confirmation code"
            raise RuntimeError(msg)

        self._activity_log.record(
            "task_created",
            user_id=actor["id"],
            task_id=task_data["id"],
            details={"category": category, "price_cents": price_cents},
        )
        self._logger.info(
            "Task created",
            extra={"task_id": task_data["id"], "poster_id": actor["id"], "category": category},
        )
        return _task_to_response(self._reload(task_data["id"]))

    def get_task(self, task_id: str, actor: dict[str, Any] | None = None) -> dict[str, Any]:
        """Task detail; private fields only for its poster and hired helper."""
        task = self._load_task(task_id)
        is_party = actor is not None and actor["id"] in (task["poster_id"], task["helper_id"])
        response = _task_to_response(task) if is_party else _task_to_summary(task)
        response["offer_count"] = self._store.count_offers(task_id)
        return response

    def list_tasks(
        self,
        *,
        status: str | None,
        zip_code: str | None,
        category: str | None,
        tools_required: bool | None,
        tools_provided: bool | None,
        include_expired: bool,
    ) -> list[dict[str, Any]]:
        """Discovery listing; emergency tasks first, then newest first."""
        if category == "All":
            category = None
        tasks = self._store.list_tasks(
            status=status,
            zip_code=zip_code,
            category=category,
            tools_required=tools_required,
            tools_provided=tools_provided,
            include_expired=include_expired,
            now=now_iso(),
        )
        return [_task_to_summary(task) for task in tasks]

    def list_posted(self, actor: dict[str, Any]) -> list[dict[str, Any]]:
        return [_task_to_response(task) for task in self._store.list_tasks_by_poster(actor["id"])]

    def list_jobs(self, actor: dict[str, Any]) -> list[dict[str, Any]]:
        return [_task_to_response(task) for task in self._store.list_tasks_by_helper(actor["id"])]

    # ------------------------------------------------------------------
    # Hire: request hold, then confirm on captured payment
    # ------------------------------------------------------------------

    async def choose_helper(
        self,
        task_id: str,
        actor: dict[str, Any],
        *,
        offer_id: str | None,
        helper_id: str | None,
    ) -> dict[str, Any]:
        """
        Request an escrow hold to hire the helper behind a pending offer.

        The task stays requested; payment_status becomes awaiting_capture
        until the processor confirms the hold.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: actor is not the poster
        3. INVALID_STATE: task not requested
        4. OFFER_NOT_FOUND: no pending offer for the helper
        5. HELPER_NOT_FOUND
        6. JOB_LIMIT_REACHED
        7. PAYEE_NOT_CONFIGURED / PAYOUTS_DISABLED
        8. PAYMENT_ERROR: processor failure, nothing stored
        """
        task = self._load_task(task_id)
        self._require_poster(task, actor, "choose a helper")
        self._require_status(task, ("requested",), "choose a helper for")

        if offer_id is not None:
            offer = self._store.get_offer(offer_id)
            if offer is not None and offer["task_id"] != task_id:
                offer = None
        elif helper_id is not None:
            offer = self._store.get_offer_for_helper(task_id, helper_id)
        else:
            raise ValidationError("offer_id or helper_id is required")

        if offer is None or offer["status"] != "pending":
            raise NotFoundError("No pending offer from this helper", code="OFFER_NOT_FOUND")

        helper = self._user_store.get_user(offer["helper_id"])
        if helper is None:
            raise NotFoundError("Helper not found", code="HELPER_NOT_FOUND")

        self._offer_ledger.check_job_capacity(helper["id"])
        destination = await self._payee_gateway.require_payouts_enabled(helper)

        split = split_fee(task["price_cents"], self._pricing.platform_fee_percent)
        hold = await self._escrow_coordinator.create_hold(
            kind="hire",
            amount_cents=split.amount_cents,
            title=task["title"],
            description=task["description"],
            metadata={
                "taskId": task_id,
                "posterId": task["poster_id"],
                "helperId": helper["id"],
                "offerId": offer["id"],
            },
            destination_account_id=destination,
            platform_fee_cents=split.platform_fee_cents,
            customer_email=actor.get("email"),
            success_url=f"{self._frontend_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self._frontend_url}/payment/cancel?task_id={task_id}",
        )

        changed = self._store.update_task(
            task_id,
            {
                "checkout_session_id": hold.session_id,
                "pending_helper_id": helper["id"],
                "pending_offer_id": offer["id"],
                "platform_fee_cents": split.platform_fee_cents,
                "helper_amount_cents": split.payee_amount_cents,
                "payment_status": "awaiting_capture",
            },
            expected_status="requested",
        )
        if changed == 0:
            current = self._reload(task_id)
            raise InvalidStateError(
                f"Cannot choose a helper for a task in '{current['status']}' status"
            )

        self._activity_log.record(
            "helper_chosen",
            user_id=actor["id"],
            task_id=task_id,
            offer_id=offer["id"],
            details={"helper_id": helper["id"], "session_id": hold.session_id},
        )
        return {
            "checkout_url": hold.checkout_url,
            "session_id": hold.session_id,
            "task": _task_to_response(self._reload(task_id)),
        }

    async def confirm_hire(self, session: dict[str, Any]) -> dict[str, Any]:
        """
        Apply a completed hire checkout. Idempotent per checkout session.

        Raises UnreconciledEventError when the session cannot be matched to
        a hireable task and helper.
        """
        session_id = str(session["id"])
        metadata = session.get("metadata") or {}
        task_id = metadata.get("taskId")
        if not task_id:
            raise UnreconciledEventError("missing_task_id", "Checkout session has no taskId")

        task = self._store.get_task(task_id)
        if task is None:
            raise UnreconciledEventError("task_not_found", f"Task {task_id} not found")

        if task["checkout_session_id"] == session_id and task["accepted_at"] is not None:
            self._logger.info(
                "Duplicate hire confirmation ignored",
                extra={"task_id": task_id, "session_id": session_id},
            )
            return _task_to_response(task)

        if task["checkout_session_id"] != session_id:
            raise UnreconciledEventError(
                "session_mismatch",
                f"Task {task_id} is bound to a different checkout session",
            )
        if task["status"] != "requested":
            raise UnreconciledEventError(
                "task_not_requested",
                f"Task {task_id} is in '{task['status']}' status",
            )

        helper_id = metadata.get("helperId") or task["pending_helper_id"]
        helper = self._user_store.get_user(helper_id) if helper_id else None
        if helper is None:
            raise UnreconciledEventError("helper_not_found", f"Helper {helper_id} not found")

        payment_intent_id = session.get("payment_intent")
        charge_id = None
        if payment_intent_id:
            charge_id = await self._escrow_coordinator.retrieve_charge_id(str(payment_intent_id))

        accepted_at = now_iso()
        thread_created = utc_now()
        offer_id = metadata.get("offerId") or task["pending_offer_id"]
        applied = self._store.confirm_hire(
            task_id,
            session_id,
            offer_id,
            {
                "status": "accepted",
                "helper_id": helper["id"],
                "helper_name": helper["name"],
                "accepted_at": accepted_at,
                "payment_intent_id": payment_intent_id,
                "charge_id": charge_id,
                "payment_status": "paid",
                "pending_helper_id": None,
                "pending_offer_id": None,
            },
            {
                "id": f"th-{uuid.uuid4()}",
                "task_id": task_id,
                "poster_id": task["poster_id"],
                "helper_id": helper["id"],
                "created_at": to_iso(thread_created),
                "expires_at": to_iso(
                    thread_created + timedelta(days=self._tasks_config.chat_thread_ttl_days)
                ),
            },
        )
        if not applied:
            current = self._reload(task_id)
            already_applied = current["accepted_at"] is not None
            if current["checkout_session_id"] == session_id and already_applied:
                return _task_to_response(current)
            raise UnreconciledEventError(
                "task_not_requested",
                f"Task {task_id} changed before the hire could be applied",
            )

        self._activity_log.record(
            "hire_confirmed",
            user_id=helper["id"],
            task_id=task_id,
            offer_id=offer_id,
            details={"session_id": session_id, "charge_id": charge_id},
        )
        self._logger.info(
            "Hire confirmed",
            extra={"task_id": task_id, "helper_id": helper["id"], "session_id": session_id},
        )
        return _task_to_response(self._reload(task_id))

    # ------------------------------------------------------------------
    # Progress and completion
    # ------------------------------------------------------------------

    def start_work(self, task_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        """Helper marks an accepted task as underway."""
        task = self._load_task(task_id)
        self._require_helper(task, actor, "start this task")
        self._require_status(task, ("accepted",), "start")
        updated = self._apply_transition(
            task_id,
            {"status": "in_progress", "started_at": now_iso()},
            ("accepted",),
            "start",
        )
        self._activity_log.record("task_started", user_id=actor["id"], task_id=task_id)
        return _task_to_response(updated)

    def mark_done(self, task_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        """Helper submits completion; photo proof must exist when the task requires it."""
        task = self._load_task(task_id)
        self._require_helper(task, actor, "mark this task done")
        allowed = ("accepted", "in_progress")
        self._require_status(task, allowed, "mark done")
        self._ensure_proof(task)
        updated = self._apply_transition(
            task_id,
            {"status": "worker_marked_done", "worker_marked_done_at": now_iso()},
            allowed,
            "mark done",
        )
        self._activity_log.record("task_marked_done", user_id=actor["id"], task_id=task_id)
        return _task_to_response(updated)

    def complete(self, task_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        """Poster approval (or helper self-report) moves a hired task to completed."""
        task = self._load_task(task_id)
        if actor["id"] not in (task["poster_id"], task["helper_id"]):
            raise AuthorizationError("Only the poster or hired helper can complete this task")
        self._require_status(task, _HIRED_STATUSES, "complete")
        self._ensure_proof(task)
        updated = self._apply_transition(
            task_id,
            {"status": "completed", "completed_at": now_iso()},
            _HIRED_STATUSES,
            "complete",
        )
        self._activity_log.record("task_completed", user_id=actor["id"], task_id=task_id)
        self._logger.info("Task completed", extra={"task_id": task_id, "by": actor["id"]})
        return _task_to_response(updated)

    def cancel(self, task_id: str, actor: dict[str, Any], canceled_by: str) -> dict[str, Any]:
        """
        Cancel a requested or accepted task.

        Error precedence:
        1. VALIDATION_ERROR: canceled_by not poster/helper
        2. TASK_NOT_FOUND
        3. FORBIDDEN: canceled_by does not match the caller's role
        4. INVALID_STATE
        """
        if canceled_by not in ("poster", "helper"):
            raise ValidationError("canceled_by must be 'poster' or 'helper'")
        task = self._load_task(task_id)
        if canceled_by == "poster" and actor["id"] != task["poster_id"]:
            raise AuthorizationError("Only the poster can cancel as poster")
        if canceled_by == "helper" and (
            task["helper_id"] is None or actor["id"] != task["helper_id"]
        ):
            raise AuthorizationError("Only the hired helper can cancel as helper")
        allowed = ("requested", "accepted")
        self._require_status(task, allowed, "cancel")
        updated = self._apply_transition(
            task_id,
            {"status": "canceled", "canceled_at": now_iso(), "canceled_by": canceled_by},
            allowed,
            "cancel",
        )
        self._activity_log.record(
            "task_canceled",
            user_id=actor["id"],
            task_id=task_id,
            details={"canceled_by": canceled_by, "previous_status": task["status"]},
        )
        return _task_to_response(updated)

    # ------------------------------------------------------------------
    # Price adjustment
    # ------------------------------------------------------------------

    def adjust_price(self, task_id: str, actor: dict[str, Any], new_price: object) -> dict[str, Any]:
        """
        Reprice an open task that has no offers yet.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN
        3. INVALID_STATE: not requested, or offers exist
        4. INVALID_PRICE / PRICE_BELOW_MINIMUM
        """
        task = self._load_task(task_id)
        self._require_poster(task, actor, "adjust the price")
        self._require_status(task, ("requested",), "adjust the price of")
        if self._store.count_offers(task_id) > 0:
            raise InvalidStateError(
                "Cannot adjust price after offers exist",
                code="OFFERS_EXIST",
            )
        price_cents = self._validate_price(new_price, task["category"])
        split = split_fee(price_cents, self._pricing.platform_fee_percent)

        changed = self._store.update_task(
            task_id,
            {
                "price_cents": price_cents,
                "platform_fee_cents": split.platform_fee_cents,
                "helper_amount_cents": split.payee_amount_cents,
                "price_adjusted_at": now_iso(),
                "price_adjust_prompt_shown": False,
                "price_prompted_at": None,
            },
            expected_status="requested",
            require_no_offers=True,
        )
        if changed == 0:
            raise InvalidStateError(
                "Cannot adjust price after offers exist",
                code="OFFERS_EXIST",
            )

        self._activity_log.record(
            "price_updated",
            user_id=actor["id"],
            task_id=task_id,
            details={"old_price_cents": task["price_cents"], "new_price_cents": price_cents},
        )
        return _task_to_response(self._reload(task_id))

    def acknowledge_price_prompt(self, task_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        """Dismiss the price prompt without changing the price."""
        task = self._load_task(task_id)
        self._require_poster(task, actor, "dismiss the price prompt")
        self._store.update_task(
            task_id,
            {"price_adjust_prompt_shown": False},
            expected_status=None,
        )
        self._activity_log.record("price_prompt_dismissed", user_id=actor["id"], task_id=task_id)
        return _task_to_response(self._reload(task_id))

    def list_needing_price_adjustment(self, actor: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            _task_to_response(task)
            for task in self._store.list_tasks_needing_price_adjustment(actor["id"])
        ]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return task counts for the health endpoint."""
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": self._store.count_tasks_by_status(),
        }
