"""Helper offers on open tasks."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import NotFoundError, ValidationError
from task_market_service.logging import get_logger
from task_market_service.services.fees import MAX_AMOUNT_LABEL, from_cents, parse_amount, to_cents
from task_market_service.services.task_store import DuplicateOfferError
from task_market_service.services.timestamps import now_iso

if TYPE_CHECKING:
    from task_market_service.services.activity_log import ActivityLog
    from task_market_service.services.task_store import TaskStore

_MAX_NOTE_LENGTH = 1000


def max_active_jobs(completed_jobs: int) -> int:
    """Concurrent job allowance; it grows with a helper's completed job count."""
    if completed_jobs >= 100:
        return 5
    if completed_jobs >= 20:
        return 3
    return 2


def offer_to_response(offer: dict[str, Any]) -> dict[str, Any]:
    """Add the decimal price view to an offer row."""
    proposed = offer["proposed_price_cents"]
    return {**offer, "proposed_price": from_cents(proposed) if proposed is not None else None}


class OfferLedger:
    """
    Records competing helper offers on requested tasks.

    Offers are only ever accepted or declined as part of hire confirmation;
    this ledger never flips an offer status on its own.
    """

    def __init__(self, store: TaskStore, activity_log: ActivityLog) -> None:
        self._store = store
        self._activity_log = activity_log
        self._logger = get_logger(__name__)

    def check_job_capacity(self, helper_id: str) -> None:
        """Fail if the helper already holds as many active jobs as allowed."""
        completed = self._store.count_completed_jobs(helper_id)
        limit = max_active_jobs(completed)
        if self._store.count_active_jobs(helper_id) >= limit:
            raise ValidationError(
                f"You can have at most {limit} active jobs at a time",
                code="JOB_LIMIT_REACHED",
            )

    def submit_offer(
        self,
        task_id: str,
        actor: dict[str, Any],
        note: str | None,
        proposed_price: object,
    ) -> dict[str, Any]:
        """
        Create a pending offer for the actor on a requested task.

        Error precedence:
        1. TASK_NOT_FOUND
        2. TASK_NOT_OPEN: task is not requested
        3. PROFILE_PHOTO_REQUIRED
        4. OWN_TASK: poster offering on their own task
        5. INVALID_PRICE: proposed price not a positive amount
        6. JOB_LIMIT_REACHED
        7. OFFER_EXISTS
        """
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found", code="TASK_NOT_FOUND")

        if task["status"] != "requested":
            raise ValidationError("Task is not accepting offers", code="TASK_NOT_OPEN")

        if not actor.get("profile_photo_url"):
            raise ValidationError(
                "Profile photo is required to make an offer",
                code="PROFILE_PHOTO_REQUIRED",
            )

        if actor["id"] == task["poster_id"]:
            raise ValidationError("You cannot make an offer on your own task", code="OWN_TASK")

        proposed_price_cents: int | None = None
        if proposed_price is not None:
            amount = parse_amount(proposed_price)
            if amount is None or to_cents(amount) <= 0:
                raise ValidationError(
                    f"Proposed price must be a positive amount up to {MAX_AMOUNT_LABEL}",
                    code="INVALID_PRICE",
                )
            proposed_price_cents = to_cents(amount)

        if note is not None and len(note) > _MAX_NOTE_LENGTH:
            raise ValidationError(f"Note must be at most {_MAX_NOTE_LENGTH} characters")

        self.check_job_capacity(actor["id"])

        offer = {
            "id": f"o-{uuid.uuid4()}",
            "task_id": task_id,
            "helper_id": actor["id"],
            "helper_name": actor.get("name"),
            "helper_photo_url": actor.get("profile_photo_url"),
            "note": note,
            "proposed_price_cents": proposed_price_cents,
            "status": "pending",
            "created_at": now_iso(),
        }
        try:
            inserted = self._store.insert_offer(offer)
        except DuplicateOfferError as exc:
            raise ValidationError(
                "You have already made an offer on this task",
                code="OFFER_EXISTS",
            ) from exc
        if not inserted:
            raise ValidationError("Task is not accepting offers", code="TASK_NOT_OPEN")

        self._activity_log.record(
            "offer_submitted",
            user_id=actor["id"],
            task_id=task_id,
            offer_id=offer["id"],
            details={"proposed_price_cents": proposed_price_cents},
        )
        self._logger.info(
            "Offer submitted",
            extra={"task_id": task_id, "offer_id": offer["id"], "helper_id": actor["id"]},
        )
        return offer_to_response(offer)

    def list_offers(self, task_id: str) -> list[dict[str, Any]]:
        """All offers on a task, newest first, unfiltered."""
        if self._store.get_task(task_id) is None:
            raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
        return [offer_to_response(offer) for offer in self._store.list_offers(task_id)]
