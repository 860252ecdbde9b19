"""Disputes on hired tasks and their accumulated evidence."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from task_market_service.logging import get_logger
from task_market_service.services.fees import MAX_AMOUNT_LABEL, from_cents, parse_amount, to_cents
from task_market_service.services.timestamps import now_iso

if TYPE_CHECKING:
    from task_market_service.services.activity_log import ActivityLog
    from task_market_service.services.task_store import TaskStore

DISPUTABLE_STATUSES: tuple[str, ...] = ("accepted", "in_progress", "worker_marked_done")
RESOLUTION_STATUSES: tuple[str, ...] = (
    "in_review",
    "resolved_helper",
    "resolved_poster",
    "resolved_split",
)
_DEFAULT_REASON = "Dispute filed"


def _dispute_to_response(dispute: dict[str, Any]) -> dict[str, Any]:
    response = dict(dispute)
    for field_name in ("amount_released", "amount_refunded"):
        cents = dispute[f"{field_name}_cents"]
        response[field_name] = from_cents(cents) if cents is not None else None
    return response


def _role_of(task: dict[str, Any], actor: dict[str, Any]) -> str:
    if actor["id"] == task["poster_id"]:
        return "poster"
    if task["helper_id"] is not None and actor["id"] == task["helper_id"]:
        return "helper"
    raise AuthorizationError("Only the poster or hired helper can access this dispute")


def _optional_cents(value: object, label: str) -> int | None:
    if value is None:
        return None
    amount = parse_amount(value)
    if amount is None or amount < 0:
        raise ValidationError(
            f"{label} must be a non-negative amount up to {MAX_AMOUNT_LABEL}",
            code="INVALID_AMOUNT",
        )
    return to_cents(amount)


class DisputeLedger:
    """
    Opens disputes and collects evidence from both parties.

    Evidence arrays only ever grow; each party can add to its own side.
    Resolution is recorded by operators, never decided here.
    """

    def __init__(self, store: TaskStore, activity_log: ActivityLog) -> None:
        self._store = store
        self._activity_log = activity_log
        self._logger = get_logger(__name__)

    def _load_dispute(self, dispute_id: str) -> dict[str, Any]:
        dispute = self._store.get_dispute(dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute not found", code="DISPUTE_NOT_FOUND")
        return dispute

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
        return task

    def open_dispute(
        self,
        task_id: str,
        actor: dict[str, Any],
        reason: str | None,
        photo_urls: list[str],
    ) -> dict[str, Any]:
        """
        Freeze a hired task in dispute.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: actor is neither poster nor helper
        3. INVALID_STATE: task not accepted/in_progress/worker_marked_done
        """
        task = self._load_task(task_id)
        role = _role_of(task, actor)
        if task["status"] not in DISPUTABLE_STATUSES:
            raise InvalidStateError(f"Cannot dispute a task in '{task['status']}' status")

        created_at = now_iso()
        dispute = {
            "id": f"d-{uuid.uuid4()}",
            "task_id": task_id,
            "initiator_id": actor["id"],
            "initiator_role": role,
            "reason": (reason or "").strip() or _DEFAULT_REASON,
            "poster_photo_urls": photo_urls if role == "poster" else [],
            "helper_photo_urls": photo_urls if role == "helper" else [],
            "status": "pending",
            "resolution": None,
            "amount_released_cents": None,
            "amount_refunded_cents": None,
            "created_at": created_at,
            "resolved_at": None,
        }
        opened = self._store.open_dispute(
            dispute,
            {
                "status": "disputed",
                "disputed_at": created_at,
                "disputed_by": role,
                "dispute_id": dispute["id"],
            },
            DISPUTABLE_STATUSES,
        )
        if not opened:
            current = self._load_task(task_id)
            raise InvalidStateError(f"Cannot dispute a task in '{current['status']}' status")

        self._activity_log.record(
            "dispute_created",
            user_id=actor["id"],
            task_id=task_id,
            details={"dispute_id": dispute["id"], "role": role},
        )
        self._logger.info(
            "Dispute opened",
            extra={"task_id": task_id, "dispute_id": dispute["id"], "role": role},
        )
        return _dispute_to_response(self._load_dispute(dispute["id"]))

    def get_dispute(self, dispute_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        dispute = self._load_dispute(dispute_id)
        _role_of(self._load_task(dispute["task_id"]), actor)
        return _dispute_to_response(dispute)

    def append_evidence(
        self,
        dispute_id: str,
        actor: dict[str, Any],
        photo_urls: list[str],
    ) -> dict[str, Any]:
        """Add photos to the actor's side of the dispute."""
        dispute = self._load_dispute(dispute_id)
        role = _role_of(self._load_task(dispute["task_id"]), actor)
        if len(photo_urls) == 0:
            raise ValidationError("At least one photo URL is required")

        updated = self._store.append_dispute_evidence(dispute_id, role, photo_urls)
        if updated is None:
            raise NotFoundError("Dispute not found", code="DISPUTE_NOT_FOUND")

        self._activity_log.record(
            "dispute_evidence_added",
            user_id=actor["id"],
            task_id=dispute["task_id"],
            details={"dispute_id": dispute_id, "role": role, "count": len(photo_urls)},
        )
        return _dispute_to_response(updated)

    def record_resolution(
        self,
        dispute_id: str,
        status: str,
        resolution: str | None,
        amount_released: object,
        amount_refunded: object,
    ) -> dict[str, Any]:
        """Store an operator's decision on a dispute."""
        self._load_dispute(dispute_id)
        if status not in RESOLUTION_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(RESOLUTION_STATUSES)}",
            )
        updates: dict[str, Any] = {
            "status": status,
            "resolution": resolution,
            "amount_released_cents": _optional_cents(amount_released, "amount_released"),
            "amount_refunded_cents": _optional_cents(amount_refunded, "amount_refunded"),
        }
        if status.startswith("resolved_"):
            updates["resolved_at"] = now_iso()
        self._store.update_dispute(dispute_id, updates)

        self._logger.info(
            "Dispute resolution recorded",
            extra={"dispute_id": dispute_id, "status": status},
        )
        return _dispute_to_response(self._load_dispute(dispute_id))
