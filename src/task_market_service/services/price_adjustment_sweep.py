"""Periodic flagging of stale, offer-less tasks for a price prompt."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from task_market_service.logging import get_logger
from task_market_service.services.timestamps import to_iso, utc_now

if TYPE_CHECKING:
    from task_market_service.services.activity_log import ActivityLog
    from task_market_service.services.task_store import TaskStore


class PriceAdjustmentSweep:
    """
    Flags requested tasks that drew no offers within the prompt window.

    A task is prompted at most once per price; each flag is a conditional
    update on price_prompted_at IS NULL, so overlapping runs cannot flag
    the same task twice.
    """

    def __init__(self, store: TaskStore, activity_log: ActivityLog, prompt_after_hours: int) -> None:
        self._store = store
        self._activity_log = activity_log
        self._window = timedelta(hours=prompt_after_hours)
        self._logger = get_logger(__name__)

    def run_once(self, now: datetime | None = None) -> list[str]:
        """Flag every eligible task and return the ids flagged by this run."""
        moment = now or utc_now()
        cutoff = to_iso(moment - self._window)
        prompted_at = to_iso(moment)

        flagged: list[str] = []
        for task_id in self._store.list_price_prompt_candidates(cutoff):
            changed = self._store.update_task(
                task_id,
                {"price_adjust_prompt_shown": True, "price_prompted_at": prompted_at},
                expected_status="requested",
                where={"price_prompted_at": None},
                require_no_offers=True,
            )
            if changed == 0:
                continue
            flagged.append(task_id)
            task = self._store.get_task(task_id)
            self._activity_log.record(
                "price_prompt_triggered",
                user_id=task["poster_id"] if task is not None else None,
                task_id=task_id,
                details={"hours_without_offers": int(self._window.total_seconds() // 3600)},
            )

        self._logger.info(
            "Price adjustment sweep finished",
            extra={"cutoff": cutoff, "flagged_count": len(flagged)},
        )
        return flagged
