"""Unit tests for PriceAdjustmentSweep."""

from datetime import UTC, datetime, timedelta

import pytest

from task_market_service.services.activity_log import ActivityLog
from task_market_service.services.price_adjustment_sweep import PriceAdjustmentSweep
from task_market_service.services.task_store import TaskStore
from task_market_service.services.timestamps import to_iso

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _task(task_id: str, created_at: datetime, **overrides: object) -> dict[str, object]:
    data: dict[str, object] = {
        "id": task_id,
        "title": "Assemble a bookshelf",
        "category": "furniture_assembly",
        "zip_code": "94110",
        "price_cents": 4000,
        "status": "requested",
        "poster_id": "u-poster",
        "confirmation_code": task_id.upper(),
        "photos": [],
        "created_at": to_iso(created_at),
        "expires_at": to_iso(created_at + timedelta(days=5)),
    }
    data.update(overrides)
    return data


@pytest.fixture
def stores(tmp_path):
    db_path = str(tmp_path / "sweep.db")
    task_store = TaskStore(db_path=db_path)
    activity_log = ActivityLog(db_path=db_path)
    yield task_store, activity_log
    task_store.close()
    activity_log.close()


@pytest.mark.unit
def test_flags_stale_offerless_tasks(stores) -> None:
    task_store, activity_log = stores
    task_store.insert_task(_task("t-stale", NOW - timedelta(hours=25)))
    task_store.insert_task(_task("t-fresh", NOW - timedelta(hours=2)))
    sweep = PriceAdjustmentSweep(task_store, activity_log, prompt_after_hours=24)

    flagged = sweep.run_once(now=NOW)

    assert flagged == ["t-stale"]
    task = task_store.get_task("t-stale")
    assert task is not None
    assert task["price_adjust_prompt_shown"] is True
    assert task["price_prompted_at"] == to_iso(NOW)
    fresh = task_store.get_task("t-fresh")
    assert fresh is not None
    assert fresh["price_adjust_prompt_shown"] is False

    entries = activity_log.list_entries(task_id="t-stale", user_id=None)
    assert entries[0]["event_type"] == "price_prompt_triggered"
    assert entries[0]["user_id"] == "u-poster"
    assert entries[0]["details"] == {"hours_without_offers": 24}


@pytest.mark.unit
def test_rerun_does_not_flag_twice(stores) -> None:
    task_store, activity_log = stores
    task_store.insert_task(_task("t-stale", NOW - timedelta(hours=48)))
    sweep = PriceAdjustmentSweep(task_store, activity_log, prompt_after_hours=24)

    assert sweep.run_once(now=NOW) == ["t-stale"]
    assert sweep.run_once(now=NOW + timedelta(hours=30)) == []


@pytest.mark.unit
def test_repriced_task_uses_adjustment_time(stores) -> None:
    """The window restarts from the last price change."""
    task_store, activity_log = stores
    task_store.insert_task(
        _task(
            "t-repriced",
            NOW - timedelta(hours=72),
            price_adjusted_at=to_iso(NOW - timedelta(hours=3)),
        )
    )
    sweep = PriceAdjustmentSweep(task_store, activity_log, prompt_after_hours=24)

    assert sweep.run_once(now=NOW) == []
    assert sweep.run_once(now=NOW + timedelta(hours=22)) == ["t-repriced"]
