"""CLI entry point for the price-adjustment sweep, for cron-style schedulers."""

from __future__ import annotations

import argparse
import json
import sys

from task_market_service.config import get_settings
from task_market_service.logging import get_logger, setup_logging
from task_market_service.services.activity_log import ActivityLog
from task_market_service.services.price_adjustment_sweep import PriceAdjustmentSweep
from task_market_service.services.task_store import TaskStore


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Flag open tasks without offers for a price adjustment prompt."
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the flagged task ids as a JSON array.",
    )
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    store = TaskStore(db_path=settings.database.path)
    activity_log = ActivityLog(db_path=settings.database.path)
    try:
        sweep = PriceAdjustmentSweep(
            store=store,
            activity_log=activity_log,
            prompt_after_hours=settings.tasks.price_prompt_after_hours,
        )
        flagged = sweep.run_once()
    finally:
        store.close()
        activity_log.close()

    logger.info("Sweep run from CLI", extra={"flagged_count": len(flagged)})
    if args.json:
        sys.stdout.write(json.dumps(flagged) + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
