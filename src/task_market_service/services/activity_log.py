"""Append-only audit trail of state-changing events."""

from __future__ import annotations

import contextlib
import json
import sqlite3
import uuid
from pathlib import Path
from threading import RLock
from typing import Any

from task_market_service.logging import get_logger
from task_market_service.services.timestamps import now_iso

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


class ActivityLog:
    """
    SQLite-backed activity log.

    Rows are only ever inserted. A failed write is logged and dropped so that
    auditing never blocks the business transition that triggered it.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._logger = get_logger(__name__)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS activity_logs (
                    id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    user_id TEXT,
                    task_id TEXT,
                    offer_id TEXT,
                    details TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_activity_task ON activity_logs(task_id);
                CREATE INDEX IF NOT EXISTS idx_activity_user ON activity_logs(user_id);
                """
            )
            self._db.commit()

    def record(
        self,
        event_type: str,
        *,
        user_id: str | None = None,
        task_id: str | None = None,
        offer_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append one event."""
        entry_id = f"act-{uuid.uuid4()}"
        try:
            with self._lock:
                self._db.execute(
                    "INSERT INTO activity_logs (id, event_type, user_id, task_id, offer_id, "
                    "details, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        entry_id,
                        event_type,
                        user_id,
                        task_id,
                        offer_id,
                        json.dumps(details or {}, default=str),
                        now_iso(),
                    ),
                )
                self._db.commit()
        except sqlite3.Error:
            with contextlib.suppress(sqlite3.Error):
                self._db.rollback()
            self._logger.warning(
                "Activity log write failed",
                exc_info=True,
                extra={"event_type": event_type, "task_id": task_id, "user_id": user_id},
            )

    def list_entries(
        self,
        *,
        task_id: str | None,
        user_id: str | None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[dict[str, Any]]:
        """List events newest first, optionally filtered by task and/or user."""
        query = "SELECT * FROM activity_logs"
        clauses: list[str] = []
        params: list[object] = []
        if task_id is not None:
            clauses.append("task_id = ?")
            params.append(task_id)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(min(max(limit, 1), MAX_LIMIT))

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [
            {
                "id": row["id"],
                "event_type": row["event_type"],
                "user_id": row["user_id"],
                "task_id": row["task_id"],
                "offer_id": row["offer_id"],
                "details": json.loads(row["details"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
