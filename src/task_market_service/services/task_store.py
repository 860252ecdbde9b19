"""SQLite-backed storage for tasks, offers, chat, extra work, disputes."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any

ACTIVE_JOB_STATUSES: tuple[str, ...] = ("accepted", "in_progress", "worker_marked_done")


class DuplicateConfirmationCodeError(Exception):
    """Raised when a generated confirmation code is already taken."""


class DuplicateOfferError(Exception):
    """Raised when a helper already has an offer on the task."""


class PendingExtraWorkError(Exception):
    """Raised when a task already has an extra-work request awaiting a response."""


def _encode_list(values: list[str] | None) -> str:
    return json.dumps(values if values is not None else [])


def _decode_list(raw: str | None) -> list[str]:
    if raw is None or raw == "":
        return []
    decoded = json.loads(raw)
    return [str(item) for item in decoded]


class TaskStore:
    """
    SQLite-backed storage for the task aggregate and everything hanging off it.

    Every status transition goes through a conditional UPDATE so that the
    precondition is re-checked at write time; multi-row transitions run in
    a single BEGIN IMMEDIATE transaction and roll back on any failure.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "id",
        "title",
        "description",
        "category",
        "zip_code",
        "area_description",
        "full_address",
        "price_cents",
        "status",
        "poster_id",
        "poster_name",
        "poster_email",
        "poster_photo_url",
        "helper_id",
        "helper_name",
        "pending_helper_id",
        "pending_offer_id",
        "confirmation_code",
        "photos_required",
        "tools_required",
        "tools_provided",
        "license_required",
        "task_photo_url",
        "photos",
        "checkout_session_id",
        "payment_intent_id",
        "charge_id",
        "platform_fee_cents",
        "helper_amount_cents",
        "payment_status",
        "extra_amount_paid_cents",
        "tip_amount_cents",
        "tip_status",
        "tip_checkout_session_id",
        "tip_payment_intent_id",
        "tip_created_at",
        "tip_paid_at",
        "dispute_id",
        "disputed_by",
        "price_adjust_prompt_shown",
        "price_prompted_at",
        "created_at",
        "expires_at",
        "accepted_at",
        "started_at",
        "worker_marked_done_at",
        "completed_at",
        "canceled_at",
        "canceled_by",
        "disputed_at",
        "price_adjusted_at",
    )
    _TASK_BOOL_COLUMNS = frozenset(
        {
            "photos_required",
            "tools_required",
            "tools_provided",
            "license_required",
            "price_adjust_prompt_shown",
        }
    )
    _OFFER_COLUMNS: tuple[str, ...] = (
        "id",
        "task_id",
        "helper_id",
        "helper_name",
        "helper_photo_url",
        "note",
        "proposed_price_cents",
        "status",
        "created_at",
    )
    _EXTRA_WORK_COLUMNS: tuple[str, ...] = (
        "id",
        "task_id",
        "helper_id",
        "amount_cents",
        "reason",
        "photo_urls",
        "status",
        "checkout_session_id",
        "payment_intent_id",
        "platform_fee_cents",
        "created_at",
        "responded_at",
        "paid_at",
    )
    _DISPUTE_COLUMNS: tuple[str, ...] = (
        "id",
        "task_id",
        "initiator_id",
        "initiator_role",
        "reason",
        "poster_photo_urls",
        "helper_photo_urls",
        "status",
        "resolution",
        "amount_released_cents",
        "amount_refunded_cents",
        "created_at",
        "resolved_at",
    )
    _THREAD_COLUMNS: tuple[str, ...] = (
        "id",
        "task_id",
        "poster_id",
        "helper_id",
        "created_at",
        "expires_at",
    )
    _MESSAGE_COLUMNS: tuple[str, ...] = (
        "id",
        "thread_id",
        "sender_id",
        "text",
        "image_url",
        "is_proof",
        "created_at",
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL,
                    zip_code TEXT NOT NULL,
                    area_description TEXT,
                    full_address TEXT,
                    price_cents INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'requested',
                    poster_id TEXT NOT NULL,
                    poster_name TEXT,
                    poster_email TEXT,
                    poster_photo_url TEXT,
                    helper_id TEXT,
                    helper_name TEXT,
                    pending_helper_id TEXT,
                    pending_offer_id TEXT,
                    confirmation_code TEXT NOT NULL UNIQUE,
                    photos_required INTEGER NOT NULL DEFAULT 0,
                    tools_required INTEGER NOT NULL DEFAULT 0,
                    tools_provided INTEGER NOT NULL DEFAULT 0,
                    license_required INTEGER NOT NULL DEFAULT 0,
                    task_photo_url TEXT,
                    photos TEXT NOT NULL DEFAULT '[]',
                    checkout_session_id TEXT,
                    payment_intent_id TEXT,
                    charge_id TEXT,
                    platform_fee_cents INTEGER,
                    helper_amount_cents INTEGER,
                    payment_status TEXT NOT NULL DEFAULT 'pending',
                    extra_amount_paid_cents INTEGER NOT NULL DEFAULT 0,
                    tip_amount_cents INTEGER,
                    tip_status TEXT,
                    tip_checkout_session_id TEXT,
                    tip_payment_intent_id TEXT,
                    tip_created_at TEXT,
                    tip_paid_at TEXT,
                    dispute_id TEXT,
                    disputed_by TEXT,
                    price_adjust_prompt_shown INTEGER NOT NULL DEFAULT 0,
                    price_prompted_at TEXT,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    accepted_at TEXT,
                    started_at TEXT,
                    worker_marked_done_at TEXT,
                    completed_at TEXT,
                    canceled_at TEXT,
                    canceled_by TEXT,
                    disputed_at TEXT,
                    price_adjusted_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
                CREATE INDEX IF NOT EXISTS idx_tasks_poster ON tasks(poster_id);
                CREATE INDEX IF NOT EXISTS idx_tasks_helper ON tasks(helper_id);
                CREATE INDEX IF NOT EXISTS idx_tasks_checkout ON tasks(checkout_session_id);

                CREATE TABLE IF NOT EXISTS offers (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    helper_id TEXT NOT NULL,
                    helper_name TEXT,
                    helper_photo_url TEXT,
                    note TEXT,
                    proposed_price_cents INTEGER,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    UNIQUE(task_id, helper_id)
                );

                CREATE TABLE IF NOT EXISTS chat_threads (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL UNIQUE REFERENCES tasks(id),
                    poster_id TEXT NOT NULL,
                    helper_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS chat_messages (
                    id TEXT PRIMARY KEY,
                    thread_id TEXT NOT NULL REFERENCES chat_threads(id),
                    sender_id TEXT NOT NULL,
                    text TEXT,
                    image_url TEXT,
                    is_proof INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS extra_work_requests (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    helper_id TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    photo_urls TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'pending',
                    checkout_session_id TEXT,
                    payment_intent_id TEXT,
                    platform_fee_cents INTEGER,
                    created_at TEXT NOT NULL,
                    responded_at TEXT,
                    paid_at TEXT
                );

                CREATE TABLE IF NOT EXISTS disputes (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    initiator_id TEXT NOT NULL,
                    initiator_role TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    poster_photo_urls TEXT NOT NULL DEFAULT '[]',
                    helper_photo_urls TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'pending',
                    resolution TEXT,
                    amount_released_cents INTEGER,
                    amount_refunded_cents INTEGER,
                    created_at TEXT NOT NULL,
                    resolved_at TEXT
                );

                CREATE TABLE IF NOT EXISTS unreconciled_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT,
                    event_type TEXT NOT NULL,
                    session_id TEXT,
                    reason TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )
            self._db.commit()

    def _rollback(self) -> None:
        with contextlib.suppress(sqlite3.Error):
            self._db.execute("ROLLBACK")

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task: dict[str, Any] = {column: row[column] for column in self._TASK_COLUMNS}
        for column in self._TASK_BOOL_COLUMNS:
            task[column] = bool(task[column])
        task["photos"] = _decode_list(task["photos"])
        return task

    def _row_to_offer(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._OFFER_COLUMNS}

    def _row_to_extra_work(self, row: sqlite3.Row) -> dict[str, Any]:
        request = {column: row[column] for column in self._EXTRA_WORK_COLUMNS}
        request["photo_urls"] = _decode_list(request["photo_urls"])
        return request

    def _row_to_dispute(self, row: sqlite3.Row) -> dict[str, Any]:
        dispute = {column: row[column] for column in self._DISPUTE_COLUMNS}
        dispute["poster_photo_urls"] = _decode_list(dispute["poster_photo_urls"])
        dispute["helper_photo_urls"] = _decode_list(dispute["helper_photo_urls"])
        return dispute

    def _row_to_thread(self, row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in self._THREAD_COLUMNS}

    def _row_to_message(self, row: sqlite3.Row) -> dict[str, Any]:
        message = {column: row[column] for column in self._MESSAGE_COLUMNS}
        message["is_proof"] = bool(message["is_proof"])
        return message

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        columns = [column for column in self._TASK_COLUMNS if column in task_data]
        values: list[object] = []
        for column in columns:
            value = task_data[column]
            if column == "photos":
                value = _encode_list(value)
            elif column in self._TASK_BOOL_COLUMNS:
                value = int(bool(value))
            values.append(value)
        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO tasks ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(query, values)
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                if "confirmation_code" in str(exc).lower():
                    raise DuplicateConfirmationCodeError(
                        f"Confirmation code {task_data['confirmation_code']} already in use"
                    ) from exc
                raise
            except Exception:
                self._rollback()
                raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        with self._lock:
            row = self._db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | tuple[str, ...] | None,
        where: dict[str, Any] | None = None,
        require_no_offers: bool = False,
    ) -> int:
        """
        Conditionally update task columns and return the number of affected rows.

        expected_status and where are re-checked by the UPDATE itself, so a
        zero return means a concurrent writer moved the task first. A None
        value in where matches SQL NULL.
        """
        if len(updates) == 0:
            return 0

        conditions = where or {}
        if any(column not in self._TASK_COLUMNS for column in [*updates, *conditions]):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = []
        for column, value in updates.items():
            if column in self._TASK_BOOL_COLUMNS and value is not None:
                params.append(int(bool(value)))
            else:
                params.append(value)

        query = "UPDATE tasks SET " + set_clause + " WHERE id = ?"  # nosec B608
        params.append(task_id)

        if isinstance(expected_status, str):
            query += " AND status = ?"
            params.append(expected_status)
        elif expected_status is not None:
            query += " AND status IN (" + ", ".join("?" for _ in expected_status) + ")"
            params.extend(expected_status)

        for column, value in conditions.items():
            if value is None:
                query += f" AND {column} IS NULL"
            else:
                query += f" AND {column} = ?"
                params.append(value)

        if require_no_offers:
            query += " AND NOT EXISTS (SELECT 1 FROM offers WHERE offers.task_id = tasks.id)"

        with self._lock:
            try:
                cursor = self._db.execute(query, params)
                self._db.commit()
            except Exception:
                self._rollback()
                raise
        return int(cursor.rowcount)

    def list_tasks(
        self,
        *,
        status: str | None,
        zip_code: str | None,
        category: str | None,
        tools_required: bool | None,
        tools_provided: bool | None,
        include_expired: bool,
        now: str,
    ) -> list[dict[str, Any]]:
        """List tasks for discovery; emergencies first, then newest first."""
        query = "SELECT * FROM tasks"
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if zip_code is not None:
            clauses.append("zip_code = ?")
            params.append(zip_code)
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if tools_required is not None:
            clauses.append("tools_required = ?")
            params.append(int(tools_required))
        if tools_provided is not None:
            clauses.append("tools_provided = ?")
            params.append(int(tools_provided))
        if not include_expired:
            clauses.append("(status != 'requested' OR expires_at > ?)")
            params.append(now)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY CASE WHEN category = 'emergency' THEN 0 ELSE 1 END, created_at DESC"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_tasks_by_poster(self, poster_id: str) -> list[dict[str, Any]]:
        """List a poster's tasks, newest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM tasks WHERE poster_id = ? ORDER BY created_at DESC",
                (poster_id,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_tasks_by_helper(self, helper_id: str) -> list[dict[str, Any]]:
        """List tasks a helper was hired for, newest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM tasks WHERE helper_id = ? ORDER BY created_at DESC",
                (helper_id,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_tasks_needing_price_adjustment(self, poster_id: str) -> list[dict[str, Any]]:
        """List a poster's open, offer-less tasks currently flagged for a price prompt."""
        with self._lock:
            rows = self._db.execute(
                """
                SELECT * FROM tasks
                WHERE poster_id = ?
                  AND status = 'requested'
                  AND price_adjust_prompt_shown = 1
                  AND NOT EXISTS (SELECT 1 FROM offers WHERE offers.task_id = tasks.id)
                ORDER BY created_at DESC
                """,
                (poster_id,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_price_prompt_candidates(self, cutoff: str) -> list[str]:
        """Return ids of open, offer-less, never-prompted tasks last priced at or before cutoff."""
        with self._lock:
            rows = self._db.execute(
                """
                SELECT id FROM tasks
                WHERE status = 'requested'
                  AND price_adjust_prompt_shown = 0
                  AND price_prompted_at IS NULL
                  AND COALESCE(price_adjusted_at, created_at) <= ?
                  AND NOT EXISTS (SELECT 1 FROM offers WHERE offers.task_id = tasks.id)
                ORDER BY created_at
                """,
                (cutoff,),
            ).fetchall()
        return [str(row["id"]) for row in rows]

    def count_active_jobs(self, helper_id: str) -> int:
        """Count hired tasks for a helper that are not yet finished."""
        placeholders = ", ".join("?" for _ in ACTIVE_JOB_STATUSES)
        with self._lock:
            row = self._db.execute(
                f"SELECT COUNT(*) FROM tasks WHERE helper_id = ? AND status IN ({placeholders})",  # nosec B608
                (helper_id, *ACTIVE_JOB_STATUSES),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def count_completed_jobs(self, helper_id: str) -> int:
        """Count tasks a helper has completed."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM tasks WHERE helper_id = ? AND status = 'completed'",
                (helper_id,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Hire confirmation
    # ------------------------------------------------------------------

    def confirm_hire(
        self,
        task_id: str,
        checkout_session_id: str,
        offer_id: str | None,
        task_updates: dict[str, Any],
        thread_data: dict[str, Any],
    ) -> bool:
        """
        Apply a captured hire payment in one transaction.

        The task moves to accepted only if it is still requested and still
        bound to this checkout session; the chosen offer is accepted, every
        other pending offer declined, and the chat thread created. Returns
        False (and writes nothing) if the task guard did not match.
        """
        if any(column not in self._TASK_COLUMNS for column in task_updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in task_updates)
        params: list[object] = [*task_updates.values(), task_id, checkout_session_id]

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                cursor = self._db.execute(
                    "UPDATE tasks SET " + set_clause + " WHERE id = ? "  # nosec B608
                    "AND status = 'requested' AND checkout_session_id = ?",
                    params,
                )
                if cursor.rowcount != 1:
                    self._rollback()
                    return False
                if offer_id is not None:
                    self._db.execute(
                        "UPDATE offers SET status = 'accepted' "
                        "WHERE id = ? AND task_id = ? AND status = 'pending'",
                        (offer_id, task_id),
                    )
                self._db.execute(
                    "UPDATE offers SET status = 'declined' "
                    "WHERE task_id = ? AND status = 'pending' AND id IS NOT ?",
                    (task_id, offer_id),
                )
                self._db.execute(
                    "INSERT INTO chat_threads (id, task_id, poster_id, helper_id, created_at, "
                    "expires_at) VALUES (?, ?, ?, ?, ?, ?)",
                    tuple(thread_data[column] for column in self._THREAD_COLUMNS),
                )
                self._db.commit()
            except Exception:
                self._rollback()
                raise
        return True

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def insert_offer(self, offer_data: dict[str, Any]) -> bool:
        """
        Insert an offer if its task is still requested.

        Returns False when the task is no longer open for offers.
        Raises DuplicateOfferError when the helper already offered.
        """
        values = tuple(offer_data[column] for column in self._OFFER_COLUMNS)
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._db.execute(
                    "SELECT status FROM tasks WHERE id = ?",
                    (offer_data["task_id"],),
                ).fetchone()
                if row is None or row["status"] != "requested":
                    self._rollback()
                    return False
                self._db.execute(
                    "INSERT INTO offers (id, task_id, helper_id, helper_name, helper_photo_url, "
                    "note, proposed_price_cents, status, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    values,
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                if "unique" in str(exc).lower():
                    raise DuplicateOfferError("This helper already made an offer") from exc
                raise
            except Exception:
                self._rollback()
                raise
        return True

    def get_offer(self, offer_id: str) -> dict[str, Any] | None:
        """Fetch an offer by ID."""
        with self._lock:
            row = self._db.execute("SELECT * FROM offers WHERE id = ?", (offer_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_offer(row)

    def get_offer_for_helper(self, task_id: str, helper_id: str) -> dict[str, Any] | None:
        """Fetch a helper's offer on a task."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM offers WHERE task_id = ? AND helper_id = ?",
                (task_id, helper_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_offer(row)

    def list_offers(self, task_id: str) -> list[dict[str, Any]]:
        """List all offers on a task, newest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM offers WHERE task_id = ? ORDER BY created_at DESC, rowid DESC",
                (task_id,),
            ).fetchall()
        return [self._row_to_offer(row) for row in rows]

    def count_offers(self, task_id: str) -> int:
        """Count offers on a task regardless of status."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM offers WHERE task_id = ?",
                (task_id,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def get_thread(self, thread_id: str) -> dict[str, Any] | None:
        """Fetch a chat thread by ID."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM chat_threads WHERE id = ?", (thread_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_thread(row)

    def get_thread_for_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the chat thread of a task."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM chat_threads WHERE task_id = ?", (task_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_thread(row)

    def list_threads_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """List threads where the user is poster or helper, newest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM chat_threads WHERE poster_id = ? OR helper_id = ? "
                "ORDER BY created_at DESC",
                (user_id, user_id),
            ).fetchall()
        return [self._row_to_thread(row) for row in rows]

    def insert_message(self, message_data: dict[str, Any]) -> None:
        """Insert a chat message."""
        values = list(message_data[column] for column in self._MESSAGE_COLUMNS)
        values[self._MESSAGE_COLUMNS.index("is_proof")] = int(bool(message_data["is_proof"]))
        with self._lock:
            self._db.execute(
                "INSERT INTO chat_messages (id, thread_id, sender_id, text, image_url, is_proof, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                values,
            )
            self._db.commit()

    def list_messages(self, thread_id: str) -> list[dict[str, Any]]:
        """List thread messages oldest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM chat_messages WHERE thread_id = ? ORDER BY created_at, rowid",
                (thread_id,),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def has_proof_message(self, task_id: str) -> bool:
        """Return True if the task's thread holds a proof message with an image."""
        with self._lock:
            row = self._db.execute(
                """
                SELECT 1 FROM chat_messages m
                JOIN chat_threads t ON t.id = m.thread_id
                WHERE t.task_id = ? AND m.is_proof = 1 AND m.image_url IS NOT NULL
                LIMIT 1
                """,
                (task_id,),
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Extra work
    # ------------------------------------------------------------------

    def insert_extra_work(self, request_data: dict[str, Any]) -> None:
        """
        Insert an extra-work request.

        Raises PendingExtraWorkError if the task already has a pending request.
        """
        values = [request_data[column] for column in self._EXTRA_WORK_COLUMNS]
        values[self._EXTRA_WORK_COLUMNS.index("photo_urls")] = _encode_list(
            request_data["photo_urls"]
        )
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._db.execute(
                    "SELECT 1 FROM extra_work_requests WHERE task_id = ? AND status = 'pending'",
                    (request_data["task_id"],),
                ).fetchone()
                if row is not None:
                    self._rollback()
                    raise PendingExtraWorkError(
                        f"Task {request_data['task_id']} already has a pending extra-work request"
                    )
                self._db.execute(
                    "INSERT INTO extra_work_requests (id, task_id, helper_id, amount_cents, reason, "
                    "photo_urls, status, checkout_session_id, payment_intent_id, platform_fee_cents, "
                    "created_at, responded_at, paid_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    values,
                )
                self._db.commit()
            except PendingExtraWorkError:
                raise
            except Exception:
                self._rollback()
                raise

    def get_extra_work(self, request_id: str) -> dict[str, Any] | None:
        """Fetch an extra-work request by ID."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM extra_work_requests WHERE id = ?", (request_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_extra_work(row)

    def list_extra_work(self, task_id: str) -> list[dict[str, Any]]:
        """List extra-work requests of a task, newest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM extra_work_requests WHERE task_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (task_id,),
            ).fetchall()
        return [self._row_to_extra_work(row) for row in rows]

    def update_extra_work(
        self,
        request_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str,
    ) -> int:
        """Conditionally update an extra-work request and return affected rows."""
        if any(column not in self._EXTRA_WORK_COLUMNS for column in updates):
            msg = "Attempted to update unknown extra-work column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        with self._lock:
            cursor = self._db.execute(
                "UPDATE extra_work_requests SET " + set_clause  # nosec B608
                + " WHERE id = ? AND status = ?",
                (*updates.values(), request_id, expected_status),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def mark_extra_work_paid(
        self,
        request_id: str,
        checkout_session_id: str,
        payment_intent_id: str | None,
        paid_at: str,
    ) -> bool:
        """
        Mark an accepted extra-work request paid and add its amount to the task.

        Both writes share one transaction; returns False if the request is not
        accepted under this checkout session (already paid, or never accepted).
        """
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._db.execute(
                    "SELECT task_id, amount_cents FROM extra_work_requests "
                    "WHERE id = ? AND status = 'accepted' AND checkout_session_id = ?",
                    (request_id, checkout_session_id),
                ).fetchone()
                if row is None:
                    self._rollback()
                    return False
                self._db.execute(
                    "UPDATE extra_work_requests SET status = 'paid', paid_at = ?, "
                    "payment_intent_id = ? WHERE id = ?",
                    (paid_at, payment_intent_id, request_id),
                )
                self._db.execute(
                    "UPDATE tasks SET extra_amount_paid_cents = extra_amount_paid_cents + ? "
                    "WHERE id = ?",
                    (row["amount_cents"], row["task_id"]),
                )
                self._db.commit()
            except Exception:
                self._rollback()
                raise
        return True

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def open_dispute(
        self,
        dispute_data: dict[str, Any],
        task_updates: dict[str, Any],
        allowed_statuses: tuple[str, ...],
    ) -> bool:
        """
        Insert a dispute and freeze its task in one transaction.

        Returns False (nothing written) if the task left the allowed statuses.
        """
        values = [dispute_data[column] for column in self._DISPUTE_COLUMNS]
        for column in ("poster_photo_urls", "helper_photo_urls"):
            values[self._DISPUTE_COLUMNS.index(column)] = _encode_list(dispute_data[column])

        set_clause = ", ".join(f"{column} = ?" for column in task_updates)
        status_placeholders = ", ".join("?" for _ in allowed_statuses)

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                cursor = self._db.execute(
                    "UPDATE tasks SET " + set_clause  # nosec B608
                    + f" WHERE id = ? AND status IN ({status_placeholders})",
                    (*task_updates.values(), dispute_data["task_id"], *allowed_statuses),
                )
                if cursor.rowcount != 1:
                    self._rollback()
                    return False
                self._db.execute(
                    "INSERT INTO disputes (id, task_id, initiator_id, initiator_role, reason, "
                    "poster_photo_urls, helper_photo_urls, status, resolution, "
                    "amount_released_cents, amount_refunded_cents, created_at, resolved_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    values,
                )
                self._db.commit()
            except Exception:
                self._rollback()
                raise
        return True

    def get_dispute(self, dispute_id: str) -> dict[str, Any] | None:
        """Fetch a dispute by ID."""
        with self._lock:
            row = self._db.execute("SELECT * FROM disputes WHERE id = ?", (dispute_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_dispute(row)

    def append_dispute_evidence(
        self,
        dispute_id: str,
        role: str,
        photo_urls: list[str],
    ) -> dict[str, Any] | None:
        """Append photo URLs to one side's evidence array; returns the updated dispute."""
        column = {"poster": "poster_photo_urls", "helper": "helper_photo_urls"}[role]
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._db.execute(
                    f"SELECT {column} FROM disputes WHERE id = ?",  # nosec B608
                    (dispute_id,),
                ).fetchone()
                if row is None:
                    self._rollback()
                    return None
                merged = [*_decode_list(row[column]), *photo_urls]
                self._db.execute(
                    f"UPDATE disputes SET {column} = ? WHERE id = ?",  # nosec B608
                    (_encode_list(merged), dispute_id),
                )
                self._db.commit()
            except Exception:
                self._rollback()
                raise
        return self.get_dispute(dispute_id)

    def update_dispute(self, dispute_id: str, updates: dict[str, Any]) -> int:
        """Update dispute resolution columns and return affected rows."""
        allowed = {"status", "resolution", "amount_released_cents", "amount_refunded_cents",
                   "resolved_at"}
        if any(column not in allowed for column in updates):
            msg = "Attempted to update unknown dispute column"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        with self._lock:
            cursor = self._db.execute(
                "UPDATE disputes SET " + set_clause + " WHERE id = ?",  # nosec B608
                (*updates.values(), dispute_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Unreconciled payment events
    # ------------------------------------------------------------------

    def insert_unreconciled_event(self, event_data: dict[str, Any]) -> None:
        """Persist a payment event that could not be applied, for manual replay."""
        with self._lock:
            self._db.execute(
                "INSERT INTO unreconciled_events (event_id, event_type, session_id, reason, "
                "payload, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    event_data["event_id"],
                    event_data["event_type"],
                    event_data["session_id"],
                    event_data["reason"],
                    event_data["payload"],
                    event_data["created_at"],
                ),
            )
            self._db.commit()

    def list_unreconciled_events(self) -> list[dict[str, Any]]:
        """List persisted unreconciled events, oldest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT id, event_id, event_type, session_id, reason, payload, created_at "
                "FROM unreconciled_events ORDER BY id"
            ).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
