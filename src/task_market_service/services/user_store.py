"""SQLite-backed storage for users and one-time codes."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any


class DuplicateUserError(Exception):
    """Raised when a user with the same email already exists."""


class UserStore:
    """SQLite-backed storage for users and their one-time login codes."""

    _USER_COLUMNS: tuple[str, ...] = (
        "id",
        "email",
        "name",
        "phone",
        "phone_verified",
        "default_zip_code",
        "profile_photo_url",
        "payee_account_id",
        "created_at",
    )
    _UPDATABLE_COLUMNS = frozenset(
        {"name", "phone", "phone_verified", "default_zip_code", "profile_photo_url",
         "payee_account_id"}
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT,
                    phone TEXT,
                    phone_verified INTEGER NOT NULL DEFAULT 0,
                    default_zip_code TEXT,
                    profile_photo_url TEXT,
                    payee_account_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS otp_codes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL,
                    code TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    used INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_otp_email ON otp_codes(email);
                """
            )
            self._db.commit()

    def _row_to_user(self, row: sqlite3.Row) -> dict[str, Any]:
        user = {column: row[column] for column in self._USER_COLUMNS}
        user["phone_verified"] = bool(user["phone_verified"])
        return user

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    def insert_code(self, email: str, code: str, expires_at: str, created_at: str) -> None:
        """Persist a freshly issued one-time code."""
        with self._lock:
            self._db.execute(
                "INSERT INTO otp_codes (email, code, expires_at, used, created_at) "
                "VALUES (?, ?, ?, 0, ?)",
                (email, code, expires_at, created_at),
            )
            self._db.commit()

    def consume_code(self, email: str, code: str, now: str) -> bool:
        """
        Mark the newest matching, unused, unexpired code as used.

        Email is matched case-insensitively, the code exactly. The used flag is
        flipped with a conditional update so two concurrent verifications of
        the same code cannot both succeed.
        """
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                row = self._db.execute(
                    """
                    SELECT id FROM otp_codes
                    WHERE LOWER(email) = LOWER(?) AND code = ? AND used = 0 AND expires_at > ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT 1
                    """,
                    (email, code, now),
                ).fetchone()
                if row is None:
                    self._db.execute("ROLLBACK")
                    return False
                cursor = self._db.execute(
                    "UPDATE otp_codes SET used = 1 WHERE id = ? AND used = 0",
                    (row["id"],),
                )
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def insert_user(self, user_data: dict[str, Any]) -> None:
        """Insert a new user row."""
        values = tuple(
            int(user_data[column]) if column == "phone_verified" else user_data[column]
            for column in self._USER_COLUMNS
        )
        with self._lock:
            try:
                self._db.execute(
                    "INSERT INTO users (id, email, name, phone, phone_verified, default_zip_code, "
                    "profile_photo_url, payee_account_id, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    values,
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                if "unique" in str(exc).lower():
                    raise DuplicateUserError(
                        f"A user with email={user_data['email']} already exists"
                    ) from exc
                raise

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user by ID."""
        with self._lock:
            row = self._db.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        """Fetch a user by lowercased email."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM users WHERE email = ?", (email.lower(),)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def update_user(self, user_id: str, updates: dict[str, Any]) -> int:
        """Update user columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0
        if any(column not in self._UPDATABLE_COLUMNS for column in updates):
            msg = "Attempted to update unknown user column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            int(value) if column == "phone_verified" else value
            for column, value in updates.items()
        ]
        params.append(user_id)
        with self._lock:
            cursor = self._db.execute(
                "UPDATE users SET " + set_clause + " WHERE id = ?",  # nosec B608
                params,
            )
            self._db.commit()
        return int(cursor.rowcount)

    def set_payee_account_if_missing(self, user_id: str, account_id: str) -> bool:
        """Store a payee account reference unless one is already recorded."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE users SET payee_account_id = ? WHERE id = ? AND payee_account_id IS NULL",
                (account_id, user_id),
            )
            self._db.commit()
        return cursor.rowcount == 1

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
