"""One-time-code login and bearer session resolution."""

from __future__ import annotations

import re
import secrets
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import AuthenticationError, ValidationError
from task_market_service.logging import get_logger
from task_market_service.services.timestamps import now_iso, to_iso, utc_now
from task_market_service.services.user_store import DuplicateUserError

if TYPE_CHECKING:
    from task_market_service.services.activity_log import ActivityLog
    from task_market_service.services.session_tokens import SessionTokenIssuer
    from task_market_service.services.user_store import UserStore

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CODE_RE = re.compile(r"^\d{6}$")


def stub_user(user_id: str) -> dict[str, Any]:
    """Identity for a valid token whose user row no longer exists."""
    return {
        "id": user_id,
        "email": None,
        "name": None,
        "phone": None,
        "phone_verified": False,
        "default_zip_code": None,
        "profile_photo_url": None,
        "payee_account_id": None,
        "created_at": None,
        "is_stub": True,
    }


class OtpNotifier:
    """Out-of-band delivery of one-time codes. Records the send; the code itself is never logged."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    def send_code(self, email: str, code: str) -> None:
        self._logger.info("One-time code issued", extra={"email": email})


class IdentityManager:
    """Issues one-time codes, verifies them, and resolves bearer tokens to users."""

    def __init__(
        self,
        store: UserStore,
        tokens: SessionTokenIssuer,
        notifier: OtpNotifier,
        activity_log: ActivityLog,
        code_ttl_seconds: int,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._notifier = notifier
        self._activity_log = activity_log
        self._code_ttl_seconds = code_ttl_seconds
        self._logger = get_logger(__name__)

    @staticmethod
    def _normalize_email(email: str) -> str:
        normalized = email.strip().lower()
        if not _EMAIL_RE.match(normalized):
            raise ValidationError("A valid email address is required", code="INVALID_EMAIL")
        return normalized

    def request_code(self, email: str) -> dict[str, Any]:
        """Issue a 6-digit code valid for the configured TTL. Always succeeds for valid input."""
        normalized = self._normalize_email(email)
        code = f"{secrets.randbelow(1_000_000):06d}"
        issued = utc_now()
        self._store.insert_code(
            normalized,
            code,
            expires_at=to_iso(issued + timedelta(seconds=self._code_ttl_seconds)),
            created_at=to_iso(issued),
        )
        self._notifier.send_code(normalized, code)
        return {"success": True, "message": "Verification code sent"}

    def verify_code(self, email: str, code: str) -> dict[str, Any]:
        """
        Consume a one-time code and return the (possibly new) user with a session token.

        Error precedence:
        1. INVALID_EMAIL: email malformed
        2. INVALID_OR_EXPIRED_CODE: no matching unused unexpired code
        """
        normalized = self._normalize_email(email)
        if not _CODE_RE.match(code.strip()):
            raise ValidationError("Invalid or expired code", code="INVALID_OR_EXPIRED_CODE")

        if not self._store.consume_code(normalized, code.strip(), now_iso()):
            raise ValidationError("Invalid or expired code", code="INVALID_OR_EXPIRED_CODE")

        user = self._store.get_user_by_email(normalized)
        created = False
        if user is None:
            user_data = {
                "id": f"u-{uuid.uuid4()}",
                "email": normalized,
                "name": None,
                "phone": None,
                "phone_verified": False,
                "default_zip_code": None,
                "profile_photo_url": None,
                "payee_account_id": None,
                "created_at": now_iso(),
            }
            try:
                self._store.insert_user(user_data)
                created = True
            except DuplicateUserError:
                self._logger.info(
                    "Concurrent signup already created user",
                    extra={"email": normalized},
                )
            user = self._store.get_user_by_email(normalized)
            if user is None:
                msg = f"User {normalized} not found after insert"
                raise RuntimeError(msg)

        if created:
            self._activity_log.record("user_created", user_id=user["id"])
            self._logger.info("User created", extra={"user_id": user["id"]})

        return {"user": user, "token": self._tokens.issue(user["id"])}

    def resolve_actor(self, token: str | None) -> dict[str, Any]:
        """
        Resolve a bearer token to a user.

        A valid token whose user no longer exists yields a stub identity
        with only the id populated.
        """
        if token is None:
            raise AuthenticationError("Missing Authorization header")
        user_id = self._tokens.verify(token)
        user = self._store.get_user(user_id)
        if user is None:
            return stub_user(user_id)
        return user
