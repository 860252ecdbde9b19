"""User profile reads and updates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import AuthorizationError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from task_market_service.services.activity_log import ActivityLog
    from task_market_service.services.task_store import TaskStore
    from task_market_service.services.user_store import UserStore

_PROFILE_FIELDS = ("name", "phone", "default_zip_code")


class UserManager:
    """Profile operations; completed job counts are derived from task history."""

    def __init__(self, store: UserStore, task_store: TaskStore, activity_log: ActivityLog) -> None:
        self._store = store
        self._task_store = task_store
        self._activity_log = activity_log

    def _to_response(self, user: dict[str, Any]) -> dict[str, Any]:
        response = {key: value for key, value in user.items() if key != "is_stub"}
        response["completed_jobs_count"] = self._task_store.count_completed_jobs(user["id"])
        return response

    def get_me(self, actor: dict[str, Any]) -> dict[str, Any]:
        """Return the caller's profile (a stub identity is returned as-is)."""
        if actor.get("is_stub"):
            return {**actor, "completed_jobs_count": 0}
        return self._to_response(actor)

    def _load_own(self, user_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        if actor["id"] != user_id:
            raise AuthorizationError("You can only update your own profile")
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return user

    def update_profile(
        self,
        user_id: str,
        actor: dict[str, Any],
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Update name, phone and default zip code; a new phone needs re-verification."""
        user = self._load_own(user_id, actor)

        updates: dict[str, Any] = {}
        for field_name in _PROFILE_FIELDS:
            if field_name not in data:
                continue
            value = data[field_name]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"Field '{field_name}' must be a string")
            updates[field_name] = value.strip() if isinstance(value, str) else None

        if "phone" in updates and updates["phone"] != user["phone"]:
            updates["phone_verified"] = False

        self._store.update_user(user_id, updates)
        self._activity_log.record("profile_updated", user_id=user_id,
                                  details={"fields": sorted(updates)})
        updated = self._store.get_user(user_id)
        if updated is None:
            msg = f"User {user_id} not found after update"
            raise RuntimeError(msg)
        return self._to_response(updated)

    def update_photo(self, user_id: str, actor: dict[str, Any], photo_url: str) -> dict[str, Any]:
        """Set the profile photo URL required for posting tasks and making offers."""
        self._load_own(user_id, actor)
        self._store.update_user(user_id, {"profile_photo_url": photo_url})
        updated = self._store.get_user(user_id)
        if updated is None:
            msg = f"User {user_id} not found after update"
            raise RuntimeError(msg)
        return self._to_response(updated)

    def has_photo(self, user_id: str) -> dict[str, Any]:
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return {"user_id": user_id, "has_photo": bool(user["profile_photo_url"])}
