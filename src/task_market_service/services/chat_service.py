"""Poster/helper chat threads created at hire time."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from task_market_service.services.timestamps import now_iso

if TYPE_CHECKING:
    from task_market_service.services.task_store import TaskStore

_MAX_TEXT_LENGTH = 4000


class ChatService:
    """Thread and message access restricted to the two parties of a task."""

    def __init__(self, store: TaskStore) -> None:
        self._store = store

    def _load_thread(self, thread_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        thread = self._store.get_thread(thread_id)
        if thread is None:
            raise NotFoundError("Chat thread not found", code="THREAD_NOT_FOUND")
        if actor["id"] not in (thread["poster_id"], thread["helper_id"]):
            raise AuthorizationError("You are not a participant in this chat")
        return thread

    @staticmethod
    def _with_expiry(thread: dict[str, Any]) -> dict[str, Any]:
        return {**thread, "is_expired": thread["expires_at"] <= now_iso()}

    def list_threads(self, actor: dict[str, Any]) -> list[dict[str, Any]]:
        return [self._with_expiry(t) for t in self._store.list_threads_for_user(actor["id"])]

    def list_messages(self, thread_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        """Messages stay readable after the thread expires."""
        thread = self._load_thread(thread_id, actor)
        return {
            "thread": self._with_expiry(thread),
            "messages": self._store.list_messages(thread_id),
        }

    def post_message(
        self,
        thread_id: str,
        actor: dict[str, Any],
        text: str | None,
        image_url: str | None,
        is_proof: bool,
    ) -> dict[str, Any]:
        """
        Post a message to an open thread.

        Error precedence:
        1. THREAD_NOT_FOUND
        2. FORBIDDEN: actor not a participant
        3. EMPTY_MESSAGE / proof without image
        4. THREAD_EXPIRED
        """
        thread = self._load_thread(thread_id, actor)

        if not text and not image_url:
            raise ValidationError("Message needs text or an image", code="EMPTY_MESSAGE")
        if text is not None and len(text) > _MAX_TEXT_LENGTH:
            raise ValidationError(f"Message must be at most {_MAX_TEXT_LENGTH} characters")
        if is_proof and not image_url:
            raise ValidationError("Proof messages must include an image", code="PROOF_NEEDS_IMAGE")

        if thread["expires_at"] <= now_iso():
            raise InvalidStateError("This chat has expired", code="THREAD_EXPIRED")

        message = {
            "id": f"m-{uuid.uuid4()}",
            "thread_id": thread_id,
            "sender_id": actor["id"],
            "text": text,
            "image_url": image_url,
            "is_proof": is_proof,
            "created_at": now_iso(),
        }
        self._store.insert_message(message)
        return message
