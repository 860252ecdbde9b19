"""Router test fixtures with a mocked payment processor."""

from __future__ import annotations

import os
import uuid
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from task_market_service.app import create_app
from task_market_service.config import clear_settings_cache
from task_market_service.core.exceptions import PaymentError
from task_market_service.core.lifespan import lifespan
from task_market_service.core.state import get_app_state, reset_app_state
from task_market_service.services.timestamps import now_iso
from tests.helpers import (
    auth_headers,
    checkout_completed_event,
    make_config_yaml,
    signed_webhook,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

# ---------------------------------------------------------------------------
# Fixed user IDs
# ---------------------------------------------------------------------------
POSTER_ID = "u-poster"
HELPER_ID = "u-helper"
OTHER_HELPER_ID = "u-other-helper"
STRANGER_ID = "u-stranger"


def make_user_id() -> str:
    """Generate a unique user ID."""
    return f"u-{uuid.uuid4()}"


def add_user(
    user_id: str,
    *,
    name: str | None = None,
    photo: bool = True,
    payee_account_id: str | None = None,
) -> dict[str, Any]:
    """Insert a user directly into the running app's user store."""
    state = get_app_state()
    assert state.user_store is not None
    user = {
        "id": user_id,
        "email": f"{user_id}@example.com",
        "name": name or user_id,
        "phone": None,
        "phone_verified": False,
        "default_zip_code": "94110",
        "profile_photo_url": f"https://cdn.test/{user_id}.jpg" if photo else None,
        "payee_account_id": payee_account_id,
        "created_at": now_iso(),
    }
    state.user_store.insert_user(user)
    return user


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and a mocked payment processor."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        make_config_yaml(str(tmp_path / "test.db"), str(tmp_path / "logs"))
    )

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Mock processor; every call succeeds by default
        mock_processor = AsyncMock()
        mock_processor.close = AsyncMock()
        mock_processor.create_checkout_session = AsyncMock(
            side_effect=lambda params: {
                "id": f"cs_test_{uuid.uuid4().hex}",
                "url": "https://checkout.test/pay",
            }
        )
        mock_processor.create_account = AsyncMock(return_value={"id": "acct_new"})
        mock_processor.create_account_link = AsyncMock(
            return_value={"url": "https://connect.test/onboard"}
        )
        mock_processor.retrieve_account = AsyncMock(
            return_value={
                "id": "acct_helper",
                "charges_enabled": True,
                "payouts_enabled": True,
                "details_submitted": True,
            }
        )
        mock_processor.retrieve_payment_intent = AsyncMock(
            return_value={"id": "pi_test_1", "latest_charge": "ch_test_1"}
        )
        # Propagates to the payee gateway and escrow coordinator
        state.payment_client = mock_processor

        add_user(POSTER_ID, name="Pat Poster")
        add_user(HELPER_ID, name="Hana Helper", payee_account_id="acct_helper")
        add_user(OTHER_HELPER_ID, name="Omar Other", payee_account_id="acct_other")
        add_user(STRANGER_ID, name="Sam Stranger")

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def processor(_app: Any) -> AsyncMock:
    """The mocked payment processor client."""
    return get_app_state().payment_client


@pytest.fixture
def processor_unavailable(processor: AsyncMock) -> AsyncMock:
    """Configure the processor mock to fail every checkout."""
    processor.create_checkout_session = AsyncMock(
        side_effect=PaymentError(
            "Payment processor unreachable",
            code="PAYMENT_PROCESSOR_UNAVAILABLE",
        )
    )
    return processor


# ---------------------------------------------------------------------------
# Task lifecycle helper functions
# ---------------------------------------------------------------------------
async def post_task(
    client: AsyncClient,
    poster_id: str = POSTER_ID,
    **overrides: Any,
) -> Any:
    """Create a task via POST /tasks and return the response."""
    body: dict[str, Any] = {
        "title": "Haul an old couch",
        "description": "Third floor, no elevator",
        "category": "junk_removal",
        "zip_code": "94110",
        "full_address": "1 Mission St",
        "price": 100,
    }
    body.update(overrides)
    return await client.post("/tasks", json=body, headers=auth_headers(poster_id))


async def create_task_id(client: AsyncClient, **overrides: Any) -> str:
    """Create a task and return its id."""
    resp = await post_task(client, **overrides)
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


async def submit_offer(
    client: AsyncClient,
    task_id: str,
    helper_id: str = HELPER_ID,
    **body: Any,
) -> Any:
    """Submit an offer via POST /tasks/{task_id}/offers."""
    return await client.post(
        f"/tasks/{task_id}/offers",
        json=body or {"note": "I have a truck"},
        headers=auth_headers(helper_id),
    )


async def choose_helper(
    client: AsyncClient,
    task_id: str,
    helper_id: str = HELPER_ID,
    poster_id: str = POSTER_ID,
) -> Any:
    """Start the hire checkout via POST /tasks/{task_id}/choose-helper."""
    return await client.post(
        f"/tasks/{task_id}/choose-helper",
        json={"helper_id": helper_id},
        headers=auth_headers(poster_id),
    )


async def deliver_webhook(
    client: AsyncClient,
    session_id: str,
    metadata: dict[str, str],
    **event_kwargs: Any,
) -> Any:
    """POST a signed checkout.session.completed event."""
    body, headers = signed_webhook(checkout_completed_event(session_id, metadata, **event_kwargs))
    return await client.post("/webhooks/payments", content=body, headers=headers)


async def hire(
    client: AsyncClient,
    task_id: str,
    helper_id: str = HELPER_ID,
) -> str:
    """Offer, choose and confirm payment; returns the hire checkout session id."""
    resp = await submit_offer(client, task_id, helper_id)
    assert resp.status_code == 201, resp.text
    resp = await choose_helper(client, task_id, helper_id)
    assert resp.status_code == 200, resp.text
    session_id = resp.json()["session_id"]
    resp = await deliver_webhook(client, session_id, {"taskId": task_id, "type": "hire"})
    assert resp.status_code == 200, resp.text
    return session_id


async def hired_task(client: AsyncClient, **overrides: Any) -> str:
    """Create a task and take it to accepted; returns the task id."""
    task_id = await create_task_id(client, **overrides)
    await hire(client, task_id)
    return task_id


async def completed_task(client: AsyncClient, **overrides: Any) -> str:
    """Create a task and take it to completed; returns the task id."""
    task_id = await hired_task(client, **overrides)
    resp = await client.post(f"/tasks/{task_id}/complete", headers=auth_headers(POSTER_ID))
    assert resp.status_code == 200, resp.text
    return task_id
