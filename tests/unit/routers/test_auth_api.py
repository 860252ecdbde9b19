"""Sign-in, session, profile and payout onboarding endpoint tests."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from freezegun import freeze_time

from task_market_service.core.exceptions import PaymentError
from task_market_service.core.state import get_app_state
from tests.helpers import auth_headers, make_session_token
from tests.unit.routers.conftest import HELPER_ID, POSTER_ID, STRANGER_ID, add_user, make_user_id


@pytest.fixture
def notifier(_app):
    """Capture one-time codes instead of logging them."""
    state = get_app_state()
    assert state.identity_manager is not None
    mock_notifier = MagicMock()
    state.identity_manager._notifier = mock_notifier
    return mock_notifier


async def _sign_in(client, notifier, email: str) -> dict:
    resp = await client.post("/auth/request-code", json={"email": email})
    assert resp.status_code == 200
    code = notifier.send_code.call_args.args[1]
    resp = await client.post("/auth/verify-code", json={"email": email, "code": code})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.unit
class TestOneTimeCode:
    """POST /auth/request-code and /auth/verify-code"""

    async def test_new_user_signs_in(self, client, notifier):
        body = await _sign_in(client, notifier, "New.Person@Example.com")
        assert body["user"]["email"] == "new.person@example.com"
        assert body["user"]["id"].startswith("u-")

        resp = await client.get(
            "/users/me", headers={"Authorization": f"Bearer {body['token']}"}
        )
        assert resp.status_code == 200
        assert resp.json()["id"] == body["user"]["id"]

    async def test_returning_user_keeps_id(self, client, notifier):
        first = await _sign_in(client, notifier, "repeat@example.com")
        second = await _sign_in(client, notifier, "repeat@example.com")
        assert first["user"]["id"] == second["user"]["id"]

    async def test_code_is_single_use(self, client, notifier):
        await client.post("/auth/request-code", json={"email": "once@example.com"})
        code = notifier.send_code.call_args.args[1]
        payload = {"email": "once@example.com", "code": code}

        assert (await client.post("/auth/verify-code", json=payload)).status_code == 200
        resp = await client.post("/auth/verify-code", json=payload)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_OR_EXPIRED_CODE"

    async def test_wrong_code(self, client, notifier):
        await client.post("/auth/request-code", json={"email": "wrong@example.com"})
        code = notifier.send_code.call_args.args[1]
        bad = "000000" if code != "000000" else "111111"
        resp = await client.post(
            "/auth/verify-code", json={"email": "wrong@example.com", "code": bad}
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_OR_EXPIRED_CODE"

    async def test_expired_code(self, client, notifier):
        with freeze_time("2026-05-01 08:00:00") as frozen:
            await client.post("/auth/request-code", json={"email": "late@example.com"})
            code = notifier.send_code.call_args.args[1]
            frozen.tick(timedelta(minutes=11))
            resp = await client.post(
                "/auth/verify-code", json={"email": "late@example.com", "code": code}
            )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_OR_EXPIRED_CODE"

    async def test_invalid_email(self, client):
        resp = await client.post("/auth/request-code", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_EMAIL"


@pytest.mark.unit
class TestBearerTokens:
    """Authorization header handling"""

    async def test_missing_header(self, client):
        resp = await client.get("/users/me")
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHENTICATED"

    async def test_wrong_scheme(self, client):
        resp = await client.get("/users/me", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401

    async def test_garbage_token(self, client):
        resp = await client.get("/users/me", headers={"Authorization": "Bearer not.a.token"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_TOKEN"

    async def test_expired_token(self, client):
        with freeze_time("2026-05-01 08:00:00") as frozen:
            token = make_session_token(POSTER_ID, ttl_seconds=60)
            frozen.tick(timedelta(minutes=5))
            resp = await client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_deleted_user_resolves_to_stub(self, client):
        resp = await client.get("/users/me", headers=auth_headers("u-gone"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == "u-gone"
        assert body["email"] is None
        assert body["completed_jobs_count"] == 0


@pytest.mark.unit
class TestProfiles:
    """/users endpoints"""

    async def test_update_profile(self, client):
        resp = await client.put(
            f"/users/{POSTER_ID}",
            json={"name": " Pat P. ", "phone": "+14155550100", "default_zip_code": "94103"},
            headers=auth_headers(POSTER_ID),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "Pat P."
        assert body["phone"] == "+14155550100"
        assert body["phone_verified"] is False
        assert body["default_zip_code"] == "94103"

    async def test_cannot_update_someone_else(self, client):
        resp = await client.put(
            f"/users/{POSTER_ID}", json={"name": "Mallory"}, headers=auth_headers(STRANGER_ID)
        )
        assert resp.status_code == 403

    async def test_photo_enables_posting(self, client):
        user_id = make_user_id()
        add_user(user_id, photo=False)
        assert (await client.get(f"/users/{user_id}/has-photo")).json()["has_photo"] is False

        resp = await client.put(
            f"/users/{user_id}/photo",
            json={"photo_url": "https://cdn.test/me.jpg"},
            headers=auth_headers(user_id),
        )
        assert resp.status_code == 200
        assert resp.json()["profile_photo_url"] == "https://cdn.test/me.jpg"
        assert (await client.get(f"/users/{user_id}/has-photo")).json()["has_photo"] is True

    async def test_has_photo_unknown_user(self, client):
        resp = await client.get("/users/u-missing/has-photo")
        assert resp.status_code == 404


@pytest.mark.unit
class TestPayouts:
    """/payouts endpoints"""

    async def test_onboarding_creates_account_once(self, client, processor):
        user_id = make_user_id()
        add_user(user_id)

        resp = await client.post("/payouts/onboarding", headers=auth_headers(user_id))
        assert resp.status_code == 200
        assert resp.json() == {"url": "https://connect.test/onboard", "account_id": "acct_new"}

        resp = await client.post("/payouts/onboarding", headers=auth_headers(user_id))
        assert resp.status_code == 200
        processor.create_account.assert_awaited_once()

    async def test_status_without_account_skips_processor(self, client, processor):
        user_id = make_user_id()
        add_user(user_id)
        resp = await client.get("/payouts/status", headers=auth_headers(user_id))
        assert resp.json() == {
            "has_account": False,
            "is_onboarded": False,
            "charges_enabled": False,
            "payouts_enabled": False,
        }
        processor.retrieve_account.assert_not_awaited()

    async def test_status_with_account(self, client):
        resp = await client.get("/payouts/status", headers=auth_headers(HELPER_ID))
        assert resp.json()["is_onboarded"] is True
        assert resp.json()["payouts_enabled"] is True

    async def test_account_creation_failure(self, client, processor):
        processor.create_account = AsyncMock(side_effect=PaymentError("down"))
        user_id = make_user_id()
        add_user(user_id)
        resp = await client.post("/payouts/onboarding", headers=auth_headers(user_id))
        assert resp.status_code == 502
        assert resp.json()["code"] == "PAYEE_ACCOUNT_CREATE_FAILED"
