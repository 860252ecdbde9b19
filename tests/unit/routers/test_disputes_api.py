"""Dispute endpoint tests."""

from __future__ import annotations

import pytest

from tests.helpers import TEST_CRON_SECRET, auth_headers
from tests.unit.routers.conftest import (
    HELPER_ID,
    POSTER_ID,
    STRANGER_ID,
    completed_task,
    create_task_id,
    hired_task,
)


async def _open_dispute(client, task_id: str, user_id: str, **body):
    return await client.post(
        f"/tasks/{task_id}/dispute", json=body, headers=auth_headers(user_id)
    )


async def _resolve(client, dispute_id: str, body: dict, secret: str | None = TEST_CRON_SECRET):
    headers = {"X-Internal-Secret": secret} if secret is not None else {}
    return await client.post(
        f"/internal/disputes/{dispute_id}/resolution", json=body, headers=headers
    )


@pytest.mark.unit
class TestOpenDispute:
    """POST /tasks/{task_id}/dispute"""

    async def test_helper_disputes_in_progress_task(self, client):
        task_id = await hired_task(client)
        await client.post(f"/tasks/{task_id}/start", headers=auth_headers(HELPER_ID))

        resp = await _open_dispute(
            client,
            task_id,
            HELPER_ID,
            reason="Poster stopped responding",
            photo_urls=["https://cdn.test/h1.jpg"],
        )
        assert resp.status_code == 201
        dispute = resp.json()
        assert dispute["id"].startswith("d-")
        assert dispute["status"] == "pending"
        assert dispute["initiator_role"] == "helper"
        assert dispute["helper_photo_urls"] == ["https://cdn.test/h1.jpg"]
        assert dispute["poster_photo_urls"] == []

        task = (await client.get(f"/tasks/{task_id}")).json()
        assert task["status"] == "disputed"
        assert task["disputed_by"] == "helper"
        assert task["dispute_id"] == dispute["id"]
        assert task["disputed_at"] is not None

    async def test_default_reason(self, client):
        task_id = await hired_task(client)
        resp = await _open_dispute(client, task_id, POSTER_ID)
        assert resp.status_code == 201
        assert resp.json()["reason"] == "Dispute filed"
        assert resp.json()["initiator_role"] == "poster"

    async def test_stranger_cannot_dispute(self, client):
        task_id = await hired_task(client)
        resp = await _open_dispute(client, task_id, STRANGER_ID)
        assert resp.status_code == 403

    async def test_requested_task_cannot_be_disputed(self, client):
        task_id = await create_task_id(client)
        resp = await _open_dispute(client, task_id, POSTER_ID)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_STATE"

    async def test_completed_task_cannot_be_disputed(self, client):
        task_id = await completed_task(client)
        resp = await _open_dispute(client, task_id, POSTER_ID)
        assert resp.status_code == 400

    async def test_disputed_task_is_frozen(self, client):
        task_id = await hired_task(client)
        await _open_dispute(client, task_id, POSTER_ID)

        resp = await client.post(f"/tasks/{task_id}/complete", headers=auth_headers(POSTER_ID))
        assert resp.status_code == 400
        resp = await _open_dispute(client, task_id, HELPER_ID)
        assert resp.status_code == 400


@pytest.mark.unit
class TestEvidence:
    """GET /disputes/{dispute_id} and POST /disputes/{dispute_id}/evidence"""

    async def test_evidence_is_appended_per_side(self, client):
        task_id = await hired_task(client)
        dispute_id = (
            await _open_dispute(client, task_id, HELPER_ID, photo_urls=["h1.jpg"])
        ).json()["id"]

        resp = await client.post(
            f"/disputes/{dispute_id}/evidence",
            json={"photo_urls": ["h2.jpg"]},
            headers=auth_headers(HELPER_ID),
        )
        assert resp.status_code == 200
        assert resp.json()["helper_photo_urls"] == ["h1.jpg", "h2.jpg"]

        resp = await client.post(
            f"/disputes/{dispute_id}/evidence",
            json={"photo_urls": ["p1.jpg"]},
            headers=auth_headers(POSTER_ID),
        )
        assert resp.json()["poster_photo_urls"] == ["p1.jpg"]
        assert resp.json()["helper_photo_urls"] == ["h1.jpg", "h2.jpg"]

    async def test_evidence_needs_photos(self, client):
        task_id = await hired_task(client)
        dispute_id = (await _open_dispute(client, task_id, POSTER_ID)).json()["id"]
        resp = await client.post(
            f"/disputes/{dispute_id}/evidence",
            json={"photo_urls": []},
            headers=auth_headers(POSTER_ID),
        )
        assert resp.status_code == 400

    async def test_stranger_cannot_read_or_add(self, client):
        task_id = await hired_task(client)
        dispute_id = (await _open_dispute(client, task_id, POSTER_ID)).json()["id"]

        resp = await client.get(f"/disputes/{dispute_id}", headers=auth_headers(STRANGER_ID))
        assert resp.status_code == 403
        resp = await client.post(
            f"/disputes/{dispute_id}/evidence",
            json={"photo_urls": ["x.jpg"]},
            headers=auth_headers(STRANGER_ID),
        )
        assert resp.status_code == 403

    async def test_unknown_dispute(self, client):
        resp = await client.get("/disputes/d-missing", headers=auth_headers(POSTER_ID))
        assert resp.status_code == 404
        assert resp.json()["code"] == "DISPUTE_NOT_FOUND"


@pytest.mark.unit
class TestResolution:
    """POST /internal/disputes/{dispute_id}/resolution"""

    async def test_operator_records_split(self, client):
        task_id = await hired_task(client)
        dispute_id = (await _open_dispute(client, task_id, POSTER_ID)).json()["id"]

        resp = await _resolve(
            client,
            dispute_id,
            {
                "status": "resolved_split",
                "resolution": "Half the work was done",
                "amount_released": 50,
                "amount_refunded": 50,
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "resolved_split"
        assert data["amount_released"] == 50.0
        assert data["amount_refunded_cents"] == 5000
        assert data["resolved_at"] is not None

        resp = await client.get(f"/disputes/{dispute_id}", headers=auth_headers(HELPER_ID))
        assert resp.json()["resolution"] == "Half the work was done"

    async def test_in_review_is_not_resolved(self, client):
        task_id = await hired_task(client)
        dispute_id = (await _open_dispute(client, task_id, POSTER_ID)).json()["id"]
        resp = await _resolve(client, dispute_id, {"status": "in_review"})
        assert resp.status_code == 200
        assert resp.json()["resolved_at"] is None

    async def test_unknown_status(self, client):
        task_id = await hired_task(client)
        dispute_id = (await _open_dispute(client, task_id, POSTER_ID)).json()["id"]
        resp = await _resolve(client, dispute_id, {"status": "closed"})
        assert resp.status_code == 400

    async def test_amount_above_maximum(self, client):
        task_id = await hired_task(client)
        dispute_id = (await _open_dispute(client, task_id, POSTER_ID)).json()["id"]
        resp = await _resolve(
            client, dispute_id, {"status": "resolved_helper", "amount_released": 1e20}
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_AMOUNT"

    async def test_requires_internal_secret(self, client):
        task_id = await hired_task(client)
        dispute_id = (await _open_dispute(client, task_id, POSTER_ID)).json()["id"]

        resp = await _resolve(client, dispute_id, {"status": "in_review"}, secret=None)
        assert resp.status_code == 401
        resp = await _resolve(client, dispute_id, {"status": "in_review"}, secret="wrong")
        assert resp.status_code == 401
