"""Task creation, discovery and listing endpoint tests."""

from __future__ import annotations

import pytest

from tests.helpers import auth_headers
from tests.unit.routers.conftest import (
    HELPER_ID,
    POSTER_ID,
    STRANGER_ID,
    add_user,
    create_task_id,
    hired_task,
    make_user_id,
    post_task,
)


@pytest.mark.unit
class TestCreateTask:
    """POST /tasks"""

    async def test_create_task_returns_201(self, client):
        resp = await post_task(client)
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"].startswith("t-")
        assert data["status"] == "requested"
        assert data["payment_status"] == "pending"
        assert data["poster_id"] == POSTER_ID
        assert data["price"] == 100.0
        assert data["price_cents"] == 10000
        assert data["platform_fee"] == 15.0
        assert data["helper_amount"] == 85.0
        assert len(data["confirmation_code"]) == 6

    async def test_minimum_price_is_inclusive(self, client):
        resp = await post_task(client, price=7)
        assert resp.status_code == 201

        resp = await post_task(client, price=6.99)
        assert resp.status_code == 400
        assert resp.json()["code"] == "PRICE_BELOW_MINIMUM"

    async def test_emergency_minimum(self, client):
        resp = await post_task(client, category="emergency", price=99.99)
        assert resp.status_code == 400
        assert resp.json()["code"] == "PRICE_BELOW_MINIMUM"

        resp = await post_task(client, category="emergency", price=100)
        assert resp.status_code == 201

    async def test_price_must_be_numeric(self, client):
        resp = await post_task(client, price="a lot")
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_PRICE"

    @pytest.mark.parametrize("price", [1e20, "1e30", 1000000.01])
    async def test_price_above_maximum(self, client, price):
        resp = await post_task(client, price=price)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_PRICE"

    async def test_unknown_category(self, client):
        resp = await post_task(client, category="skydiving")
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_CATEGORY"

    async def test_missing_title(self, client):
        resp = await post_task(client, title="   ")
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    async def test_profile_photo_required(self, client):
        user_id = make_user_id()
        add_user(user_id, photo=False)
        resp = await post_task(client, poster_id=user_id)
        assert resp.status_code == 400
        assert resp.json()["code"] == "PROFILE_PHOTO_REQUIRED"

    async def test_requires_authentication(self, client):
        resp = await client.post("/tasks", json={"title": "x"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHENTICATED"

    async def test_rejects_non_boolean_flag(self, client):
        resp = await post_task(client, photos_required="yes")
        assert resp.status_code == 400


@pytest.mark.unit
class TestDiscovery:
    """GET /tasks and GET /tasks/{task_id}"""

    async def test_discovery_hides_private_fields(self, client):
        await create_task_id(client)
        resp = await client.get("/tasks")
        assert resp.status_code == 200
        tasks = resp.json()["tasks"]
        assert len(tasks) == 1
        for field_name in ("full_address", "poster_email", "confirmation_code"):
            assert field_name not in tasks[0]

    async def test_emergency_tasks_listed_first(self, client):
        regular = await create_task_id(client)
        emergency = await create_task_id(client, category="emergency", price=150)
        newest = await create_task_id(client)

        resp = await client.get("/tasks")
        ids = [task["id"] for task in resp.json()["tasks"]]
        assert ids == [emergency, newest, regular]

    async def test_filters(self, client):
        await create_task_id(client, zip_code="10001", category="cleaning")
        await create_task_id(client, zip_code="94110", tools_required=True)

        resp = await client.get("/tasks", params={"zip_code": "10001"})
        assert [task["category"] for task in resp.json()["tasks"]] == ["cleaning"]

        resp = await client.get("/tasks", params={"tools_required": "true"})
        assert [task["zip_code"] for task in resp.json()["tasks"]] == ["94110"]

        resp = await client.get("/tasks", params={"category": "All"})
        assert len(resp.json()["tasks"]) == 2

    async def test_bad_boolean_query(self, client):
        resp = await client.get("/tasks", params={"tools_required": "maybe"})
        assert resp.status_code == 400

    async def test_get_task_includes_offer_count(self, client):
        task_id = await create_task_id(client)
        resp = await client.get(f"/tasks/{task_id}", headers=auth_headers(POSTER_ID))
        assert resp.status_code == 200
        assert resp.json()["offer_count"] == 0
        assert resp.json()["full_address"] == "1 Mission St"

    async def test_get_task_hides_private_fields_from_outsiders(self, client):
        task_id = await create_task_id(client)
        for headers in ({}, auth_headers(STRANGER_ID)):
            body = (await client.get(f"/tasks/{task_id}", headers=headers)).json()
            assert body["title"] == "Haul an old couch"
            for field_name in ("full_address", "poster_email", "confirmation_code"):
                assert field_name not in body

    async def test_hired_helper_sees_private_fields(self, client):
        task_id = await hired_task(client)
        body = (await client.get(f"/tasks/{task_id}", headers=auth_headers(HELPER_ID))).json()
        assert body["full_address"] == "1 Mission St"
        assert len(body["confirmation_code"]) == 6

    async def test_unknown_task(self, client):
        resp = await client.get("/tasks/t-missing")
        assert resp.status_code == 404
        assert resp.json()["code"] == "TASK_NOT_FOUND"


@pytest.mark.unit
class TestMyLists:
    """GET /tasks/mine and GET /jobs/mine"""

    async def test_posted_and_hired_lists(self, client):
        open_id = await create_task_id(client)
        hired_id = await hired_task(client)

        resp = await client.get("/tasks/mine", headers=auth_headers(POSTER_ID))
        assert {task["id"] for task in resp.json()["tasks"]} == {open_id, hired_id}

        resp = await client.get("/jobs/mine", headers=auth_headers(HELPER_ID))
        assert [task["id"] for task in resp.json()["tasks"]] == [hired_id]

    async def test_lists_require_authentication(self, client):
        resp = await client.get("/tasks/mine")
        assert resp.status_code == 401
