"""Hire flow tests: offers, choose-helper checkout and webhook confirmation."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from task_market_service.core.state import get_app_state
from tests.helpers import auth_headers, checkout_completed_event, signed_webhook
from tests.unit.routers.conftest import (
    HELPER_ID,
    OTHER_HELPER_ID,
    POSTER_ID,
    STRANGER_ID,
    add_user,
    choose_helper,
    create_task_id,
    deliver_webhook,
    hire,
    make_user_id,
    submit_offer,
)


def _unreconciled_reasons() -> list[str]:
    store = get_app_state().task_store
    assert store is not None
    return [event["reason"] for event in store.list_unreconciled_events()]


@pytest.mark.unit
class TestOffers:
    """POST/GET /tasks/{task_id}/offers"""

    async def test_submit_offer(self, client):
        task_id = await create_task_id(client)
        resp = await submit_offer(client, task_id, note="Can do today", proposed_price=90)
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "pending"
        assert data["helper_id"] == HELPER_ID
        assert data["proposed_price"] == 90.0

    async def test_proposed_price_above_maximum(self, client):
        task_id = await create_task_id(client)
        resp = await submit_offer(client, task_id, proposed_price="1e30")
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_PRICE"

    async def test_one_offer_per_helper(self, client):
        task_id = await create_task_id(client)
        await submit_offer(client, task_id)
        resp = await submit_offer(client, task_id)
        assert resp.status_code == 400
        assert resp.json()["code"] == "OFFER_EXISTS"

    async def test_poster_cannot_offer_on_own_task(self, client):
        task_id = await create_task_id(client)
        resp = await submit_offer(client, task_id, helper_id=POSTER_ID)
        assert resp.status_code == 400
        assert resp.json()["code"] == "OWN_TASK"

    async def test_offer_needs_profile_photo(self, client):
        task_id = await create_task_id(client)
        helper_id = make_user_id()
        add_user(helper_id, photo=False)
        resp = await submit_offer(client, task_id, helper_id=helper_id)
        assert resp.status_code == 400
        assert resp.json()["code"] == "PROFILE_PHOTO_REQUIRED"

    async def test_list_offers(self, client):
        task_id = await create_task_id(client)
        await submit_offer(client, task_id, HELPER_ID)
        await submit_offer(client, task_id, OTHER_HELPER_ID)
        resp = await client.get(f"/tasks/{task_id}/offers")
        assert resp.status_code == 200
        body = resp.json()
        assert body["task_id"] == task_id
        assert {offer["helper_id"] for offer in body["offers"]} == {HELPER_ID, OTHER_HELPER_ID}


@pytest.mark.unit
class TestChooseHelper:
    """POST /tasks/{task_id}/choose-helper"""

    async def test_checkout_holds_price_with_fee_split(self, client, processor):
        task_id = await create_task_id(client)
        await submit_offer(client, task_id)

        resp = await choose_helper(client, task_id)
        assert resp.status_code == 200
        body = resp.json()
        assert body["checkout_url"] == "https://checkout.test/pay"
        assert body["session_id"].startswith("cs_test_")
        assert body["task"]["status"] == "requested"
        assert body["task"]["payment_status"] == "awaiting_capture"
        assert body["task"]["pending_helper_id"] == HELPER_ID

        params = processor.create_checkout_session.call_args.args[0]
        assert params["line_items"][0]["price_data"]["unit_amount"] == 10000
        assert params["payment_intent_data"]["application_fee_amount"] == 1500
        assert params["payment_intent_data"]["transfer_data"] == {"destination": "acct_helper"}
        assert params["metadata"]["type"] == "hire"
        assert params["metadata"]["taskId"] == task_id

    async def test_only_poster_can_choose(self, client):
        task_id = await create_task_id(client)
        await submit_offer(client, task_id)
        resp = await choose_helper(client, task_id, poster_id=STRANGER_ID)
        assert resp.status_code == 403

    async def test_requires_pending_offer(self, client):
        task_id = await create_task_id(client)
        resp = await choose_helper(client, task_id)
        assert resp.status_code == 404
        assert resp.json()["code"] == "OFFER_NOT_FOUND"

    async def test_helper_without_payout_account(self, client):
        helper_id = make_user_id()
        add_user(helper_id)
        task_id = await create_task_id(client)
        await submit_offer(client, task_id, helper_id)

        resp = await choose_helper(client, task_id, helper_id)
        assert resp.status_code == 400
        assert resp.json()["code"] == "PAYEE_NOT_CONFIGURED"

    async def test_helper_with_payouts_disabled(self, client, processor):
        processor.retrieve_account = AsyncMock(
            return_value={"id": "acct_helper", "charges_enabled": True, "payouts_enabled": False}
        )
        task_id = await create_task_id(client)
        await submit_offer(client, task_id)

        resp = await choose_helper(client, task_id)
        assert resp.status_code == 400
        assert resp.json()["code"] == "PAYOUTS_DISABLED"

    async def test_processor_unavailable_leaves_task_untouched(
        self, client, processor_unavailable
    ):
        task_id = await create_task_id(client)
        await submit_offer(client, task_id)

        resp = await choose_helper(client, task_id)
        assert resp.status_code == 502
        assert resp.json()["code"] == "PAYMENT_PROCESSOR_UNAVAILABLE"

        task = (await client.get(f"/tasks/{task_id}")).json()
        assert task["payment_status"] == "pending"
        assert task["checkout_session_id"] is None
        assert task["pending_helper_id"] is None

    async def test_job_limit_blocks_hire(self, client):
        waiting = await create_task_id(client)
        await submit_offer(client, waiting)
        await hire(client, await create_task_id(client))
        await hire(client, await create_task_id(client))

        resp = await choose_helper(client, waiting)
        assert resp.status_code == 400
        assert resp.json()["code"] == "JOB_LIMIT_REACHED"

    async def test_job_limit_blocks_new_offers(self, client):
        await hire(client, await create_task_id(client))
        await hire(client, await create_task_id(client))

        resp = await submit_offer(client, await create_task_id(client))
        assert resp.status_code == 400
        assert resp.json()["code"] == "JOB_LIMIT_REACHED"


@pytest.mark.unit
class TestHireConfirmation:
    """POST /webhooks/payments for hire checkouts"""

    async def test_webhook_accepts_hire(self, client, processor):
        task_id = await create_task_id(client)
        await submit_offer(client, task_id, OTHER_HELPER_ID)
        await hire(client, task_id, HELPER_ID)

        task = (await client.get(f"/tasks/{task_id}")).json()
        assert task["status"] == "accepted"
        assert task["helper_id"] == HELPER_ID
        assert task["payment_status"] == "paid"
        assert task["payment_intent_id"] == "pi_test_1"
        assert task["charge_id"] == "ch_test_1"
        assert task["platform_fee_cents"] == 1500
        assert task["helper_amount_cents"] == 8500
        assert task["accepted_at"] is not None
        processor.retrieve_payment_intent.assert_awaited_with("pi_test_1")

        offers = (await client.get(f"/tasks/{task_id}/offers")).json()["offers"]
        assert {offer["helper_id"]: offer["status"] for offer in offers} == {
            HELPER_ID: "accepted",
            OTHER_HELPER_ID: "declined",
        }

        threads = (
            await client.get("/chat/threads", headers=auth_headers(HELPER_ID))
        ).json()["threads"]
        assert [thread["task_id"] for thread in threads] == [task_id]

    async def test_replayed_webhook_is_noop(self, client):
        task_id = await create_task_id(client)
        session_id = await hire(client, task_id)
        before = (await client.get(f"/tasks/{task_id}")).json()

        resp = await deliver_webhook(client, session_id, {"taskId": task_id, "type": "hire"})
        assert resp.status_code == 200
        assert resp.json() == {"received": True}

        after = (await client.get(f"/tasks/{task_id}")).json()
        assert after["accepted_at"] == before["accepted_at"]
        assert _unreconciled_reasons() == []

    async def test_bad_signature_rejected(self, client):
        task_id = await create_task_id(client)
        await submit_offer(client, task_id)
        session_id = (await choose_helper(client, task_id)).json()["session_id"]

        event = checkout_completed_event(session_id, {"taskId": task_id, "type": "hire"})
        body, headers = signed_webhook(event, secret="whsec_wrong")
        resp = await client.post("/webhooks/payments", content=body, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_SIGNATURE"

        task = (await client.get(f"/tasks/{task_id}")).json()
        assert task["status"] == "requested"

    async def test_missing_signature_rejected(self, client):
        resp = await client.post("/webhooks/payments", content=b"{}")
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_SIGNATURE"

    async def test_stale_session_is_recorded_not_applied(self, client):
        task_id = await create_task_id(client)
        await submit_offer(client, task_id)
        stale = (await choose_helper(client, task_id)).json()["session_id"]
        current = (await choose_helper(client, task_id)).json()["session_id"]

        resp = await deliver_webhook(client, stale, {"taskId": task_id, "type": "hire"})
        assert resp.status_code == 200
        assert (await client.get(f"/tasks/{task_id}")).json()["status"] == "requested"
        assert _unreconciled_reasons() == ["session_mismatch"]

        await deliver_webhook(client, current, {"taskId": task_id, "type": "hire"})
        assert (await client.get(f"/tasks/{task_id}")).json()["status"] == "accepted"

    async def test_unknown_task_is_recorded(self, client):
        resp = await deliver_webhook(client, "cs_orphan", {"taskId": "t-missing", "type": "hire"})
        assert resp.status_code == 200
        assert _unreconciled_reasons() == ["task_not_found"]

    async def test_other_event_types_ignored(self, client):
        event = {"id": "evt_2", "type": "payment_intent.created", "data": {"object": {}}}
        body, headers = signed_webhook(event)
        resp = await client.post("/webhooks/payments", content=body, headers=headers)
        assert resp.status_code == 200
        assert _unreconciled_reasons() == []
