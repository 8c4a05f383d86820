from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from config.settings import get_settings
from errors import ProviderTransient
from tests.conftest import USER_ID
from tests.fakes import completed, failed


SORA_BODY = {"prompt": "a paper boat in the rain", "seconds": 10}


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


# =============================================
# CREDITS
# =============================================

@pytest.mark.asyncio
async def test_deduct_returns_balances(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=10, credits_extras=15)

    resp = await client.post("/credits/deduct", json={"amount": 20, "reason": "sora2"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["previousBalance"] == 25
    assert data["newBalance"] == 5
    assert data["fromSubscription"] == 10
    assert data["fromExtras"] == 10
    assert (data["credits"], data["credits_extras"]) == (0, 5)


@pytest.mark.asyncio
async def test_deduct_insufficient_credits_is_402(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=5)

    resp = await client.post("/credits/deduct", json={"amount": 20})

    assert resp.status_code == 402
    assert resp.json() == {
        "error": "Insufficient credits",
        "required": 20,
        "available": 5,
        "credits": 5,
        "credits_extras": 0,
    }
    assert ledger_store.pools(USER_ID) == (5, 0)


@pytest.mark.asyncio
async def test_deduct_rejects_non_positive_amount(client):
    resp = await client.post("/credits/deduct", json={"amount": 0})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_refund_goes_to_subscription_pool(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=0, credits_extras=5)

    resp = await client.post("/credits/refund", json={"amount": 20, "reason": "client upload failed"})

    assert resp.status_code == 200
    assert resp.json()["refunded"] == 20
    assert ledger_store.pools(USER_ID) == (20, 5)


@pytest.mark.asyncio
async def test_balance(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=40, credits_extras=60, subscription_status="past_due")

    resp = await client.get("/credits/balance")

    assert resp.status_code == 200
    data = resp.json()
    assert data["credits"] == 40
    assert data["credits_extras"] == 0
    assert data["credits_extras_stored"] == 60
    assert data["total"] == 40


@pytest.mark.asyncio
async def test_purchase_requires_active_subscription(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=10, subscription_status="trialing", stripe_customer_id="cus_1")

    resp = await client.post("/credits/purchase", json={"pack_id": "pro_small"})

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_purchase_rejects_pack_of_another_plan(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=10, subscription_plan="pro", stripe_customer_id="cus_1")

    resp = await client.post("/credits/purchase", json={"pack_id": "premium_large"})

    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_purchase_creates_payment_session(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=10, subscription_plan="pro", stripe_customer_id="cus_1")
    session = SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")

    with patch("routes.credits.stripe.checkout.Session.create_async", new=AsyncMock(return_value=session)) as create:
        resp = await client.post("/credits/purchase", json={"pack_id": "pro_medium"})

    assert resp.status_code == 200
    assert resp.json() == {"url": session.url, "session_id": "cs_test_1"}
    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["customer"] == "cus_1"
    assert kwargs["metadata"] == {
        "userId": USER_ID,
        "type": "credit_purchase",
        "pack_id": "pro_medium",
        "credits": "300",
    }
    assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 599


# =============================================
# GENERATIONS
# =============================================

@pytest.mark.asyncio
async def test_generate_dispatches_and_debits(client, ledger_store):
    resp = await client.post("/sora2/generate", json=SORA_BODY)

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "processing"
    assert data["task_id"] == "task-1"
    assert data["credits_used"] == 20
    assert ledger_store.pools(USER_ID) == (30, 0)


@pytest.mark.asyncio
async def test_generate_unknown_tool_is_404(client):
    resp = await client.post("/midjourney/generate", json=SORA_BODY)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_generate_validates_body(client, ledger_store):
    resp = await client.post("/sora2/generate", json={"prompt": "x", "seconds": 12})

    assert resp.status_code == 400
    assert "seconds" in resp.json()["detail"]
    assert ledger_store.pools(USER_ID) == (50, 0)


@pytest.mark.asyncio
async def test_generate_rejects_untrusted_media_url(client):
    resp = await client.post("/sora2/generate", json={**SORA_BODY, "image_url": "http://evil.example/x.png"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_generate_insufficient_credits(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=3)

    resp = await client.post("/sora2/generate", json=SORA_BODY)

    assert resp.status_code == 402
    assert resp.json()["required"] == 20


@pytest.mark.asyncio
async def test_generate_suspended_account(client, ledger_store):
    ledger_store.add_account(USER_ID, credits=50, account_status="suspended")

    resp = await client.post("/sora2/generate", json=SORA_BODY)

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_generate_transient_submission_is_accepted_pending(client, adapter):
    adapter.submit_error = ProviderTransient("timed out")

    resp = await client.post("/sora2/generate", json=SORA_BODY)

    assert resp.status_code == 202
    assert resp.json()["status"] == "pending"


@pytest.mark.asyncio
async def test_generate_provider_rejection_is_502_and_refunded(client, adapter, ledger_store):
    from errors import ProviderFailure

    adapter.submit_error = ProviderFailure("Prompt rejected")

    resp = await client.post("/sora2/generate", json=SORA_BODY)

    assert resp.status_code == 502
    assert resp.json() == {"error": "Prompt rejected"}
    assert ledger_store.pools(USER_ID) == (50, 0)


@pytest.mark.asyncio
async def test_status_single_and_list(client):
    created = (await client.post("/sora2/generate", json=SORA_BODY)).json()
    await client.post("/sora2/generate", json=SORA_BODY)

    single = await client.get("/sora2/status", params={"id": created["generation_id"]})
    listing = await client.get("/sora2/status")

    assert single.status_code == 200
    generation = single.json()["generation"]
    assert generation["id"] == created["generation_id"]
    assert generation["task_id"] == "task-1"
    assert generation["prompt"] == SORA_BODY["prompt"]
    assert len(listing.json()["generations"]) == 2


@pytest.mark.asyncio
async def test_status_of_someone_elses_generation_is_404(client, generation_store):
    other = await generation_store.create("other-user", "sora2", 20, {"prompt": "x"})

    resp = await client.get("/sora2/status", params={"id": other.id})

    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_processing_generation_is_400(client, generation_store):
    created = (await client.post("/sora2/generate", json=SORA_BODY)).json()

    resp = await client.delete("/sora2/delete", params={"id": created["generation_id"]})

    assert resp.status_code == 400
    assert generation_store.row(created["generation_id"])["status"] == "processing"


@pytest.mark.asyncio
async def test_delete_completed_generation_removes_artifact(client, adapter, uploader, generation_store):
    created = (await client.post("/sora2/generate", json=SORA_BODY)).json()
    adapter.statuses["task-1"] = completed()
    await client.post("/sora2/process")

    resp = await client.delete("/sora2/delete", params={"id": created["generation_id"]})

    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert created["generation_id"] not in generation_store.rows
    assert uploader.removed == [uploader.uploads[0]["url"]]


@pytest.mark.asyncio
async def test_process_reports_batch(client, adapter, ledger_store):
    await client.post("/sora2/generate", json=SORA_BODY)
    await client.post("/sora2/generate", json=SORA_BODY)
    adapter.statuses["task-1"] = completed()
    adapter.statuses["task-2"] = failed()

    resp = await client.post("/sora2/process")

    data = resp.json()
    assert data["checked"] == 2
    assert data["completed"] == 1
    assert data["failed"] == 1
    assert {r["status"] for r in data["results"]} == {"completed", "failed"}
    assert ledger_store.pools(USER_ID) == (30, 0)


@pytest.mark.asyncio
async def test_cleanup_refunds_orphans(client, generation_store, ledger_store):
    generation = await generation_store.create(USER_ID, "sora2", 20, {"prompt": "x"})
    generation_store.backdate(generation.id, 600)

    resp = await client.post("/sora2/cleanup")

    assert resp.json()["cleaned"] == 1
    assert resp.json()["refunded"] == 20
    assert ledger_store.pools(USER_ID) == (70, 0)


@pytest.mark.asyncio
async def test_link_task(client, generation_store):
    generation = await generation_store.create(USER_ID, "sora2", 20, {"prompt": "x"})

    resp = await client.post("/sora2/link-task", json={"generation_id": generation.id, "task_id": "ext-1"})
    missing = await client.post("/sora2/link-task", json={"generation_id": generation.id})

    assert resp.status_code == 200
    assert resp.json()["generation"]["task_id"] == "ext-1"
    assert missing.status_code == 400


@pytest.mark.asyncio
async def test_cron_requires_secret(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "CRON_SECRET", "cron-secret")

    resp = await client.post("/sora2/cron", headers={"Authorization": "Bearer wrong"})

    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_cron_reconciles_every_account(client, monkeypatch, adapter, generation_store, ledger_store):
    monkeypatch.setattr(get_settings(), "CRON_SECRET", "cron-secret")
    ledger_store.add_account("other-user", credits=0)
    dispatched = await generation_store.create("other-user", "sora2", 20, {"prompt": "x"})
    await generation_store.attach_task_reference(dispatched.id, "other-user", "task-x")
    adapter.statuses["task-x"] = failed()
    orphan = await generation_store.create(USER_ID, "sora2", 20, {"prompt": "y"})
    generation_store.backdate(orphan.id, 600)

    resp = await client.post("/sora2/cron", headers={"Authorization": "Bearer cron-secret"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["processed"]["failed"] == 1
    assert data["orphans"]["cleaned"] == 1
    assert ledger_store.pools("other-user") == (20, 0)
    assert ledger_store.pools(USER_ID) == (70, 0)
