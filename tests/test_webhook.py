from unittest.mock import AsyncMock, patch

import pytest
import stripe

from tests.conftest import USER_ID


def event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def billing():
    """Patch the profile helpers the webhook writes billing state through."""
    with patch("routes.webhook.update_user_subscription", new=AsyncMock(return_value=True)) as update, \
            patch("routes.webhook.get_user_by_stripe_subscription", new=AsyncMock(return_value=None)) as by_sub, \
            patch("routes.webhook.get_user_by_stripe_customer", new=AsyncMock(return_value=None)) as by_customer, \
            patch("routes.webhook.log_webhook_event", new=AsyncMock(return_value=True)) as log:
        yield {"update": update, "by_subscription": by_sub, "by_customer": by_customer, "log": log}


async def deliver(client, evt):
    with patch("routes.webhook.stripe.Webhook.construct_event", return_value=evt):
        return await client.post(
            "/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=sig"}
        )


@pytest.mark.asyncio
async def test_invalid_signature_is_400(client, billing):
    error = stripe.SignatureVerificationError("bad signature", "t=1,v1=sig")
    with patch("routes.webhook.stripe.Webhook.construct_event", side_effect=error):
        resp = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "x"})

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_credit_purchase_grants_extras(client, billing, ledger_store, audit):
    resp = await deliver(client, event("checkout.session.completed", {
        "id": "cs_1",
        "metadata": {"userId": USER_ID, "type": "credit_purchase", "credits": "300", "pack_id": "pro_medium"},
    }))

    assert resp.status_code == 200
    assert resp.json()["received"] is True
    assert ledger_store.pools(USER_ID) == (50, 300)
    assert "credits_purchased" in audit.actions()
    billing["update"].assert_not_awaited()


@pytest.mark.asyncio
async def test_subscription_checkout_sets_trial_allowance(client, billing, ledger_store, monkeypatch):
    from config.stripe_config import get_stripe_config

    config = get_stripe_config()
    monkeypatch.setitem(config._price_to_plan, "price_pro", config.PLANS["pro"])
    subscription = {
        "id": "sub_1",
        "status": "trialing",
        "current_period_end": 1767225600,
        "items": {"data": [{"price": {"id": "price_pro"}}]},
        "metadata": {},
    }

    with patch("routes.webhook.stripe.Subscription.retrieve_async", new=AsyncMock(return_value=subscription)):
        resp = await deliver(client, event("checkout.session.completed", {
            "id": "cs_2",
            "subscription": "sub_1",
            "customer": "cus_1",
            "metadata": {"userId": USER_ID, "type": "subscription", "plan": "pro"},
        }))

    assert resp.status_code == 200
    assert ledger_store.pools(USER_ID) == (100, 0)
    user_id, data = billing["update"].await_args.args
    assert user_id == USER_ID
    assert data["status"] == "trialing"
    assert data["plan"] == "pro"
    assert data["stripe_customer_id"] == "cus_1"
    assert data["current_period_end"].startswith("2026-01-01")


@pytest.mark.asyncio
async def test_subscription_deleted_zeroes_subscription_pool(client, billing, ledger_store):
    ledger_store.add_account(USER_ID, credits=800, credits_extras=40)

    resp = await deliver(client, event("customer.subscription.deleted", {
        "id": "sub_1",
        "metadata": {"userId": USER_ID},
    }))

    assert resp.status_code == 200
    assert ledger_store.pools(USER_ID) == (0, 40)
    assert billing["update"].await_args.args[1] == {"status": "canceled"}


@pytest.mark.asyncio
async def test_invoice_paid_resets_plan_allowance(client, billing, ledger_store):
    ledger_store.add_account(USER_ID, credits=13, credits_extras=7, subscription_plan="premium")
    billing["by_subscription"].return_value = {"id": USER_ID, "subscription_plan": "premium"}

    resp = await deliver(client, event("invoice.paid", {
        "id": "in_1",
        "subscription": "sub_1",
        "billing_reason": "subscription_cycle",
        "amount_paid": 5950,
    }))

    assert resp.status_code == 200
    assert ledger_store.pools(USER_ID) == (2500, 7)


@pytest.mark.asyncio
async def test_zero_amount_trial_invoice_keeps_credits(client, billing, ledger_store):
    resp = await deliver(client, event("invoice.paid", {
        "id": "in_0",
        "subscription": "sub_1",
        "billing_reason": "subscription_create",
        "amount_paid": 0,
    }))

    assert resp.status_code == 200
    assert ledger_store.pools(USER_ID) == (50, 0)


@pytest.mark.asyncio
async def test_payment_failed_marks_past_due(client, billing):
    billing["by_subscription"].return_value = {"id": USER_ID}

    resp = await deliver(client, event("invoice.payment_failed", {
        "id": "in_2",
        "parent": {"subscription_details": {"subscription": "sub_1"}},
    }))

    assert resp.status_code == 200
    billing["update"].assert_awaited_once_with(USER_ID, {"status": "past_due"})


@pytest.mark.asyncio
async def test_subscription_updated_mirrors_status(client, billing):
    billing["by_subscription"].return_value = {"id": USER_ID}

    resp = await deliver(client, event("customer.subscription.updated", {
        "id": "sub_1",
        "status": "active",
        "customer": "cus_1",
        "items": {"data": [{"price": {"id": "price_unknown"}, "current_period_end": 1767225600}]},
        "metadata": {"plan": "starter"},
    }))

    assert resp.status_code == 200
    user_id, data = billing["update"].await_args.args
    assert data["status"] == "active"
    assert data["plan"] == "starter"
    assert data["current_period_end"].startswith("2026-01-01")


@pytest.mark.asyncio
async def test_unhandled_event_is_acknowledged(client, billing):
    resp = await deliver(client, event("customer.created", {"id": "cus_9"}))

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "event_type": "customer.created"}


@pytest.mark.asyncio
async def test_redelivered_credit_purchase_is_granted_once(client, billing, ledger_store):
    purchase = event("checkout.session.completed", {
        "id": "cs_1",
        "metadata": {"userId": USER_ID, "type": "credit_purchase", "credits": "300", "pack_id": "pro_medium"},
    }, event_id="evt_dup")
    billing["log"].side_effect = [True, False]

    first = await deliver(client, purchase)
    second = await deliver(client, purchase)

    assert first.status_code == second.status_code == 200
    assert second.json()["duplicate"] is True
    assert ledger_store.pools(USER_ID) == (50, 300)


class UniqueViolation(Exception):
    code = "23505"


class WebhookLogTable:
    def __init__(self, error=None):
        self.error = error
        self.rows = []

    def insert(self, row):
        self.rows.append(row)
        return self

    async def execute(self):
        if self.error is not None:
            raise self.error


class WebhookLogClient:
    def __init__(self, table):
        self._table = table

    def table(self, name):
        assert name == "webhook_logs"
        return self._table


@pytest.mark.asyncio
@pytest.mark.parametrize("error,expected", [
    (None, True),
    (UniqueViolation("duplicate key value violates unique constraint"), False),
    (RuntimeError("connection reset"), True),
])
async def test_log_webhook_event_reports_redeliveries(error, expected):
    from services import supabase_service

    table = WebhookLogTable(error)
    with patch("services.supabase_service.get_client", new=AsyncMock(return_value=WebhookLogClient(table))):
        recorded = await supabase_service.log_webhook_event("invoice.paid", "evt_9", {"id": "in_1"})

    assert recorded is expected
    assert table.rows[0]["event_id"] == "evt_9"
