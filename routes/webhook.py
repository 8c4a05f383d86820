"""
Stripe Webhook Handler
======================
Keeps billing state and the subscription credit pool in line with Stripe.

The route reads the raw body: signature verification needs the exact bytes
Stripe signed.

Events handled:
- checkout.session.completed: credit pack purchase or new subscription
- customer.subscription.created / updated: mirror status, plan, period end
- customer.subscription.deleted: cancellation, subscription credits to 0
- invoice.paid: renewal, subscription credits back to the plan allowance
- invoice.payment_failed: status past_due
"""

import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request

from config.settings import get_settings
from config.stripe_config import PlanInfo, get_stripe_config
from dependencies import get_ledger
from services.credit_ledger import CreditLedger
from services.supabase_service import (
    get_user_by_stripe_customer,
    get_user_by_stripe_subscription,
    log_webhook_event,
    update_user_subscription,
)


router = APIRouter(tags=["webhook"])

# Initialize Stripe
stripe.api_key = get_settings().STRIPE_SECRET_KEY


@router.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request, ledger: CreditLedger = Depends(get_ledger)):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    # Verify webhook signature
    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, get_settings().STRIPE_WEBHOOK_SECRET
        )
    except ValueError as e:
        print(f"❌ Invalid payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError as e:
        print(f"❌ Invalid signature: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_type = event["type"]
    event_id = event["id"]
    data = event["data"]["object"]

    print(f"📨 Received Stripe webhook: {event_type} (ID: {event_id})")
    if not await log_webhook_event(event_type, event_id, data):
        return {"received": True, "event_type": event_type, "duplicate": True}

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        print(f"ℹ️ Unhandled event type: {event_type}")
        return {"received": True, "event_type": event_type}

    try:
        await handler(data, ledger)
    except Exception as e:
        # Answer 200 anyway: a retried event would replay the credit changes
        print(f"❌ Error processing webhook {event_type}: {e}")
        traceback.print_exc()
        return {"received": True, "event_type": event_type, "error": str(e)}

    return {"received": True, "event_type": event_type}


# =============================================
# HELPERS
# =============================================

def _user_id_from_metadata(obj: Dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("userId") or metadata.get("user_id") or obj.get("client_reference_id")


async def _resolve_user_id(obj: Dict[str, Any], subscription_id: Optional[str]) -> Optional[str]:
    user_id = _user_id_from_metadata(obj)
    if user_id:
        return user_id

    user = None
    if subscription_id:
        user = await get_user_by_stripe_subscription(subscription_id)
    if not user and obj.get("customer"):
        user = await get_user_by_stripe_customer(obj["customer"])
    return user.get("id") if user else None


def _subscription_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    try:
        return subscription["items"]["data"][0]["price"]["id"]
    except (KeyError, IndexError, TypeError):
        return None


def _period_end(subscription: Dict[str, Any]) -> Optional[str]:
    timestamp = subscription.get("current_period_end")
    if timestamp is None:
        # Newer API versions carry the period on the subscription item
        try:
            timestamp = subscription["items"]["data"][0].get("current_period_end")
        except (KeyError, IndexError, TypeError):
            timestamp = None
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    if invoice.get("subscription"):
        return invoice["subscription"]
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("subscription")


def _plan_for_subscription(subscription: Dict[str, Any]) -> Optional[PlanInfo]:
    config = get_stripe_config()
    price_id = _subscription_price_id(subscription)
    plan = config.get_plan_by_price_id(price_id) if price_id else None
    if plan is None:
        plan = config.get_plan((subscription.get("metadata") or {}).get("plan"))
    return plan


# =============================================
# EVENT HANDLERS
# =============================================

async def handle_checkout_completed(session: Dict[str, Any], ledger: CreditLedger):
    """
    checkout.session.completed

    - credit_purchase: add the pack to credits_extras
    - subscription: record the subscription and set the subscription pool
      (trial allowance while trialing, full plan allowance otherwise)
    """
    metadata = session.get("metadata") or {}
    user_id = _user_id_from_metadata(session)

    if not user_id:
        print("❌ No user_id in checkout session metadata")
        return

    if metadata.get("type") == "credit_purchase":
        credits = int(metadata.get("credits", 0))
        print(f"💳 Credit purchase: {credits} credits for user {user_id}")
        if credits > 0:
            await ledger.grant_extras(user_id, credits, reason=f"Credit pack {metadata.get('pack_id')}")
        return

    subscription_id = session.get("subscription")
    if not subscription_id:
        print("⚠️ No subscription in checkout session")
        return

    subscription = await stripe.Subscription.retrieve_async(subscription_id)
    plan = _plan_for_subscription(subscription)
    if not plan:
        print(f"⚠️ Unknown price ID: {_subscription_price_id(subscription)}")
        return

    status = subscription.get("status") or "active"
    credits = plan.trial_credits if status == "trialing" else plan.credits

    print(f"✅ New subscription for user {user_id}")
    print(f"   Plan: {plan.name} ({status})")
    print(f"   Credits: {credits}")

    await update_user_subscription(user_id, {
        "stripe_customer_id": session.get("customer"),
        "stripe_subscription_id": subscription_id,
        "status": status,
        "plan": plan.key,
        "current_period_end": _period_end(subscription),
    })
    await ledger.reset_subscription_credits(user_id, credits, reason=f"{plan.key} subscription started")


async def handle_subscription_updated(subscription: Dict[str, Any], ledger: CreditLedger):
    """customer.subscription.created / updated: mirror the billing state only."""
    user_id = await _resolve_user_id(subscription, subscription.get("id"))
    if not user_id:
        print(f"⚠️ No user found for subscription {subscription.get('id')}")
        return

    status = subscription.get("status")
    update_data = {
        "stripe_subscription_id": subscription.get("id"),
        "status": status,
        "current_period_end": _period_end(subscription),
    }
    if subscription.get("customer"):
        update_data["stripe_customer_id"] = subscription["customer"]

    plan = _plan_for_subscription(subscription)
    if plan:
        update_data["plan"] = plan.key
    else:
        print(f"⚠️ Unknown price ID in subscription update: {_subscription_price_id(subscription)}")

    print(f"📝 Subscription updated for user {user_id}: {status}")
    await update_user_subscription(user_id, update_data)


async def handle_subscription_deleted(subscription: Dict[str, Any], ledger: CreditLedger):
    """customer.subscription.deleted: canceled, subscription pool emptied. Extras are kept."""
    user_id = await _resolve_user_id(subscription, subscription.get("id"))
    if not user_id:
        print(f"⚠️ No user found for canceled subscription {subscription.get('id')}")
        return

    print(f"🚫 Subscription canceled for user {user_id}")
    await update_user_subscription(user_id, {"status": "canceled"})
    await ledger.reset_subscription_credits(user_id, 0, reason="subscription canceled")


async def handle_invoice_paid(invoice: Dict[str, Any], ledger: CreditLedger):
    """invoice.paid: a paid billing period restores the plan allowance."""
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        print("ℹ️ No subscription in invoice (one-time payment)")
        return

    # Zero-amount invoice opening a trial: the trial allowance is already set
    if invoice.get("billing_reason") == "subscription_create" and not invoice.get("amount_paid"):
        print(f"ℹ️ Trial invoice for subscription {subscription_id}, credits unchanged")
        return

    user = await get_user_by_stripe_subscription(subscription_id)
    if not user and invoice.get("customer"):
        user = await get_user_by_stripe_customer(invoice["customer"])
    if not user:
        print(f"⚠️ No user found for subscription {subscription_id}")
        return

    user_id = user.get("id")
    plan_key = user.get("subscription_plan")
    credits = get_stripe_config().get_credits_for_plan(plan_key)
    if credits == 0:
        subscription = await stripe.Subscription.retrieve_async(subscription_id)
        plan = _plan_for_subscription(subscription)
        if plan:
            plan_key, credits = plan.key, plan.credits

    if credits == 0:
        print(f"⚠️ Could not determine credits for plan {plan_key}")
        return

    print(f"🔄 Billing period paid for user {user_id} ({invoice.get('billing_reason')})")
    await update_user_subscription(user_id, {"status": "active", "plan": plan_key})
    await ledger.reset_subscription_credits(user_id, credits, reason=f"{plan_key} renewal")


async def handle_payment_failed(invoice: Dict[str, Any], ledger: CreditLedger):
    """invoice.payment_failed: past_due until Stripe's retries succeed or cancel."""
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        print("ℹ️ No subscription in failed invoice")
        return

    user = await get_user_by_stripe_subscription(subscription_id)
    if not user:
        print(f"⚠️ No user found for subscription {subscription_id}")
        return

    print(f"❌ Payment failed for user {user.get('id')}")
    await update_user_subscription(user.get("id"), {"status": "past_due"})


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_updated,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_payment_failed,
}
