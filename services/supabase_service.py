"""
Supabase Billing Service
========================
Profile updates driven by Stripe events.

Credit pools are never written here: the webhook goes through the
CreditLedger for every credit change. This module only mirrors billing
state (plan, subscription status, Stripe ids, period end).

Functions:
- update_user_subscription: write billing fields on a profile
- get_user_by_stripe_customer / get_user_by_stripe_subscription: lookups
- log_webhook_event: keep a trace of received events
"""

import json
from typing import Any, Dict, Optional

from models import utc_now_iso
from supabase_client import get_client


# Webhook field -> profiles column
FIELD_MAPPING = {
    "stripe_customer_id": "stripe_customer_id",
    "stripe_subscription_id": "subscription_id",
    "status": "subscription_status",
    "plan": "subscription_plan",
    "current_period_end": "subscription_current_period_end",
}


# =============================================
# SUBSCRIPTION MANAGEMENT
# =============================================

async def update_user_subscription(user_id: str, data: Dict[str, Any]) -> bool:
    """
    Update the billing fields of a profile.

    Args:
        user_id: The user's ID
        data: Any of stripe_customer_id, stripe_subscription_id, status,
              plan, current_period_end

    Returns:
        True if a profile was updated, False otherwise
    """
    update_data = {
        column: data[key] for key, column in FIELD_MAPPING.items() if key in data
    }
    update_data["updated_at"] = utc_now_iso()

    try:
        client = await get_client()
        result = await client.table("profiles").update(update_data).eq("id", user_id).execute()
    except Exception as e:
        print(f"❌ Error updating subscription for user {user_id}: {e}")
        return False

    if result.data:
        print(f"✅ Updated subscription for user {user_id}")
        print(f"   Fields updated: {list(update_data.keys())}")
        return True

    print(f"⚠️ No user found with ID {user_id}")
    return False


# =============================================
# USER LOOKUP
# =============================================

async def _find_profile(column: str, value: str) -> Optional[Dict[str, Any]]:
    try:
        client = await get_client()
        result = await client.table("profiles").select("*").eq(column, value).limit(1).execute()
    except Exception as e:
        print(f"❌ Error finding user by {column} {value}: {e}")
        return None
    return result.data[0] if result.data else None


async def get_user_by_stripe_subscription(subscription_id: str) -> Optional[Dict[str, Any]]:
    """Find a profile by its Stripe subscription ID."""
    return await _find_profile("subscription_id", subscription_id)


async def get_user_by_stripe_customer(customer_id: str) -> Optional[Dict[str, Any]]:
    """Find a profile by its Stripe customer ID."""
    return await _find_profile("stripe_customer_id", customer_id)


# =============================================
# WEBHOOK LOGGING
# =============================================

# Postgres unique_violation: webhook_logs.event_id already recorded
UNIQUE_VIOLATION = "23505"


async def log_webhook_event(event_type: str, event_id: str, data: Dict[str, Any]) -> bool:
    """
    Record a webhook event summary in webhook_logs.

    Returns False when the event id was already recorded (a Stripe
    redelivery). Any other logging error is printed and the event is
    treated as new.
    """
    log_entry = {
        "event_type": event_type,
        "event_id": event_id,
        "timestamp": utc_now_iso(),
        "data_summary": json.dumps({
            "id": data.get("id"),
            "object": data.get("object"),
            "status": data.get("status"),
            "customer": data.get("customer"),
            "subscription": data.get("subscription"),
        }),
    }

    try:
        client = await get_client()
        await client.table("webhook_logs").insert(log_entry).execute()
    except Exception as e:
        if getattr(e, "code", None) == UNIQUE_VIOLATION:
            print(f"ℹ️ Webhook {event_id} already processed, skipping")
            return False
        print(f"⚠️ Error logging webhook event {event_id}: {e}")
        return True

    print(f"📝 Logged webhook: {event_type} ({event_id})")
    return True
