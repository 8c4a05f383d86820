"""
Stripe Checkout Routes
======================
Creates Stripe Checkout sessions for plan subscriptions.

New subscribers start with a trial; the plan's trial allowance and the
subscription state arrive through the webhook once Stripe confirms.
"""

from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from config.settings import get_settings
from config.stripe_config import get_stripe_config
from dependencies import get_ledger
from services.credit_ledger import CreditLedger
from utils.rate_limit import rate_limit


router = APIRouter(tags=["checkout"])

# Initialize Stripe
stripe.api_key = get_settings().STRIPE_SECRET_KEY

TRIAL_PERIOD_DAYS = 3


class CheckoutRequest(BaseModel):
    """Request model for creating a checkout session"""
    plan_key: str
    user_email: Optional[str] = None


class CheckoutResponse(BaseModel):
    """Response model for checkout session"""
    url: str
    session_id: str


@router.post("/stripe/create-checkout", response_model=CheckoutResponse)
async def create_checkout(
    req: CheckoutRequest,
    user_id: str = Depends(rate_limit("payment")),
    ledger: CreditLedger = Depends(get_ledger),
):
    """
    Create a Stripe Checkout Session for a subscription plan.

    Input:
    - plan_key: starter, pro or premium

    Returns:
    - url: Checkout session URL
    - session_id: Session ID for reference
    """
    config = get_stripe_config()
    settings = get_settings()

    plan = config.get_plan(req.plan_key)
    if not plan:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid plan: {req.plan_key}. Valid plans: {', '.join(config.PLANS)}"
        )
    if not plan.price_id:
        raise HTTPException(status_code=400, detail=f"No Stripe price configured for plan {plan.key}")

    profile = await ledger.ensure_active(user_id)

    metadata = {
        "userId": user_id,
        "plan": plan.key,
        "credits": str(plan.credits),
        "type": "subscription",
    }

    session_params = {
        "mode": "subscription",
        "line_items": [{
            "price": plan.price_id,
            "quantity": 1,
        }],
        "success_url": f"{settings.FRONTEND_URL}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{settings.FRONTEND_URL}/pricing",
        "allow_promotion_codes": True,
        "client_reference_id": user_id,
        "metadata": metadata,
        "subscription_data": {"metadata": metadata},
    }

    # One trial per account: returning customers pay from day one
    if profile.get("stripe_customer_id"):
        session_params["customer"] = profile["stripe_customer_id"]
    else:
        session_params["subscription_data"]["trial_period_days"] = TRIAL_PERIOD_DAYS
        if req.user_email:
            session_params["customer_email"] = req.user_email

    try:
        session = await stripe.checkout.Session.create_async(**session_params)
    except stripe.StripeError as e:
        print(f"❌ Stripe error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    print(f"✅ Checkout session created: {session.id}")
    print(f"   Plan: {plan.name}")
    print(f"   Credits: {plan.credits}")

    return CheckoutResponse(url=session.url, session_id=session.id)
