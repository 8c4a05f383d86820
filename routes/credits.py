"""
Credit Routes
=============
Client-facing access to the credit ledger.

- POST /credits/deduct   pre-pay a generation (the client then calls
                         /{tool}/generate with skip_credit_deduction)
- POST /credits/refund   give pre-paid credits back after a client-side failure
- GET  /credits/balance  both pools and the spendable total
- POST /credits/purchase Stripe Checkout for an extra credits pack
"""

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request

from config.settings import get_settings
from config.stripe_config import get_stripe_config
from dependencies import get_ledger
from models import CreditsDeductRequest, CreditsPurchaseRequest, CreditsRefundRequest
from services.audit_log import request_metadata
from services.credit_ledger import CreditLedger
from utils.auth import get_current_user_id
from utils.rate_limit import rate_limit


router = APIRouter(prefix="/credits", tags=["credits"])

# Initialize Stripe
stripe.api_key = get_settings().STRIPE_SECRET_KEY


@router.post("/deduct")
async def deduct_credits(
    req: CreditsDeductRequest,
    request: Request,
    user_id: str = Depends(rate_limit("credits")),
    ledger: CreditLedger = Depends(get_ledger),
):
    await ledger.ensure_active(user_id)
    result = await ledger.debit(user_id, req.amount, req.reason, request_metadata(request))
    return {
        "success": True,
        "previousBalance": result.previous_balance.total,
        "deducted": result.deducted,
        "newBalance": result.new_balance.total,
        "fromSubscription": result.from_subscription,
        "fromExtras": result.from_extras,
        "credits": result.new_balance.credits,
        "credits_extras": result.new_balance.credits_extras,
    }


@router.post("/refund")
async def refund_credits(
    req: CreditsRefundRequest,
    request: Request,
    user_id: str = Depends(rate_limit("credits")),
    ledger: CreditLedger = Depends(get_ledger),
):
    # Client-initiated refunds always go back to the subscription pool
    balance = await ledger.refund(
        user_id,
        req.amount,
        to_subscription=req.amount,
        to_extras=0,
        reason=req.reason or "Client refund",
        request_meta=request_metadata(request),
    )
    return {
        "success": True,
        "refunded": req.amount,
        "reason": req.reason,
        "newBalance": balance.total,
    }


@router.get("/balance")
async def get_balance(
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedger = Depends(get_ledger),
):
    balance = await ledger.get_balance(user_id)
    return balance.model_dump()


@router.post("/purchase")
async def purchase_credits(
    req: CreditsPurchaseRequest,
    user_id: str = Depends(rate_limit("payment")),
    ledger: CreditLedger = Depends(get_ledger),
):
    """
    Start a Stripe Checkout payment for an extra credits pack.

    Only paying subscribers can buy packs, and only the packs of their own
    plan. The credits land in credits_extras when Stripe confirms the
    payment (checkout.session.completed webhook).
    """
    profile = await ledger.ensure_active(user_id)
    config = get_stripe_config()
    settings = get_settings()

    status = profile.get("subscription_status")
    if status == "trialing":
        raise HTTPException(status_code=403, detail="Credit packs are available once your trial has ended")
    if status != "active":
        raise HTTPException(status_code=400, detail="An active subscription is required to buy credits")

    customer_id = profile.get("stripe_customer_id")
    if not customer_id:
        raise HTTPException(status_code=400, detail="No Stripe customer on file")

    plan_key = profile.get("subscription_plan")
    pack = config.get_credit_pack(plan_key, req.pack_id)
    if not pack:
        raise HTTPException(status_code=404, detail="Credit pack not available for your plan")

    try:
        session = await stripe.checkout.Session.create_async(
            mode="payment",
            customer=customer_id,
            line_items=[{
                "price_data": {
                    "currency": config.CURRENCY,
                    "product_data": {"name": f"{pack.credits} extra credits"},
                    "unit_amount": int(round(pack.price * 100)),
                },
                "quantity": 1,
            }],
            success_url=f"{settings.FRONTEND_URL}/credits?purchase=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.FRONTEND_URL}/credits",
            metadata={
                "userId": user_id,
                "type": "credit_purchase",
                "pack_id": pack.id,
                "credits": str(pack.credits),
            },
        )
    except stripe.StripeError as e:
        print(f"❌ Stripe error creating credit purchase for {user_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    print(f"✅ Credit purchase session created: {session.id} ({pack.credits} credits for {user_id})")
    return {"url": session.url, "session_id": session.id}
