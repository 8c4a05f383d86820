"""
Stripe Configuration Module
============================
Manages subscription plans, trial allowances and extra-credit packs.

Plans (monthly credits replenish the subscription pool):
- Starter: 550 credits
- Pro: 1200 credits
- Premium: 2500 credits

Environment Variables:
- STRIPE_PRICE_STARTER / STRIPE_PRICE_PRO / STRIPE_PRICE_PREMIUM
- STRIPE_CURRENCY (default: usd)
"""

import os
from typing import Optional, Dict, List
from dataclasses import dataclass


@dataclass
class PlanInfo:
    """Information about a subscription plan"""
    key: str
    name: str
    price: float
    credits: int
    trial_credits: int
    price_id: Optional[str] = None


@dataclass
class CreditPack:
    """A one-time extra credits purchase"""
    id: str
    credits: int
    price: float

    @property
    def price_per_credit(self) -> float:
        return round(self.price / self.credits, 4)


PLAN_ORDER: Dict[str, int] = {
    "starter": 1,
    "pro": 2,
    "premium": 3,
}


class StripeConfig:
    """
    Centralized Stripe configuration class.

    Credit packs are scoped to the buyer's plan: higher plans get a
    better price per credit.
    """

    def __init__(self):
        self.CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")

        self.PRICE_STARTER = os.getenv("STRIPE_PRICE_STARTER")
        self.PRICE_PRO = os.getenv("STRIPE_PRICE_PRO")
        self.PRICE_PREMIUM = os.getenv("STRIPE_PRICE_PREMIUM")

        self.PLANS: Dict[str, PlanInfo] = {
            "starter": PlanInfo("starter", "Starter", 24.50, 550, 50, self.PRICE_STARTER),
            "pro": PlanInfo("pro", "Pro", 39.50, 1200, 100, self.PRICE_PRO),
            "premium": PlanInfo("premium", "Premium", 59.50, 2500, 150, self.PRICE_PREMIUM),
        }

        self.CREDIT_PACKS: Dict[str, List[CreditPack]] = {
            "starter": [
                CreditPack("starter_small", 100, 2.50),
                CreditPack("starter_medium", 250, 5.99),
                CreditPack("starter_large", 500, 10.99),
            ],
            "pro": [
                CreditPack("pro_small", 100, 2.20),
                CreditPack("pro_medium", 300, 5.99),
                CreditPack("pro_large", 600, 10.99),
            ],
            "premium": [
                CreditPack("premium_small", 150, 2.99),
                CreditPack("premium_medium", 400, 6.99),
                CreditPack("premium_large", 800, 12.99),
            ],
        }

        self._price_to_plan: Dict[str, PlanInfo] = {
            plan.price_id: plan for plan in self.PLANS.values() if plan.price_id
        }

    def get_plan(self, plan_key: str) -> Optional[PlanInfo]:
        return self.PLANS.get(plan_key)

    def get_plan_by_price_id(self, price_id: str) -> Optional[PlanInfo]:
        """Resolve a Stripe price ID to the plan it bills."""
        return self._price_to_plan.get(price_id)

    def get_credits_for_plan(self, plan_key: str) -> int:
        """Monthly allowance for a plan, or 0 if unknown"""
        plan = self.PLANS.get(plan_key)
        return plan.credits if plan else 0

    def get_trial_credits(self, plan_key: str) -> int:
        plan = self.PLANS.get(plan_key)
        return plan.trial_credits if plan else 50

    def get_credit_pack(self, plan_key: str, pack_id: str) -> Optional[CreditPack]:
        """
        Find a credit pack available to a plan.

        Returns None when the pack does not exist or belongs to another plan.
        """
        for pack in self.CREDIT_PACKS.get(plan_key, []):
            if pack.id == pack_id:
                return pack
        return None

    def is_upgrade(self, current_plan: str, new_plan: str) -> bool:
        return PLAN_ORDER.get(new_plan, 0) > PLAN_ORDER.get(current_plan, 0)


# Singleton instance
_stripe_config: Optional[StripeConfig] = None


def get_stripe_config() -> StripeConfig:
    """Get or create StripeConfig singleton"""
    global _stripe_config
    if _stripe_config is None:
        _stripe_config = StripeConfig()
    return _stripe_config
