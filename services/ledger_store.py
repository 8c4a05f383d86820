"""
Ledger storage backends.

All credit mutations go through server-side Postgres functions
(`deduct_credits_atomic`, `refund_credits_atomic`) so that the check and
the update happen in one statement under a row lock. The Python side never
reads a balance and writes it back.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


PROFILE_COLUMNS = (
    "id, credits, credits_extras, subscription_status, subscription_plan, "
    "account_status, stripe_customer_id, subscription_id"
)


class LedgerStore(ABC):
    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Dict[str, Any]]:
        """Profile row with credit fields, or None."""

    @abstractmethod
    async def deduct_atomic(self, account_id: str, amount: int, reason: Optional[str]) -> Dict[str, Any]:
        """
        Conditional debit. Returns the function payload:
        {success, error?, previous_balance, new_balance, deducted, from_subscription, from_extras}
        """

    @abstractmethod
    async def refund_atomic(
        self, account_id: str, to_subscription: int, to_extras: int, reason: Optional[str]
    ) -> Dict[str, Any]:
        """Increment both pools. Returns {success, error?, new_balance}."""

    @abstractmethod
    async def set_subscription_credits(self, account_id: str, amount: int) -> Optional[Dict[str, Any]]:
        """Replace the subscription pool (plan renewal / cancellation). Returns the updated row."""


class SupabaseLedgerStore(LedgerStore):
    def __init__(self, client):
        self.client = client

    async def get_account(self, account_id):
        result = await (
            self.client.table("profiles")
            .select(PROFILE_COLUMNS)
            .eq("id", account_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def deduct_atomic(self, account_id, amount, reason):
        result = await self.client.rpc("deduct_credits_atomic", {
            "p_user_id": account_id,
            "p_amount": amount,
            "p_reason": reason,
        }).execute()
        return result.data or {"success": False, "error": "Empty response from deduct_credits_atomic"}

    async def refund_atomic(self, account_id, to_subscription, to_extras, reason):
        result = await self.client.rpc("refund_credits_atomic", {
            "p_user_id": account_id,
            "p_to_subscription": to_subscription,
            "p_to_extras": to_extras,
            "p_reason": reason,
        }).execute()
        return result.data or {"success": False, "error": "Empty response from refund_credits_atomic"}

    async def set_subscription_credits(self, account_id, amount):
        result = await (
            self.client.table("profiles")
            .update({"credits": amount})
            .eq("id", account_id)
            .execute()
        )
        return result.data[0] if result.data else None
