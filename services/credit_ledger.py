"""
Credit Ledger
=============
Owns the two credit pools of an account:
- credits (subscription): replenished by the plan every billing period
- credits_extras: purchased packs, never expire, spendable only while the
  subscription is active or trialing

Debits draw from the subscription pool first and report how much came from
each pool so callers can route refunds.
"""

from typing import Any, Dict, Optional

from errors import AccountNotFound, AccountSuspended, CreditServiceError, InsufficientCredits
from models import CreditBalance, DebitResult
from services.audit_log import AuditActions, AuditLog, RequestMeta
from services.ledger_store import LedgerStore


SPENDABLE_EXTRAS_STATUSES = ("active", "trialing")


def balance_from_row(row: Dict[str, Any]) -> CreditBalance:
    credits = row.get("credits") or 0
    extras_stored = row.get("credits_extras") or 0
    status = row.get("subscription_status") or "inactive"
    active = status in SPENDABLE_EXTRAS_STATUSES
    extras = extras_stored if active else 0
    return CreditBalance(
        credits=credits,
        credits_extras=extras,
        credits_extras_stored=extras_stored,
        total=credits + extras,
        subscription_status=status,
        subscription_active=active,
    )


def _balance_from_payload(payload: Optional[Dict[str, Any]]) -> CreditBalance:
    payload = payload or {}
    status = payload.get("subscription_status") or "inactive"
    extras = payload.get("credits_extras") or 0
    return CreditBalance(
        credits=payload.get("credits") or 0,
        credits_extras=extras,
        credits_extras_stored=payload.get("credits_extras_stored", extras) or 0,
        total=payload.get("total") or 0,
        subscription_status=status,
        subscription_active=status in SPENDABLE_EXTRAS_STATUSES,
    )


class CreditLedger:
    def __init__(self, store: LedgerStore, audit: Optional[AuditLog] = None):
        self.store = store
        self.audit = audit

    async def _audit(self, account_id: str, action: str, details: Dict[str, Any], meta: Optional[RequestMeta]):
        if self.audit is None:
            return
        try:
            await self.audit.log_action(account_id, action, details, meta)
        except Exception as e:
            print(f"⚠️ Audit log failed for {action} ({account_id}): {e}")

    async def get_balance(self, account_id: str) -> CreditBalance:
        row = await self.store.get_account(account_id)
        if not row:
            raise AccountNotFound()
        return balance_from_row(row)

    async def ensure_active(self, account_id: str) -> Dict[str, Any]:
        """Return the profile row, raising if the account is missing or suspended."""
        row = await self.store.get_account(account_id)
        if not row:
            raise AccountNotFound()
        if row.get("account_status") == "suspended":
            raise AccountSuspended()
        return row

    async def debit(
        self,
        account_id: str,
        amount: int,
        reason: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> DebitResult:
        """
        Atomically take `amount` credits, subscription pool first.

        Raises InsufficientCredits (state untouched) when the spendable total
        is lower than `amount`, AccountNotFound for unknown accounts.
        """
        if amount <= 0:
            raise ValueError("Debit amount must be positive")

        data = await self.store.deduct_atomic(account_id, amount, reason)

        if not data.get("success"):
            error = data.get("error") or "Failed to deduct credits"
            if error == "Profile not found":
                raise AccountNotFound()
            if error == "Insufficient credits":
                previous = _balance_from_payload(data.get("previous_balance"))
                print(f"⚠️ Insufficient credits for {account_id}: {amount} required, {previous.total} available")
                raise InsufficientCredits(
                    required=amount,
                    available=previous.total,
                    credits=previous.credits,
                    credits_extras=previous.credits_extras,
                )
            raise CreditServiceError(error)

        result = DebitResult(
            previous_balance=_balance_from_payload(data.get("previous_balance")),
            new_balance=_balance_from_payload(data.get("new_balance")),
            deducted=data.get("deducted", amount),
            from_subscription=data.get("from_subscription", 0),
            from_extras=data.get("from_extras", 0),
        )

        print(f"💰 Debited {amount} credits from {account_id} "
              f"(subscription: {result.from_subscription}, extras: {result.from_extras})")

        await self._audit(account_id, AuditActions.CREDITS_DEDUCTED, {
            "amount": amount,
            "reason": reason,
            "previous_balance": result.previous_balance.total,
            "new_balance": result.new_balance.total,
            "from_subscription": result.from_subscription,
            "from_extras": result.from_extras,
        }, request_meta)

        return result

    async def refund(
        self,
        account_id: str,
        amount: int,
        to_subscription: Optional[int] = None,
        to_extras: Optional[int] = None,
        reason: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> CreditBalance:
        """
        Add `amount` credits back, split between the two pools.

        Without an explicit split everything goes to the subscription pool.
        Whether a generation was already refunded is tracked by its status
        transition, not here.
        """
        if amount <= 0:
            raise ValueError("Refund amount must be positive")

        if to_subscription is None and to_extras is None:
            to_subscription, to_extras = amount, 0
        elif to_subscription is None:
            to_subscription = amount - to_extras
        elif to_extras is None:
            to_extras = amount - to_subscription

        if to_subscription < 0 or to_extras < 0 or to_subscription + to_extras != amount:
            raise ValueError(
                f"Invalid refund split: {to_subscription} + {to_extras} != {amount}"
            )

        data = await self.store.refund_atomic(account_id, to_subscription, to_extras, reason)

        if not data.get("success"):
            error = data.get("error") or "Failed to refund credits"
            if error == "Profile not found":
                raise AccountNotFound()
            raise CreditServiceError(error)

        new_balance = _balance_from_payload(data.get("new_balance"))

        print(f"💰 Refunded {amount} credits to {account_id} "
              f"(subscription: {to_subscription}, extras: {to_extras}) - {reason or 'no reason'}")

        await self._audit(account_id, AuditActions.CREDITS_REFUNDED, {
            "amount": amount,
            "reason": reason,
            "to_subscription": to_subscription,
            "to_extras": to_extras,
            "new_balance": new_balance.total,
        }, request_meta)

        return new_balance

    async def grant_extras(
        self,
        account_id: str,
        amount: int,
        reason: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> CreditBalance:
        """Credit a purchased pack to the extras pool."""
        if amount <= 0:
            raise ValueError("Granted amount must be positive")

        data = await self.store.refund_atomic(account_id, 0, amount, reason)
        if not data.get("success"):
            error = data.get("error") or "Failed to add extra credits"
            if error == "Profile not found":
                raise AccountNotFound()
            raise CreditServiceError(error)

        new_balance = _balance_from_payload(data.get("new_balance"))
        print(f"💰 Granted {amount} extra credits to {account_id}")

        await self._audit(account_id, AuditActions.CREDITS_PURCHASED, {
            "amount": amount,
            "reason": reason,
            "new_balance": new_balance.total,
            "credits_extras": new_balance.credits_extras_stored,
        }, request_meta)

        return new_balance

    async def reset_subscription_credits(
        self,
        account_id: str,
        amount: int,
        reason: Optional[str] = None,
    ) -> CreditBalance:
        """Replace the subscription pool with the plan allowance (0 on cancellation)."""
        if amount < 0:
            raise ValueError("Subscription credits cannot be negative")

        row = await self.store.set_subscription_credits(account_id, amount)
        if not row:
            raise AccountNotFound()

        balance = balance_from_row(row)
        print(f"💰 Subscription credits for {account_id} set to {amount} ({reason or 'plan update'})")

        await self._audit(account_id, AuditActions.CREDITS_RESET, {
            "amount": amount,
            "reason": reason,
        }, None)

        return balance
