"""
Audit Log
=========
Append-only trail of credit and generation events in the `audit_logs` table.

Writing an audit entry never raises: a failed insert is printed and the
calling operation carries on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from models import utc_now_iso


class AuditActions:
    # Credit actions
    CREDITS_DEDUCTED = "credits_deducted"
    CREDITS_REFUNDED = "credits_refunded"
    CREDITS_PURCHASED = "credits_purchased"
    CREDITS_RESET = "credits_reset"

    # Generation actions
    GENERATION_CREATED = "generation_created"
    GENERATION_COMPLETED = "generation_completed"
    GENERATION_FAILED = "generation_failed"

    # Subscription actions
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


@dataclass
class RequestMeta:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def request_metadata(request) -> RequestMeta:
    """IP (first x-forwarded-for hop, else x-real-ip) and user agent of a request."""
    if request is None:
        return RequestMeta()
    forwarded_for = request.headers.get("x-forwarded-for")
    ip_address = None
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip() or None
    if not ip_address:
        ip_address = request.headers.get("x-real-ip")
    return RequestMeta(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


class AuditLog(ABC):
    @abstractmethod
    async def log_action(
        self,
        user_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        meta: Optional[RequestMeta] = None,
    ) -> None:
        ...


class SupabaseAuditLog(AuditLog):
    def __init__(self, client):
        self.client = client

    async def log_action(self, user_id, action, details=None, meta=None):
        meta = meta or RequestMeta()
        try:
            await self.client.table("audit_logs").insert({
                "user_id": user_id,
                "action": action,
                "details": details or {},
                "ip_address": meta.ip_address,
                "user_agent": meta.user_agent,
                "created_at": utc_now_iso(),
            }).execute()
        except Exception as e:
            print(f"⚠️ [Audit Log] Could not log {action} for {user_id}: {e}")
