"""
Orphan Sweeper
==============
A generation that is pending/processing without a provider task id was
debited but never dispatched (the request died between the debit and the
provider call). After a grace period it is failed and credits_used goes back
to the subscription pool.

The failed transition is guarded on the task id still being absent, so a
task linked at the last moment wins over the sweep, and sweeping twice never
refunds twice.

The sweep also settles refunds the ledger refused earlier: failed records
still flagged refund_pending are claimed one by one and paid.
"""

import traceback
from dataclasses import dataclass
from typing import Optional

from config.settings import get_settings
from services.generation_store import GenerationStore
from services.lifecycle import GenerationLifecycle


NEVER_DISPATCHED = "never dispatched"
ORPHAN_ERROR = "Generation was not properly created. Credits refunded."


@dataclass
class SweepReport:
    cleaned: int = 0
    refunded: int = 0
    refunds_recovered: int = 0

    def merge(self, other: "SweepReport"):
        self.cleaned += other.cleaned
        self.refunded += other.refunded
        self.refunds_recovered += other.refunds_recovered

    def to_dict(self):
        return {
            "success": True,
            "message": f"Cleaned up {self.cleaned} orphaned generation(s)",
            "cleaned": self.cleaned,
            "refunded": self.refunded,
            "refunds_recovered": self.refunds_recovered,
        }


class OrphanSweeper:
    def __init__(
        self,
        store: GenerationStore,
        lifecycle: GenerationLifecycle,
        grace_seconds: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.lifecycle = lifecycle
        self.grace_seconds = settings.orphan_grace_seconds() if grace_seconds is None else grace_seconds
        self.batch_size = batch_size or settings.ORPHAN_BATCH_SIZE

    async def sweep(self, account_id: Optional[str], tool: Optional[str]) -> SweepReport:
        report = SweepReport()
        orphans = await self.store.list_orphans(account_id, tool, self.grace_seconds, self.batch_size)

        for generation in orphans:
            try:
                updated = await self.lifecycle.mark_failed(
                    generation,
                    ORPHAN_ERROR,
                    reason=NEVER_DISPATCHED,
                    to_subscription=generation.credits_used,
                    to_extras=0,
                    require_no_task=True,
                )
            except Exception as e:
                print(f"❌ Error sweeping orphan {generation.id}: {e}")
                traceback.print_exc()
                continue

            if updated is None:
                continue
            report.cleaned += 1
            report.refunded += generation.credits_used

        await self._retry_refunds(account_id, tool, report)

        if report.cleaned:
            print(f"🧹 Swept {report.cleaned} orphaned {tool or 'all'} generation(s), "
                  f"refunded {report.refunded} credits")
        return report

    async def _retry_refunds(self, account_id: Optional[str], tool: Optional[str], report: SweepReport):
        pending = await self.store.list_refunds_pending(account_id, tool, self.batch_size)
        for generation in pending:
            try:
                refunded = await self.lifecycle.settle_refund(generation)
            except Exception as e:
                print(f"❌ Error retrying refund for {generation.id}: {e}")
                traceback.print_exc()
                continue
            if refunded:
                print(f"💳 Recovered refund of {refunded} credits for {generation.id}")
                report.refunds_recovered += 1
                report.refunded += refunded
