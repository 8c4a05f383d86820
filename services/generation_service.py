"""
Generation Service
==================
Submission flow for every tool:

1. refuse suspended accounts
2. debit the price (unless the client already paid via /credits/deduct)
3. create the pending record
4. submit to the provider
5. link the task id (processing), or finish at once for synchronous tools

If step 3 or 4 fails for good, the record is failed and this request's debit
is refunded with the same pool split it was taken from. A transient
submission error leaves the record pending without a task id; the orphan
sweeper refunds it after the grace period.
"""

import traceback
from typing import Callable, Optional

from errors import InvalidState, ProviderFailure, ProviderTransient
from models import GenerateRequest, Generation
from providers import get_adapter
from providers.base import ProviderAdapter
from services.audit_log import AuditActions, AuditLog, RequestMeta
from services.credit_ledger import CreditLedger
from services.generation_store import GenerationStore
from services.lifecycle import GenerationLifecycle


class GenerationService:
    def __init__(
        self,
        ledger: CreditLedger,
        store: GenerationStore,
        lifecycle: GenerationLifecycle,
        adapter_factory: Callable[[str], Optional[ProviderAdapter]] = get_adapter,
        audit: Optional[AuditLog] = None,
    ):
        self.ledger = ledger
        self.store = store
        self.lifecycle = lifecycle
        self.adapter_factory = adapter_factory
        self.audit = audit

    async def start_generation(
        self,
        account_id: str,
        tool: str,
        request: GenerateRequest,
        request_meta: Optional[RequestMeta] = None,
    ) -> Generation:
        await self.ledger.ensure_active(account_id)

        adapter = self.adapter_factory(tool)
        if adapter is None:
            raise ValueError(f"Unknown tool: {tool}")

        credits_required = request.credits_required()
        metadata = request.to_metadata()

        debit = None
        if not request.skip_credit_deduction:
            debit = await self.ledger.debit(
                account_id, credits_required, reason=f"{tool} generation", request_meta=request_meta
            )
            metadata["debit_split"] = {
                "from_subscription": debit.from_subscription,
                "from_extras": debit.from_extras,
            }

        try:
            generation = await self.store.create(account_id, tool, credits_required, metadata)
        except Exception as e:
            print(f"❌ Failed to create {tool} generation record for {account_id}: {e}")
            if debit is not None:
                await self.ledger.refund(
                    account_id,
                    credits_required,
                    to_subscription=debit.from_subscription,
                    to_extras=debit.from_extras,
                    reason=f"{tool} generation record creation failed",
                    request_meta=request_meta,
                )
            raise

        await self._audit(account_id, AuditActions.GENERATION_CREATED, {
            "generation_id": generation.id,
            "tool": tool,
            "credits_used": credits_required,
            "prepaid": debit is None,
        }, request_meta)

        split = {}
        if debit is not None:
            split = {"to_subscription": debit.from_subscription, "to_extras": debit.from_extras}

        try:
            submitted = await adapter.submit(request)
        except ProviderTransient as e:
            # Unknown whether the provider accepted the job: keep the record
            # pending without a task id and let the orphan sweeper settle it
            print(f"⚠️ {tool} submission for {generation.id} did not complete: {e}")
            await self.store.annotate(generation.id, {"error": str(e)})
            return await self.store.get(generation.id, account_id)
        except ProviderFailure as e:
            await self.lifecycle.mark_failed(
                generation, str(e), reason="submission rejected", refund=debit is not None, **split
            )
            raise
        except Exception as e:
            print(f"❌ Unexpected error submitting {tool} generation {generation.id}: {e}")
            traceback.print_exc()
            await self.lifecycle.mark_failed(
                generation, "Failed to start generation", reason="submission error",
                refund=debit is not None, **split
            )
            raise

        try:
            generation = await self.store.attach_task_reference(generation.id, account_id, submitted.task_ref, tool)
        except InvalidState:
            # Swept (failed and refunded) while the provider call was in flight;
            # keep the provider's task id on the record so the job can be traced
            print(f"⚠️ {tool} generation {generation.id} was finalised before task "
                  f"{submitted.task_ref} came back, recording it as late")
            await self.store.annotate(generation.id, {"late_task_id": submitted.task_ref})
            return await self.store.get(generation.id, account_id)
        print(f"✅ {tool} generation {generation.id} dispatched (task {submitted.task_ref})")

        status = submitted.status
        if status is None or not status.is_terminal:
            return generation

        # Synchronous provider: the result is already here
        if status.state == "completed":
            updated = await self.lifecycle.mark_completed(
                generation, status, adapter, refund=debit is not None, **split
            )
        else:
            updated = await self.lifecycle.mark_failed(
                generation, status.error or "Generation failed", reason="provider failure",
                refund=debit is not None, **split
            )
        return updated or await self.store.get(generation.id, account_id)

    async def link_task(self, account_id: str, generation_id: str, task_id: str, tool: Optional[str] = None) -> Generation:
        """Attach a task id obtained by the client to one of its own generations."""
        generation = await self.store.attach_task_reference(generation_id, account_id, task_id, tool)
        print(f"🔗 Linked task {task_id} to generation {generation_id}")
        return generation

    async def _audit(self, account_id, action, details, meta):
        if self.audit is None:
            return
        try:
            await self.audit.log_action(account_id, action, details, meta)
        except Exception as e:
            print(f"⚠️ Audit log failed for {action} ({account_id}): {e}")
