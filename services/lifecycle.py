"""
Generation lifecycle transitions shared by the submission flow, the
reconciliation poller and the orphan sweeper.

A refund is owed only by the caller whose terminal transition actually
landed (update_status returned a record). Losing the race means somebody
else already finalised, and refunded, the generation. The refund itself is
claimed through the refund_pending flag so it reaches the ledger once even
when the first attempt fails and a later sweep retries it.
"""

import traceback
from typing import Optional, Tuple

from config.settings import get_settings
from config.tools_config import get_tool_config
from errors import StorageFailure
from models import Generation, utc_now_iso
from providers.base import ProviderAdapter, ProviderTaskStatus
from services.audit_log import AuditActions, AuditLog
from services.credit_ledger import CreditLedger
from services.generation_store import GenerationStore
from utils.supabase_uploader import ArtifactUploader


GENERIC_CONTENT_TYPES = ("application/octet-stream", "binary/octet-stream", "")


class GenerationLifecycle:
    def __init__(
        self,
        store: GenerationStore,
        ledger: CreditLedger,
        uploader: ArtifactUploader,
        refund_policy: Optional[str] = None,
        audit: Optional[AuditLog] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.uploader = uploader
        self.refund_policy = refund_policy or get_settings().REFUND_POLICY
        self.audit = audit

    def bucket_for(self, tool: str) -> str:
        settings = get_settings()
        config = get_tool_config(tool)
        if config and config.bucket_kind == "images":
            return settings.IMAGES_BUCKET
        return settings.VIDEOS_BUCKET

    def refund_split(
        self,
        generation: Generation,
        to_subscription: Optional[int] = None,
        to_extras: Optional[int] = None,
    ) -> Tuple[int, int]:
        """
        Pools to refund a generation into.

        An explicit split wins. Otherwise the 'split' policy replays the pools
        recorded at debit time, and the default policy puts everything back
        into the subscription pool.
        """
        amount = generation.credits_used
        if to_subscription is not None or to_extras is not None:
            to_subscription = amount - (to_extras or 0) if to_subscription is None else to_subscription
            to_extras = amount - to_subscription if to_extras is None else to_extras
            return to_subscription, to_extras

        split = generation.metadata.debit_split
        if self.refund_policy == "split" and split and split.from_subscription + split.from_extras == amount:
            return split.from_subscription, split.from_extras

        return amount, 0

    async def _audit(self, generation: Generation, action: str, details: dict):
        if self.audit is None:
            return
        try:
            await self.audit.log_action(generation.user_id, action, {
                "generation_id": generation.id,
                "tool": generation.tool,
                **details,
            })
        except Exception as e:
            print(f"⚠️ Audit log failed for {action} ({generation.id}): {e}")

    async def persist_artifact(
        self, generation: Generation, status: ProviderTaskStatus, adapter: ProviderAdapter
    ) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """
        Copy the result into our storage.

        Returns (result_url, original_url, storage_error). When the copy fails
        the provider URL is kept as result_url; inline results have no such
        fallback and come back with result_url None.
        """
        config = get_tool_config(generation.tool)
        bucket = self.bucket_for(generation.tool)

        if status.artifact is not None:
            try:
                url = await self.uploader.upload_bytes(
                    status.artifact,
                    generation.user_id,
                    generation.id,
                    bucket,
                    status.content_type or config.default_content_type,
                    config.default_extension,
                )
                return url, None, None
            except StorageFailure as e:
                print(f"❌ Failed to store inline result for {generation.id}: {e}")
                return None, None, str(e)

        external_url = status.result_url
        try:
            print(f"📥 Downloading result for {generation.id}")
            data, content_type = await adapter.fetch_artifact(external_url)
            if content_type in GENERIC_CONTENT_TYPES:
                content_type = config.default_content_type
            url = await self.uploader.upload_bytes(
                data, generation.user_id, generation.id, bucket, content_type, config.default_extension
            )
            return url, external_url, None
        except StorageFailure as e:
            print(f"⚠️ Storage copy failed for {generation.id}, keeping provider URL: {e}")
            return external_url, external_url, str(e)

    async def mark_completed(
        self,
        generation: Generation,
        status: ProviderTaskStatus,
        adapter: ProviderAdapter,
        to_subscription: Optional[int] = None,
        to_extras: Optional[int] = None,
        refund: bool = True,
    ) -> Optional[Generation]:
        """Persist the artifact and complete the record. Without any artifact the generation fails."""
        if status.artifact is None and not status.result_url:
            return await self.mark_failed(
                generation,
                "Generation completed but no result was returned",
                reason="no result",
                to_subscription=to_subscription,
                to_extras=to_extras,
                refund=refund,
            )

        result_url, original_url, storage_error = await self.persist_artifact(generation, status, adapter)
        if result_url is None:
            return await self.mark_failed(
                generation,
                f"Failed to store generated result: {storage_error}",
                reason="storage failed",
                to_subscription=to_subscription,
                to_extras=to_extras,
                refund=refund,
            )

        patch = {
            "completed_at": utc_now_iso(),
            "progress": 100,
            "poll_errors": 0,
            "original_url": original_url,
            "storage_error": storage_error,
            **status.extra,
        }
        updated = await self.store.update_status(generation.id, "completed", patch, result_url=result_url)

        if updated is None:
            print(f"ℹ️ Generation {generation.id} was already finalised elsewhere")
            if result_url != original_url:
                await self.uploader.remove(result_url, self.bucket_for(generation.tool))
            return None

        print(f"✅ Generation {generation.id} completed: {result_url}")
        await self._audit(updated, AuditActions.GENERATION_COMPLETED, {"result_url": result_url})
        return updated

    async def mark_failed(
        self,
        generation: Generation,
        error: str,
        reason: Optional[str] = None,
        to_subscription: Optional[int] = None,
        to_extras: Optional[int] = None,
        require_no_task: bool = False,
        refund: bool = True,
    ) -> Optional[Generation]:
        """
        Fail the record and refund credits_used, once.

        The refund owed is stamped (refund_pending + refund_split) by the
        same conditional update that fails the record, then settled against
        the ledger. A refund the ledger refuses stays pending and the orphan
        sweeper settles it later.

        refund=False is for submissions the caller paid for separately
        (skip_credit_deduction); their refund is the client's call.

        Returns None (and refunds nothing) when the record was already
        terminal or got finalised concurrently.
        """
        refund_due = refund and generation.credits_used > 0
        patch = {"failed_at": utc_now_iso(), "error": error, "reason": reason or error}
        if refund_due:
            to_sub, to_ext = self.refund_split(generation, to_subscription, to_extras)
            patch["refund_pending"] = True
            patch["refund_split"] = {"to_subscription": to_sub, "to_extras": to_ext}

        updated = await self.store.update_status(
            generation.id, "failed", patch, require_no_task=require_no_task
        )

        if updated is None:
            print(f"ℹ️ Generation {generation.id} was already finalised, no refund issued")
            return None

        print(f"❌ Generation {generation.id} failed: {error}")

        refunded = await self.settle_refund(updated) if refund_due else 0

        await self._audit(updated, AuditActions.GENERATION_FAILED, {
            "error": error,
            "refunded": refunded,
        })
        return updated

    async def settle_refund(self, generation: Generation) -> int:
        """
        Pay the pending refund of a failed record into the ledger.

        Returns the credits refunded, 0 when somebody else holds the refund
        or the ledger refused it (the record is flagged pending again with
        refund_error).
        """
        claimed = await self.store.claim_refund(generation.id)
        if claimed is None:
            return 0

        split = claimed.metadata.refund_split
        if split and split.to_subscription + split.to_extras == claimed.credits_used:
            to_sub, to_ext = split.to_subscription, split.to_extras
        else:
            to_sub, to_ext = claimed.credits_used, 0

        try:
            await self.ledger.refund(
                claimed.user_id,
                claimed.credits_used,
                to_subscription=to_sub,
                to_extras=to_ext,
                reason=f"{claimed.tool} generation {claimed.id} failed: {claimed.metadata.reason}",
            )
        except Exception as e:
            print(f"❌ Refund of {claimed.credits_used} credits for {claimed.id} failed, will retry: {e}")
            traceback.print_exc()
            await self.store.release_refund(claimed.id, str(e))
            return 0

        return claimed.credits_used

    async def delete(self, generation_id: str, account_id: str, tool: Optional[str] = None) -> Generation:
        """Delete a terminal record, then drop its stored artifact if we own one."""
        generation = await self.store.delete(generation_id, account_id, tool)
        if generation.result_url:
            await self.uploader.remove(generation.result_url, self.bucket_for(generation.tool))
        print(f"🗑️ Generation {generation_id} deleted")
        return generation
