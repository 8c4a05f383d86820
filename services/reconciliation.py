"""
Reconciliation Poller
=====================
Walks pending/processing generations that carry a provider task id, oldest
first, asks the provider where each one stands and converges the record:

- created / processing -> stays processing, progress refreshed
- completed            -> artifact copied to storage, record completed
- failed               -> record failed, credits_used refunded once
- status call errors   -> poll_errors += 1; failed + refunded once the
                          count reaches max_poll_errors

Each record is handled in isolation: one bad record never stops the batch.
"""

import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from config.settings import get_settings
from models import Generation, parse_timestamp
from providers import get_adapter
from providers.base import ProviderAdapter
from services.generation_store import GenerationStore
from services.lifecycle import GenerationLifecycle


@dataclass
class ReconciliationReport:
    checked: int = 0
    completed: int = 0
    failed: int = 0
    processing: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, entry: Dict[str, Any]):
        status = entry.get("status")
        if status == "completed":
            self.completed += 1
        elif status == "failed":
            self.failed += 1
        elif status in ("processing", "pending"):
            self.processing += 1
        self.results.append(entry)

    def merge(self, other: "ReconciliationReport"):
        self.checked += other.checked
        self.completed += other.completed
        self.failed += other.failed
        self.processing += other.processing
        self.results.extend(other.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "checked": self.checked,
            "completed": self.completed,
            "failed": self.failed,
            "processing": self.processing,
            "results": self.results,
        }


def _entry(generation: Generation, status: str, **kwargs) -> Dict[str, Any]:
    return {
        "id": generation.id,
        "task_id": generation.task_id,
        "status": status,
        "progress": kwargs.get("progress"),
        "result_url": kwargs.get("result_url"),
        "error": kwargs.get("error"),
    }


class ReconciliationPoller:
    def __init__(
        self,
        store: GenerationStore,
        lifecycle: GenerationLifecycle,
        adapter_factory: Callable[[str], Optional[ProviderAdapter]] = get_adapter,
        max_poll_errors: Optional[int] = None,
        stale_timeout_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.lifecycle = lifecycle
        self.adapter_factory = adapter_factory
        self.max_poll_errors = max_poll_errors or settings.MAX_POLL_ERRORS
        self.stale_timeout_seconds = stale_timeout_seconds or settings.STALE_TIMEOUT_SECONDS

    async def process(
        self,
        account_id: Optional[str],
        tool: Optional[str],
        limit: Optional[int] = None,
        fail_stale: bool = False,
    ) -> ReconciliationReport:
        """
        Reconcile one bounded batch.

        account_id=None covers every account (background worker). With
        fail_stale, records older than the stale timeout are failed and
        refunded without asking the provider.
        """
        limit = limit or get_settings().PROCESS_BATCH_SIZE
        report = ReconciliationReport()

        generations = await self.store.list_pending(account_id, tool, limit, with_task=True)
        report.checked = len(generations)
        if generations:
            print(f"⏳ Reconciling {len(generations)} {tool or 'all'} generation(s)")

        for generation in generations:
            try:
                entry = await self._reconcile(generation, fail_stale)
            except Exception as e:
                print(f"❌ Error reconciling generation {generation.id}: {e}")
                traceback.print_exc()
                entry = _entry(generation, "processing", error=str(e))
            report.add(entry)

        return report

    def _is_stale(self, generation: Generation) -> bool:
        created = parse_timestamp(generation.created_at or generation.metadata.created_at)
        if created is None:
            return False
        age = (datetime.now(timezone.utc) - created).total_seconds()
        return age > self.stale_timeout_seconds

    async def _reconcile(self, generation: Generation, fail_stale: bool) -> Dict[str, Any]:
        if fail_stale and self._is_stale(generation):
            minutes = self.stale_timeout_seconds // 60
            error = f"Generation timed out after {minutes} minutes"
            updated = await self.lifecycle.mark_failed(generation, error, reason="timed out")
            return _entry(generation, updated.status if updated else "skipped", error=error)

        adapter = self.adapter_factory(generation.tool)
        if adapter is None:
            raise ValueError(f"No provider adapter for tool {generation.tool}")

        try:
            status = await adapter.get_status(generation.task_id)
        except Exception as e:
            return await self._record_poll_error(generation, e)

        if status.state == "completed":
            updated = await self.lifecycle.mark_completed(generation, status, adapter)
            if updated is None:
                return _entry(generation, "skipped")
            return _entry(
                generation,
                updated.status,
                progress=updated.metadata.progress,
                result_url=updated.result_url,
                error=updated.metadata.error,
            )

        if status.state == "failed":
            error = status.error or "Generation failed"
            updated = await self.lifecycle.mark_failed(generation, error, reason="provider failure")
            return _entry(generation, updated.status if updated else "skipped", error=error)

        patch = {"progress": status.progress, "poll_errors": 0, **status.extra}
        await self.store.update_status(generation.id, "processing", patch)
        return _entry(generation, "processing", progress=status.progress)

    async def _record_poll_error(self, generation: Generation, error: Exception) -> Dict[str, Any]:
        poll_errors = generation.metadata.poll_errors + 1
        print(f"⚠️ Status check failed for {generation.id} ({poll_errors}/{self.max_poll_errors}): {error}")

        if poll_errors >= self.max_poll_errors:
            message = f"Provider status unavailable after {poll_errors} attempts: {error}"
            updated = await self.lifecycle.mark_failed(generation, message, reason="poll errors exhausted")
            return _entry(generation, updated.status if updated else "skipped", error=message)

        await self.store.update_status(
            generation.id,
            "processing",
            {"poll_errors": poll_errors, "last_poll_error": str(error)[:500]},
        )
        return _entry(generation, "processing", progress=generation.metadata.progress, error=str(error))
