"""
Generation Record Store
=======================
One row per generation request in the `generations` table, shared by every
tool through the `tool` column.

Status machine: pending -> processing -> completed | failed.
Moves into a terminal status are compare-and-set on the current status, so
when two pollers race on the same record exactly one of them wins; the
loser gets None back and must not refund.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from errors import GenerationNotFound, InvalidState
from models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Generation,
    dump_metadata,
    parse_metadata,
    utc_now_iso,
)

# metadata->>refund_pending as Postgres renders the JSON boolean
REFUND_PENDING = {"refund_pending": "true"}


class GenerationStore(ABC):
    """Ownership-aware CRUD over generations on top of a few storage primitives."""

    # =============================================
    # STORAGE PRIMITIVES
    # =============================================

    @abstractmethod
    async def _insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def _fetch(
        self, generation_id: str, account_id: Optional[str] = None, tool: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def _update_where(
        self,
        generation_id: str,
        values: Dict[str, Any],
        statuses: Sequence[str],
        account_id: Optional[str] = None,
        without_task: bool = False,
        metadata_match: Optional[Dict[str, str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Update only if the current status is in `statuses`, there is no
        task_id when asked, and every `metadata_match` key has that text
        value (`metadata->>key`). Returns the row or None.
        """

    @abstractmethod
    async def _select(
        self,
        account_id: Optional[str],
        tool: Optional[str],
        statuses: Optional[Sequence[str]],
        limit: int,
        newest_first: bool = False,
        has_task: Optional[bool] = None,
        created_before: Optional[str] = None,
        metadata_match: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def _delete_where(
        self, generation_id: str, account_id: str, statuses: Sequence[str]
    ) -> Optional[Dict[str, Any]]:
        ...

    # =============================================
    # OPERATIONS
    # =============================================

    async def create(
        self,
        account_id: str,
        tool: str,
        credits_used: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Generation:
        typed = parse_metadata(tool, {**(metadata or {}), "created_at": utc_now_iso()})
        row = await self._insert({
            "user_id": account_id,
            "tool": tool,
            "status": "pending",
            "credits_used": credits_used,
            "metadata": dump_metadata(typed),
        })
        generation = Generation(**row)
        print(f"📋 Generation {generation.id} created ({tool}, {credits_used} credits)")
        return generation

    async def get(self, generation_id: str, account_id: str, tool: Optional[str] = None) -> Generation:
        row = await self._fetch(generation_id, account_id, tool)
        if not row:
            raise GenerationNotFound()
        return Generation(**row)

    async def attach_task_reference(
        self, generation_id: str, account_id: str, task_ref: str, tool: Optional[str] = None
    ) -> Generation:
        """Store the provider task id and move the record to processing."""
        current = await self.get(generation_id, account_id, tool)
        if current.is_terminal:
            raise InvalidState(f"Generation is already {current.status}")

        metadata = {**current.metadata_dict(), "task_id": task_ref}
        row = await self._update_where(
            generation_id,
            {"status": "processing", "metadata": metadata},
            ACTIVE_STATUSES,
            account_id=account_id,
        )
        if row is None:
            raise InvalidState("Generation was finalised before the task could be linked")
        return Generation(**row)

    async def update_status(
        self,
        generation_id: str,
        status: str,
        metadata_patch: Optional[Dict[str, Any]] = None,
        result_url: Optional[str] = None,
        require_no_task: bool = False,
    ) -> Optional[Generation]:
        """
        Merge `metadata_patch` into the stored metadata and set `status`.

        Returns None when the record is already terminal or was finalised
        concurrently (the caller lost the race). Raises InvalidState for
        transitions the status machine forbids.
        """
        row = await self._fetch(generation_id)
        if not row:
            raise GenerationNotFound()
        current = Generation(**row)

        if current.is_terminal:
            if status in TERMINAL_STATUSES:
                return None
            raise InvalidState(f"Cannot move a {current.status} generation back to {status}")
        if status == "pending" and current.status == "processing":
            raise InvalidState("Cannot move a processing generation back to pending")
        if result_url is not None and status != "completed":
            raise InvalidState("result_url can only be set on completion")

        metadata = {**current.metadata_dict(), **(metadata_patch or {})}
        # Re-validate so the stored document keeps the tool's shape
        metadata = dump_metadata(parse_metadata(current.tool, metadata))

        values: Dict[str, Any] = {"status": status, "metadata": metadata}
        if result_url is not None:
            values["result_url"] = result_url

        allowed_from = ("pending",) if status == "pending" else ACTIVE_STATUSES
        updated = await self._update_where(
            generation_id, values, allowed_from, without_task=require_no_task
        )
        if updated is None:
            return None
        return Generation(**updated)

    async def annotate(self, generation_id: str, metadata_patch: Dict[str, Any]) -> Optional[Generation]:
        """Merge metadata into a record without touching its status (e.g. refund_error on a failed record)."""
        row = await self._fetch(generation_id)
        if not row:
            raise GenerationNotFound()
        current = Generation(**row)
        metadata = {**current.metadata_dict(), **metadata_patch}
        # Never write back a refund flag another caller claimed meanwhile
        match = REFUND_PENDING if current.metadata.refund_pending and "refund_pending" not in metadata_patch else None
        updated = await self._update_where(
            generation_id, {"metadata": metadata}, (current.status,), metadata_match=match
        )
        return Generation(**updated) if updated else None

    async def list_pending(
        self,
        account_id: Optional[str],
        tool: Optional[str],
        limit: int,
        with_task: Optional[bool] = None,
    ) -> List[Generation]:
        """Pending/processing records, oldest first. account_id=None spans every account."""
        rows = await self._select(account_id, tool, ACTIVE_STATUSES, limit, has_task=with_task)
        return [Generation(**r) for r in rows]

    async def list_orphans(
        self,
        account_id: Optional[str],
        tool: Optional[str],
        older_than_seconds: int,
        limit: int,
    ) -> List[Generation]:
        """Active records without a task reference created before the grace period."""
        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)).isoformat()
        rows = await self._select(
            account_id, tool, ACTIVE_STATUSES, limit, has_task=False, created_before=cutoff
        )
        return [Generation(**r) for r in rows]

    async def list_refunds_pending(
        self, account_id: Optional[str], tool: Optional[str], limit: int
    ) -> List[Generation]:
        """Failed records whose refund has not reached the ledger yet."""
        rows = await self._select(account_id, tool, ("failed",), limit, metadata_match=REFUND_PENDING)
        return [Generation(**r) for r in rows]

    async def claim_refund(self, generation_id: str) -> Optional[Generation]:
        """
        Take the pending refund of a failed record by clearing its flag.

        The clear is conditional on the flag still being set, so exactly one
        caller gets the record back; everybody else gets None.
        """
        row = await self._fetch(generation_id)
        if not row:
            raise GenerationNotFound()
        current = Generation(**row)
        if current.status != "failed" or not current.metadata.refund_pending:
            return None

        metadata = current.metadata_dict()
        metadata.pop("refund_pending", None)
        updated = await self._update_where(
            generation_id, {"metadata": metadata}, ("failed",), metadata_match=REFUND_PENDING
        )
        return Generation(**updated) if updated else None

    async def release_refund(self, generation_id: str, error: str) -> Optional[Generation]:
        """Hand a claimed refund back after the ledger refused it."""
        return await self.annotate(generation_id, {"refund_pending": True, "refund_error": error})

    async def list_for_account(self, account_id: str, tool: str, limit: int = 20) -> List[Generation]:
        rows = await self._select(account_id, tool, None, limit, newest_first=True)
        return [Generation(**r) for r in rows]

    async def delete(self, generation_id: str, account_id: str, tool: Optional[str] = None) -> Generation:
        """Delete a completed/failed record. Active records would lose their pending refund."""
        current = await self.get(generation_id, account_id, tool)
        if not current.is_terminal:
            raise InvalidState("Cannot delete a generation that is still pending or processing")
        if current.metadata.refund_pending:
            raise InvalidState("Cannot delete a generation whose refund is still pending")

        row = await self._delete_where(generation_id, account_id, TERMINAL_STATUSES)
        if row is None:
            raise GenerationNotFound()
        return Generation(**row)


class SupabaseGenerationStore(GenerationStore):
    TABLE = "generations"

    def __init__(self, client):
        self.client = client

    def _table(self):
        return self.client.table(self.TABLE)

    async def _insert(self, row):
        result = await self._table().insert(row).execute()
        if not result.data:
            raise RuntimeError("Failed to create generation record")
        return result.data[0]

    async def _fetch(self, generation_id, account_id=None, tool=None):
        query = self._table().select("*").eq("id", generation_id)
        if account_id:
            query = query.eq("user_id", account_id)
        if tool:
            query = query.eq("tool", tool)
        result = await query.limit(1).execute()
        return result.data[0] if result.data else None

    async def _update_where(self, generation_id, values, statuses, account_id=None, without_task=False,
                            metadata_match=None):
        query = self._table().update(values).eq("id", generation_id).in_("status", list(statuses))
        if account_id:
            query = query.eq("user_id", account_id)
        if without_task:
            query = query.is_("metadata->>task_id", "null")
        for key, value in (metadata_match or {}).items():
            query = query.eq(f"metadata->>{key}", value)
        result = await query.execute()
        return result.data[0] if result.data else None

    async def _select(self, account_id, tool, statuses, limit, newest_first=False, has_task=None, created_before=None,
                      metadata_match=None):
        query = self._table().select("*")
        if statuses:
            query = query.in_("status", list(statuses))
        if account_id:
            query = query.eq("user_id", account_id)
        if tool:
            query = query.eq("tool", tool)
        if has_task is True:
            query = query.not_.is_("metadata->>task_id", "null")
        elif has_task is False:
            query = query.is_("metadata->>task_id", "null")
        if created_before:
            query = query.lt("created_at", created_before)
        for key, value in (metadata_match or {}).items():
            query = query.eq(f"metadata->>{key}", value)
        result = await query.order("created_at", desc=newest_first).limit(limit).execute()
        return result.data or []

    async def _delete_where(self, generation_id, account_id, statuses):
        result = await (
            self._table()
            .delete()
            .eq("id", generation_id)
            .eq("user_id", account_id)
            .in_("status", list(statuses))
            .execute()
        )
        return result.data[0] if result.data else None
