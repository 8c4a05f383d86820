"""
Service wiring for the API and the worker.

Every component is built once on top of the shared Supabase async client.
Tests replace `get_services` through `app.dependency_overrides` with a
container built on in-memory stores.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends

from config.settings import get_settings
from providers import get_adapter
from services.audit_log import AuditLog, SupabaseAuditLog
from services.credit_ledger import CreditLedger
from services.generation_service import GenerationService
from services.generation_store import GenerationStore, SupabaseGenerationStore
from services.ledger_store import LedgerStore, SupabaseLedgerStore
from services.lifecycle import GenerationLifecycle
from services.orphan_sweeper import OrphanSweeper
from services.reconciliation import ReconciliationPoller
from supabase_client import get_client
from utils.supabase_uploader import ArtifactUploader, SupabaseArtifactUploader


@dataclass
class Services:
    ledger: CreditLedger
    store: GenerationStore
    lifecycle: GenerationLifecycle
    poller: ReconciliationPoller
    sweeper: OrphanSweeper
    generations: GenerationService

    @classmethod
    def build(
        cls,
        ledger_store: LedgerStore,
        generation_store: GenerationStore,
        uploader: ArtifactUploader,
        audit: Optional[AuditLog] = None,
        adapter_factory: Callable = get_adapter,
    ) -> "Services":
        settings = get_settings()
        ledger = CreditLedger(ledger_store, audit)
        lifecycle = GenerationLifecycle(
            generation_store, ledger, uploader, refund_policy=settings.REFUND_POLICY, audit=audit
        )
        return cls(
            ledger=ledger,
            store=generation_store,
            lifecycle=lifecycle,
            poller=ReconciliationPoller(generation_store, lifecycle, adapter_factory),
            sweeper=OrphanSweeper(generation_store, lifecycle),
            generations=GenerationService(ledger, generation_store, lifecycle, adapter_factory, audit),
        )


# Singleton instance
_services: Optional[Services] = None


async def get_services() -> Services:
    """Get or create the Supabase-backed service container"""
    global _services
    if _services is None:
        client = await get_client()
        _services = Services.build(
            ledger_store=SupabaseLedgerStore(client),
            generation_store=SupabaseGenerationStore(client),
            uploader=SupabaseArtifactUploader(client),
            audit=SupabaseAuditLog(client),
        )
        print("✅ Services initialized")
    return _services


def get_ledger(services: Services = Depends(get_services)) -> CreditLedger:
    return services.ledger


def get_generation_store(services: Services = Depends(get_services)) -> GenerationStore:
    return services.store


def get_lifecycle(services: Services = Depends(get_services)) -> GenerationLifecycle:
    return services.lifecycle


def get_poller(services: Services = Depends(get_services)) -> ReconciliationPoller:
    return services.poller


def get_sweeper(services: Services = Depends(get_services)) -> OrphanSweeper:
    return services.sweeper


def get_generation_service(services: Services = Depends(get_services)) -> GenerationService:
    return services.generations
