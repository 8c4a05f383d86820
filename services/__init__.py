"""Services package for the credits API"""
from .credit_ledger import CreditLedger
from .generation_service import GenerationService
from .generation_store import GenerationStore, SupabaseGenerationStore
from .ledger_store import LedgerStore, SupabaseLedgerStore
from .lifecycle import GenerationLifecycle
from .orphan_sweeper import OrphanSweeper, SweepReport
from .reconciliation import ReconciliationPoller, ReconciliationReport

__all__ = [
    'CreditLedger',
    'GenerationService',
    'GenerationStore',
    'SupabaseGenerationStore',
    'LedgerStore',
    'SupabaseLedgerStore',
    'GenerationLifecycle',
    'OrphanSweeper',
    'SweepReport',
    'ReconciliationPoller',
    'ReconciliationReport',
]
