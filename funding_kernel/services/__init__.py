"""Kernel services: transaction boundary, audit trail, ledger, drafts, migrations."""

from funding_kernel.services.audit_recorder import AuditRecorder
from funding_kernel.services.draft_service import DraftService
from funding_kernel.services.ledger_service import LedgerService
from funding_kernel.services.migration_runner import MigrationRunner, MigrationStatus
from funding_kernel.services.transaction import TransactionCoordinator

__all__ = [
    "AuditRecorder",
    "DraftService",
    "LedgerService",
    "MigrationRunner",
    "MigrationStatus",
    "TransactionCoordinator",
]
