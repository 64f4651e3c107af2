"""ORM models for the funding kernel."""

from funding_kernel.models.audit_entry import AuditAction, AuditEntry
from funding_kernel.models.contract import (
    Allocation,
    AllocationBalance,
    Channel,
    Contract,
    ContractScope,
)
from funding_kernel.models.draft import ContractDraft
from funding_kernel.models.migration import SchemaMigration

__all__ = [
    "Allocation",
    "AllocationBalance",
    "AuditAction",
    "AuditEntry",
    "Channel",
    "Contract",
    "ContractDraft",
    "ContractScope",
    "SchemaMigration",
]
