"""
Module: funding_kernel.models.audit_entry
Responsibility: ORM persistence for the append-only audit trail.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Audit rows are append-only; UPDATE/DELETE are rejected by the ORM
      listeners in db/immutability.py.
    - action_type is a member of the closed AuditAction enumeration.
    - contract_id is a plain column, not a foreign key: contract_delete
      entries must outlive the contract they describe.

Audit relevance:
    AuditEntry IS the audit trail.  Every contract and allocation mutation
    and every draft save/resume produces one entry, written in the same
    transaction as the mutation.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from funding_kernel.db.base import Base, IdentityInt
from funding_kernel.db.types import ActorId


class AuditAction(str, Enum):
    """Closed set of auditable actions."""

    # Contract lifecycle
    CONTRACT_CREATE = "contract_create"
    CONTRACT_UPDATE = "contract_update"
    CONTRACT_DELETE = "contract_delete"
    CONTRACT_VIEW = "contract_view"

    # Allocation lifecycle
    ALLOCATION_CREATE = "allocation_create"
    ALLOCATION_UPDATE = "allocation_update"
    ALLOCATION_DELETE = "allocation_delete"

    # Process-level
    SAVE_DRAFT = "save_draft"
    RESUME_DRAFT = "resume_draft"


class AuditEntry(Base):
    """
    One immutable audit record.

    Guarantees:
        - timestamp is assigned by the AuditRecorder's clock, not the caller.
        - payload is the serialized form of the action's payload dataclass
          (funding_kernel.domain.audit_payloads).
    """

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_contract", "contract_id"),
        Index("idx_audit_actor", "actor_id"),
        Index("idx_audit_action", "action_type"),
        Index("idx_audit_timestamp", "timestamp"),
    )

    contract_id: Mapped[int | None] = mapped_column(IdentityInt, nullable=True)

    draft_id: Mapped[int | None] = mapped_column(IdentityInt, nullable=True)

    action_type: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[ActorId] = mapped_column(nullable=False)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEntry {self.id} {self.action_type} contract={self.contract_id}>"
