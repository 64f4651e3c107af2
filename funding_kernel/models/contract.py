"""
Module: funding_kernel.models.contract
Responsibility: ORM persistence for MDF contracts, their per-channel
    allocations, and the externally maintained spend balances.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - At most one Allocation per (contract, channel): uq_allocation_contract_channel.
    - allocated_amount and total_committed_amount are non-negative
      (CHECK constraints; the ledger validates before writing).
    - AllocationBalance rows belong to the spend-tracking feed.  The ledger
      reads them and never writes them; the store removes them together with
      their allocation (ON DELETE CASCADE).

Failure modes:
    - IntegrityError on duplicate (contract_id, channel), translated to
      DuplicateAllocationError by the transaction coordinator.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from funding_kernel.db.base import Base, IdentityInt, TrackedBase
from funding_kernel.db.types import ActorId, Money, ShortCode


class ContractScope(str, Enum):
    """Funding scope of a contract."""

    CHANNEL = "Channel"      # Split across Inline / Ecomm allocations
    ALL_STYLE = "AllStyle"   # Whole style, no per-channel allocations


class Channel(str, Enum):
    """The two fixed sales channels an allocation can target."""

    INLINE = "Inline"
    ECOMM = "Ecomm"


class Contract(TrackedBase):
    """
    MDF contract committing a total amount to a style.

    Contract:
        Owns zero or more Allocations.  customer, total_committed_amount and
        the campaign dates are the only fields the ledger updates after
        creation.

    Non-goals:
        - Does NOT enforce the channel split invariant; that is
          funding_kernel.domain.invariants, applied by LedgerService.
        - Does NOT cascade deletes; LedgerService deletes owned allocations
          explicitly in the same transaction.
    """

    __tablename__ = "contracts"

    __table_args__ = (
        CheckConstraint(
            "total_committed_amount >= 0", name="ck_contract_total_non_negative"
        ),
        Index("idx_contract_style", "style_ref"),
        Index("idx_contract_created_by", "created_by"),
        Index("idx_contract_created_at", "created_at"),
    )

    style_ref: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Style number in the external style catalog",
    )

    scope: Mapped[ShortCode] = mapped_column(nullable=False)

    customer: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    total_committed_amount: Mapped[Money] = mapped_column(nullable=False)

    contract_date: Mapped[date] = mapped_column(Date, nullable=False)

    campaign_start: Mapped[date | None] = mapped_column(Date, nullable=True)

    campaign_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_by: Mapped[ActorId] = mapped_column(nullable=False)

    allocations: Mapped[list["Allocation"]] = relationship(
        "Allocation",
        back_populates="contract",
        order_by="Allocation.channel",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Contract {self.id} {self.style_ref} {self.scope} "
            f"total={self.total_committed_amount}>"
        )


class Allocation(TrackedBase):
    """
    Amount of a contract committed to one channel.

    Guarantees:
        - (contract_id, channel) is unique.
        - allocated_amount >= 0.
    """

    __tablename__ = "allocations"

    __table_args__ = (
        UniqueConstraint(
            "contract_id", "channel", name="uq_allocation_contract_channel"
        ),
        CheckConstraint(
            "allocated_amount >= 0", name="ck_allocation_amount_non_negative"
        ),
        Index("idx_allocation_contract", "contract_id"),
        Index("idx_allocation_channel", "channel"),
    )

    contract_id: Mapped[int] = mapped_column(
        IdentityInt,
        ForeignKey("contracts.id"),
        nullable=False,
    )

    channel: Mapped[ShortCode] = mapped_column(nullable=False)

    allocated_amount: Mapped[Money] = mapped_column(nullable=False)

    contract: Mapped[Contract] = relationship(
        "Contract",
        back_populates="allocations",
    )

    def __repr__(self) -> str:
        return f"<Allocation {self.id} c={self.contract_id} {self.channel} {self.allocated_amount}>"


class AllocationBalance(Base):
    """
    Spend position of an allocation, maintained by the spend-tracking feed.

    Read-only to this subsystem.  A missing row means nothing has been spent:
    selectors treat spent as 0 and remaining as the allocated amount.
    """

    __tablename__ = "allocation_balances"

    __table_args__ = (
        UniqueConstraint("allocation_id", name="uq_allocation_balance_allocation"),
    )

    allocation_id: Mapped[int] = mapped_column(
        IdentityInt,
        ForeignKey("allocations.id", ondelete="CASCADE"),
        nullable=False,
    )

    spent_amount: Mapped[Money] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    remaining_balance: Mapped[Money] = mapped_column(nullable=False)

    refreshed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
