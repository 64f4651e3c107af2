"""
Domain DTOs -- immutable data carriers between layers.

Inputs (ContractInput, ChannelAmounts, ContractUpdate, filters) are built by
the outer request layer.  Outputs (ContractInfo, AllocationInfo, ...) are
returned by selectors and services instead of ORM entities so that no
session-bound state leaks out of a transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from funding_kernel.db.types import ZERO, approx_equal
from funding_kernel.models.audit_entry import AuditAction
from funding_kernel.models.contract import Channel, ContractScope

# =============================================================================
# Validation
# =============================================================================


@dataclass(frozen=True)
class ValidationError:
    """
    A single field-level validation failure.

    Guarantees:
        - field names the offending input field (or field group, e.g.
          "allocations").
        - code is machine-readable; message is shown to users.
    """

    field: str
    code: str
    message: str


@dataclass(frozen=True)
class ValidationResult:
    """
    Aggregate of zero or more ValidationErrors.

    Guarantees:
        - is_valid is True only when there are no errors.
        - bool(result) == result.is_valid
    """

    is_valid: bool
    errors: tuple[ValidationError, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(is_valid=True, errors=())

    @classmethod
    def failure(cls, *errors: ValidationError) -> ValidationResult:
        return cls(is_valid=False, errors=tuple(errors))

    @classmethod
    def merge(cls, *results: ValidationResult) -> ValidationResult:
        """Combine results; the first error per field wins."""
        collected: dict[str, ValidationError] = {}
        for result in results:
            for error in result.errors:
                collected.setdefault(error.field, error)
        if not collected:
            return cls.success()
        return cls.failure(*collected.values())

    def field_errors(self) -> dict[str, str]:
        """One message per offending field."""
        return {error.field: error.message for error in self.errors}

    def __bool__(self) -> bool:
        return self.is_valid


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class ChannelAmounts:
    """
    Requested channel split for a Channel-scope contract.

    Percentages are optional; when both are supplied they must total 100 and
    agree with the amounts.
    """

    inline_amount: Decimal = ZERO
    ecomm_amount: Decimal = ZERO
    inline_percentage: Decimal | None = None
    ecomm_percentage: Decimal | None = None

    def amount_for(self, channel: Channel) -> Decimal:
        return self.inline_amount if channel is Channel.INLINE else self.ecomm_amount

    @property
    def has_percentages(self) -> bool:
        return self.inline_percentage is not None and self.ecomm_percentage is not None


@dataclass(frozen=True)
class ContractInput:
    """Everything needed to create a contract and its initial allocations."""

    style_ref: str
    scope: ContractScope
    total_committed_amount: Decimal
    contract_date: date
    customer: str | None = None
    campaign_start: date | None = None
    campaign_end: date | None = None
    allocations: ChannelAmounts = field(default_factory=ChannelAmounts)


@dataclass(frozen=True)
class ContractUpdate:
    """
    Partial update of a contract's mutable fields.

    None means "not provided": the stored value is kept.
    """

    customer: str | None = None
    total_committed_amount: Decimal | None = None
    campaign_start: date | None = None
    campaign_end: date | None = None

    def provided(self) -> dict[str, Any]:
        """Fields the caller actually set, in declaration order."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class ContractFilter:
    """Filters for listing contracts (all optional, combined with AND)."""

    created_by: str | None = None
    style: str | None = None
    customer: str | None = None
    scope: ContractScope | None = None


@dataclass(frozen=True)
class AuditFilter:
    """Filters for querying the audit trail (all optional, combined with AND)."""

    contract_id: int | None = None
    actor_id: str | None = None
    action_type: AuditAction | None = None


# =============================================================================
# Outputs
# =============================================================================


@dataclass(frozen=True)
class AllocationInfo:
    """
    Allocation with its spend position.

    spent_amount and remaining_balance come from the spend-tracking feed;
    without a feed row spent is 0 and remaining equals allocated_amount.
    """

    id: int
    contract_id: int
    channel: Channel
    allocated_amount: Decimal
    spent_amount: Decimal
    remaining_balance: Decimal
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ContractInfo:
    """Contract with its allocations."""

    id: int
    style_ref: str
    scope: ContractScope
    customer: str | None
    total_committed_amount: Decimal
    contract_date: date
    campaign_start: date | None
    campaign_end: date | None
    created_by: str
    created_at: datetime
    updated_at: datetime
    allocations: tuple[AllocationInfo, ...] = ()

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.allocated_amount for a in self.allocations), ZERO)

    def allocation_for(self, channel: Channel) -> AllocationInfo | None:
        for allocation in self.allocations:
            if allocation.channel is channel:
                return allocation
        return None


@dataclass(frozen=True)
class AllocationUtilization:
    """Allocation and the share of it already spent, in percent."""

    allocation: AllocationInfo
    utilization_pct: Decimal


@dataclass(frozen=True)
class AllocationValidation:
    """
    On-demand check of a contract against its stored allocations.

    Guarantees:
        - remaining == total_committed - total_allocated
        - is_fully_allocated == |remaining| <= 0.01
        - is_over_allocated == remaining < -0.01
    """

    contract_id: int
    total_committed: Decimal
    total_allocated: Decimal
    remaining: Decimal
    is_fully_allocated: bool
    is_over_allocated: bool

    @classmethod
    def compute(
        cls, contract_id: int, total_committed: Decimal, total_allocated: Decimal
    ) -> AllocationValidation:
        remaining = total_committed - total_allocated
        return cls(
            contract_id=contract_id,
            total_committed=total_committed,
            total_allocated=total_allocated,
            remaining=remaining,
            is_fully_allocated=approx_equal(remaining, ZERO),
            is_over_allocated=remaining < -Decimal("0.01"),
        )


@dataclass(frozen=True)
class ChannelSummary:
    """Totals across all allocations of one channel."""

    channel: Channel
    allocation_count: int
    total_allocated: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    avg_utilization_pct: Decimal


@dataclass(frozen=True)
class ContractExportRow:
    """Flattened contract x allocation row for CSV export or reporting."""

    contract_id: int
    style_ref: str
    scope: ContractScope
    customer: str | None
    total_committed_amount: Decimal
    contract_date: date
    campaign_start: date | None
    campaign_end: date | None
    created_by: str
    created_at: datetime
    channel: Channel | None
    allocated_amount: Decimal | None


@dataclass(frozen=True)
class Page:
    """One page of a paginated listing plus the unpaginated total."""

    items: tuple[Any, ...]
    total: int
    limit: int
    offset: int


@dataclass(frozen=True)
class AuditRecord:
    """One audit entry with its payload re-hydrated to the typed dataclass."""

    id: int
    action_type: AuditAction
    actor_id: str
    contract_id: int | None
    draft_id: int | None
    payload: Any
    timestamp: datetime


@dataclass(frozen=True)
class DraftInfo:
    """Saved contract form."""

    id: int
    actor_id: str
    form_data: dict[str, Any]
    last_saved: datetime
    created_at: datetime
