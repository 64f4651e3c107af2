"""
Invariant Model -- what "consistent" means for a contract and its allocations.

Pure functions, no I/O (the style existence check calls the injected
catalog, whose implementation is outside the kernel).  Every check returns a
ValidationResult keyed by input field; none raises.  LedgerService runs these
before any write and turns failures into a field-keyed error map.

Channel-scope invariants (checked at contract creation):
    |inline + ecomm - total| <= 0.01
    inline + ecomm > 0
    0 <= inline, ecomm <= total
    |inline_pct + ecomm_pct - 100| <= 0.01          (when percentages given)
    amount / total * 100 agrees with pct within 0.01 (when percentages given)

AllStyle contracts carry no allocations; the channel invariants do not apply.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

from funding_kernel.db.types import HUNDRED, MAX_AMOUNT, ZERO, approx_equal
from funding_kernel.domain.dtos import (
    ChannelAmounts,
    ContractInput,
    ContractUpdate,
    ValidationError,
    ValidationResult,
)
from funding_kernel.domain.style_catalog import StyleCatalog
from funding_kernel.models.contract import ContractScope

STYLE_REF_MAX_LENGTH = 50
CUSTOMER_MAX_LENGTH = 200
STYLE_REF_PATTERN = re.compile(r"^[A-Z0-9\-_]+$", re.IGNORECASE)

ALLOCATIONS_FIELD = "allocations"

MSG_ALLOCATION_MISMATCH = "Channel allocation amounts must equal total committed amount"
MSG_ALLOCATION_ALL_ZERO = "At least one channel must have a non-zero allocation"
MSG_ALLOCATION_RANGE = (
    "Channel allocation amounts must be between 0 and the total committed amount"
)
MSG_PERCENTAGE_MISMATCH = "Channel allocation percentages must total 100%"
MSG_PERCENTAGE_RANGE = "Channel allocation percentages must be between 0 and 100"
MSG_PERCENTAGE_DRIFT = "Channel allocation amounts must match the allocation percentages"
MSG_DATE_RANGE = "Campaign end date must be after start date"
MSG_UNKNOWN_STYLE = "Style number does not exist in the system"
MSG_INVALID_SCOPE = "Scope must be Channel or AllStyle"


def _fail(field: str, code: str, message: str) -> ValidationResult:
    return ValidationResult.failure(ValidationError(field=field, code=code, message=message))


# =============================================================================
# Channel split
# =============================================================================


def validate_channel_split(
    total: Decimal, inline_amount: Decimal, ecomm_amount: Decimal
) -> ValidationResult:
    """Amounts must be non-zero in sum, within range, and add up to total."""
    allocated = inline_amount + ecomm_amount

    if allocated == ZERO:
        return _fail(ALLOCATIONS_FIELD, "ALLOCATION_ALL_ZERO", MSG_ALLOCATION_ALL_ZERO)

    if not approx_equal(allocated, total):
        return _fail(ALLOCATIONS_FIELD, "ALLOCATION_MISMATCH", MSG_ALLOCATION_MISMATCH)

    for amount in (inline_amount, ecomm_amount):
        if amount < ZERO or amount > total:
            return _fail(ALLOCATIONS_FIELD, "ALLOCATION_OUT_OF_RANGE", MSG_ALLOCATION_RANGE)

    return ValidationResult.success()


def validate_percentage_split(
    inline_pct: Decimal, ecomm_pct: Decimal
) -> ValidationResult:
    """Percentages must each lie in [0, 100] and total 100 within 0.01."""
    for pct in (inline_pct, ecomm_pct):
        if pct < ZERO or pct > HUNDRED:
            return _fail(ALLOCATIONS_FIELD, "PERCENTAGE_OUT_OF_RANGE", MSG_PERCENTAGE_RANGE)

    if not approx_equal(inline_pct + ecomm_pct, HUNDRED):
        return _fail(ALLOCATIONS_FIELD, "PERCENTAGE_MISMATCH", MSG_PERCENTAGE_MISMATCH)

    return ValidationResult.success()


def validate_split_reconciles(total: Decimal, split: ChannelAmounts) -> ValidationResult:
    """
    When both representations are supplied they must describe the same split.

    Compared in percentage points: amount / total * 100 vs the given pct.
    """
    if not split.has_percentages or total <= ZERO:
        return ValidationResult.success()

    pairs = (
        (split.inline_amount, split.inline_percentage),
        (split.ecomm_amount, split.ecomm_percentage),
    )
    for amount, pct in pairs:
        if not approx_equal(amount / total * HUNDRED, pct):
            return _fail(ALLOCATIONS_FIELD, "PERCENTAGE_DRIFT", MSG_PERCENTAGE_DRIFT)

    return ValidationResult.success()


# =============================================================================
# Scalar fields
# =============================================================================


def validate_campaign_range(start: date | None, end: date | None) -> ValidationResult:
    """End may not precede start; equal dates and open ranges are allowed."""
    if start is not None and end is not None and end < start:
        return _fail("campaign_end", "DATE_RANGE_INVALID", MSG_DATE_RANGE)
    return ValidationResult.success()


def validate_style_ref(style_ref: str | None) -> ValidationResult:
    if not style_ref or not style_ref.strip():
        return _fail("style_ref", "REQUIRED", "Style number is required")
    if len(style_ref) > STYLE_REF_MAX_LENGTH:
        return _fail(
            "style_ref",
            "TOO_LONG",
            f"Style number must be {STYLE_REF_MAX_LENGTH} characters or less",
        )
    if not STYLE_REF_PATTERN.match(style_ref):
        return _fail(
            "style_ref",
            "INVALID_FORMAT",
            "Style number can only contain letters, numbers, hyphens, and underscores",
        )
    return ValidationResult.success()


def validate_style_exists(style_ref: str, catalog: StyleCatalog) -> ValidationResult:
    """Delegates the lookup to the external catalog."""
    if not catalog.style_exists(style_ref):
        return _fail("style_ref", "UNKNOWN_STYLE", MSG_UNKNOWN_STYLE)
    return ValidationResult.success()


def validate_customer(customer: str | None) -> ValidationResult:
    if customer is not None and len(customer) > CUSTOMER_MAX_LENGTH:
        return _fail(
            "customer",
            "TOO_LONG",
            f"Customer name must be {CUSTOMER_MAX_LENGTH} characters or less",
        )
    return ValidationResult.success()


def validate_scope(scope: ContractScope | str | None) -> ValidationResult:
    try:
        ContractScope(scope)
    except ValueError:
        return _fail("scope", "INVALID_SCOPE", MSG_INVALID_SCOPE)
    return ValidationResult.success()


def validate_total_amount(total: Decimal) -> ValidationResult:
    if total < ZERO:
        return _fail(
            "total_committed_amount", "NEGATIVE_AMOUNT", "Total amount cannot be negative"
        )
    if total > MAX_AMOUNT:
        return _fail(
            "total_committed_amount",
            "AMOUNT_TOO_LARGE",
            "Maximum amount is $999,999,999.99",
        )
    return ValidationResult.success()


# =============================================================================
# Composites
# =============================================================================


def validate_allocations(total: Decimal, split: ChannelAmounts) -> ValidationResult:
    """Amount split, then percentage split, then agreement of the two."""
    result = validate_channel_split(total, split.inline_amount, split.ecomm_amount)
    if not result:
        return result

    if split.has_percentages:
        result = validate_percentage_split(split.inline_percentage, split.ecomm_percentage)
        if not result:
            return result
        return validate_split_reconciles(total, split)

    return ValidationResult.success()


def validate_contract_input(
    contract: ContractInput, catalog: StyleCatalog
) -> ValidationResult:
    """All checks for contract creation, merged to one error per field."""
    style_result = validate_style_ref(contract.style_ref)
    if style_result:
        style_result = validate_style_exists(contract.style_ref, catalog)

    scope_result = validate_scope(contract.scope)

    checks = [
        style_result,
        scope_result,
        validate_customer(contract.customer),
        validate_total_amount(contract.total_committed_amount),
        validate_campaign_range(contract.campaign_start, contract.campaign_end),
    ]

    # Channel checks only apply to a recognised Channel scope.
    if scope_result and ContractScope(contract.scope) is ContractScope.CHANNEL:
        checks.append(
            validate_allocations(contract.total_committed_amount, contract.allocations)
        )

    return ValidationResult.merge(*checks)


def validate_contract_update(
    current_start: date | None,
    current_end: date | None,
    update: ContractUpdate,
) -> ValidationResult:
    """
    Checks for a partial update.

    The campaign range is checked on the merged values, so moving only the
    end date before the stored start date is rejected.
    """
    checks = [validate_customer(update.customer)]
    if update.total_committed_amount is not None:
        checks.append(validate_total_amount(update.total_committed_amount))

    start = update.campaign_start if update.campaign_start is not None else current_start
    end = update.campaign_end if update.campaign_end is not None else current_end
    checks.append(validate_campaign_range(start, end))

    return ValidationResult.merge(*checks)
