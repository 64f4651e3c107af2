"""
Typed Exception Hierarchy for the Funding Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from FundingKernelError:

    FundingKernelError (base)
    |
    +-- ValidationFailedError          (returned in results, never raised past
    |                                    the ledger service boundary)
    |
    +-- NotFoundError
    |   +-- ContractNotFoundError
    |   +-- AllocationNotFoundError
    |   +-- DraftNotFoundError
    |
    +-- ConflictError
    |   +-- DuplicateAllocationError
    |
    +-- TransactionError
    |   +-- ConnectionPoolExhaustedError
    |
    +-- AuditWriteError                (logged by the audit recorder only)
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- MigrationError
    |   +-- MigrationFailedError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_FAILED           | One or more input fields rejected
----------------|-----------------------------|-----------------------------------------
Not found       | CONTRACT_NOT_FOUND          | Contract id doesn't exist
                | ALLOCATION_NOT_FOUND        | Allocation id doesn't exist
                | DRAFT_NOT_FOUND             | Draft id doesn't exist for the actor
----------------|-----------------------------|-----------------------------------------
Conflict        | CONFLICT                    | Unique constraint violated
                | DUPLICATE_ALLOCATION        | Channel already allocated on contract
----------------|-----------------------------|-----------------------------------------
Transaction     | TRANSACTION_FAILED          | Store failure inside an atomic block
                | CONNECTION_POOL_EXHAUSTED   | No pooled connection within timeout
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_WRITE_FAILED          | Audit row could not be appended
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of an audit row
----------------|-----------------------------|-----------------------------------------
Migration       | MIGRATION_FAILED            | A migration file failed to apply
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Invalid or missing settings

===============================================================================
HANDLING PATTERNS
===============================================================================

Expected business failures travel inside ``OperationResult``:

    result = ledger.create_contract(contract_input, actor_id)
    if not result.is_success:
        if isinstance(result.error, ValidationFailedError):
            return {"errors": result.error.field_errors}
        return {"error": result.error.code, "message": str(result.error)}

Store failures are raised after the coordinator has rolled back:

    try:
        ledger.update_allocation(allocation_id, amount, actor_id)
    except TransactionError as e:
        log.error("allocation update failed", extra={"code": e.code})
"""


class FundingKernelError(Exception):
    """
    Base exception for all funding kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "FUNDING_KERNEL_ERROR"


# Validation


class ValidationFailedError(FundingKernelError):
    """One or more fields failed validation; one message per field."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        fields = ", ".join(sorted(self.field_errors))
        super().__init__(f"Validation failed: {fields}")


# Not found


class NotFoundError(FundingKernelError):
    """Base exception for a referenced entity that does not exist."""

    code: str = "NOT_FOUND"


class ContractNotFoundError(NotFoundError):
    """Contract with given id was not found."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, contract_id: int):
        self.contract_id = contract_id
        super().__init__(f"Contract not found: {contract_id}")


class AllocationNotFoundError(NotFoundError):
    """Allocation with given id was not found."""

    code: str = "ALLOCATION_NOT_FOUND"

    def __init__(self, allocation_id: int):
        self.allocation_id = allocation_id
        super().__init__(f"Allocation not found: {allocation_id}")


class DraftNotFoundError(NotFoundError):
    """Draft not found, or not owned by the requesting actor."""

    code: str = "DRAFT_NOT_FOUND"

    def __init__(self, draft_id: int, actor_id: str):
        self.draft_id = draft_id
        self.actor_id = actor_id
        super().__init__(f"Draft not found or access denied: {draft_id}")


# Conflict


class ConflictError(FundingKernelError):
    """A uniqueness invariant was violated by the store."""

    code: str = "CONFLICT"

    def __init__(self, message: str = "Conflicting record already exists"):
        super().__init__(message)


class DuplicateAllocationError(ConflictError):
    """The contract already has an allocation for this channel."""

    code: str = "DUPLICATE_ALLOCATION"

    def __init__(self, contract_id: int, channel: str):
        self.contract_id = contract_id
        self.channel = channel
        super().__init__(
            f"Contract {contract_id} already has a {channel} allocation"
        )


# Transaction


class TransactionError(FundingKernelError):
    """Any store failure inside an atomic block; the block was rolled back."""

    code: str = "TRANSACTION_FAILED"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Operation {operation} failed: {reason}")


class ConnectionPoolExhaustedError(TransactionError):
    """No pooled connection became available within the acquisition timeout."""

    code: str = "CONNECTION_POOL_EXHAUSTED"

    def __init__(self, operation: str, timeout_seconds: float | None = None):
        self.timeout_seconds = timeout_seconds
        super().__init__(operation, "connection pool exhausted")


# Audit


class AuditWriteError(FundingKernelError):
    """
    An audit entry could not be appended.

    Never raised to callers: the audit recorder builds it for structured
    logging and lets the business operation proceed.
    """

    code: str = "AUDIT_WRITE_FAILED"

    def __init__(self, action_type: str, reason: str):
        self.action_type = action_type
        self.reason = reason
        super().__init__(f"Audit write failed for {action_type}: {reason}")


# Immutability


class ImmutabilityError(FundingKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Migrations


class MigrationError(FundingKernelError):
    """Base exception for migration runner errors."""

    code: str = "MIGRATION_ERROR"


class MigrationFailedError(MigrationError):
    """A migration failed; it was rolled back and the run was aborted."""

    code: str = "MIGRATION_FAILED"

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Migration {filename} failed: {reason}")


# Configuration


class ConfigurationError(FundingKernelError):
    """Settings could not be loaded; lists every offending key."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, problems: dict[str, str]):
        self.problems = dict(problems)
        detail = "; ".join(f"{k}: {v}" for k, v in sorted(self.problems.items()))
        super().__init__(f"Invalid configuration: {detail}")
