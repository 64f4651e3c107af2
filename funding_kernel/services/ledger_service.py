"""
LedgerService -- the public operation surface of the funding ledger.

Responsibility:
    Validates requests against the invariant model, executes each mutation
    as one atomic unit of work (contract and allocation rows plus the audit
    entry), and serves the read-side queries.

Architecture position:
    Kernel > Services.  Composes the TransactionCoordinator, AuditRecorder,
    selectors, the invariant model and the injected StyleCatalog.

Result convention:
    Every public operation returns an OperationResult.  Expected failures
    (validation, missing entity, duplicate channel) are carried in the
    result; store failures raise TransactionError (or a subclass) after the
    unit of work has been rolled back.

Concurrency:
    Last writer wins.  Two concurrent updates of the same contract both
    commit in store order and both are audited; no version token is
    checked.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from decimal import Decimal
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from funding_kernel.db.types import MAX_AMOUNT, ZERO, round_money
from funding_kernel.domain.audit_payloads import (
    AllocationCreatePayload,
    AllocationDeletePayload,
    AllocationUpdatePayload,
    ContractCreatePayload,
    ContractDeletePayload,
    ContractUpdatePayload,
    ContractViewPayload,
    allocation_snapshot,
    contract_snapshot,
)
from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.domain.dtos import (
    AllocationInfo,
    AllocationUtilization,
    AllocationValidation,
    AuditFilter,
    ChannelSummary,
    ContractExportRow,
    ContractFilter,
    ContractInfo,
    ContractInput,
    ContractUpdate,
    Page,
)
from funding_kernel.domain.invariants import (
    validate_contract_input,
    validate_contract_update,
)
from funding_kernel.domain.results import OperationResult
from funding_kernel.domain.style_catalog import StyleCatalog
from funding_kernel.exceptions import (
    AllocationNotFoundError,
    ConflictError,
    ContractNotFoundError,
    DuplicateAllocationError,
    NotFoundError,
    ValidationFailedError,
)
from funding_kernel.logging_config import LogContext, get_logger
from funding_kernel.models.audit_entry import AuditAction
from funding_kernel.models.contract import Allocation, Channel, Contract, ContractScope
from funding_kernel.selectors.allocation_selector import (
    DEFAULT_NEARING_LIMIT_PCT,
    AllocationSelector,
)
from funding_kernel.selectors.contract_selector import ContractSelector
from funding_kernel.services.audit_recorder import DEFAULT_PAGE_SIZE, AuditRecorder
from funding_kernel.services.transaction import TransactionCoordinator

logger = get_logger("services.ledger")

T = TypeVar("T")

MAX_PAGE_SIZE = 500

# Failures an operation reports as a result instead of raising.
_EXPECTED_FAILURES = (ValidationFailedError, NotFoundError, ConflictError)


def _cents(amount: Decimal) -> Decimal:
    """Round to the stored precision; out-of-range amounts are left for validation."""
    if abs(amount) > MAX_AMOUNT:
        return amount
    return round_money(amount)


def _rounded_input(contract_input: ContractInput) -> ContractInput:
    split = contract_input.allocations
    return replace(
        contract_input,
        total_committed_amount=_cents(contract_input.total_committed_amount),
        allocations=replace(
            split,
            inline_amount=_cents(split.inline_amount),
            ecomm_amount=_cents(split.ecomm_amount),
        ),
    )


def _amount_errors(amount: Decimal) -> dict[str, str]:
    if amount < ZERO:
        return {"allocated_amount": "Allocated amount cannot be negative"}
    if amount > MAX_AMOUNT:
        return {"allocated_amount": "Maximum amount is $999,999,999.99"}
    return {}


def _page_errors(limit: int, offset: int) -> dict[str, str]:
    errors = {}
    if limit < 1 or limit > MAX_PAGE_SIZE:
        errors["limit"] = f"Limit must be between 1 and {MAX_PAGE_SIZE}"
    if offset < 0:
        errors["offset"] = "Offset cannot be negative"
    return errors


class LedgerService:
    """
    Contract and allocation operations.

    Contract:
        Each mutating operation commits the business change and its audit
        entry together, or nothing at all.

    Guarantees:
        - A Channel-scope contract is created only when its split satisfies
          the channel invariants; one allocation row per non-zero channel.
        - Allocation edits are incremental: they do not re-validate the
          whole contract.  validate_allocation_amounts() reports drift.
        - Deleting a contract deletes its allocations in the same unit of
          work, and the audit entry carries the full pre-deletion snapshot.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        style_catalog: StyleCatalog,
        clock: Clock | None = None,
        audit_recorder: AuditRecorder | None = None,
        coordinator: TransactionCoordinator | None = None,
    ):
        self._clock = clock or SystemClock()
        self._styles = style_catalog
        self._audit = audit_recorder or AuditRecorder(self._clock)
        self._tx = coordinator or TransactionCoordinator(session_factory)

    @property
    def audit(self) -> AuditRecorder:
        return self._audit

    def _execute(
        self, fn: Callable[[Session], T], operation: str, read_only: bool = False
    ) -> OperationResult[T]:
        runner = self._tx.read if read_only else self._tx.run_atomic
        try:
            return OperationResult.success(runner(fn, operation=operation))
        except _EXPECTED_FAILURES as exc:
            logger.info(
                "operation_rejected",
                extra={"operation": operation, "error_code": exc.code},
            )
            return OperationResult.failure(exc)

    # =========================================================================
    # Contracts
    # =========================================================================

    def create_contract(
        self, contract_input: ContractInput, actor_id: str
    ) -> OperationResult[int]:
        """Create a contract and its initial allocations; returns the new id."""
        contract_input = _rounded_input(contract_input)
        validation = validate_contract_input(contract_input, self._styles)
        if not validation:
            logger.info(
                "contract_validation_failed",
                extra={
                    "actor_id": actor_id,
                    "fields": sorted(validation.field_errors()),
                },
            )
            return OperationResult.invalid(validation.field_errors())

        scope = ContractScope(contract_input.scope)

        def _create(session: Session) -> int:
            contract = Contract(
                style_ref=contract_input.style_ref,
                scope=scope.value,
                customer=contract_input.customer,
                total_committed_amount=contract_input.total_committed_amount,
                contract_date=contract_input.contract_date,
                campaign_start=contract_input.campaign_start,
                campaign_end=contract_input.campaign_end,
                created_by=actor_id,
            )
            session.add(contract)
            session.flush()

            allocations = []
            if scope is ContractScope.CHANNEL:
                for channel in Channel:
                    amount = contract_input.allocations.amount_for(channel)
                    if amount == ZERO:
                        continue
                    allocation = Allocation(
                        contract_id=contract.id,
                        channel=channel.value,
                        allocated_amount=amount,
                    )
                    session.add(allocation)
                    session.flush()
                    allocations.append(allocation)

            self._audit.record(
                session,
                ContractCreatePayload(
                    contract=contract_snapshot(contract),
                    allocations=tuple(allocation_snapshot(a) for a in allocations),
                ),
                actor_id,
                contract_id=contract.id,
            )
            return contract.id

        with LogContext.bind(actor_id=actor_id, operation="create_contract"):
            result = self._execute(_create, "create_contract")
            if result:
                logger.info(
                    "contract_created",
                    extra={
                        "contract_id": result.value,
                        "style_ref": contract_input.style_ref,
                        "scope": scope.value,
                        "total_committed_amount": contract_input.total_committed_amount,
                    },
                )
        return result

    def update_contract(
        self, contract_id: int, update: ContractUpdate, actor_id: str
    ) -> OperationResult[ContractInfo]:
        """
        Coalescing partial update: unsupplied fields keep their stored value.

        The audit entry carries before and after snapshots and the names of
        the fields whose stored value actually changed.
        """
        if update.total_committed_amount is not None:
            update = replace(
                update, total_committed_amount=_cents(update.total_committed_amount)
            )

        def _update(session: Session) -> ContractInfo:
            contract = session.get(Contract, contract_id)
            if contract is None:
                raise ContractNotFoundError(contract_id)

            validation = validate_contract_update(
                contract.campaign_start, contract.campaign_end, update
            )
            if not validation:
                raise ValidationFailedError(validation.field_errors())

            before = contract_snapshot(contract)
            changes = update.provided()
            for name, value in changes.items():
                setattr(contract, name, value)
            session.flush()
            session.refresh(contract)
            after = contract_snapshot(contract)

            self._audit.record(
                session,
                ContractUpdatePayload(
                    before=before,
                    after=after,
                    changed_fields=tuple(
                        name for name in changes if before[name] != after[name]
                    ),
                ),
                actor_id,
                contract_id=contract_id,
            )
            return ContractSelector(session).get(contract_id)

        with LogContext.bind(
            actor_id=actor_id, contract_id=str(contract_id), operation="update_contract"
        ):
            result = self._execute(_update, "update_contract")
            if result:
                logger.info(
                    "contract_updated",
                    extra={"fields": sorted(update.provided())},
                )
        return result

    def delete_contract(self, contract_id: int, actor_id: str) -> OperationResult[int]:
        """Delete a contract and every allocation it owns."""

        def _delete(session: Session) -> int:
            contract = session.get(Contract, contract_id)
            if contract is None:
                raise ContractNotFoundError(contract_id)

            snapshot = contract_snapshot(contract, include_allocations=True)
            for allocation in list(contract.allocations):
                session.delete(allocation)
            session.flush()
            session.expire(contract, ["allocations"])
            session.delete(contract)
            session.flush()

            self._audit.record(
                session,
                ContractDeletePayload(contract=snapshot),
                actor_id,
                contract_id=contract_id,
            )
            return contract_id

        with LogContext.bind(
            actor_id=actor_id, contract_id=str(contract_id), operation="delete_contract"
        ):
            result = self._execute(_delete, "delete_contract")
            if result:
                logger.info("contract_deleted")
        return result

    def get_contract(
        self, contract_id: int, actor_id: str | None = None
    ) -> OperationResult[ContractInfo]:
        """Contract with allocations; records a contract_view when an actor is given."""

        def _get(session: Session) -> ContractInfo:
            info = ContractSelector(session).get(contract_id)
            if info is None:
                raise ContractNotFoundError(contract_id)
            if actor_id is not None:
                self._audit.record(
                    session,
                    ContractViewPayload(style_ref=info.style_ref),
                    actor_id,
                    contract_id=contract_id,
                )
            return info

        return self._execute(_get, "get_contract", read_only=actor_id is None)

    def list_contracts(
        self,
        filters: ContractFilter | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> OperationResult[Page]:
        errors = _page_errors(limit, offset)
        if errors:
            return OperationResult.invalid(errors)
        return self._execute(
            lambda session: ContractSelector(session).list(filters, limit, offset),
            "list_contracts",
            read_only=True,
        )

    def export_contracts(
        self, contract_ids: Iterable[int] | None = None
    ) -> OperationResult[list[ContractExportRow]]:
        """Flattened contract x allocation rows; None exports everything."""
        ids = list(contract_ids) if contract_ids is not None else None
        return self._execute(
            lambda session: ContractSelector(session).export_rows(ids),
            "export_contracts",
            read_only=True,
        )

    # =========================================================================
    # Allocations
    # =========================================================================

    def create_allocation(
        self,
        contract_id: int,
        channel: Channel | str,
        allocated_amount: Decimal,
        actor_id: str,
    ) -> OperationResult[AllocationInfo]:
        """
        Add an allocation to an existing contract.

        Only the amount is validated; the contract's split is not re-checked.
        """
        try:
            channel = Channel(channel)
        except ValueError:
            return OperationResult.invalid({"channel": "Channel must be Inline or Ecomm"})
        allocated_amount = _cents(allocated_amount)
        errors = _amount_errors(allocated_amount)
        if errors:
            return OperationResult.invalid(errors)

        def _create(session: Session) -> AllocationInfo:
            if session.get(Contract, contract_id) is None:
                raise ContractNotFoundError(contract_id)

            existing = session.scalar(
                select(Allocation.id).where(
                    Allocation.contract_id == contract_id,
                    Allocation.channel == channel.value,
                )
            )
            if existing is not None:
                raise DuplicateAllocationError(contract_id, channel.value)

            allocation = Allocation(
                contract_id=contract_id,
                channel=channel.value,
                allocated_amount=allocated_amount,
            )
            session.add(allocation)
            session.flush()

            self._audit.record(
                session,
                AllocationCreatePayload(allocation=allocation_snapshot(allocation)),
                actor_id,
                contract_id=contract_id,
            )
            return AllocationSelector(session).get(allocation.id)

        with LogContext.bind(
            actor_id=actor_id, contract_id=str(contract_id), operation="create_allocation"
        ):
            result = self._execute(_create, "create_allocation")
            if result:
                logger.info(
                    "allocation_created",
                    extra={
                        "allocation_id": result.value.id,
                        "channel": channel.value,
                        "allocated_amount": allocated_amount,
                    },
                )
        return result

    def update_allocation(
        self, allocation_id: int, allocated_amount: Decimal, actor_id: str
    ) -> OperationResult[AllocationInfo]:
        """Change an allocation's amount without re-validating its contract."""
        allocated_amount = _cents(allocated_amount)
        errors = _amount_errors(allocated_amount)
        if errors:
            return OperationResult.invalid(errors)

        def _update(session: Session) -> AllocationInfo:
            allocation = session.get(Allocation, allocation_id)
            if allocation is None:
                raise AllocationNotFoundError(allocation_id)

            before = allocation_snapshot(allocation)
            allocation.allocated_amount = allocated_amount
            session.flush()
            session.refresh(allocation)

            self._audit.record(
                session,
                AllocationUpdatePayload(
                    allocation_id=allocation_id,
                    channel=allocation.channel,
                    before_amount=before["allocated_amount"],
                    after_amount=str(allocation.allocated_amount),
                ),
                actor_id,
                contract_id=allocation.contract_id,
            )
            return AllocationSelector(session).get(allocation_id)

        with LogContext.bind(actor_id=actor_id, operation="update_allocation"):
            result = self._execute(_update, "update_allocation")
            if result:
                logger.info(
                    "allocation_updated",
                    extra={
                        "allocation_id": allocation_id,
                        "contract_id": result.value.contract_id,
                        "allocated_amount": allocated_amount,
                    },
                )
        return result

    def delete_allocation(self, allocation_id: int, actor_id: str) -> OperationResult[int]:
        def _delete(session: Session) -> int:
            allocation = session.get(Allocation, allocation_id)
            if allocation is None:
                raise AllocationNotFoundError(allocation_id)

            snapshot = allocation_snapshot(allocation)
            contract_id = allocation.contract_id
            session.delete(allocation)
            session.flush()

            self._audit.record(
                session,
                AllocationDeletePayload(allocation=snapshot),
                actor_id,
                contract_id=contract_id,
            )
            return allocation_id

        with LogContext.bind(actor_id=actor_id, operation="delete_allocation"):
            result = self._execute(_delete, "delete_allocation")
            if result:
                logger.info("allocation_deleted", extra={"allocation_id": allocation_id})
        return result

    def get_allocation(self, allocation_id: int) -> OperationResult[AllocationInfo]:
        def _get(session: Session) -> AllocationInfo:
            info = AllocationSelector(session).get(allocation_id)
            if info is None:
                raise AllocationNotFoundError(allocation_id)
            return info

        return self._execute(_get, "get_allocation", read_only=True)

    def list_allocations(
        self,
        contract_id: int | None = None,
        channel: Channel | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> OperationResult[Page]:
        errors = _page_errors(limit, offset)
        if channel is not None:
            try:
                channel = Channel(channel)
            except ValueError:
                errors["channel"] = "Channel must be Inline or Ecomm"
        if errors:
            return OperationResult.invalid(errors)
        return self._execute(
            lambda session: AllocationSelector(session).list(
                contract_id, channel, limit, offset
            ),
            "list_allocations",
            read_only=True,
        )

    # =========================================================================
    # Spend position and reconciliation reports
    # =========================================================================

    def get_utilization(
        self, contract_id: int | None = None
    ) -> OperationResult[list[AllocationUtilization]]:
        """Utilization per allocation, highest first."""
        return self._execute(
            lambda session: AllocationSelector(session).utilization(contract_id),
            "get_utilization",
            read_only=True,
        )

    def get_nearing_limit(
        self, threshold_pct: Decimal = DEFAULT_NEARING_LIMIT_PCT
    ) -> OperationResult[list[AllocationUtilization]]:
        """Allocations whose utilization has reached ``threshold_pct``."""
        return self._execute(
            lambda session: AllocationSelector(session).nearing_limit(threshold_pct),
            "get_nearing_limit",
            read_only=True,
        )

    def get_channel_summary(self) -> OperationResult[list[ChannelSummary]]:
        return self._execute(
            lambda session: AllocationSelector(session).channel_summary(),
            "get_channel_summary",
            read_only=True,
        )

    def validate_allocation_amounts(
        self, contract_id: int
    ) -> OperationResult[AllocationValidation]:
        """Compare a contract's committed total with its stored allocations."""

        def _validate(session: Session) -> AllocationValidation:
            report = ContractSelector(session).allocation_validation(contract_id)
            if report is None:
                raise ContractNotFoundError(contract_id)
            return report

        result = self._execute(_validate, "validate_allocation_amounts", read_only=True)
        if result and result.value.is_over_allocated:
            logger.warning(
                "contract_over_allocated",
                extra={"contract_id": contract_id, "remaining": result.value.remaining},
            )
        return result

    # =========================================================================
    # Audit trail
    # =========================================================================

    def get_audit_trail(
        self,
        filters: AuditFilter | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> OperationResult[Page]:
        errors = _page_errors(limit, offset)
        if filters is not None and filters.action_type is not None:
            try:
                AuditAction(filters.action_type)
            except ValueError:
                errors["action_type"] = "Unknown audit action"
        if errors:
            return OperationResult.invalid(errors)
        return self._execute(
            lambda session: self._audit.query(session, filters, limit, offset),
            "get_audit_trail",
            read_only=True,
        )

    def get_contract_audit_trail(
        self,
        contract_id: int,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> OperationResult[Page]:
        errors = _page_errors(limit, offset)
        if errors:
            return OperationResult.invalid(errors)
        return self._execute(
            lambda session: self._audit.contract_trail(session, contract_id, limit, offset),
            "get_contract_audit_trail",
            read_only=True,
        )
