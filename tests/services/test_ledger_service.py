"""
Tests for LedgerService.

Tests cover:
1. Contract creation, validation and atomicity
2. Coalescing updates and their audit snapshots
3. Explicit cascade delete
4. Allocation lifecycle and conflicts
5. Utilization, nearing-limit and over-allocation reports
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import OperationalError

from funding_kernel.domain.audit_payloads import (
    AllocationUpdatePayload,
    ContractCreatePayload,
    ContractDeletePayload,
    ContractUpdatePayload,
)
from funding_kernel.domain.dtos import (
    ChannelAmounts,
    ContractFilter,
    ContractInput,
    ContractUpdate,
)
from funding_kernel.domain.invariants import MSG_ALLOCATION_MISMATCH, MSG_DATE_RANGE
from funding_kernel.exceptions import (
    AllocationNotFoundError,
    ContractNotFoundError,
    DuplicateAllocationError,
    TransactionError,
    ValidationFailedError,
)
from funding_kernel.models import (
    Allocation,
    AllocationBalance,
    AuditAction,
    AuditEntry,
    Channel,
    Contract,
    ContractScope,
)


def _count(session, model) -> int:
    return session.scalar(select(func.count(model.id)))


# ============================================================================
# Creation
# ============================================================================


class TestCreateContract:
    """Contract creation with its initial allocations."""

    def test_fully_allocated_contract(self, ledger, channel_input, actor_id):
        result = ledger.create_contract(
            channel_input(total="1000", inline="600", ecomm="400"), actor_id
        )
        assert result.is_success

        report = ledger.validate_allocation_amounts(result.value).unwrap()
        assert report.is_fully_allocated
        assert not report.is_over_allocated
        assert report.total_allocated == Decimal("1000")

    def test_mismatched_split_persists_nothing(
        self, ledger, channel_input, actor_id, session
    ):
        result = ledger.create_contract(
            channel_input(total="1000", inline="600", ecomm="500"), actor_id
        )

        assert not result.is_success
        assert isinstance(result.error, ValidationFailedError)
        assert result.field_errors == {"allocations": MSG_ALLOCATION_MISMATCH}
        assert _count(session, Contract) == 0
        assert _count(session, Allocation) == 0
        assert _count(session, AuditEntry) == 0

    def test_one_allocation_per_non_zero_channel(self, ledger, create_contract):
        contract_id = create_contract(total="750", inline="0", ecomm="750")

        contract = ledger.get_contract(contract_id).unwrap()
        assert [a.channel for a in contract.allocations] == [Channel.ECOMM]
        assert contract.allocation_for(Channel.INLINE) is None

    def test_all_style_contract_has_no_allocations(self, ledger, actor_id):
        result = ledger.create_contract(
            ContractInput(
                style_ref="ST-2002",
                scope=ContractScope.ALL_STYLE,
                total_committed_amount=Decimal("2500"),
                contract_date=date(2024, 3, 1),
            ),
            actor_id,
        )
        contract = ledger.get_contract(result.unwrap()).unwrap()
        assert contract.scope is ContractScope.ALL_STYLE
        assert contract.allocations == ()

    def test_unknown_style_rejected(self, ledger, channel_input, actor_id):
        result = ledger.create_contract(channel_input(style_ref="ZZ-404"), actor_id)
        assert "style_ref" in result.field_errors

    def test_percentages_must_reconcile(self, ledger, channel_input, actor_id):
        result = ledger.create_contract(
            channel_input(
                total="10000",
                inline="6000",
                ecomm="4000",
                inline_percentage=Decimal("50"),
                ecomm_percentage=Decimal("50"),
            ),
            actor_id,
        )
        assert result.error_code == "VALIDATION_FAILED"
        assert "allocations" in result.field_errors

    def test_unknown_scope_is_a_validation_failure(self, ledger, actor_id, session):
        result = ledger.create_contract(
            ContractInput(
                style_ref="ST-1001",
                scope="Bogus",
                total_committed_amount=Decimal("1000"),
                contract_date=date(2024, 3, 1),
            ),
            actor_id,
        )

        assert isinstance(result.error, ValidationFailedError)
        assert set(result.field_errors) == {"scope"}
        assert _count(session, Contract) == 0

    def test_sub_cent_split_rounded_before_validation(self, ledger, channel_input, actor_id):
        result = ledger.create_contract(
            channel_input(total="1000", inline="0.004", ecomm="999.996"), actor_id
        )

        contract = ledger.get_contract(result.unwrap()).unwrap()
        assert [a.channel for a in contract.allocations] == [Channel.ECOMM]
        assert contract.allocation_for(Channel.ECOMM).allocated_amount == Decimal("1000.00")
        assert ledger.validate_allocation_amounts(contract.id).unwrap().is_fully_allocated

    def test_create_is_audited(self, ledger, create_contract, actor_id):
        contract_id = create_contract()

        trail = ledger.get_contract_audit_trail(contract_id).unwrap()
        assert trail.total == 1
        record = trail.items[0]
        assert record.action_type is AuditAction.CONTRACT_CREATE
        assert record.actor_id == actor_id
        assert isinstance(record.payload, ContractCreatePayload)
        assert record.payload.contract["style_ref"] == "ST-1001"
        assert {a["channel"] for a in record.payload.allocations} == {"Inline", "Ecomm"}

    def test_created_event_logged(self, create_contract, captured_logs):
        contract_id = create_contract()

        created = [r for r in captured_logs() if r["message"] == "contract_created"]
        assert len(created) == 1
        assert created[0]["contract_id"] == contract_id
        assert created[0]["actor_id"] == "user-alice"


class TestCreateAtomicity:
    """A failure part-way through creation leaves no trace."""

    @pytest.fixture
    def failing_ecomm_insert(self):
        def _fail(mapper, connection, target):
            if target.channel == Channel.ECOMM.value:
                raise OperationalError(
                    "INSERT INTO allocations", {}, Exception("simulated disk failure")
                )

        event.listen(Allocation, "before_insert", _fail)
        yield
        event.remove(Allocation, "before_insert", _fail)

    def test_second_allocation_failure_rolls_back_everything(
        self, ledger, channel_input, actor_id, session, failing_ecomm_insert
    ):
        with pytest.raises(TransactionError) as exc_info:
            ledger.create_contract(channel_input(), actor_id)

        assert exc_info.value.operation == "create_contract"
        assert _count(session, Contract) == 0
        assert _count(session, Allocation) == 0
        assert _count(session, AuditEntry) == 0


# ============================================================================
# Update
# ============================================================================


class TestUpdateContract:

    def test_unsupplied_fields_keep_stored_values(self, ledger, create_contract, actor_id):
        contract_id = create_contract(customer="Acme Retail")

        updated = ledger.update_contract(
            contract_id, ContractUpdate(customer="Acme Outlet"), actor_id
        ).unwrap()

        assert updated.customer == "Acme Outlet"
        assert updated.total_committed_amount == Decimal("10000")
        assert updated.contract_date == date(2024, 3, 1)

    def test_update_audit_carries_snapshots(self, ledger, create_contract, actor_id):
        contract_id = create_contract(customer="Acme Retail")

        ledger.update_contract(
            contract_id,
            ContractUpdate(customer="Acme Outlet", total_committed_amount=Decimal("10000")),
            actor_id,
        )

        trail = ledger.get_contract_audit_trail(contract_id).unwrap()
        update = next(r for r in trail.items if r.action_type is AuditAction.CONTRACT_UPDATE)
        assert isinstance(update.payload, ContractUpdatePayload)
        assert update.payload.before["customer"] == "Acme Retail"
        assert update.payload.after["customer"] == "Acme Outlet"
        assert update.payload.changed_fields == ("customer",)

    def test_date_range_checked_against_merged_values(
        self, ledger, create_contract, actor_id
    ):
        contract_id = create_contract(
            campaign_start=date(2024, 6, 1), campaign_end=date(2024, 6, 30)
        )

        result = ledger.update_contract(
            contract_id, ContractUpdate(campaign_end=date(2024, 5, 15)), actor_id
        )

        assert result.field_errors == {"campaign_end": MSG_DATE_RANGE}
        stored = ledger.get_contract(contract_id).unwrap()
        assert stored.campaign_end == date(2024, 6, 30)

    def test_missing_contract(self, ledger, actor_id):
        result = ledger.update_contract(9999, ContractUpdate(customer="x"), actor_id)
        assert isinstance(result.error, ContractNotFoundError)
        assert result.error_code == "CONTRACT_NOT_FOUND"


# ============================================================================
# Delete
# ============================================================================


class TestDeleteContract:

    def test_delete_removes_allocations_and_balances(
        self, ledger, create_contract, actor_id, session, insert_balance
    ):
        contract_id = create_contract()
        contract = ledger.get_contract(contract_id).unwrap()
        insert_balance(contract.allocations[0].id, Decimal("100"), Decimal("5900"))

        result = ledger.delete_contract(contract_id, actor_id)

        assert result.unwrap() == contract_id
        assert _count(session, Contract) == 0
        assert _count(session, Allocation) == 0
        assert _count(session, AllocationBalance) == 0

    def test_delete_audit_keeps_full_snapshot(self, ledger, create_contract, actor_id):
        contract_id = create_contract()

        ledger.delete_contract(contract_id, actor_id)

        trail = ledger.get_contract_audit_trail(contract_id).unwrap()
        assert trail.items[0].action_type is AuditAction.CONTRACT_DELETE
        payload = trail.items[0].payload
        assert isinstance(payload, ContractDeletePayload)
        assert payload.contract["id"] == contract_id
        assert len(payload.contract["allocations"]) == 2

    def test_delete_missing_contract(self, ledger, actor_id):
        result = ledger.delete_contract(42, actor_id)
        assert isinstance(result.error, ContractNotFoundError)

    def test_get_deleted_contract_not_found(self, ledger, create_contract, actor_id):
        contract_id = create_contract()
        ledger.delete_contract(contract_id, actor_id)
        assert ledger.get_contract(contract_id).error_code == "CONTRACT_NOT_FOUND"


# ============================================================================
# Allocations
# ============================================================================


class TestAllocations:

    def test_duplicate_channel_is_conflict(self, ledger, create_contract, actor_id):
        contract_id = create_contract(total="1000", inline="1000", ecomm="0")

        result = ledger.create_allocation(contract_id, Channel.INLINE, Decimal("10"), actor_id)

        assert isinstance(result.error, DuplicateAllocationError)
        assert result.error_code == "DUPLICATE_ALLOCATION"

    def test_add_missing_channel_without_revalidation(
        self, ledger, create_contract, actor_id
    ):
        contract_id = create_contract(total="1000", inline="1000", ecomm="0")

        created = ledger.create_allocation(contract_id, "Ecomm", Decimal("250"), actor_id)

        assert created.unwrap().channel is Channel.ECOMM
        report = ledger.validate_allocation_amounts(contract_id).unwrap()
        assert report.is_over_allocated
        assert report.remaining == Decimal("-250")

    def test_allocation_for_missing_contract(self, ledger, actor_id):
        result = ledger.create_allocation(777, Channel.INLINE, Decimal("1"), actor_id)
        assert isinstance(result.error, ContractNotFoundError)

    def test_invalid_channel(self, ledger, create_contract, actor_id):
        contract_id = create_contract()
        result = ledger.create_allocation(contract_id, "Wholesale", Decimal("1"), actor_id)
        assert "channel" in result.field_errors

    def test_negative_amount_rejected(self, ledger, create_contract, actor_id):
        contract_id = create_contract()
        allocation = ledger.get_contract(contract_id).unwrap().allocations[0]
        result = ledger.update_allocation(allocation.id, Decimal("-1"), actor_id)
        assert "allocated_amount" in result.field_errors

    def test_allocation_amounts_rounded_to_cents(self, ledger, create_contract, actor_id):
        contract_id = create_contract(total="1000", inline="1000", ecomm="0")

        created = ledger.create_allocation(
            contract_id, Channel.ECOMM, Decimal("250.005"), actor_id
        ).unwrap()
        assert created.allocated_amount == Decimal("250.01")

        updated = ledger.update_allocation(created.id, Decimal("0.004"), actor_id).unwrap()
        assert updated.allocated_amount == Decimal("0.00")

    def test_update_allocation_audited(self, ledger, create_contract, actor_id):
        contract_id = create_contract()
        inline = ledger.get_contract(contract_id).unwrap().allocation_for(Channel.INLINE)

        updated = ledger.update_allocation(inline.id, Decimal("6500"), actor_id).unwrap()

        assert updated.allocated_amount == Decimal("6500")
        trail = ledger.get_contract_audit_trail(contract_id).unwrap()
        payload = trail.items[0].payload
        assert isinstance(payload, AllocationUpdatePayload)
        assert payload.before_amount == "6000.00"
        assert payload.after_amount == "6500.00"

    def test_delete_allocation(self, ledger, create_contract, actor_id):
        contract_id = create_contract()
        ecomm = ledger.get_contract(contract_id).unwrap().allocation_for(Channel.ECOMM)

        assert ledger.delete_allocation(ecomm.id, actor_id).is_success
        assert isinstance(ledger.get_allocation(ecomm.id).error, AllocationNotFoundError)

    def test_missing_allocation(self, ledger, actor_id):
        assert ledger.update_allocation(5, Decimal("1"), actor_id).error_code == (
            "ALLOCATION_NOT_FOUND"
        )

    def test_list_allocations_filters(self, ledger, create_contract):
        first = create_contract()
        create_contract(style_ref="ST-2002")

        page = ledger.list_allocations(contract_id=first).unwrap()
        assert page.total == 2
        assert {a.contract_id for a in page.items} == {first}

        ecomm = ledger.list_allocations(channel="Ecomm").unwrap()
        assert ecomm.total == 2
        assert all(a.channel is Channel.ECOMM for a in ecomm.items)

    def test_missing_balance_defaults(self, ledger, create_contract):
        contract_id = create_contract()
        allocation = ledger.get_contract(contract_id).unwrap().allocations[0]
        assert allocation.spent_amount == Decimal("0")
        assert allocation.remaining_balance == allocation.allocated_amount


# ============================================================================
# Reports
# ============================================================================


class TestAllocationValidation:

    def test_over_allocated_boundary(self, ledger, create_contract, actor_id):
        contract_id = create_contract(total="10000", inline="6000", ecomm="4000")
        inline = ledger.get_contract(contract_id).unwrap().allocation_for(Channel.INLINE)
        ledger.update_allocation(inline.id, Decimal("8000"), actor_id)

        report = ledger.validate_allocation_amounts(contract_id).unwrap()

        assert report.total_allocated == Decimal("12000")
        assert report.remaining == Decimal("-2000")
        assert report.is_over_allocated
        assert not report.is_fully_allocated

    def test_missing_contract(self, ledger):
        assert isinstance(ledger.validate_allocation_amounts(1).error, ContractNotFoundError)


class TestSpendReports:

    @pytest.fixture
    def spent_contract(self, ledger, create_contract, insert_balance):
        contract_id = create_contract(total="10000", inline="5000", ecomm="5000")
        contract = ledger.get_contract(contract_id).unwrap()
        inline = contract.allocation_for(Channel.INLINE)
        ecomm = contract.allocation_for(Channel.ECOMM)
        insert_balance(inline.id, Decimal("4750"), Decimal("250"))
        insert_balance(ecomm.id, Decimal("1000"), Decimal("4000"))
        return contract_id, inline.id, ecomm.id

    def test_nearing_limit(self, ledger, spent_contract):
        _, inline_id, ecomm_id = spent_contract

        nearing = ledger.get_nearing_limit(Decimal("90")).unwrap()

        assert [u.allocation.id for u in nearing] == [inline_id]
        assert nearing[0].utilization_pct == Decimal("95.00")

    def test_threshold_is_inclusive(self, ledger, spent_contract):
        _, inline_id, _ = spent_contract
        nearing = ledger.get_nearing_limit(Decimal("95")).unwrap()
        assert [u.allocation.id for u in nearing] == [inline_id]

    def test_utilization_sorted_descending(self, ledger, spent_contract):
        contract_id, inline_id, ecomm_id = spent_contract

        rows = ledger.get_utilization(contract_id).unwrap()

        assert [r.allocation.id for r in rows] == [inline_id, ecomm_id]
        assert [r.utilization_pct for r in rows] == [Decimal("95.00"), Decimal("20.00")]
        assert rows[0].allocation.remaining_balance == Decimal("250")

    def test_channel_summary(self, ledger, spent_contract):
        summaries = {s.channel: s for s in ledger.get_channel_summary().unwrap()}

        assert summaries[Channel.ECOMM].total_spent == Decimal("1000")
        assert summaries[Channel.INLINE].avg_utilization_pct == Decimal("95.00")
        assert summaries[Channel.INLINE].allocation_count == 1


# ============================================================================
# Reads
# ============================================================================


class TestReads:

    def test_view_recorded_only_with_actor(self, ledger, create_contract):
        contract_id = create_contract()

        ledger.get_contract(contract_id)
        ledger.get_contract(contract_id, actor_id="user-bob")

        views = ledger.get_audit_trail().unwrap().items
        viewed = [r for r in views if r.action_type is AuditAction.CONTRACT_VIEW]
        assert len(viewed) == 1
        assert viewed[0].actor_id == "user-bob"

    def test_list_contracts_filters(self, ledger, create_contract):
        create_contract(customer="Acme Retail")
        create_contract(style_ref="ST-2002", customer="Globex")

        page = ledger.list_contracts(ContractFilter(customer="acme")).unwrap()
        assert page.total == 1
        assert page.items[0].customer == "Acme Retail"

        by_style = ledger.list_contracts(ContractFilter(style="2002")).unwrap()
        assert [c.style_ref for c in by_style.items] == ["ST-2002"]

    def test_list_contracts_paginates(self, ledger, create_contract):
        for _ in range(3):
            create_contract()

        page = ledger.list_contracts(limit=2, offset=0).unwrap()
        assert page.total == 3
        assert len(page.items) == 2

    def test_bad_page_arguments(self, ledger):
        result = ledger.list_contracts(limit=0, offset=-1)
        assert set(result.field_errors) == {"limit", "offset"}

    def test_export_rows(self, ledger, create_contract, actor_id):
        channel_id = create_contract()
        all_style = ledger.create_contract(
            ContractInput(
                style_ref="ST-3003",
                scope=ContractScope.ALL_STYLE,
                total_committed_amount=Decimal("500"),
                contract_date=date(2024, 3, 2),
            ),
            actor_id,
        ).unwrap()

        rows = ledger.export_contracts([channel_id, all_style]).unwrap()

        assert [(r.contract_id, r.channel) for r in rows] == [
            (channel_id, Channel.ECOMM),
            (channel_id, Channel.INLINE),
            (all_style, None),
        ]
