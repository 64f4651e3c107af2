"""Tests for TransactionCoordinator commit, rollback and error translation."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import OperationalError

from funding_kernel.db import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
)
from funding_kernel.exceptions import (
    ConflictError,
    ConnectionPoolExhaustedError,
    ContractNotFoundError,
    DuplicateAllocationError,
    TransactionError,
)
from funding_kernel.models import Allocation, Channel, Contract, ContractScope
from funding_kernel.services.transaction import TransactionCoordinator


def _contract(style_ref: str = "ST-1001") -> Contract:
    return Contract(
        style_ref=style_ref,
        scope=ContractScope.CHANNEL,
        total_committed_amount=Decimal("1000"),
        contract_date=date(2024, 3, 1),
        created_by="user-alice",
    )


def _count(session, model) -> int:
    return session.scalar(select(func.count(model.id)))


class TestRunAtomic:

    def test_commits_on_return(self, coordinator, session):
        def _insert(s):
            contract = _contract()
            s.add(contract)
            s.flush()
            return contract.id

        contract_id = coordinator.run_atomic(_insert)

        assert session.get(Contract, contract_id).style_ref == "ST-1001"

    def test_rolls_back_on_error(self, coordinator, session):
        def _insert_then_fail(s):
            s.add(_contract())
            s.flush()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            coordinator.run_atomic(_insert_then_fail)

        assert _count(session, Contract) == 0

    def test_kernel_errors_pass_through(self, coordinator):
        def _missing(s):
            raise ContractNotFoundError(42)

        with pytest.raises(ContractNotFoundError):
            coordinator.run_atomic(_missing)

    def test_store_error_becomes_transaction_error(self, coordinator, captured_logs):
        def _broken(s):
            s.execute(text("SELECT * FROM no_such_table"))

        with pytest.raises(TransactionError) as exc_info:
            coordinator.run_atomic(_broken, operation="broken_read")

        assert exc_info.value.operation == "broken_read"
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert any(r["message"] == "transaction_failed" for r in captured_logs())


class TestIntegrityTranslation:

    @pytest.fixture
    def contract_id(self, coordinator):
        def _insert(s):
            contract = _contract()
            s.add(contract)
            s.flush()
            return contract.id

        return coordinator.run_atomic(_insert)

    def _add_inline(self, coordinator, contract_id):
        def _insert(s):
            s.add(
                Allocation(
                    contract_id=contract_id,
                    channel=Channel.INLINE.value,
                    allocated_amount=Decimal("100"),
                )
            )
            s.flush()

        coordinator.run_atomic(_insert, operation="create_allocation")

    def test_second_allocation_for_channel_conflicts(
        self, coordinator, contract_id, session
    ):
        self._add_inline(coordinator, contract_id)

        with pytest.raises(ConflictError) as exc_info:
            self._add_inline(coordinator, contract_id)

        assert exc_info.value.code in ("CONFLICT", DuplicateAllocationError.code)
        assert _count(session, Allocation) == 1

    def test_foreign_key_violation_is_not_a_conflict(self, coordinator):
        def _orphan(s):
            s.add(
                Allocation(
                    contract_id=9999,
                    channel=Channel.ECOMM.value,
                    allocated_amount=Decimal("1"),
                )
            )
            s.flush()

        with pytest.raises(TransactionError):
            coordinator.run_atomic(_orphan, operation="create_allocation")


class TestPoolExhaustion:

    @pytest.fixture
    def small_engine(self, tmp_path):
        engine = create_engine_from_url(
            f"sqlite:///{tmp_path / 'pool.db'}",
            pool_size=1,
            max_overflow=0,
            pool_timeout=0.2,
        )
        create_tables(engine)
        yield engine
        drop_tables(engine)
        engine.dispose()

    def test_checkout_timeout_is_reported(self, small_engine, captured_logs):
        factory = create_session_factory(small_engine)
        coordinator = TransactionCoordinator(factory, pool_timeout=0.2)

        def _insert(s):
            s.add(_contract())
            s.flush()

        held = small_engine.connect()
        try:
            with pytest.raises(ConnectionPoolExhaustedError) as exc_info:
                coordinator.run_atomic(_insert, operation="create_contract")
        finally:
            held.close()

        assert exc_info.value.operation == "create_contract"
        assert exc_info.value.timeout_seconds == 0.2
        assert exc_info.value.code == "CONNECTION_POOL_EXHAUSTED"
        assert any(
            r["message"] == "connection_pool_exhausted" for r in captured_logs()
        )
        assert coordinator.read(lambda s: _count(s, Contract)) == 0


def test_read_uses_same_scope(coordinator):
    assert coordinator.read(lambda s: s.scalar(select(func.count(Contract.id)))) == 0
