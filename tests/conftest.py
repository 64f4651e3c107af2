"""
Pytest fixtures for the funding ledger test suite.

Every test gets its own file-backed SQLite database under ``tmp_path``.
The engine is built through the production factory, so tests run with the
same SQLite settings as local tooling (foreign keys on, write lock taken at
BEGIN) and real commits.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import text

from funding_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
)
from funding_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from funding_kernel.domain.clock import DeterministicClock
from funding_kernel.domain.dtos import ChannelAmounts, ContractInput
from funding_kernel.domain.style_catalog import InMemoryStyleCatalog
from funding_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from funding_kernel.models.contract import ContractScope
from funding_kernel.services.audit_recorder import AuditRecorder
from funding_kernel.services.draft_service import DraftService
from funding_kernel.services.ledger_service import LedgerService
from funding_kernel.services.transaction import TransactionCoordinator

KNOWN_STYLES = ("ST-1001", "ST-2002", "ST-3003", "ABC_9")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture funding_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.create_contract(...)
            logs = captured_logs()
            assert any(r["message"] == "contract_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("funding_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'funding.db'}"


@pytest.fixture
def engine(database_url):
    engine = create_engine_from_url(database_url, pool_size=5, max_overflow=5)
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory):
    """A plain session for direct inspection; rolled back on teardown."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def coordinator(session_factory):
    return TransactionCoordinator(session_factory)


@pytest.fixture
def insert_balance(engine):
    """Simulate the spend-tracking feed writing a balance row."""

    def _insert(allocation_id: int, spent: Decimal, remaining: Decimal) -> None:
        with engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO allocation_balances "
                    "(allocation_id, spent_amount, remaining_balance) "
                    "VALUES (:allocation_id, :spent, :remaining)"
                ),
                {
                    "allocation_id": allocation_id,
                    "spent": str(spent),
                    "remaining": str(remaining),
                },
            )

    return _insert


# =============================================================================
# Clock, catalog and service fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def style_catalog():
    return InMemoryStyleCatalog(KNOWN_STYLES)


@pytest.fixture
def audit_recorder(deterministic_clock):
    return AuditRecorder(deterministic_clock)


@pytest.fixture
def ledger(session_factory, style_catalog, deterministic_clock, audit_recorder):
    return LedgerService(
        session_factory,
        style_catalog,
        clock=deterministic_clock,
        audit_recorder=audit_recorder,
    )


@pytest.fixture
def drafts(session_factory, deterministic_clock, audit_recorder):
    return DraftService(
        session_factory,
        clock=deterministic_clock,
        audit_recorder=audit_recorder,
    )


@pytest.fixture
def actor_id() -> str:
    return "user-alice"


@pytest.fixture
def channel_input():
    """Factory for Channel-scope contract inputs."""

    def _make(
        total: str = "10000",
        inline: str = "6000",
        ecomm: str = "4000",
        style_ref: str = "ST-1001",
        **kwargs,
    ) -> ContractInput:
        return ContractInput(
            style_ref=style_ref,
            scope=ContractScope.CHANNEL,
            total_committed_amount=Decimal(total),
            contract_date=kwargs.pop("contract_date", date(2024, 3, 1)),
            allocations=ChannelAmounts(
                inline_amount=Decimal(inline),
                ecomm_amount=Decimal(ecomm),
                inline_percentage=kwargs.pop("inline_percentage", None),
                ecomm_percentage=kwargs.pop("ecomm_percentage", None),
            ),
            **kwargs,
        )

    return _make


@pytest.fixture
def create_contract(ledger, channel_input, actor_id):
    """Create a Channel contract and return its id."""

    def _create(**kwargs) -> int:
        result = ledger.create_contract(channel_input(**kwargs), actor_id)
        assert result.is_success, result.error
        return result.value

    return _create
