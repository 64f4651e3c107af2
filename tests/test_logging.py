"""Tests for the structured logging system (funding_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from funding_kernel.exceptions import DuplicateAllocationError
from funding_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test unconfigured; restore the suite configuration after."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "funding_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "allocation_created",
            extra={"allocation_id": 42, "allocated_amount": Decimal("6000.00")},
        )

        record = _parse_log(stream)
        assert record["allocation_id"] == 42
        assert record["allocated_amount"] == "6000.00"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", contract_id="17")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["contract_id"] == "17"

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise DuplicateAllocationError(7, "Inline")
        except DuplicateAllocationError:
            get_logger("test").error("allocation_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "DuplicateAllocationError"
        assert record["exc_code"] == "DUPLICATE_ALLOCATION"
        assert record["exc_contract_id"] == 7
        assert record["exc_channel"] == "Inline"
        assert "traceback" in record

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "actor_id" not in record

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="user-alice")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "user-alice"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(operation="outer")
        with LogContext.bind(operation="inner", contract_id=5):
            assert LogContext.get_all() == {"operation": "inner", "contract_id": "5"}
        assert LogContext.get_all() == {"operation": "outer"}

    def test_bind_skips_none(self):
        with LogContext.bind(actor_id=None, operation="read"):
            assert LogContext.get_all() == {"operation": "read"}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("funding_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.ledger").name == "funding_kernel.services.ledger"

    def test_service_events_reach_configured_handler(
        self, ledger, channel_input, actor_id
    ):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)

        ledger.create_contract(channel_input(), actor_id)

        created = [r for r in _parse_all_logs(stream) if r["message"] == "contract_created"]
        assert len(created) == 1
        assert created[0]["logger"] == "funding_kernel.services.ledger"
        assert created[0]["actor_id"] == actor_id
