"""Service wiring for the funding ledger."""

from funding_services.runtime import LedgerRuntime

__all__ = ["LedgerRuntime"]
