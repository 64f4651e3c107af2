"""Pure domain layer: DTOs, invariants, reconciliation, audit payloads, clock."""

from funding_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from funding_kernel.domain.results import OperationResult
from funding_kernel.domain.style_catalog import InMemoryStyleCatalog, StyleCatalog

__all__ = [
    "Clock",
    "DeterministicClock",
    "InMemoryStyleCatalog",
    "OperationResult",
    "StyleCatalog",
    "SystemClock",
]
