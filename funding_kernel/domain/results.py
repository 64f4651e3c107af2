"""
OperationResult -- typed success-or-failure value returned by LedgerService.

Expected business failures (validation, missing entity, duplicate channel)
are carried as values so callers branch on type instead of catching.  Store
failures are not represented here: they are raised after rollback.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from funding_kernel.exceptions import FundingKernelError, ValidationFailedError

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Result of one ledger operation.

    Contract:
        Either ``value`` is set (success) or ``error`` is set (failure),
        never both.

    Guarantees:
        - ``field_errors`` is non-empty only for validation failures.
        - ``unwrap()`` returns the value or raises the carried error.
    """

    value: T | None = None
    error: FundingKernelError | None = None

    @classmethod
    def success(cls, value: T) -> OperationResult[T]:
        return cls(value=value, error=None)

    @classmethod
    def failure(cls, error: FundingKernelError) -> OperationResult[T]:
        assert error is not None, "failure result requires an error"
        return cls(value=None, error=error)

    @classmethod
    def invalid(cls, field_errors: dict[str, str]) -> OperationResult[T]:
        return cls.failure(ValidationFailedError(field_errors))

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    @property
    def field_errors(self) -> dict[str, str]:
        if isinstance(self.error, ValidationFailedError):
            return dict(self.error.field_errors)
        return {}

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def __bool__(self) -> bool:
        return self.is_success
