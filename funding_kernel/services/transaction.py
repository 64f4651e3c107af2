"""
TransactionCoordinator -- run a unit of work atomically.

Responsibility:
    Opens one session per operation, hands it to the operation, commits on
    success, and rolls back on any failure.  Store exceptions are translated
    into the kernel's typed errors after rollback so callers never see a
    driver exception.

    IntegrityError (unique violation)   -> ConflictError
        on uq_allocation_contract_channel -> DuplicateAllocationError
    IntegrityError (anything else)      -> TransactionError
    sqlalchemy TimeoutError (pool)      -> ConnectionPoolExhaustedError
    any other SQLAlchemyError           -> TransactionError
    FundingKernelError                  -> re-raised unchanged

Failure modes:
    - Non-database exceptions raised by the operation are re-raised unchanged
      after rollback.
"""

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from funding_kernel.db.engine import session_scope
from funding_kernel.exceptions import (
    ConflictError,
    ConnectionPoolExhaustedError,
    DuplicateAllocationError,
    FundingKernelError,
    TransactionError,
)
from funding_kernel.logging_config import get_logger

logger = get_logger("services.transaction")

T = TypeVar("T")

UNIQUE_VIOLATION_PGCODE = "23505"

# PostgreSQL reports the constraint name, SQLite the column list.
_ALLOCATION_UNIQUE_MARKERS = (
    "uq_allocation_contract_channel",
    "allocations.contract_id, allocations.channel",
)


def is_unique_violation(exc: IntegrityError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode is not None:
        return pgcode == UNIQUE_VIOLATION_PGCODE
    return "unique" in str(exc.orig).lower()


def translate_integrity_error(exc: IntegrityError, operation: str) -> FundingKernelError:
    if not is_unique_violation(exc):
        return TransactionError(operation, str(exc.orig))

    message = str(exc.orig)
    if any(marker in message for marker in _ALLOCATION_UNIQUE_MARKERS):
        params = exc.params if isinstance(exc.params, dict) else {}
        if "contract_id" in params and "channel" in params:
            return DuplicateAllocationError(params["contract_id"], params["channel"])
        return ConflictError("Contract already has an allocation for this channel")
    return ConflictError(f"Conflicting record already exists: {message}")


class TransactionCoordinator:
    """
    Owns the transaction boundary for ledger operations.

    Contract:
        ``run_atomic(fn)`` calls ``fn(session)`` exactly once.  Either every
        write made through that session commits, or none does.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        pool_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._pool_timeout = pool_timeout

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    def run_atomic(self, fn: Callable[[Session], T], operation: str = "atomic") -> T:
        """Run ``fn`` in a new transaction; commit on return, roll back on error."""
        try:
            with session_scope(self._session_factory) as session:
                return fn(session)
        except FundingKernelError:
            raise
        except IntegrityError as exc:
            error = translate_integrity_error(exc, operation)
            logger.warning(
                "transaction_integrity_error",
                extra={"operation": operation, "error_code": error.code},
            )
            raise error from exc
        except PoolTimeoutError as exc:
            logger.error(
                "connection_pool_exhausted",
                extra={"operation": operation, "pool_timeout": self._pool_timeout},
            )
            raise ConnectionPoolExhaustedError(operation, self._pool_timeout) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "transaction_failed",
                extra={"operation": operation, "reason": str(exc)},
            )
            raise TransactionError(operation, str(exc)) from exc

    def read(self, fn: Callable[[Session], T], operation: str = "read") -> T:
        """Same scope and error translation for operations that only query."""
        return self.run_atomic(fn, operation=operation)
