"""
funding_services.runtime -- DI container for the funding ledger.

Responsibility:
    Builds the single Engine (and its connection pool) from settings and
    wires every kernel service to it.  No service constructs its own engine
    or session factory; the runtime is the only place where they are
    created and composed.

Usage:
    from funding_config import load_settings
    from funding_services import LedgerRuntime

    with LedgerRuntime(load_settings(), style_catalog=catalog) as runtime:
        result = runtime.ledger.create_contract(contract_input, actor_id)
        runtime.migrations.status()

Failure modes:
    - ConfigurationError propagates from settings loading.
    - Engine construction errors propagate (bad driver, bad URL).
    - An unreachable store is reported by ping(), not at construction:
      connections are opened lazily.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from funding_config import LedgerSettings
from funding_kernel.db.engine import create_engine_from_url, create_session_factory
from funding_kernel.db.immutability import register_immutability_listeners
from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.domain.style_catalog import StyleCatalog
from funding_kernel.logging_config import configure_logging, get_logger
from funding_kernel.services.audit_recorder import AuditRecorder
from funding_kernel.services.draft_service import DraftService
from funding_kernel.services.ledger_service import LedgerService
from funding_kernel.services.migration_runner import (
    DEFAULT_MIGRATIONS_DIR,
    MigrationRunner,
)
from funding_kernel.services.transaction import TransactionCoordinator

logger = get_logger("services.runtime")


class LedgerRuntime:
    """
    Owns the engine and the services bound to it.

    Guarantees:
        - One Engine per runtime; ``close()`` disposes its pool.
        - Every service shares the same clock, audit recorder and
          transaction coordinator.
    """

    def __init__(
        self,
        settings: LedgerSettings,
        style_catalog: StyleCatalog,
        clock: Clock | None = None,
        engine: Engine | None = None,
        configure_logs: bool = True,
    ):
        self._settings = settings
        if configure_logs:
            configure_logging(level=settings.log_level)
        register_immutability_listeners()

        db = settings.database
        self._engine = engine or create_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.connect_timeout,
            pool_recycle=db.idle_timeout,
        )
        self._session_factory = create_session_factory(self._engine)
        self._clock = clock or SystemClock()

        self._coordinator = TransactionCoordinator(
            self._session_factory, pool_timeout=db.connect_timeout
        )
        self._audit = AuditRecorder(self._clock)
        self._ledger = LedgerService(
            self._session_factory,
            style_catalog,
            clock=self._clock,
            audit_recorder=self._audit,
            coordinator=self._coordinator,
        )
        self._drafts = DraftService(
            self._session_factory,
            clock=self._clock,
            audit_recorder=self._audit,
            coordinator=self._coordinator,
        )
        self._migrations = MigrationRunner(
            self._engine,
            settings.migrations_dir or DEFAULT_MIGRATIONS_DIR,
            clock=self._clock,
        )

        logger.info(
            "ledger_runtime_started",
            extra={"database": db.safe_url(), "pool_size": db.pool_size},
        )

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @property
    def ledger(self) -> LedgerService:
        return self._ledger

    @property
    def drafts(self) -> DraftService:
        return self._drafts

    @property
    def migrations(self) -> MigrationRunner:
        return self._migrations

    @property
    def audit(self) -> AuditRecorder:
        return self._audit

    def ping(self) -> bool:
        """True when the store answers a trivial query."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning(
                "store_unreachable",
                extra={"database": self._settings.database.safe_url(), "error": str(exc)},
            )
            return False
        return True

    def close(self) -> None:
        self._engine.dispose()
        logger.info("ledger_runtime_closed")

    def __enter__(self) -> LedgerRuntime:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
