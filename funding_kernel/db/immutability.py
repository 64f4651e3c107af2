"""
ORM-Level Immutability Enforcement for the audit trail.

Audit entries are append-only: once flushed they are never updated or
deleted by this system.  SQLAlchemy fires ``before_update`` and
``before_delete`` mapper events before SQL reaches the store; the listeners
below reject both for ``AuditEntry`` and ``SchemaMigration`` rows.

    session.flush()
         |
         v
    [before_update / before_delete] --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Bulk ``delete()``/``update()`` statements bypass mapper events; the ledger
never issues them against these tables.

Usage (once at startup; LedgerRuntime does this):

    from funding_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()
"""

from sqlalchemy import event

from funding_kernel.exceptions import ImmutabilityViolationError
from funding_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_registered = False


def _reject_update(mapper, connection, target):
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity_type, "entity_id": str(target.id), "op": "update"},
    )
    raise ImmutabilityViolationError(
        entity_type, str(target.id), "append-only records cannot be modified"
    )


def _reject_delete(mapper, connection, target):
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity_type, "entity_id": str(target.id), "op": "delete"},
    )
    raise ImmutabilityViolationError(
        entity_type, str(target.id), "append-only records cannot be deleted"
    )


def _protected_models():
    from funding_kernel.models.audit_entry import AuditEntry
    from funding_kernel.models.migration import SchemaMigration

    return (AuditEntry, SchemaMigration)


def register_immutability_listeners() -> None:
    """Install the listeners (idempotent)."""
    global _registered
    if _registered:
        return
    for model in _protected_models():
        event.listen(model, "before_update", _reject_update)
        event.listen(model, "before_delete", _reject_delete)
    _registered = True


def unregister_immutability_listeners() -> None:
    """Remove the listeners. TESTS ONLY."""
    global _registered
    if not _registered:
        return
    for model in _protected_models():
        event.remove(model, "before_update", _reject_update)
        event.remove(model, "before_delete", _reject_delete)
    _registered = False
