"""
AuditRecorder -- best-effort, append-only audit trail.

Responsibility:
    Appends one AuditEntry per business action inside the caller's
    transaction, and answers audit-trail queries.

Architecture position:
    Kernel > Services.  Called by LedgerService and DraftService with the
    session of the unit of work being audited.

Guarantees:
    - The entry is written in a SAVEPOINT of the caller's transaction, so it
      commits or rolls back with the business change it describes.
    - record() never raises.  If the entry cannot be serialized or stored,
      the savepoint is rolled back, ``audit_write_failed`` is logged at error
      level, and the caller's transaction remains usable and commits.  The
      trail may therefore under-report; it never blocks a business operation.
    - Timestamps come from the injected Clock, never from the caller.

Non-goals:
    - Does NOT update or delete entries (db/immutability.py rejects both).
"""

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funding_kernel.domain.audit_payloads import AuditPayload, payload_from_dict
from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.domain.dtos import AuditFilter, AuditRecord, Page
from funding_kernel.exceptions import AuditWriteError
from funding_kernel.logging_config import get_logger
from funding_kernel.models.audit_entry import AuditAction, AuditEntry

logger = get_logger("services.audit")

DEFAULT_PAGE_SIZE = 50


def to_audit_record(entry: AuditEntry) -> AuditRecord:
    action = AuditAction(entry.action_type)
    return AuditRecord(
        id=entry.id,
        action_type=action,
        actor_id=entry.actor_id,
        contract_id=entry.contract_id,
        draft_id=entry.draft_id,
        payload=payload_from_dict(action, entry.payload),
        timestamp=entry.timestamp,
    )


class AuditRecorder:
    """Writes and reads the audit trail."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def record(
        self,
        session: Session,
        payload: AuditPayload,
        actor_id: str,
        contract_id: int | None = None,
        draft_id: int | None = None,
    ) -> AuditEntry | None:
        """
        Append an entry for ``payload.action``.

        Returns:
            The flushed AuditEntry, or None when the write failed.
        """
        action = payload.action
        try:
            data = payload.to_dict()
            with session.begin_nested():
                entry = AuditEntry(
                    contract_id=contract_id,
                    draft_id=draft_id,
                    action_type=action.value,
                    actor_id=actor_id,
                    payload=data,
                    timestamp=self._clock.now(),
                )
                session.add(entry)
                session.flush()
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            error = AuditWriteError(action.value, str(exc))
            logger.error(
                "audit_write_failed",
                extra={
                    "action_type": action.value,
                    "actor_id": actor_id,
                    "contract_id": contract_id,
                    "draft_id": draft_id,
                    "error_code": error.code,
                    "reason": error.reason,
                },
            )
            return None

        logger.debug(
            "audit_entry_recorded",
            extra={"audit_id": entry.id, "action_type": action.value, "contract_id": contract_id},
        )
        return entry

    def query(
        self,
        session: Session,
        filters: AuditFilter | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page:
        """Matching entries, newest first (timestamp desc, then id desc)."""
        filters = filters or AuditFilter()
        conditions = []
        if filters.contract_id is not None:
            conditions.append(AuditEntry.contract_id == filters.contract_id)
        if filters.actor_id is not None:
            conditions.append(AuditEntry.actor_id == filters.actor_id)
        if filters.action_type is not None:
            conditions.append(
                AuditEntry.action_type == AuditAction(filters.action_type).value
            )

        entries = session.scalars(
            select(AuditEntry)
            .where(*conditions)
            .order_by(AuditEntry.timestamp.desc(), AuditEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        total = session.scalar(select(func.count(AuditEntry.id)).where(*conditions)) or 0

        return Page(
            items=tuple(to_audit_record(e) for e in entries),
            total=total,
            limit=limit,
            offset=offset,
        )

    def contract_trail(
        self,
        session: Session,
        contract_id: int,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page:
        return self.query(session, AuditFilter(contract_id=contract_id), limit, offset)
