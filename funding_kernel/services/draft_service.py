"""
DraftService -- saved, resumable contract entry forms.

Responsibility:
    Persists an actor's in-progress contract form so data entry can resume
    later.  Drafts are free-form JSON: nothing in them is validated until
    the form is submitted through LedgerService.create_contract.

Rules:
    - Saving without a draft id replaces every earlier draft of the actor
      with a single new one.
    - Saving with a draft id updates that draft only if the actor owns it.
    - Loading returns the actor's most recently saved draft.
    - save_draft and a successful load_latest are audited
      (save_draft / resume_draft).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from funding_kernel.db.types import to_decimal
from funding_kernel.domain.audit_payloads import ResumeDraftPayload, SaveDraftPayload
from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.domain.dtos import DraftInfo
from funding_kernel.domain.results import OperationResult
from funding_kernel.exceptions import DraftNotFoundError, NotFoundError
from funding_kernel.logging_config import LogContext, get_logger
from funding_kernel.models.draft import ContractDraft
from funding_kernel.services.audit_recorder import AuditRecorder
from funding_kernel.services.transaction import TransactionCoordinator

logger = get_logger("services.drafts")

MEANINGFUL_FIELDS = (
    "style_ref",
    "customer",
    "total_committed_amount",
    "campaign_start",
    "campaign_end",
)

COMPARED_FIELDS = (
    "style_ref",
    "scope",
    "customer",
    "total_committed_amount",
    "contract_date",
    "campaign_start",
    "campaign_end",
)

ALLOCATION_FIELDS = (
    "inline_amount",
    "ecomm_amount",
    "inline_percentage",
    "ecomm_percentage",
)

_FIFTY = Decimal("50")


# =============================================================================
# Pure helpers
# =============================================================================


def _number(value: Any) -> Decimal:
    """Lenient numeric coercion for form values; blanks and junk become 0."""
    if value is None or value == "":
        return Decimal("0")
    try:
        return to_decimal(value)
    except ValueError:
        return Decimal("0")


def should_save_draft(form_data: dict[str, Any]) -> bool:
    """
    True when the form holds something worth keeping.

    An empty form, or one still at its defaults (zero total with a 50/50
    split), is not saved.
    """
    if not any(form_data.get(name) for name in MEANINGFUL_FIELDS):
        return False

    allocations = form_data.get("allocations") or {}
    if (
        _number(form_data.get("total_committed_amount")) == 0
        and _number(allocations.get("inline_percentage")) == _FIFTY
        and _number(allocations.get("ecomm_percentage")) == _FIFTY
    ):
        return False

    return True


def has_form_data_changed(current: dict[str, Any], saved: dict[str, Any]) -> bool:
    for name in COMPARED_FIELDS:
        if current.get(name) != saved.get(name):
            return True

    current_alloc = current.get("allocations") or {}
    saved_alloc = saved.get("allocations") or {}
    return any(
        current_alloc.get(name) != saved_alloc.get(name) for name in ALLOCATION_FIELDS
    )


def sanitize_form_data(form_data: dict[str, Any], today: date) -> dict[str, Any]:
    """
    Normalize a form before saving.

    Strings are trimmed, a missing contract date defaults to ``today``,
    and allocation values become decimal strings (0 when blank).
    """
    allocations = form_data.get("allocations") or {}
    cleaned = dict(form_data)
    cleaned.update(
        style_ref=(form_data.get("style_ref") or "").strip(),
        customer=(form_data.get("customer") or "").strip(),
        contract_date=form_data.get("contract_date") or today.isoformat(),
        campaign_start=(form_data.get("campaign_start") or "").strip(),
        campaign_end=(form_data.get("campaign_end") or "").strip(),
        allocations={
            name: str(_number(allocations.get(name))) for name in ALLOCATION_FIELDS
        },
    )
    return cleaned


def _to_info(draft: ContractDraft) -> DraftInfo:
    return DraftInfo(
        id=draft.id,
        actor_id=draft.actor_id,
        form_data=dict(draft.form_data),
        last_saved=draft.last_saved,
        created_at=draft.created_at,
    )


# =============================================================================
# Service
# =============================================================================


class DraftService:
    """Save, resume, delete and prune an actor's contract drafts."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        audit_recorder: AuditRecorder | None = None,
        coordinator: TransactionCoordinator | None = None,
    ):
        self._clock = clock or SystemClock()
        self._audit = audit_recorder or AuditRecorder(self._clock)
        self._tx = coordinator or TransactionCoordinator(session_factory)

    def save_draft(
        self,
        actor_id: str,
        form_data: dict[str, Any],
        draft_id: int | None = None,
    ) -> OperationResult[DraftInfo]:
        now = self._clock.now()
        data = sanitize_form_data(form_data, self._clock.today())

        def _save(session: Session) -> DraftInfo:
            replaced = 0
            if draft_id is not None:
                draft = session.scalar(
                    select(ContractDraft).where(
                        ContractDraft.id == draft_id,
                        ContractDraft.actor_id == actor_id,
                    )
                )
                if draft is None:
                    raise DraftNotFoundError(draft_id, actor_id)
                draft.form_data = data
                draft.last_saved = now
            else:
                replaced = session.execute(
                    delete(ContractDraft).where(ContractDraft.actor_id == actor_id)
                ).rowcount
                draft = ContractDraft(
                    actor_id=actor_id,
                    form_data=data,
                    last_saved=now,
                    created_at=now,
                )
                session.add(draft)
            session.flush()

            self._audit.record(
                session,
                SaveDraftPayload(
                    draft_id=draft.id,
                    replaced_drafts=replaced,
                    is_update=draft_id is not None,
                ),
                actor_id,
                draft_id=draft.id,
            )
            return _to_info(draft)

        with LogContext.bind(actor_id=actor_id, operation="save_draft"):
            try:
                info = self._tx.run_atomic(_save, operation="save_draft")
            except NotFoundError as exc:
                return OperationResult.failure(exc)
            logger.info("draft_saved", extra={"draft_id": info.id})
        return OperationResult.success(info)

    def load_latest(self, actor_id: str) -> OperationResult[DraftInfo | None]:
        """Most recently saved draft, or None when the actor has none."""

        def _load(session: Session) -> DraftInfo | None:
            draft = session.scalar(
                select(ContractDraft)
                .where(ContractDraft.actor_id == actor_id)
                .order_by(ContractDraft.last_saved.desc(), ContractDraft.id.desc())
                .limit(1)
            )
            if draft is None:
                return None
            self._audit.record(
                session,
                ResumeDraftPayload(
                    draft_id=draft.id, last_saved=draft.last_saved.isoformat()
                ),
                actor_id,
                draft_id=draft.id,
            )
            return _to_info(draft)

        return OperationResult.success(self._tx.run_atomic(_load, operation="load_draft"))

    def get_draft(self, draft_id: int, actor_id: str) -> OperationResult[DraftInfo]:
        def _get(session: Session) -> DraftInfo:
            draft = session.get(ContractDraft, draft_id)
            if draft is None or draft.actor_id != actor_id:
                raise DraftNotFoundError(draft_id, actor_id)
            return _to_info(draft)

        try:
            return OperationResult.success(self._tx.read(_get, operation="get_draft"))
        except NotFoundError as exc:
            return OperationResult.failure(exc)

    def delete_draft(self, draft_id: int, actor_id: str) -> OperationResult[int]:
        def _delete(session: Session) -> int:
            deleted = session.execute(
                delete(ContractDraft).where(
                    ContractDraft.id == draft_id,
                    ContractDraft.actor_id == actor_id,
                )
            ).rowcount
            if not deleted:
                raise DraftNotFoundError(draft_id, actor_id)
            return draft_id

        try:
            self._tx.run_atomic(_delete, operation="delete_draft")
        except NotFoundError as exc:
            return OperationResult.failure(exc)
        logger.info("draft_deleted", extra={"draft_id": draft_id, "actor_id": actor_id})
        return OperationResult.success(draft_id)

    def cleanup_old_drafts(self, actor_id: str) -> OperationResult[int]:
        """Keep only the actor's newest draft; returns how many were deleted."""

        def _cleanup(session: Session) -> int:
            keep_id = session.scalar(
                select(ContractDraft.id)
                .where(ContractDraft.actor_id == actor_id)
                .order_by(ContractDraft.last_saved.desc(), ContractDraft.id.desc())
                .limit(1)
            )
            if keep_id is None:
                return 0
            return session.execute(
                delete(ContractDraft).where(
                    ContractDraft.actor_id == actor_id,
                    ContractDraft.id != keep_id,
                )
            ).rowcount

        deleted = self._tx.run_atomic(_cleanup, operation="cleanup_drafts")
        logger.info("drafts_cleaned_up", extra={"actor_id": actor_id, "deleted": deleted})
        return OperationResult.success(deleted)

    def count_drafts(self, actor_id: str) -> int:
        return self._tx.read(
            lambda session: session.scalar(
                select(func.count(ContractDraft.id)).where(
                    ContractDraft.actor_id == actor_id
                )
            )
            or 0,
            operation="count_drafts",
        )
