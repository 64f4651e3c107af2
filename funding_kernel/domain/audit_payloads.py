"""
Audit payloads -- one frozen dataclass per AuditAction.

The audit_log.payload column holds ``payload.to_dict()``; readers get the
typed payload back through ``payload_from_dict(action, data)``.  Amounts
and dates are stored as strings so the JSON column never sees a float.

    AuditAction.CONTRACT_CREATE  -> ContractCreatePayload
    AuditAction.CONTRACT_UPDATE  -> ContractUpdatePayload
    AuditAction.CONTRACT_DELETE  -> ContractDeletePayload
    AuditAction.CONTRACT_VIEW    -> ContractViewPayload
    AuditAction.ALLOCATION_*     -> Allocation{Create,Update,Delete}Payload
    AuditAction.SAVE_DRAFT       -> SaveDraftPayload
    AuditAction.RESUME_DRAFT     -> ResumeDraftPayload
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

from funding_kernel.models.audit_entry import AuditAction

CONTRACT_SNAPSHOT_FIELDS = (
    "id",
    "style_ref",
    "scope",
    "customer",
    "total_committed_amount",
    "contract_date",
    "campaign_start",
    "campaign_end",
    "created_by",
)

ALLOCATION_SNAPSHOT_FIELDS = ("id", "contract_id", "channel", "allocated_amount")


def to_jsonable(value: Any) -> Any:
    """Convert Decimal, dates, enums and containers to JSON-safe values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    raise TypeError(f"Cannot serialize {type(value).__name__} into an audit payload")


def allocation_snapshot(allocation: Any) -> dict[str, Any]:
    return {name: to_jsonable(getattr(allocation, name)) for name in ALLOCATION_SNAPSHOT_FIELDS}


def contract_snapshot(contract: Any, include_allocations: bool = False) -> dict[str, Any]:
    """Field values of a contract (ORM row or ContractInfo) as JSON-safe data."""
    snapshot = {name: to_jsonable(getattr(contract, name)) for name in CONTRACT_SNAPSHOT_FIELDS}
    if include_allocations:
        snapshot["allocations"] = [
            allocation_snapshot(a) for a in contract.allocations
        ]
    return snapshot


@dataclass(frozen=True)
class AuditPayload:
    """Base for all payloads; subclasses bind ``action``."""

    action: ClassVar[AuditAction]

    def to_dict(self) -> dict[str, Any]:
        return {f.name: to_jsonable(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditPayload:
        kwargs = {}
        for f in fields(cls):
            if f.name in data:
                value = data[f.name]
                kwargs[f.name] = tuple(value) if isinstance(value, list) else value
        return cls(**kwargs)


# Contract actions


@dataclass(frozen=True)
class ContractCreatePayload(AuditPayload):
    action: ClassVar[AuditAction] = AuditAction.CONTRACT_CREATE

    contract: dict[str, Any] = field(default_factory=dict)
    allocations: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class ContractUpdatePayload(AuditPayload):
    action: ClassVar[AuditAction] = AuditAction.CONTRACT_UPDATE

    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)
    changed_fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContractDeletePayload(AuditPayload):
    """Full pre-deletion snapshot, allocations included."""

    action: ClassVar[AuditAction] = AuditAction.CONTRACT_DELETE

    contract: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContractViewPayload(AuditPayload):
    action: ClassVar[AuditAction] = AuditAction.CONTRACT_VIEW

    style_ref: str | None = None


# Allocation actions


@dataclass(frozen=True)
class AllocationCreatePayload(AuditPayload):
    action: ClassVar[AuditAction] = AuditAction.ALLOCATION_CREATE

    allocation: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AllocationUpdatePayload(AuditPayload):
    action: ClassVar[AuditAction] = AuditAction.ALLOCATION_UPDATE

    allocation_id: int | None = None
    channel: str | None = None
    before_amount: str | None = None
    after_amount: str | None = None


@dataclass(frozen=True)
class AllocationDeletePayload(AuditPayload):
    action: ClassVar[AuditAction] = AuditAction.ALLOCATION_DELETE

    allocation: dict[str, Any] = field(default_factory=dict)


# Draft actions


@dataclass(frozen=True)
class SaveDraftPayload(AuditPayload):
    action: ClassVar[AuditAction] = AuditAction.SAVE_DRAFT

    draft_id: int | None = None
    replaced_drafts: int = 0
    is_update: bool = False


@dataclass(frozen=True)
class ResumeDraftPayload(AuditPayload):
    action: ClassVar[AuditAction] = AuditAction.RESUME_DRAFT

    draft_id: int | None = None
    last_saved: str | None = None


PAYLOAD_TYPES: dict[AuditAction, type[AuditPayload]] = {
    cls.action: cls
    for cls in (
        ContractCreatePayload,
        ContractUpdatePayload,
        ContractDeletePayload,
        ContractViewPayload,
        AllocationCreatePayload,
        AllocationUpdatePayload,
        AllocationDeletePayload,
        SaveDraftPayload,
        ResumeDraftPayload,
    )
}


def payload_from_dict(action: AuditAction | str, data: dict[str, Any]) -> AuditPayload:
    """
    Re-hydrate a stored payload.

    Raises:
        ValueError: If action is not an AuditAction value.
    """
    return PAYLOAD_TYPES[AuditAction(action)].from_dict(data or {})
