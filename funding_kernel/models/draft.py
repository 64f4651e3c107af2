"""
Module: funding_kernel.models.draft
Responsibility: Work-in-progress contract forms saved by an actor so they
    can resume data entry later.  A draft is not a contract: nothing in it
    is validated or reconciled until it is submitted through LedgerService.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from funding_kernel.db.base import Base
from funding_kernel.db.types import ActorId


class ContractDraft(Base):
    """Saved contract form for one actor."""

    __tablename__ = "contract_drafts"

    __table_args__ = (
        Index("idx_contract_draft_actor_saved", "actor_id", "last_saved"),
    )

    actor_id: Mapped[ActorId] = mapped_column(nullable=False)

    form_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    last_saved: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
