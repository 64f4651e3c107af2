"""
Module: funding_kernel.models.migration
Responsibility: Version table recording which migration files have run.

Invariants enforced:
    - filename is unique: a file is recorded at most once.
    - Rows are never updated or deleted (db/immutability.py); the executed
      set only grows.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from funding_kernel.db.base import Base


class SchemaMigration(Base):
    """One executed migration file."""

    __tablename__ = "schema_migrations"

    __table_args__ = (
        UniqueConstraint("filename", name="uq_schema_migration_filename"),
        Index("idx_schema_migration_version", "version"),
    )

    filename: Mapped[str] = mapped_column(String(255), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
