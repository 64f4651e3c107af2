"""
Declarative base for the funding ledger ORM.

Lowest layer of the kernel: model modules import from here, this module
imports nothing from the kernel.

Conventions:
    - Every table has an integer surrogate ``id`` assigned by the store.
      BIGINT on PostgreSQL; plain INTEGER on SQLite, which autoincrements
      only an ``INTEGER PRIMARY KEY``.
    - Unannotated Decimal columns are money: Numeric(14, 2).
    - Datetimes are stored timezone-aware.
    - Contract and allocation rows carry created_at / updated_at maintained
      by the store (``TrackedBase``).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import BigInteger, DateTime, Integer, Numeric, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

IdentityInt = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(14, 2),
        datetime: DateTime(timezone=True),
        int: IdentityInt,
    }

    id: Mapped[int] = mapped_column(IdentityInt, primary_key=True, autoincrement=True)


class TrackedBase(Base):
    """Adds store-maintained created_at / updated_at columns."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
