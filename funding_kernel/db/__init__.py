"""Database layer - engine, base classes, types, and immutability."""

from funding_kernel.db.base import Base, TrackedBase
from funding_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
    session_scope,
)
from funding_kernel.db.types import TOLERANCE, ActorId, Money, ShortCode

__all__ = [
    "create_engine_from_url",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "session_scope",
    "Base",
    "TrackedBase",
    "Money",
    "ShortCode",
    "ActorId",
    "TOLERANCE",
]
