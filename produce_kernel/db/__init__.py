"""Database layer - engine, base classes, types, and append-only guards."""

from produce_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from produce_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from produce_kernel.db.types import Money, Quantity, Sequence, Weight

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Quantity",
    "Weight",
    "Sequence",
]
