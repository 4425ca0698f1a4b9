"""Database layer - engine, base classes, and column types."""

from wholesale_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from wholesale_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
    transaction,
)
from wholesale_kernel.db.types import Currency, Money, PayloadHash, round_money

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "transaction",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Currency",
    "PayloadHash",
    "round_money",
]
