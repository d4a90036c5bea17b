"""Database layer - engine, base classes, types, and immutability guards."""

from settlement_kernel.db.base import Base, TrackedBase, UUIDString
from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from settlement_kernel.db.types import Money, Rate, enum_column, round_money, to_money

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "Money",
    "Rate",
    "enum_column",
    "round_money",
    "to_money",
]
