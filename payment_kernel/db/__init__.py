"""Database layer - engine, base classes, money helpers and catalogue migrations."""

from payment_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from payment_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from payment_kernel.db.types import round_money, to_money

__all__ = [
    "Base",
    "TrackedBase",
    "UUID",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "round_money",
    "to_money",
]
