"""Database layer - engine, base classes and column types."""

from pool_kernel.db.base import Base, TrackedBase, UUIDString
from pool_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from pool_kernel.db.types import DecimalText, decimal_column_type

__all__ = [
    "build_engine",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "DecimalText",
    "decimal_column_type",
]
