"""Database layer - engine, base classes, types, and immutability listeners."""

from period_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from period_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from period_kernel.db.types import LongText, Money, Name, ShortCode, TenantId

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "TenantId",
    "ShortCode",
    "Name",
    "LongText",
]
