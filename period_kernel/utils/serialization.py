"""
Column-driven conversion between ORM rows and JSON-safe dicts.

Used by the archive export and restore paths.  Conversion is driven by
each column's SQL type, so every period-scoped model round-trips without
per-model code.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Date, DateTime, Numeric

from period_kernel.db.base import UUIDString


def row_to_dict(row: Any) -> dict[str, Any]:
    """Every mapped column of ``row`` keyed by attribute name."""
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def _restore_value(column_type: Any, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(column_type, UUIDString):
        return UUID(value)
    if isinstance(column_type, Numeric):
        return Decimal(value)
    if isinstance(column_type, DateTime):
        return datetime.fromisoformat(value)
    if isinstance(column_type, Date):
        return date.fromisoformat(value)
    return value


def row_from_dict(model: type, data: dict[str, Any]) -> dict[str, Any]:
    """
    Restore Python types for a dict produced by ``row_to_dict`` and JSON.

    Keys that are not columns of ``model`` are rejected so a corrupted
    artifact cannot silently lose data.

    Raises:
        ValueError: If ``data`` has a key that ``model`` does not map.
    """
    columns = {column.key: column for column in model.__table__.columns}
    unknown = sorted(set(data) - set(columns))
    if unknown:
        raise ValueError(f"{model.__name__} has no columns {unknown}")
    return {
        key: _restore_value(columns[key].type, value) for key, value in data.items()
    }
