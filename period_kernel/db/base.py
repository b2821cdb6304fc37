"""
Module: period_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, type annotation map for consistent column
    types, and the TrackedBase mixin for audit timestamps.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: Every model inherits a uuid4-generated primary key.
      Carry-forward copies therefore always receive a fresh identity.
    - Decimal precision: type_annotation_map maps Python Decimal to
      Numeric(38, 9).  NEVER use float for monetary amounts.
    - Audit timestamps: TrackedBase provides created_at and updated_at.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from period_kernel.db.types import COLUMN_TYPES


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        """Convert UUID to string when storing."""
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        """Convert string back to UUID when loading."""
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to Numeric(38, 9).
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
        **COLUMN_TYPES,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamps.

    Guarantees:
        - created_at is set to server NOW() on INSERT unless supplied.
        - updated_at is set to server NOW() on INSERT and auto-updates on
          every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# Re-export UUID for convenience
UUID = PyUUID
