"""
Module: period_kernel.models.archive
Responsibility: ORM persistence for year archives exported into the
    database (the ``table`` archive sink).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One artifact per (tenant_id, year); a later export replaces the
      payload of the existing row instead of adding a second one.  The
      archive service merges earlier content into each new payload.
    - payload holds the canonical JSON text exactly as exported, so the
      checksum can be recomputed byte-for-byte.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from period_kernel.db.base import Base
from period_kernel.db.types import TenantId


class ArchivedData(Base):
    """Exported year of one tenant."""

    __tablename__ = "archived_data"

    __table_args__ = (
        UniqueConstraint("tenant_id", "year", name="uq_archived_data_tenant_year"),
    )

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    payload: Mapped[str] = mapped_column(Text, nullable=False)

    checksum: Mapped[str] = mapped_column(String(64), nullable=False)

    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ArchivedData {self.tenant_id}/{self.year}>"
