"""
Module: period_kernel.models.period
Responsibility: ORM persistence for the tenant period lifecycle -- the
    partition boundary every domain record is tagged with.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one ACTIVE period per tenant.  Enforced in PeriodStore and,
      as the last line of defence, by the partial unique index
      uq_periods_one_active_per_tenant.
    - end_date > start_date (ck_periods_end_after_start).
    - ACTIVE -> CLOSED exactly once; CLOSED is terminal (see
      db/immutability.py).
    - (tenant_id, id) is unique so records can reference a period through
      a composite foreign key that pins the tenant.

Failure modes:
    - IntegrityError from the partial unique index when two writers race
      to create an active period (translated to ActivePeriodConflictError
      by the service layer).
"""

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Index, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from period_kernel.db.base import Base
from period_kernel.db.types import Name, TenantId
from period_kernel.domain.dtos import PeriodKind, PeriodStatus


class Period(Base):
    """
    One accounting period of one tenant.

    Contract:
        Created ACTIVE by the PeriodStore, closed exactly once, deleted only
        by the archive purge together with every record that references it.

    Guarantees:
        - end_date is exclusive: a monthly period starting 2025-01-01 ends
          2025-02-01.
        - version increments on every status change (compare-and-swap).
    """

    __tablename__ = "periods"

    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_periods_tenant_id_id"),
        CheckConstraint("end_date > start_date", name="ck_periods_end_after_start"),
        Index("idx_periods_tenant_status", "tenant_id", "status"),
        Index("idx_periods_tenant_dates", "tenant_id", "start_date", "end_date"),
        Index(
            "uq_periods_one_active_per_tenant",
            "tenant_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    name: Mapped[Name] = mapped_column(nullable=False)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PeriodStatus.ACTIVE.value,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Period {self.tenant_id}/{self.name}: {self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status == PeriodStatus.ACTIVE.value

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED.value
