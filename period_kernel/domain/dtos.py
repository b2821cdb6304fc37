"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable data structures returned by kernel services and selectors:
    PeriodInfo (period snapshot), PeriodSummary (derived history figures),
    PeriodExport (one period with its records), and ArchiveResult
    (outcome of a year archive run).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Services and selectors return these DTOs, never ORM entities, so
      callers cannot mutate persisted state by accident.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from period_kernel.models.period import Period as PeriodModel


class PeriodStatus(str, Enum):
    """Lifecycle status of a period. ACTIVE -> CLOSED, never back."""

    ACTIVE = "active"
    CLOSED = "closed"


class PeriodKind(str, Enum):
    """Length of a period."""

    DAILY = "daily"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class PeriodInfo:
    """
    Immutable snapshot of a period.

    Guarantees:
        - end_date is exclusive and strictly after start_date.
    """

    id: UUID
    tenant_id: str
    name: str
    kind: PeriodKind
    start_date: date
    end_date: date
    status: PeriodStatus
    created_at: datetime
    closed_at: datetime | None = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == PeriodStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days

    @classmethod
    def from_model(cls, period: PeriodModel) -> PeriodInfo:
        return cls(
            id=period.id,
            tenant_id=period.tenant_id,
            name=period.name,
            kind=PeriodKind(period.kind),
            start_date=period.start_date,
            end_date=period.end_date,
            status=PeriodStatus(period.status),
            created_at=period.created_at,
            closed_at=period.closed_at,
            version=period.version,
        )


@dataclass(frozen=True)
class RecordCounts:
    """Number of records of each kind tagged with one period."""

    financial_records: int = 0
    purchase_entries: int = 0
    expense_entries: int = 0
    monthly_expenses: int = 0
    sales_entries: int = 0
    legal_documents: int = 0
    employees: int = 0
    attendance_records: int = 0
    leave_requests: int = 0
    customers: int = 0
    invoices: int = 0
    feedback_records: int = 0

    @property
    def total(self) -> int:
        return sum(vars(self).values())


@dataclass(frozen=True)
class PeriodSummary:
    """
    Derived, never-persisted summary of one period.

    Contract:
        Pure function of the records tagged with (tenant_id, period_id).
        Two summaries of the same record set compare equal.
    """

    tenant_id: str
    period_id: UUID
    period_name: str
    status: PeriodStatus
    start_date: date
    end_date: date
    income: Decimal
    expenses: Decimal
    net: Decimal
    paid_revenue: Decimal
    pending_revenue: Decimal
    counts: RecordCounts


@dataclass(frozen=True)
class ArchiveResult:
    """
    Outcome of ``ArchiveService.archive_year``.

    Guarantees:
        - already_archived is True only when the run found nothing to do.
        - exported is False for delete-only runs and no-op runs.
    """

    tenant_id: str
    year: int
    mode: str
    period_ids: tuple[UUID, ...] = ()
    records_by_kind: dict[str, int] = field(default_factory=dict)
    exported: bool = False
    checksum: str | None = None
    location: str | None = None
    already_archived: bool = False

    @property
    def records_archived(self) -> int:
        return sum(self.records_by_kind.values())

    @property
    def periods_archived(self) -> int:
        return len(self.period_ids)


@dataclass(frozen=True)
class ArchiveArtifact:
    """
    A year archive read back from its sink, with Python types restored.

    periods and records hold plain column dicts, not ORM entities; an
    archived year is no longer part of the live tables.
    """

    tenant_id: str
    year: int
    checksum: str
    periods: tuple[dict, ...]
    records: dict[str, tuple[dict, ...]]

    @property
    def record_count(self) -> int:
        return sum(len(rows) for rows in self.records.values())


@dataclass(frozen=True)
class PeriodExport:
    """
    One period with its summary and every record tagged with it.

    ``payload`` is the canonical JSON document ``{period, stats, data}``
    and ``checksum`` its SHA-256.  records hold plain column dicts per
    record kind, as in ArchiveArtifact; kinds with no rows map to ().
    """

    period: PeriodInfo
    summary: PeriodSummary
    records: dict[str, tuple[dict, ...]]
    payload: str
    checksum: str

    @property
    def filename(self) -> str:
        return f"period_{'_'.join(self.period.name.split())}.json"
