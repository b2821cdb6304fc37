"""
Module: period_kernel.selectors.history_selector
Responsibility: Derives the per-period history summary (income, expenses,
    net, invoice revenue and per-kind record counts) from the records
    tagged with one (tenant_id, period_id) pair, and exports one period
    with its records as a single JSON document.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Summaries are never stored; they are recomputed from records on
      every call, so they cannot drift from the data they describe.
    - Deterministic: Decimal sums under a wide local context are exact,
      hence independent of row order.
    - Strictly scoped by the explicit (tenant_id, period_id) pair.

Failure modes:
    - PeriodNotFoundError if the period does not exist for the tenant.
      A zeroed summary is never returned for an unknown period.
"""

from collections.abc import Iterable
from dataclasses import asdict
from decimal import Decimal, localcontext
from uuid import UUID

from sqlalchemy import func, select

from period_kernel.db.types import ZERO
from period_kernel.domain.dtos import (
    PeriodExport,
    PeriodInfo,
    PeriodStatus,
    PeriodSummary,
    RecordCounts,
)
from period_kernel.exceptions import PeriodNotFoundError
from period_kernel.logging_config import get_logger
from period_kernel.models.period import Period
from period_kernel.models.records import (
    ExpenseEntry,
    FinancialRecord,
    FinancialRecordType,
    Invoice,
    InvoiceStatus,
    MonthlyExpense,
    PurchaseEntry,
    RecordKind,
    RECORD_MODELS,
    SalesEntry,
)
from period_kernel.selectors.base import BaseSelector
from period_kernel.utils.hashing import canonicalize_json, hash_text
from period_kernel.utils.serialization import row_to_dict

logger = get_logger("selectors.history")

INCOME_RECORD_TYPES = frozenset({FinancialRecordType.INCOME.value})

EXPENSE_RECORD_TYPES = frozenset({
    FinancialRecordType.EXPENSE.value,
    FinancialRecordType.BILL.value,
    FinancialRecordType.PAYROLL.value,
    FinancialRecordType.TAX.value,
})

PAID_INVOICE_STATUSES = frozenset({InvoiceStatus.PAID.value})

PENDING_INVOICE_STATUSES = frozenset({
    InvoiceStatus.SENT.value,
    InvoiceStatus.OVERDUE.value,
})

# RecordCounts field for every record kind
COUNT_FIELDS: dict[RecordKind, str] = {
    RecordKind.FINANCIAL: "financial_records",
    RecordKind.PURCHASE: "purchase_entries",
    RecordKind.EXPENSE: "expense_entries",
    RecordKind.MONTHLY_EXPENSE: "monthly_expenses",
    RecordKind.SALE: "sales_entries",
    RecordKind.LEGAL: "legal_documents",
    RecordKind.EMPLOYEE: "employees",
    RecordKind.ATTENDANCE: "attendance_records",
    RecordKind.LEAVE: "leave_requests",
    RecordKind.CUSTOMER: "customers",
    RecordKind.INVOICE: "invoices",
    RecordKind.FEEDBACK: "feedback_records",
}


def exact_sum(amounts: Iterable[Decimal | None]) -> Decimal:
    """Sum Decimals without rounding; None values count as zero."""
    with localcontext() as ctx:
        ctx.prec = 80
        total = ZERO
        for amount in amounts:
            if amount is not None:
                total += amount
        return +total


class HistoryAggregator(BaseSelector[Period]):
    """
    Selector for derived period history.

    Contract:
        ``summarize`` is a pure function of the records tagged with the
        period: same records, equal PeriodSummary.
    """

    def summarize(self, tenant_id: str, period_id: UUID) -> PeriodSummary:
        """
        Summarize one period of the tenant.

        income   = financial records of type income + sales entries
        expenses = financial records of type expense/bill/payroll/tax
                   + expense entries + purchase entries + monthly expenses
        net      = income - expenses

        Raises:
            PeriodNotFoundError: The period does not exist for the tenant.
        """
        return self._summarize(self._get_period(tenant_id, period_id))

    def export_period(self, tenant_id: str, period_id: UUID) -> PeriodExport:
        """
        One period as a self-contained document: the period, its summary
        (``stats``) and every record tagged with it (``data``).

        Raises:
            PeriodNotFoundError: The period does not exist for the tenant.
        """
        period = self._get_period(tenant_id, period_id)
        info = PeriodInfo.from_model(period)
        summary = self._summarize(period)

        records: dict[str, tuple[dict, ...]] = {}
        for kind, model in RECORD_MODELS.items():
            rows = self.session.execute(
                select(model)
                .where(model.tenant_id == tenant_id, model.period_id == period_id)
                .order_by(model.created_at, model.id)
            ).scalars().all()
            records[kind.value] = tuple(row_to_dict(row) for row in rows)

        payload = canonicalize_json({
            "period": asdict(info),
            "stats": asdict(summary),
            "data": {kind: list(rows) for kind, rows in records.items()},
        })
        logger.info(
            "period_exported",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period_id),
                "records": summary.counts.total,
            },
        )
        return PeriodExport(
            period=info,
            summary=summary,
            records=records,
            payload=payload,
            checksum=hash_text(payload),
        )

    def summarize_history(self, tenant_id: str) -> list[PeriodSummary]:
        """Summaries of every CLOSED period of the tenant, oldest first."""
        periods = self.session.execute(
            select(Period)
            .where(
                Period.tenant_id == tenant_id,
                Period.status == PeriodStatus.CLOSED.value,
            )
            .order_by(Period.start_date, Period.created_at)
        ).scalars().all()
        return [self._summarize(period) for period in periods]

    def _get_period(self, tenant_id: str, period_id: UUID) -> Period:
        period = self.session.execute(
            select(Period).where(Period.tenant_id == tenant_id, Period.id == period_id)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(tenant_id, str(period_id))
        return period

    def _summarize(self, period: Period) -> PeriodSummary:
        tenant_id, period_id = period.tenant_id, period.id

        income = exact_sum([
            *self._financial_amounts(tenant_id, period_id, INCOME_RECORD_TYPES),
            *self._amounts(SalesEntry.amount, tenant_id, period_id),
        ])
        expenses = exact_sum([
            *self._financial_amounts(tenant_id, period_id, EXPENSE_RECORD_TYPES),
            *self._amounts(ExpenseEntry.amount, tenant_id, period_id),
            *self._amounts(PurchaseEntry.amount, tenant_id, period_id),
            *self._amounts(MonthlyExpense.amount, tenant_id, period_id),
        ])
        paid_revenue = exact_sum(
            self._invoice_totals(tenant_id, period_id, PAID_INVOICE_STATUSES)
        )
        pending_revenue = exact_sum(
            self._invoice_totals(tenant_id, period_id, PENDING_INVOICE_STATUSES)
        )

        counts = RecordCounts(**{
            COUNT_FIELDS[kind]: self._count(model, tenant_id, period_id)
            for kind, model in RECORD_MODELS.items()
        })

        logger.debug(
            "period_summarized",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period_id),
                "records": counts.total,
            },
        )

        return PeriodSummary(
            tenant_id=tenant_id,
            period_id=period_id,
            period_name=period.name,
            status=PeriodStatus(period.status),
            start_date=period.start_date,
            end_date=period.end_date,
            income=income,
            expenses=expenses,
            net=exact_sum([income, -expenses]),
            paid_revenue=paid_revenue,
            pending_revenue=pending_revenue,
            counts=counts,
        )

    def _amounts(self, column, tenant_id: str, period_id: UUID) -> list[Decimal]:
        model = column.class_
        return list(self.session.execute(
            select(column).where(model.tenant_id == tenant_id, model.period_id == period_id)
        ).scalars())

    def _financial_amounts(
        self, tenant_id: str, period_id: UUID, record_types: frozenset[str]
    ) -> list[Decimal]:
        return list(self.session.execute(
            select(FinancialRecord.amount).where(
                FinancialRecord.tenant_id == tenant_id,
                FinancialRecord.period_id == period_id,
                FinancialRecord.record_type.in_(sorted(record_types)),
            )
        ).scalars())

    def _invoice_totals(
        self, tenant_id: str, period_id: UUID, statuses: frozenset[str]
    ) -> list[Decimal]:
        return list(self.session.execute(
            select(Invoice.total).where(
                Invoice.tenant_id == tenant_id,
                Invoice.period_id == period_id,
                Invoice.status.in_(sorted(statuses)),
            )
        ).scalars())

    def _count(self, model, tenant_id: str, period_id: UUID) -> int:
        return self.session.execute(
            select(func.count()).select_from(model).where(
                model.tenant_id == tenant_id,
                model.period_id == period_id,
            )
        ).scalar_one()
