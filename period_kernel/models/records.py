"""
Module: period_kernel.models.records
Responsibility: ORM persistence for every period-scoped domain record kind.
    Each kind is its own table sharing the PeriodScopedMixin envelope
    {id, tenant_id, period_id, created_at, updated_at} plus strongly typed
    kind-specific columns.
Architecture position: Kernel > Models.  May import from db/ and
    models/period.py only.

Invariants enforced:
    - (tenant_id, period_id) is a composite foreign key onto
      periods(tenant_id, id): a record can only reference a period of its
      own tenant.
    - Envelope fields are write-once (db/immutability.py).

Non-goals:
    - No cross-kind foreign keys (an attendance entry's employee_id is an
      application-level reference, as in the surrounding CRUD layer).
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID

from sqlalchemy import JSON, Date, ForeignKeyConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from period_kernel.db.base import TrackedBase, UUIDString
from period_kernel.db.types import LongText, Money, Name, ShortCode, TenantId


class RecordKind(str, Enum):
    """Every record kind that is partitioned by period."""

    FINANCIAL = "financial"
    PURCHASE = "purchase"
    EXPENSE = "expense"
    MONTHLY_EXPENSE = "monthly_expense"
    SALE = "sale"
    LEGAL = "legal"
    EMPLOYEE = "employee"
    ATTENDANCE = "attendance"
    LEAVE = "leave"
    CUSTOMER = "customer"
    INVOICE = "invoice"
    FEEDBACK = "feedback"


class FinancialRecordType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    INVOICE = "invoice"
    BILL = "bill"
    BANK_STATEMENT = "bank_statement"
    PAYROLL = "payroll"
    TAX = "tax"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


# Set once by the RecordPartitioner, never reassigned.
ENVELOPE_FIELDS: frozenset[str] = frozenset({"tenant_id", "period_id"})

# Columns owned by the persistence layer rather than the business entry.
SYSTEM_FIELDS: frozenset[str] = ENVELOPE_FIELDS | {"id", "created_at", "updated_at"}


class PeriodScopedMixin:
    """
    Common envelope of every domain record.

    Contract:
        Subclasses set ``record_kind`` and ``__tablename__``; the mixin adds
        the tenant/period columns, the composite foreign key and the scope
        index.
    """

    record_kind: ClassVar[RecordKind]

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    period_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    @declared_attr.directive
    def __table_args__(cls) -> tuple:
        return (
            ForeignKeyConstraint(
                ["tenant_id", "period_id"],
                ["periods.tenant_id", "periods.id"],
                name=f"fk_{cls.__tablename__}_period",
            ),
            Index(f"idx_{cls.__tablename__}_scope", "tenant_id", "period_id"),
        )

    def business_fields(self) -> dict[str, Any]:
        """Column values excluding identity, envelope and timestamps."""
        return {
            column.key: getattr(self, column.key)
            for column in self.__table__.columns
            if column.key not in SYSTEM_FIELDS
        }


class FinancialRecord(PeriodScopedMixin, TrackedBase):
    __tablename__ = "financial_records"
    record_kind = RecordKind.FINANCIAL

    record_type: Mapped[ShortCode] = mapped_column(nullable=False)
    amount: Mapped[Money] = mapped_column(nullable=False)
    description: Mapped[LongText] = mapped_column(default="", nullable=False)
    record_date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[Name | None] = mapped_column(nullable=True)
    reference: Mapped[Name | None] = mapped_column(nullable=True)
    status: Mapped[ShortCode] = mapped_column(default="pending", nullable=False)


class PurchaseEntry(PeriodScopedMixin, TrackedBase):
    """Purchase obligation. The only kind that rolls over by default."""

    __tablename__ = "purchase_entries"
    record_kind = RecordKind.PURCHASE

    description: Mapped[LongText] = mapped_column(nullable=False)
    amount: Mapped[Money] = mapped_column(nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    category: Mapped[Name | None] = mapped_column(nullable=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Source row in the closed predecessor period, for carried copies
    carried_from_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class ExpenseEntry(PeriodScopedMixin, TrackedBase):
    __tablename__ = "expense_entries"
    record_kind = RecordKind.EXPENSE

    description: Mapped[LongText] = mapped_column(nullable=False)
    amount: Mapped[Money] = mapped_column(nullable=False)
    category: Mapped[Name | None] = mapped_column(nullable=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)


class MonthlyExpense(PeriodScopedMixin, TrackedBase):
    __tablename__ = "monthly_expenses"
    record_kind = RecordKind.MONTHLY_EXPENSE

    description: Mapped[LongText] = mapped_column(nullable=False)
    amount: Mapped[Money] = mapped_column(nullable=False)
    category: Mapped[Name | None] = mapped_column(nullable=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)


class SalesEntry(PeriodScopedMixin, TrackedBase):
    __tablename__ = "sales_entries"
    record_kind = RecordKind.SALE

    description: Mapped[LongText] = mapped_column(nullable=False)
    amount: Mapped[Money] = mapped_column(nullable=False)
    category: Mapped[Name | None] = mapped_column(nullable=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_status: Mapped[ShortCode | None] = mapped_column(nullable=True)


class LegalDocument(PeriodScopedMixin, TrackedBase):
    __tablename__ = "legal_documents"
    record_kind = RecordKind.LEGAL

    document_type: Mapped[ShortCode] = mapped_column(nullable=False)
    title: Mapped[Name] = mapped_column(nullable=False)
    description: Mapped[LongText] = mapped_column(default="", nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[ShortCode] = mapped_column(default="active", nullable=False)
    authority: Mapped[Name | None] = mapped_column(nullable=True)
    reference_number: Mapped[Name | None] = mapped_column(nullable=True)
    amount: Mapped[Money | None] = mapped_column(nullable=True)


class Employee(PeriodScopedMixin, TrackedBase):
    __tablename__ = "employees"
    record_kind = RecordKind.EMPLOYEE

    name: Mapped[Name] = mapped_column(nullable=False)
    position: Mapped[Name] = mapped_column(nullable=False)
    department: Mapped[Name] = mapped_column(nullable=False)
    email: Mapped[Name] = mapped_column(nullable=False)
    phone: Mapped[ShortCode | None] = mapped_column(nullable=True)
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    salary: Mapped[Money | None] = mapped_column(nullable=True)
    status: Mapped[ShortCode] = mapped_column(default="active", nullable=False)


class AttendanceEntry(PeriodScopedMixin, TrackedBase):
    __tablename__ = "attendance_entries"
    record_kind = RecordKind.ATTENDANCE

    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False)
    clock_in: Mapped[str | None] = mapped_column(String(8), nullable=True)
    clock_out: Mapped[str | None] = mapped_column(String(8), nullable=True)
    status: Mapped[ShortCode] = mapped_column(default="present", nullable=False)
    notes: Mapped[LongText | None] = mapped_column(nullable=True)


class LeaveRequest(PeriodScopedMixin, TrackedBase):
    __tablename__ = "leave_requests"
    record_kind = RecordKind.LEAVE

    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    leave_type: Mapped[ShortCode] = mapped_column(nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ShortCode] = mapped_column(default="pending", nullable=False)
    reason: Mapped[LongText] = mapped_column(default="", nullable=False)
    approved_by: Mapped[Name | None] = mapped_column(nullable=True)


class Customer(PeriodScopedMixin, TrackedBase):
    __tablename__ = "customers"
    record_kind = RecordKind.CUSTOMER

    name: Mapped[Name] = mapped_column(nullable=False)
    company: Mapped[Name | None] = mapped_column(nullable=True)
    email: Mapped[Name] = mapped_column(nullable=False)
    phone: Mapped[ShortCode | None] = mapped_column(nullable=True)
    address: Mapped[LongText | None] = mapped_column(nullable=True)
    customer_type: Mapped[ShortCode] = mapped_column(default="individual", nullable=False)
    status: Mapped[ShortCode] = mapped_column(default="active", nullable=False)
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)


class Invoice(PeriodScopedMixin, TrackedBase):
    __tablename__ = "invoices"
    record_kind = RecordKind.INVOICE

    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    invoice_number: Mapped[ShortCode] = mapped_column(nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    # [{"description": str, "quantity": int, "unit_price": str, "total": str}]
    items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    subtotal: Mapped[Money] = mapped_column(nullable=False)
    tax: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)
    total: Mapped[Money] = mapped_column(nullable=False)
    status: Mapped[ShortCode] = mapped_column(default=InvoiceStatus.DRAFT.value, nullable=False)
    notes: Mapped[LongText | None] = mapped_column(nullable=True)


class Feedback(PeriodScopedMixin, TrackedBase):
    __tablename__ = "feedback"
    record_kind = RecordKind.FEEDBACK

    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    feedback_type: Mapped[ShortCode] = mapped_column(nullable=False)
    subject: Mapped[Name] = mapped_column(nullable=False)
    message: Mapped[LongText] = mapped_column(nullable=False)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[ShortCode] = mapped_column(default="open", nullable=False)
    response: Mapped[LongText | None] = mapped_column(nullable=True)


RECORD_MODELS: dict[RecordKind, type[PeriodScopedMixin]] = {
    model.record_kind: model
    for model in (
        FinancialRecord,
        PurchaseEntry,
        ExpenseEntry,
        MonthlyExpense,
        SalesEntry,
        LegalDocument,
        Employee,
        AttendanceEntry,
        LeaveRequest,
        Customer,
        Invoice,
        Feedback,
    )
}


def model_for_kind(kind: RecordKind | str) -> type[PeriodScopedMixin]:
    """Resolve a record kind (or its string value) to its ORM model.

    Raises:
        ValueError: If the kind is unknown.
    """
    return RECORD_MODELS[RecordKind(kind)]
