"""ORM models for the period kernel."""

from period_kernel.models.archive import ArchivedData
from period_kernel.models.period import Period, PeriodKind, PeriodStatus
from period_kernel.models.records import (
    ENVELOPE_FIELDS,
    RECORD_MODELS,
    AttendanceEntry,
    Customer,
    Employee,
    ExpenseEntry,
    Feedback,
    FinancialRecord,
    FinancialRecordType,
    Invoice,
    InvoiceStatus,
    LeaveRequest,
    LegalDocument,
    MonthlyExpense,
    PeriodScopedMixin,
    PurchaseEntry,
    RecordKind,
    SalesEntry,
    model_for_kind,
)

__all__ = [
    "ArchivedData",
    "Period",
    "PeriodKind",
    "PeriodStatus",
    "ENVELOPE_FIELDS",
    "RECORD_MODELS",
    "PeriodScopedMixin",
    "RecordKind",
    "model_for_kind",
    "AttendanceEntry",
    "Customer",
    "Employee",
    "ExpenseEntry",
    "Feedback",
    "FinancialRecord",
    "FinancialRecordType",
    "Invoice",
    "InvoiceStatus",
    "LeaveRequest",
    "LegalDocument",
    "MonthlyExpense",
    "PurchaseEntry",
    "SalesEntry",
]
