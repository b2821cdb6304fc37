"""
HistoryAggregator tests.

Verifies:
- Income, expenses and net derived from the period's records
- Invoice revenue split into paid and pending
- Record counts for every kind
- Summaries are scoped to (tenant_id, period_id) and never invented for
  unknown periods
- Summation is exact and independent of record order
- A period export carries the period, its summary and its records
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from fractions import Fraction
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from period_kernel.domain.dtos import PeriodStatus, RecordCounts
from period_kernel.domain.period_spec import PeriodSpec
from period_kernel.exceptions import PeriodNotFoundError
from period_kernel.models.records import RECORD_MODELS, Customer, Employee, MonthlyExpense
from period_kernel.selectors.history_selector import COUNT_FIELDS, exact_sum
from tests.builders import (
    OTHER_TENANT,
    TENANT,
    make_expense,
    make_financial,
    make_invoice,
    make_purchase,
    make_sale,
)

amounts = st.decimals(
    min_value=Decimal("-1000000000"),
    max_value=Decimal("1000000000"),
    places=9,
    allow_nan=False,
    allow_infinity=False,
)


class TestIncomeAndExpenses:

    def test_closed_period_totals(self, partitioner, period_store, history, january):
        partitioner.add_all(TENANT, [
            make_financial("income", "1000"),
            make_financial("income", "250"),
            make_financial("expense", "300"),
        ])
        period_store.close(TENANT, january.id)

        summary = history.summarize(TENANT, january.id)

        assert summary.income == Decimal("1250")
        assert summary.expenses == Decimal("300")
        assert summary.net == Decimal("950")
        assert summary.status == PeriodStatus.CLOSED
        assert summary.period_name == "January 2025"

    def test_entry_kinds_feed_totals(self, partitioner, history, january):
        partitioner.add_all(TENANT, [
            make_sale("40.50"),
            make_expense("10.25"),
            make_purchase("5"),
            MonthlyExpense(
                description="rent", amount=Decimal("100"), entry_date=date(2025, 1, 1)
            ),
            make_financial("bill", "1"),
            make_financial("payroll", "2"),
            make_financial("tax", "3"),
            make_financial("bank_statement", "9999"),
        ])

        summary = history.summarize(TENANT, january.id)

        assert summary.income == Decimal("40.50")
        assert summary.expenses == Decimal("121.25")
        assert summary.net == Decimal("-80.75")

    def test_empty_period(self, history, january):
        summary = history.summarize(TENANT, january.id)

        assert (summary.income, summary.expenses, summary.net) == (0, 0, 0)
        assert summary.counts == RecordCounts()
        assert summary.counts.total == 0

    def test_active_period_can_be_summarized(self, partitioner, history, january):
        partitioner.add(TENANT, make_financial("income", "7"))

        summary = history.summarize(TENANT, january.id)

        assert summary.status == PeriodStatus.ACTIVE
        assert summary.income == Decimal("7")


class TestRevenue:

    def test_paid_and_pending_invoices(self, partitioner, history, january):
        partitioner.add_all(TENANT, [
            make_invoice("100", status="paid"),
            make_invoice("50", status="sent"),
            make_invoice("25", status="overdue"),
            make_invoice("999", status="draft"),
            make_invoice("888", status="cancelled"),
        ])

        summary = history.summarize(TENANT, january.id)

        assert summary.paid_revenue == Decimal("100")
        assert summary.pending_revenue == Decimal("75")
        assert summary.income == Decimal("0")


class TestCounts:

    def test_counts_every_kind(self, partitioner, history, january):
        partitioner.add_all(TENANT, [
            make_purchase("1"),
            make_purchase("2"),
            make_sale("3"),
            make_invoice("4"),
            Customer(name="Ada", email="ada@example.test"),
            Employee(
                name="Grace",
                position="Clerk",
                department="Ops",
                email="grace@example.test",
                hire_date=date(2020, 1, 1),
            ),
        ])

        counts = history.summarize(TENANT, january.id).counts

        assert counts.purchase_entries == 2
        assert counts.sales_entries == 1
        assert counts.invoices == 1
        assert counts.customers == 1
        assert counts.employees == 1
        assert counts.feedback_records == 0
        assert counts.total == 6

    def test_count_fields_cover_every_kind(self):
        assert sorted(COUNT_FIELDS.values()) == sorted(RecordCounts.__dataclass_fields__)


class TestScoping:

    def test_unknown_period(self, history):
        with pytest.raises(PeriodNotFoundError):
            history.summarize(TENANT, uuid4())

    def test_other_tenants_period(self, history, january):
        with pytest.raises(PeriodNotFoundError):
            history.summarize(OTHER_TENANT, january.id)

    def test_other_tenants_records_are_ignored(
        self, partitioner, period_store, history, january
    ):
        period_store.create(OTHER_TENANT, PeriodSpec.monthly(date(2025, 1, 1)))
        partitioner.add(OTHER_TENANT, make_financial("income", "5000"))
        partitioner.add(TENANT, make_financial("income", "1"))

        assert history.summarize(TENANT, january.id).income == Decimal("1")

    def test_summarize_history_lists_closed_periods(
        self, partitioner, period_store, history, january
    ):
        partitioner.add(TENANT, make_financial("income", "10"))
        period_store.close(TENANT, january.id)
        february = period_store.create(
            TENANT, PeriodSpec.monthly(date(2025, 2, 1)), replacing=january.id
        )
        partitioner.add(TENANT, make_financial("income", "20"))
        period_store.close(TENANT, february.id)
        period_store.create(TENANT, PeriodSpec.monthly(date(2025, 3, 1)), replacing=february.id)

        summaries = history.summarize_history(TENANT)

        assert [s.period_id for s in summaries] == [january.id, february.id]
        assert [s.income for s in summaries] == [Decimal("10"), Decimal("20")]

    def test_repeated_calls_are_equal(self, partitioner, history, january):
        partitioner.add_all(TENANT, [make_financial("income", "0.1"), make_expense("0.2")])

        assert history.summarize(TENANT, january.id) == history.summarize(TENANT, january.id)


class TestExportPeriod:

    def test_document_sections(self, partitioner, history, january):
        partitioner.add_all(TENANT, [
            make_financial("income", "1000.10"),
            make_purchase("250"),
        ])

        export = history.export_period(TENANT, january.id)
        document = json.loads(export.payload)

        assert set(document) == {"period", "stats", "data"}
        assert document["period"]["name"] == "January 2025"
        assert document["period"]["id"] == str(january.id)
        assert Decimal(document["stats"]["income"]) == Decimal("1000.10")
        assert Decimal(document["stats"]["expenses"]) == Decimal("250")
        assert set(document["data"]) == {kind.value for kind in RECORD_MODELS}
        [financial] = document["data"]["financial"]
        assert Decimal(financial["amount"]) == Decimal("1000.10")
        assert financial["period_id"] == str(january.id)

    def test_summary_matches_summarize(self, partitioner, history, january):
        partitioner.add_all(TENANT, [make_sale("40"), make_expense("15")])

        export = history.export_period(TENANT, january.id)

        assert export.summary == history.summarize(TENANT, january.id)
        assert export.period.id == january.id
        assert len(export.records["sale"]) == 1
        assert len(export.records["expense"]) == 1
        assert export.records["customer"] == ()

    def test_records_of_the_period(self, partitioner, history, january):
        first = partitioner.add(TENANT, make_purchase("1"))
        second = partitioner.add(TENANT, make_purchase("2"))

        export = history.export_period(TENANT, january.id)

        ids = {row["id"] for row in export.records["purchase"]}
        assert ids == {first.id, second.id}

    def test_checksum_and_filename(self, history, january):
        export = history.export_period(TENANT, january.id)

        assert export.checksum == hashlib.sha256(export.payload.encode("utf-8")).hexdigest()
        assert export.filename == "period_January_2025.json"

    def test_repeated_exports_are_identical(self, partitioner, history, january):
        partitioner.add(TENANT, make_financial("income", "0.1"))

        first = history.export_period(TENANT, january.id)
        second = history.export_period(TENANT, january.id)

        assert first.payload == second.payload
        assert first.checksum == second.checksum

    def test_unknown_period(self, history):
        with pytest.raises(PeriodNotFoundError):
            history.export_period(TENANT, uuid4())

    def test_other_tenants_period(self, history, january):
        with pytest.raises(PeriodNotFoundError):
            history.export_period(OTHER_TENANT, january.id)

    def test_other_tenants_records_are_excluded(
        self, partitioner, period_store, history, january
    ):
        period_store.create(OTHER_TENANT, PeriodSpec.monthly(date(2025, 1, 1)))
        partitioner.add(OTHER_TENANT, make_financial("income", "5000"))
        partitioner.add(TENANT, make_financial("income", "1"))

        export = history.export_period(TENANT, january.id)

        assert [row["tenant_id"] for row in export.records["financial"]] == [TENANT]
        assert export.summary.income == Decimal("1")


class TestExactSum:

    def test_no_float_drift(self):
        assert exact_sum([Decimal("0.1")] * 10) == Decimal("1.0")

    def test_none_counts_as_zero(self):
        assert exact_sum([Decimal("1"), None]) == Decimal("1")

    def test_empty(self):
        assert exact_sum([]) == Decimal("0")

    @given(values=st.lists(amounts, max_size=50), data=st.data())
    def test_order_independent(self, values, data):
        shuffled = data.draw(st.permutations(values))

        assert exact_sum(values) == exact_sum(shuffled)

    @given(values=st.lists(amounts, max_size=50))
    def test_matches_exact_arithmetic(self, values):
        assert Fraction(exact_sum(values)) == sum(map(Fraction, values), Fraction(0))
