"""
PeriodManager tests.

Verifies:
- First transition of a tenant creates its active period, nothing carried
- A transition closes the active period, opens the successor and carries
  every purchase forward, all in one commit
- A failure anywhere in the transition leaves the prior state intact
- A transition never moves a tenant backwards
- expected_active_id turns a stale view of the tenant into a conflict
- A transition into January archives the previous year after the commit
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from period_config.schema import ArchiveConfig, KernelConfig
from period_kernel.domain.dtos import PeriodStatus
from period_kernel.domain.period_spec import PeriodSpec
from period_kernel.exceptions import (
    ActivePeriodConflictError,
    ArchiveIncompleteError,
    ArchiveSinkError,
    InvalidPeriodSpecError,
    TransitionInProgressError,
)
from period_kernel.models.records import PurchaseEntry, SalesEntry
from period_services.archive_service import ArchiveService
from period_services.period_manager import PeriodManager
from period_services.rollover_engine import CarryForward, RolloverEngine
from tests.builders import (
    OTHER_TENANT,
    TENANT,
    commit_records,
    committed_periods,
    committed_records,
    make_purchase,
    make_sale,
)


class BrokenSink:
    """Sink whose writes always fail."""

    name = "broken"

    def write(self, tenant_id, year, payload, checksum):
        raise ArchiveSinkError(self.name, tenant_id, year, "disk full")

    def read(self, tenant_id, year):
        raise ArchiveSinkError(self.name, tenant_id, year, "disk full")

    def exists(self, tenant_id, year):
        return False


class InvalidCarryPolicy:
    """Carries a purchase that the database refuses (NULL description)."""

    record_kind = PurchaseEntry.record_kind

    def select(self, session, tenant_id, closing_period):
        return [
            CarryForward(
                model=PurchaseEntry,
                fields={
                    "description": None,
                    "amount": Decimal("1"),
                    "quantity": 1,
                    "entry_date": date(2025, 1, 1),
                },
                source_id=closing_period.id,
            )
        ]


def _january(manager):
    return manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 1, 1)))


class TestFirstTransition:

    def test_creates_active_period(self, manager, session_factory):
        period = _january(manager)

        assert period.status == PeriodStatus.ACTIVE
        assert (period.start_date, period.end_date) == (date(2025, 1, 1), date(2025, 2, 1))
        assert [p.id for p in committed_periods(session_factory, TENANT)] == [period.id]
        assert committed_records(session_factory, PurchaseEntry, TENANT) == []

    def test_does_not_archive(self, manager, archive_service):
        _january(manager)

        assert not archive_service.sink.exists(TENANT, 2024)

    def test_invalid_spec_is_rejected_up_front(self, manager, session_factory):
        with pytest.raises(InvalidPeriodSpecError):
            manager.transition_period(TENANT, PeriodSpec("weekly", date(2025, 1, 1)))

        assert committed_periods(session_factory, TENANT) == []


class TestTransition:

    def test_purchase_is_carried_forward(self, manager, session_factory):
        january = _january(manager)
        (original,) = commit_records(session_factory, TENANT, make_purchase("500"))

        february = manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 2, 1)))

        periods = {p.id: p for p in committed_periods(session_factory, TENANT)}
        assert periods[january.id].status == PeriodStatus.CLOSED
        assert periods[february.id].status == PeriodStatus.ACTIVE

        in_january = committed_records(session_factory, PurchaseEntry, TENANT, january.id)
        in_february = committed_records(session_factory, PurchaseEntry, TENANT, february.id)
        assert [p.id for p in in_january] == [original.id]
        assert len(in_february) == 1
        assert in_february[0].amount == Decimal("500")
        assert in_february[0].id != original.id
        assert in_february[0].carried_from_id == original.id

    def test_non_purchase_records_stay_behind(self, manager, session_factory):
        january = _january(manager)
        commit_records(session_factory, TENANT, make_sale("80"))

        february = manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 2, 1)))

        assert committed_records(session_factory, SalesEntry, TENANT, february.id) == []
        assert len(committed_records(session_factory, SalesEntry, TENANT, january.id)) == 1

    def test_carry_forward_chains_across_periods(self, manager, session_factory):
        _january(manager)
        commit_records(session_factory, TENANT, make_purchase("500"), make_purchase("20"))

        manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 2, 1)))
        march = manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 3, 1)))

        in_march = committed_records(session_factory, PurchaseEntry, TENANT, march.id)
        assert sorted(p.amount for p in in_march) == [Decimal("20"), Decimal("500")]
        assert len(committed_records(session_factory, PurchaseEntry, TENANT)) == 6

    def test_daily_after_monthly(self, manager, session_factory):
        _january(manager)

        day = manager.transition_period(TENANT, PeriodSpec.daily(date(2025, 2, 1)))

        assert day.end_date == date(2025, 2, 2)
        assert day.name == "Feb 1, 2025"

    def test_tenants_are_isolated(self, manager, session_factory):
        _january(manager)
        commit_records(session_factory, TENANT, make_purchase("500"))
        manager.transition_period(OTHER_TENANT, PeriodSpec.monthly(date(2025, 1, 1)))

        manager.transition_period(OTHER_TENANT, PeriodSpec.monthly(date(2025, 2, 1)))

        assert committed_records(session_factory, PurchaseEntry, OTHER_TENANT) == []
        assert len(committed_periods(session_factory, TENANT, status="active")) == 1

    def test_lifecycle_is_logged(self, manager, session_factory, captured_logs):
        january = _january(manager)
        commit_records(session_factory, TENANT, make_purchase("500"))

        february = manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 2, 1)))

        messages = [r["message"] for r in captured_logs()]
        assert messages.count("period_transition_started") == 2
        assert messages.count("period_transition_committed") == 2
        committed = [
            r for r in captured_logs() if r["message"] == "period_transition_committed"
        ][-1]
        assert committed["closed_period_id"] == str(january.id)
        assert committed["new_period_id"] == str(february.id)
        assert committed["carried_forward"] == 1


class TestSuccessorRules:

    def test_same_start_date_conflicts(self, manager):
        january = _january(manager)

        with pytest.raises(ActivePeriodConflictError) as exc_info:
            _january(manager)

        assert exc_info.value.existing_period_id == str(january.id)

    def test_earlier_start_date_is_rejected(self, manager, session_factory):
        january = _january(manager)

        with pytest.raises(InvalidPeriodSpecError) as exc_info:
            manager.transition_period(TENANT, PeriodSpec.monthly(date(2024, 12, 1)))

        assert exc_info.value.field == "start_date"
        assert [p.id for p in committed_periods(session_factory, TENANT, "active")] == [
            january.id
        ]


class TestExpectedActivePeriod:

    def test_matching_expectation_transitions(self, manager, session_factory):
        january = _january(manager)

        february = manager.transition_period(
            TENANT, PeriodSpec.monthly(date(2025, 2, 1)), expected_active_id=january.id
        )

        active = committed_periods(session_factory, TENANT, "active")
        assert [p.id for p in active] == [february.id]

    def test_expectation_accepts_string_id(self, manager):
        january = _january(manager)

        february = manager.transition_period(
            TENANT, PeriodSpec.monthly(date(2025, 2, 1)), expected_active_id=str(january.id)
        )

        assert february.start_date == date(2025, 2, 1)

    def test_stale_expectation_conflicts(self, manager, session_factory, captured_logs):
        january = _january(manager)
        february = manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 2, 1)))

        with pytest.raises(ActivePeriodConflictError) as exc_info:
            manager.transition_period(
                TENANT, PeriodSpec.monthly(date(2025, 3, 1)), expected_active_id=january.id
            )

        assert exc_info.value.existing_period_id == str(february.id)
        assert [p.id for p in committed_periods(session_factory, TENANT, "active")] == [
            february.id
        ]
        assert any(r["message"] == "period_transition_stale" for r in captured_logs())

    def test_expecting_none_when_a_period_exists(self, manager):
        january = _january(manager)

        with pytest.raises(ActivePeriodConflictError) as exc_info:
            manager.transition_period(
                TENANT, PeriodSpec.monthly(date(2024, 12, 1)), expected_active_id=None
            )

        assert exc_info.value.existing_period_id == str(january.id)

    def test_expecting_a_period_when_none_exists(self, manager, session_factory):
        with pytest.raises(ActivePeriodConflictError) as exc_info:
            manager.transition_period(
                TENANT, PeriodSpec.monthly(date(2025, 1, 1)), expected_active_id=uuid4()
            )

        assert exc_info.value.existing_period_id is None
        assert committed_periods(session_factory, TENANT) == []


class TestAtomicity:

    def test_failed_carry_forward_rolls_everything_back(
        self, session_factory, deterministic_clock, captured_logs
    ):
        manager = PeriodManager(
            session_factory,
            clock=deterministic_clock,
            rollover_engine=RolloverEngine(policies=[InvalidCarryPolicy()]),
        )
        january = _january(manager)
        commit_records(session_factory, TENANT, make_purchase("500"))

        with pytest.raises(IntegrityError):
            manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 2, 1)))

        periods = committed_periods(session_factory, TENANT)
        assert [(p.id, p.status) for p in periods] == [(january.id, PeriodStatus.ACTIVE)]
        assert len(committed_records(session_factory, PurchaseEntry, TENANT)) == 1
        assert any(r["message"] == "period_transition_rolled_back" for r in captured_logs())

    def test_failing_policy_propagates_verbatim(self, session_factory, deterministic_clock):
        class Exploding:
            record_kind = PurchaseEntry.record_kind

            def select(self, session, tenant_id, closing_period):
                raise RuntimeError("policy exploded")

        manager = PeriodManager(
            session_factory,
            clock=deterministic_clock,
            rollover_engine=RolloverEngine(policies=[Exploding()]),
        )
        january = _january(manager)

        with pytest.raises(RuntimeError, match="policy exploded"):
            manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 2, 1)))

        assert committed_periods(session_factory, TENANT)[0].id == january.id
        assert committed_periods(session_factory, TENANT)[0].is_active

    def test_held_tenant_lock_fails_fast(self, manager, locks, session_factory):
        _january(manager)

        with locks.hold(TENANT) as held:
            assert held
            with pytest.raises(TransitionInProgressError):
                manager.transition_period(TENANT, PeriodSpec.monthly(date(2025, 2, 1)))
            # Other tenants are not blocked
            manager.transition_period(OTHER_TENANT, PeriodSpec.monthly(date(2025, 1, 1)))

        assert len(committed_periods(session_factory, TENANT)) == 1


class TestBootstrap:

    def test_bootstrap_uses_clock_date(self, manager, deterministic_clock):
        period = manager.bootstrap_tenant(TENANT)

        assert period.start_date == deterministic_clock.today()
        assert period.is_active

    def test_bootstrap_is_idempotent(self, manager, session_factory):
        first = manager.bootstrap_tenant(TENANT, today=date(2025, 3, 1))
        second = manager.bootstrap_tenant(TENANT, today=date(2025, 4, 1))

        assert first.id == second.id
        assert len(committed_periods(session_factory, TENANT)) == 1

    def test_bootstrap_keeps_existing_period(self, manager):
        january = _january(manager)

        assert manager.bootstrap_tenant(TENANT).id == january.id


class TestYearBoundaryArchive:

    def _december_with_records(self, manager, session_factory):
        december = manager.transition_period(TENANT, PeriodSpec.monthly(date(2024, 12, 1)))
        commit_records(
            session_factory,
            TENANT,
            make_purchase("500", entry_date=date(2024, 12, 10)),
            make_sale("75", entry_date=date(2024, 12, 11)),
        )
        return december

    def test_january_transition_archives_previous_year(
        self, manager, archive_service, session_factory
    ):
        self._december_with_records(manager, session_factory)

        january = _january(manager)

        assert [p.id for p in committed_periods(session_factory, TENANT)] == [january.id]
        (carried,) = committed_records(session_factory, PurchaseEntry, TENANT)
        assert (carried.period_id, carried.amount) == (january.id, Decimal("500"))
        assert committed_records(session_factory, SalesEntry, TENANT) == []
        assert archive_service.sink.exists(TENANT, 2024)

        artifact = archive_service.restore_artifact(TENANT, 2024)
        assert artifact.record_count == 2

    def test_failed_archive_keeps_new_period(
        self, session_factory, deterministic_clock, locks, archive_dir
    ):
        broken = ArchiveService(
            session_factory, sink=BrokenSink(), locks=locks, clock=deterministic_clock
        )
        manager = PeriodManager(
            session_factory, clock=deterministic_clock, archive_service=broken, locks=locks
        )
        december = self._december_with_records(manager, session_factory)

        with pytest.raises(ArchiveIncompleteError) as exc_info:
            _january(manager)

        periods = committed_periods(session_factory, TENANT)
        active = [p for p in periods if p.is_active]
        assert exc_info.value.year == 2024
        assert exc_info.value.new_period_id == str(active[0].id)
        assert isinstance(exc_info.value.__cause__, ArchiveSinkError)
        assert december.id in {p.id for p in periods}

        # Retrying with a working sink finishes the job
        retry = ArchiveService(
            session_factory,
            config=ArchiveConfig(directory=archive_dir),
            locks=locks,
            clock=deterministic_clock,
        )
        result = retry.archive_year(TENANT, 2024)
        assert result.period_ids == (december.id,)
        assert [p.id for p in committed_periods(session_factory, TENANT)] == [active[0].id]

    def test_auto_archive_can_be_disabled(
        self, session_factory, deterministic_clock, archive_service, locks
    ):
        manager = PeriodManager(
            session_factory,
            clock=deterministic_clock,
            archive_service=archive_service,
            locks=locks,
            auto_archive_on_new_year=False,
        )
        self._december_with_records(manager, session_factory)

        _january(manager)

        assert len(committed_periods(session_factory, TENANT)) == 2
        assert not archive_service.sink.exists(TENANT, 2024)

    def test_from_config_wires_archive(self, session_factory, deterministic_clock, archive_dir):
        config = KernelConfig(archive=ArchiveConfig(directory=archive_dir))
        manager = PeriodManager.from_config(config, session_factory, clock=deterministic_clock)
        self._december_with_records(manager, session_factory)

        _january(manager)

        assert (archive_dir / TENANT / "2024.json").exists()
        assert len(committed_periods(session_factory, TENANT)) == 1
