"""
period_services.period_manager -- Atomic period transitions.

Responsibility:
    Closes a tenant's active period and opens its successor, carrying
    forward what the rollover policies select, as ONE transaction.  Also
    bootstraps the first period of a new tenant and triggers the
    year-boundary archive.

Architecture position:
    Services -- stateful orchestration over the kernel.
    Composes PeriodStore, RolloverEngine and ArchiveService; owns the
    transaction (session_scope over a session factory) and the per-tenant
    mutual exclusion.

Invariants enforced:
    - All-or-nothing: carry-forward selection, close, create and the
      carried records commit together or not at all.
    - One transition per tenant at a time: an in-process lock per tenant,
      plus pg_try_advisory_xact_lock across processes on PostgreSQL.
      A caller that cannot take the lock fails fast with
      TransitionInProgressError instead of queueing.
    - A transition never moves a tenant backwards: the successor starts
      after the period it replaces.
    - Errors propagate verbatim after rollback.

Failure modes:
    - TransitionInProgressError: another transition of the tenant is running.
    - ActivePeriodConflictError: a concurrent caller already opened a
      period with the same start date, won the unique-index race, or the
      active period is not the one named by expected_active_id.
    - InvalidPeriodSpecError: malformed spec, or a start date before the
      active period's start.
    - ArchiveIncompleteError: the transition committed but the
      year-boundary archive failed; retry ArchiveService.archive_year.
    - Anything raised by a rollover policy, after rollback.

Audit relevance:
    period_transition_started / _committed / _rolled_back are logged with
    tenant_id, closing and new period ids and the carry-forward count.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from period_config.schema import KernelConfig
from period_kernel.db.engine import session_scope
from period_kernel.domain.clock import Clock, SystemClock
from period_kernel.domain.dtos import PeriodInfo
from period_kernel.domain.period_spec import PeriodSpec
from period_kernel.exceptions import (
    ActivePeriodConflictError,
    ArchiveIncompleteError,
    InvalidPeriodSpecError,
    TransitionInProgressError,
)
from period_kernel.logging_config import LogContext, get_logger
from period_kernel.services.period_store import PeriodStore
from period_services.archive_service import ArchiveService
from period_services.archive_sinks import build_sink
from period_services.locks import TenantLockRegistry, try_advisory_xact_lock
from period_services.rollover_engine import RolloverEngine

logger = get_logger("services.period_manager")

# Default for expected_active_id: transition whatever period is active
ANY_ACTIVE = object()


class PeriodManager:
    """
    Orchestrates period transitions for every tenant.

    Contract:
        Receives the session factory, clock, rollover engine, archive
        service and lock registry via constructor injection.  Each public
        method runs in its own transaction.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        rollover_engine: RolloverEngine | None = None,
        archive_service: ArchiveService | None = None,
        locks: TenantLockRegistry | None = None,
        use_advisory_locks: bool = True,
        auto_archive_on_new_year: bool = True,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._rollover = rollover_engine or RolloverEngine()
        self._locks = locks or TenantLockRegistry()
        self._archive = archive_service
        self._use_advisory_locks = use_advisory_locks
        self._auto_archive = auto_archive_on_new_year

    @classmethod
    def from_config(
        cls,
        config: KernelConfig,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        locks: TenantLockRegistry | None = None,
    ) -> PeriodManager:
        """Wire a manager and its archive service from configuration."""
        clock = clock or SystemClock()
        locks = locks or TenantLockRegistry()
        archive = ArchiveService(
            session_factory,
            config=config.archive,
            sink=build_sink(config.archive, session_factory, clock),
            locks=locks,
            clock=clock,
            lock_timeout=config.locking.archive_timeout_seconds,
        )
        return cls(
            session_factory,
            clock=clock,
            rollover_engine=RolloverEngine.for_record_kinds(config.rollover.record_kinds),
            archive_service=archive,
            locks=locks,
            use_advisory_locks=config.locking.use_advisory_locks,
            auto_archive_on_new_year=config.archive.auto_archive_on_new_year,
        )

    # =========================================================================
    # Transition
    # =========================================================================

    def transition_period(
        self,
        tenant_id: str,
        spec: PeriodSpec,
        expected_active_id: UUID | None | object = ANY_ACTIVE,
    ) -> PeriodInfo:
        """
        Close the tenant's active period (if any) and open ``spec``.

        ``expected_active_id`` is a compare-and-swap guard: the id of the
        active period the caller based its request on, or None for a tenant
        the caller believes has none.  If the active period found inside the
        transaction differs, the call fails with ActivePeriodConflictError
        before anything is written.  Concurrent callers should pass it so a
        lost race is always reported as a conflict.

        Steps, in one transaction:
            1. Fetch the active period (none: bootstrap, skip to 4).
            2. Compute the carry-forward set.
            3. Close the active period.
            4. Create the new period.
            5. Insert the carried records into the new period.
            6. Commit.

        When the new period starts in January and a period was closed, the
        previous year is archived after the commit.

        Returns:
            The new active period.

        Raises:
            TransitionInProgressError: Another transition is running.
            ActivePeriodConflictError: Lost a race for the tenant.
            InvalidPeriodSpecError: Malformed or backwards spec.
            ArchiveIncompleteError: Committed, but the archive failed.
        """
        spec = spec.resolve()

        with self._locks.hold(tenant_id) as held:
            if not held:
                logger.warning("period_transition_busy", extra={"tenant_id": tenant_id})
                raise TransitionInProgressError(tenant_id)

            with LogContext.bind(tenant_id=tenant_id):
                new_period, closed = self._run_transition(tenant_id, spec, expected_active_id)

        if closed is not None and new_period.start_date.month == 1:
            self._archive_previous_year(tenant_id, new_period)

        return new_period

    def _run_transition(
        self, tenant_id: str, spec: PeriodSpec, expected_active_id: UUID | None | object
    ) -> tuple[PeriodInfo, PeriodInfo | None]:
        logger.info(
            "period_transition_started",
            extra={
                "tenant_id": tenant_id,
                "kind": spec.kind.value,
                "start_date": str(spec.start_date),
                "end_date": str(spec.end_date),
            },
        )
        try:
            with session_scope(self._session_factory) as session:
                self._take_advisory_lock(session, tenant_id)
                new_period, closed, carried = self._transition(
                    session, tenant_id, spec, expected_active_id
                )
        except Exception as exc:
            logger.warning(
                "period_transition_rolled_back",
                extra={
                    "tenant_id": tenant_id,
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", None),
                },
            )
            raise

        logger.info(
            "period_transition_committed",
            extra={
                "tenant_id": tenant_id,
                "closed_period_id": str(closed.id) if closed else None,
                "new_period_id": str(new_period.id),
                "carried_forward": carried,
            },
        )
        return new_period, closed

    def _transition(
        self,
        session: Session,
        tenant_id: str,
        spec: PeriodSpec,
        expected_active_id: UUID | None | object,
    ) -> tuple[PeriodInfo, PeriodInfo | None, int]:
        store = PeriodStore(session, self._clock)
        current = store.find_active(tenant_id)
        self._check_expected(tenant_id, current, expected_active_id)

        carry_forward = []
        closed = None
        if current is not None:
            self._check_successor(tenant_id, current, spec)
            carry_forward = self._rollover.compute_carry_forward(session, tenant_id, current)
            closed = store.close(tenant_id, current.id, expected_version=current.version)

        new_period = store.create(
            tenant_id, spec, replacing=closed.id if closed is not None else None
        )

        if carry_forward:
            session.add_all([c.materialize(tenant_id, new_period.id) for c in carry_forward])
            session.flush()
            logger.info(
                "records_tagged",
                extra={
                    "tenant_id": tenant_id,
                    "period_id": str(new_period.id),
                    "record_kinds": sorted({c.record_kind.value for c in carry_forward}),
                    "count": len(carry_forward),
                    "source": "carry_forward",
                },
            )

        return new_period, closed, len(carry_forward)

    @staticmethod
    def _check_expected(
        tenant_id: str, current: PeriodInfo | None, expected_active_id: UUID | None | object
    ) -> None:
        if expected_active_id is ANY_ACTIVE:
            return
        if isinstance(expected_active_id, str):
            expected_active_id = UUID(expected_active_id)
        actual = current.id if current is not None else None
        if actual != expected_active_id:
            logger.info(
                "period_transition_stale",
                extra={
                    "tenant_id": tenant_id,
                    "expected_period_id": str(expected_active_id) if expected_active_id else None,
                    "active_period_id": str(actual) if actual else None,
                },
            )
            raise ActivePeriodConflictError(tenant_id, str(actual) if actual else None)

    @staticmethod
    def _check_successor(tenant_id: str, current: PeriodInfo, spec: PeriodSpec) -> None:
        if spec.start_date == current.start_date:
            # Same request replayed, or a concurrent caller got there first
            raise ActivePeriodConflictError(tenant_id, str(current.id))
        if spec.start_date < current.start_date:
            raise InvalidPeriodSpecError(
                "start_date",
                spec.start_date,
                f"must not precede the active period start {current.start_date}",
            )

    def _take_advisory_lock(self, session: Session, tenant_id: str) -> None:
        if self._use_advisory_locks and not try_advisory_xact_lock(
            session, "period_transition", tenant_id
        ):
            raise TransitionInProgressError(tenant_id)

    def _archive_previous_year(self, tenant_id: str, new_period: PeriodInfo) -> None:
        if self._archive is None or not self._auto_archive:
            return
        year = new_period.start_date.year - 1
        try:
            self._archive.archive_year(tenant_id, year)
        except Exception as exc:
            logger.error(
                "year_archive_failed",
                extra={
                    "tenant_id": tenant_id,
                    "year": year,
                    "new_period_id": str(new_period.id),
                    "error_type": type(exc).__name__,
                },
            )
            raise ArchiveIncompleteError(
                tenant_id, year, str(new_period.id), str(exc)
            ) from exc

    # =========================================================================
    # Bootstrap
    # =========================================================================

    def bootstrap_tenant(self, tenant_id: str, today: date | None = None) -> PeriodInfo:
        """
        Ensure the tenant has an active period.

        Creates a monthly period starting ``today`` (default: the clock's
        date) when the tenant has none; otherwise returns the active one.

        Raises:
            TransitionInProgressError: A transition of the tenant is running.
            ActivePeriodConflictError: Lost the unique-index race.
        """
        with self._locks.hold(tenant_id) as held:
            if not held:
                raise TransitionInProgressError(tenant_id)

            with LogContext.bind(tenant_id=tenant_id):
                with session_scope(self._session_factory) as session:
                    self._take_advisory_lock(session, tenant_id)
                    store = PeriodStore(session, self._clock)
                    existing = store.find_active(tenant_id)
                    if existing is not None:
                        return existing
                    period = store.create(
                        tenant_id, PeriodSpec.monthly(today or self._clock.today())
                    )

                logger.info(
                    "tenant_bootstrapped",
                    extra={"tenant_id": tenant_id, "period_id": str(period.id)},
                )
                return period
