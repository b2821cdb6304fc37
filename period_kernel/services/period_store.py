"""
PeriodStore -- tenant period persistence and the one-active-period rule.

Responsibility:
    Creates, closes and looks up periods for a tenant.  Owns the rule that
    a tenant has at most one ACTIVE period at a time.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by PeriodManager (transition/bootstrap), RecordPartitioner
    (active period lookup) and ArchiveService (year scope).

Invariants enforced:
    - At most one ACTIVE period per tenant.  Checked here first, then by
      the partial unique index uq_periods_one_active_per_tenant when two
      transactions race past the check.
    - ACTIVE -> CLOSED exactly once, guarded by SELECT ... FOR UPDATE and
      a compare-and-swap on Period.version.
    - Every lookup is scoped by tenant_id; a period id of another tenant
      is reported as not found.
    - Returns frozen PeriodInfo DTOs, never ORM entities.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - NoActivePeriodError: get_active() on a tenant without one.
    - ActivePeriodConflictError: create() while another period is active.
    - PeriodNotFoundError: unknown period for the tenant.
    - PeriodAlreadyClosedError: close() of a closed period.
    - PeriodVersionConflictError: close() lost a concurrent CAS.
    - InvalidPeriodSpecError: create() with an invalid spec.

Audit relevance:
    period_created and period_closed are logged with tenant_id,
    period_id and dates.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from period_kernel.domain.clock import Clock, SystemClock
from period_kernel.domain.dtos import PeriodInfo, PeriodStatus
from period_kernel.domain.period_spec import PeriodSpec
from period_kernel.exceptions import (
    ActivePeriodConflictError,
    NoActivePeriodError,
    PeriodAlreadyClosedError,
    PeriodNotFoundError,
    PeriodVersionConflictError,
)
from period_kernel.logging_config import get_logger
from period_kernel.models.period import Period
from period_kernel.services.base import BaseService

logger = get_logger("services.period_store")


class PeriodStore(BaseService[Period]):
    """
    Service for the tenant period lifecycle.

    Contract:
        Accepts explicit tenant ids and returns frozen ``PeriodInfo`` DTOs.
        Lifecycle methods (create, close) flush within the caller's
        transaction.

    Non-goals:
        - Does NOT touch domain records (RecordPartitioner, RolloverEngine).
        - Does NOT serialize concurrent transitions (PeriodManager holds
          the per-tenant lock).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # =========================================================================
    # Queries
    # =========================================================================

    def find_active(self, tenant_id: str) -> PeriodInfo | None:
        """The tenant's ACTIVE period, or None."""
        period = self._active_orm(tenant_id)
        return PeriodInfo.from_model(period) if period is not None else None

    def get_active(self, tenant_id: str) -> PeriodInfo:
        """
        The tenant's ACTIVE period.

        Raises:
            NoActivePeriodError: The tenant has no active period.
        """
        period = self.find_active(tenant_id)
        if period is None:
            raise NoActivePeriodError(tenant_id)
        return period

    def get(self, tenant_id: str, period_id: UUID) -> PeriodInfo:
        """
        A period of the tenant by id.

        Raises:
            PeriodNotFoundError: No such period for this tenant.
        """
        return PeriodInfo.from_model(self._get_orm(tenant_id, period_id))

    def list(self, tenant_id: str, status: PeriodStatus | str | None = None) -> list[PeriodInfo]:
        """Periods of the tenant ordered by start_date, optionally by status."""
        stmt = select(Period).where(Period.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(Period.status == PeriodStatus(status).value)
        stmt = stmt.order_by(Period.start_date, Period.created_at)
        return [PeriodInfo.from_model(p) for p in self.session.execute(stmt).scalars()]

    def periods_within_year(
        self,
        tenant_id: str,
        year: int,
        status: PeriodStatus | str | None = None,
    ) -> list[PeriodInfo]:
        """
        Periods whose [start_date, end_date) lies fully inside ``year``.

        A period spanning Dec 15 - Jan 15 belongs to neither year.
        """
        stmt = select(Period).where(
            Period.tenant_id == tenant_id,
            Period.start_date >= date(year, 1, 1),
            Period.end_date <= date(year + 1, 1, 1),
        )
        if status is not None:
            stmt = stmt.where(Period.status == PeriodStatus(status).value)
        stmt = stmt.order_by(Period.start_date, Period.created_at)
        return [PeriodInfo.from_model(p) for p in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create(
        self,
        tenant_id: str,
        spec: PeriodSpec,
        *,
        replacing: UUID | None = None,
    ) -> PeriodInfo:
        """
        Create a new ACTIVE period for the tenant.

        Preconditions:
            The tenant has no active period.  When ``replacing`` is given it
            must name a period of this tenant that is already closed (the
            predecessor closed earlier in the same transaction).

        Raises:
            InvalidPeriodSpecError: The PeriodSpec is invalid.
            ActivePeriodConflictError: Another period is active, or a
                concurrent transaction created one first.
        """
        resolved = spec.resolve()

        if replacing is not None:
            predecessor = self._get_orm(tenant_id, replacing)
            if predecessor.is_active:
                raise ActivePeriodConflictError(tenant_id, str(predecessor.id))

        existing = self._active_orm(tenant_id)
        if existing is not None:
            logger.warning(
                "active_period_conflict",
                extra={"tenant_id": tenant_id, "existing_period_id": str(existing.id)},
            )
            raise ActivePeriodConflictError(tenant_id, str(existing.id))

        period = Period(
            tenant_id=tenant_id,
            name=resolved.name,
            kind=resolved.kind.value,
            start_date=resolved.start_date,
            end_date=resolved.end_date,
            status=PeriodStatus.ACTIVE.value,
            created_at=self._clock.now(),
        )

        try:
            with self.session.begin_nested():
                self.session.add(period)
        except IntegrityError:
            # Partial unique index: a concurrent transaction won the race
            logger.warning(
                "active_period_conflict",
                extra={"tenant_id": tenant_id, "source": "unique_index"},
            )
            raise ActivePeriodConflictError(tenant_id) from None

        logger.info(
            "period_created",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period.id),
                "kind": period.kind,
                "start_date": str(period.start_date),
                "end_date": str(period.end_date),
                "replacing": str(replacing) if replacing else None,
            },
        )
        return PeriodInfo.from_model(period)

    def close(
        self,
        tenant_id: str,
        period_id: UUID,
        expected_version: int | None = None,
    ) -> PeriodInfo:
        """
        Close an ACTIVE period.

        Uses SELECT FOR UPDATE so a concurrent closer blocks on the row and
        then sees the committed status.  The UPDATE itself is conditional
        on the version read here; losing that compare-and-swap raises
        PeriodVersionConflictError.

        Raises:
            PeriodNotFoundError: No such period for this tenant.
            PeriodAlreadyClosedError: The period is already closed.
            PeriodVersionConflictError: ``expected_version`` does not match,
                or a concurrent writer changed the row first.
        """
        period = self._get_orm(tenant_id, period_id, for_update=True)

        if period.is_closed:
            raise PeriodAlreadyClosedError(str(period_id))

        version = period.version
        if expected_version is not None and expected_version != version:
            raise PeriodVersionConflictError(str(period_id), expected_version)

        period.status = PeriodStatus.CLOSED.value
        period.closed_at = self._clock.now()

        try:
            with self.session.begin_nested():
                self.session.flush()
        except StaleDataError:
            logger.warning(
                "period_close_version_conflict",
                extra={"tenant_id": tenant_id, "period_id": str(period_id), "version": version},
            )
            raise PeriodVersionConflictError(str(period_id), version) from None

        logger.info(
            "period_closed",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period_id),
                "version": period.version,
            },
        )
        return PeriodInfo.from_model(period)

    # =========================================================================
    # ORM access (internal)
    # =========================================================================

    def _active_orm(self, tenant_id: str) -> Period | None:
        return self.session.execute(
            select(Period).where(
                Period.tenant_id == tenant_id,
                Period.status == PeriodStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()

    def _get_orm(self, tenant_id: str, period_id: UUID, for_update: bool = False) -> Period:
        stmt = select(Period).where(Period.tenant_id == tenant_id, Period.id == period_id)
        if for_update:
            stmt = stmt.with_for_update()
        period = self.session.execute(stmt).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(tenant_id, str(period_id))
        return period
