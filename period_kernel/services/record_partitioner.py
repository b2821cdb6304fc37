"""
RecordPartitioner -- tags domain records with their tenant and period.

Responsibility:
    Stamps every newly created record with the caller's tenant_id and the
    tenant's current ACTIVE period_id, and scopes every read, update and
    delete to an explicit (tenant_id, period_id) pair.

Architecture position:
    Kernel > Services -- imperative shell.
    Inbound CRUD layers go through this service for every period-scoped
    record kind.

Invariants enforced:
    - A record is tagged once.  Its envelope (tenant_id, period_id) is
      never reassigned (checked here and by db/immutability.py).
    - Reads are never widened across periods or tenants.
    - Records of a CLOSED period are read-only.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - NoActivePeriodError: tag()/add() for a tenant without an active period.
    - RecordAlreadyTaggedError: tag() of a record carrying another envelope.
    - RecordNotFoundError: get/update/delete outside the record's scope.
    - ClosedPeriodWriteError: update/delete inside a closed period.
    - ImmutabilityViolationError: update() naming an envelope field.
"""

from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from period_kernel.exceptions import (
    ClosedPeriodWriteError,
    ImmutabilityViolationError,
    RecordAlreadyTaggedError,
    RecordNotFoundError,
)
from period_kernel.logging_config import get_logger
from period_kernel.models.records import (
    ENVELOPE_FIELDS,
    SYSTEM_FIELDS,
    PeriodScopedMixin,
    RecordKind,
    model_for_kind,
)
from period_kernel.services.base import BaseService
from period_kernel.services.period_store import PeriodStore

logger = get_logger("services.record_partitioner")

RecordT = TypeVar("RecordT", bound=PeriodScopedMixin)


class RecordPartitioner(BaseService[PeriodScopedMixin]):
    """
    Service that partitions domain records by (tenant_id, period_id).

    Contract:
        Every method takes the tenant id explicitly.  Scoped methods also
        take the period id explicitly; nothing defaults to "the current
        period" except tagging a new record.

    Non-goals:
        - Does NOT validate business fields of a record kind.
        - Does NOT authorize the caller.
    """

    def __init__(self, session: Session, period_store: PeriodStore | None = None):
        super().__init__(session)
        self._periods = period_store or PeriodStore(session)

    @staticmethod
    def resolve_kind(kind: RecordKind | str | type[PeriodScopedMixin]) -> type[PeriodScopedMixin]:
        """
        Map a RecordKind, its string value, or a model class to the model.

        Raises:
            ValueError: Unknown record kind.
        """
        if isinstance(kind, type):
            if not issubclass(kind, PeriodScopedMixin):
                raise ValueError(f"{kind.__name__} is not a period-scoped record model")
            return kind
        return model_for_kind(kind)

    # =========================================================================
    # Create
    # =========================================================================

    def tag(self, tenant_id: str, record: RecordT) -> RecordT:
        """
        Stamp tenant_id and the active period_id on a new record.

        Tagging an already tagged record with the same envelope is a no-op.

        Raises:
            NoActivePeriodError: The tenant has no active period.
            RecordAlreadyTaggedError: The record carries a different envelope.
        """
        active = self._periods.get_active(tenant_id)

        current = (record.tenant_id, record.period_id)
        if current != (None, None) and current != (tenant_id, active.id):
            raise RecordAlreadyTaggedError(
                record.record_kind.value,
                record.tenant_id,
                str(record.period_id) if record.period_id else None,
            )

        record.tenant_id = tenant_id
        record.period_id = active.id
        return record

    def add(self, tenant_id: str, record: RecordT) -> RecordT:
        """Tag, add and flush a new record."""
        self.tag(tenant_id, record)
        self.session.add(record)
        self.session.flush()

        logger.info(
            "records_tagged",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(record.period_id),
                "record_kind": record.record_kind.value,
                "count": 1,
            },
        )
        return record

    def add_all(self, tenant_id: str, records: list[PeriodScopedMixin]) -> list[PeriodScopedMixin]:
        """Tag, add and flush several records against one active period."""
        if not records:
            return []

        for record in records:
            self.tag(tenant_id, record)
        self.session.add_all(records)
        self.session.flush()

        logger.info(
            "records_tagged",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(records[0].period_id),
                "record_kinds": sorted({r.record_kind.value for r in records}),
                "count": len(records),
            },
        )
        return records

    # =========================================================================
    # Scoped reads
    # =========================================================================

    def query(
        self,
        kind: RecordKind | str | type[PeriodScopedMixin],
        tenant_id: str,
        period_id: UUID,
    ) -> Select:
        """A SELECT of one record kind filtered by the explicit pair."""
        model = self.resolve_kind(kind)
        return select(model).where(
            model.tenant_id == tenant_id,
            model.period_id == period_id,
        )

    def list_records(
        self,
        kind: RecordKind | str | type[PeriodScopedMixin],
        tenant_id: str,
        period_id: UUID,
    ) -> list[PeriodScopedMixin]:
        model = self.resolve_kind(kind)
        stmt = self.query(model, tenant_id, period_id).order_by(model.created_at, model.id)
        return list(self.session.execute(stmt).scalars())

    def get(
        self,
        kind: RecordKind | str | type[PeriodScopedMixin],
        tenant_id: str,
        period_id: UUID,
        record_id: UUID,
    ) -> PeriodScopedMixin:
        """
        One record inside the explicit scope.

        Raises:
            RecordNotFoundError: No such record in (tenant_id, period_id).
        """
        model = self.resolve_kind(kind)
        record = self.session.execute(
            self.query(model, tenant_id, period_id).where(model.id == record_id)
        ).scalar_one_or_none()
        if record is None:
            raise RecordNotFoundError(
                model.record_kind.value, str(record_id), tenant_id, str(period_id)
            )
        return record

    # =========================================================================
    # Scoped writes
    # =========================================================================

    def update(
        self,
        kind: RecordKind | str | type[PeriodScopedMixin],
        tenant_id: str,
        period_id: UUID,
        record_id: UUID,
        **fields: Any,
    ) -> PeriodScopedMixin:
        """
        Update business fields of a record in an ACTIVE period.

        Raises:
            ImmutabilityViolationError: ``fields`` names tenant_id or period_id.
            ValueError: ``fields`` names an unknown or system-managed column.
            ClosedPeriodWriteError: The period is closed.
            RecordNotFoundError: No such record in the scope.
        """
        model = self.resolve_kind(kind)

        envelope = sorted(ENVELOPE_FIELDS & fields.keys())
        if envelope:
            raise ImmutabilityViolationError(
                entity_type=model.__name__,
                entity_id=str(record_id),
                reason=f"envelope fields {', '.join(envelope)} are write-once",
            )

        columns = {c.key for c in model.__table__.columns} - SYSTEM_FIELDS
        unknown = sorted(fields.keys() - columns)
        if unknown:
            raise ValueError(f"{model.__name__} has no updatable fields {unknown}")

        self._require_open(tenant_id, period_id, "update")
        record = self.get(model, tenant_id, period_id, record_id)
        for key, value in fields.items():
            setattr(record, key, value)
        self.session.flush()

        logger.info(
            "record_updated",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period_id),
                "record_kind": model.record_kind.value,
                "record_id": str(record_id),
                "fields": sorted(fields),
            },
        )
        return record

    def delete(
        self,
        kind: RecordKind | str | type[PeriodScopedMixin],
        tenant_id: str,
        period_id: UUID,
        record_id: UUID,
    ) -> None:
        """
        Delete a record of an ACTIVE period.

        Raises:
            ClosedPeriodWriteError: The period is closed.
            RecordNotFoundError: No such record in the scope.
        """
        model = self.resolve_kind(kind)
        self._require_open(tenant_id, period_id, "delete")
        record = self.get(model, tenant_id, period_id, record_id)
        self.session.delete(record)
        self.session.flush()

        logger.info(
            "record_deleted",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period_id),
                "record_kind": model.record_kind.value,
                "record_id": str(record_id),
            },
        )

    def _require_open(self, tenant_id: str, period_id: UUID, operation: str) -> None:
        period = self._periods.get(tenant_id, period_id)
        if period.is_closed:
            logger.warning(
                "closed_period_write_rejected",
                extra={
                    "tenant_id": tenant_id,
                    "period_id": str(period_id),
                    "operation": operation,
                },
            )
            raise ClosedPeriodWriteError(str(period_id), operation)
