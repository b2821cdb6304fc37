"""
period_services.rollover_engine -- Carry-forward computation.

Responsibility:
    Decides which records of a closing period are copied into its
    successor.  The default policy set carries every purchase entry, since
    purchase obligations outstanding at period end remain payable.

Architecture position:
    Services -- called by PeriodManager inside the transition transaction,
    before the closing period is closed.

Invariants enforced:
    - Read-only: the engine never adds, flushes or mutates anything.
      Materialization happens in PeriodManager after the successor exists.
    - Amounts are copied verbatim and quantities stay integers; nothing is
      prorated or rounded.
    - A carried record is a NEW row with a fresh id; the source row is
      untouched and stays in the closed period.

Failure modes:
    - Any exception from a policy propagates; PeriodManager then rolls the
      whole transition back.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from period_kernel.domain.dtos import PeriodInfo
from period_kernel.logging_config import get_logger
from period_kernel.models.records import PeriodScopedMixin, PurchaseEntry, RecordKind

logger = get_logger("services.rollover")


@dataclass(frozen=True)
class CarryForward:
    """
    A record to be re-created in the successor period.

    Carries no period id; ``materialize`` binds it to the new period.
    """

    model: type[PeriodScopedMixin]
    fields: Mapping[str, Any]
    source_id: UUID

    @property
    def record_kind(self) -> RecordKind:
        return self.model.record_kind

    def materialize(self, tenant_id: str, period_id: UUID) -> PeriodScopedMixin:
        values = dict(self.fields)
        if "carried_from_id" in self.model.__table__.columns:
            values["carried_from_id"] = self.source_id
        return self.model(tenant_id=tenant_id, period_id=period_id, **values)


class RolloverPolicy(Protocol):
    """Selects the carry-forward set for one record kind."""

    record_kind: RecordKind

    def select(
        self, session: Session, tenant_id: str, closing_period: PeriodInfo
    ) -> list[CarryForward]: ...


class PurchaseCarryForwardPolicy:
    """Carries every purchase entry of the closing period."""

    record_kind = RecordKind.PURCHASE

    def select(
        self, session: Session, tenant_id: str, closing_period: PeriodInfo
    ) -> list[CarryForward]:
        purchases = session.execute(
            select(PurchaseEntry)
            .where(
                PurchaseEntry.tenant_id == tenant_id,
                PurchaseEntry.period_id == closing_period.id,
            )
            .order_by(PurchaseEntry.entry_date, PurchaseEntry.created_at, PurchaseEntry.id)
        ).scalars()
        return [
            CarryForward(model=PurchaseEntry, fields=p.business_fields(), source_id=p.id)
            for p in purchases
        ]


# Policies available to ``rollover.record_kinds``
POLICY_REGISTRY: dict[RecordKind, type] = {
    RecordKind.PURCHASE: PurchaseCarryForwardPolicy,
}


class RolloverEngine:
    """
    Runs the configured rollover policies against a closing period.

    Contract:
        ``compute_carry_forward`` returns CarryForward values in policy
        order, then in each policy's own deterministic order.
    """

    def __init__(self, policies: Iterable[RolloverPolicy] | None = None):
        self._policies: tuple[RolloverPolicy, ...] = (
            tuple(policies) if policies is not None else (PurchaseCarryForwardPolicy(),)
        )

    @classmethod
    def for_record_kinds(cls, record_kinds: Iterable[RecordKind | str]) -> RolloverEngine:
        """
        Build an engine from configured record kind names.

        Raises:
            ValueError: A kind has no registered rollover policy.
        """
        policies = []
        for kind in record_kinds:
            policy_cls = POLICY_REGISTRY.get(RecordKind(kind))
            if policy_cls is None:
                raise ValueError(f"No rollover policy registered for record kind {kind!r}")
            policies.append(policy_cls())
        return cls(policies)

    @property
    def record_kinds(self) -> tuple[RecordKind, ...]:
        return tuple(p.record_kind for p in self._policies)

    def compute_carry_forward(
        self,
        session: Session,
        tenant_id: str,
        closing_period: PeriodInfo,
    ) -> list[CarryForward]:
        carried: list[CarryForward] = []
        with session.no_autoflush:
            for policy in self._policies:
                carried.extend(policy.select(session, tenant_id, closing_period))

        logger.info(
            "carry_forward_computed",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(closing_period.id),
                "record_kinds": [k.value for k in self.record_kinds],
                "count": len(carried),
            },
        )
        return carried
