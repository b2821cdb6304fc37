"""
ORM-level immutability enforcement for periods and period-scoped records.

Two guarantees are enforced here, at the last point before SQL is emitted:

  1. A record's envelope (tenant_id, period_id) is written once, when the
     RecordPartitioner tags it, and never reassigned by an UPDATE.
  2. A period's identity fields (tenant_id, kind, start_date, end_date,
     created_at) never change, and a CLOSED period never changes at all.
     ACTIVE -> CLOSED is the only legal status transition.

Services check the same rules first and raise friendlier errors; these
listeners catch writes that bypass the services (direct ORM edits).

Usage:
    from period_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from period_kernel.exceptions import ImmutabilityViolationError
from period_kernel.logging_config import get_logger
from period_kernel.models.period import Period, PeriodStatus
from period_kernel.models.records import ENVELOPE_FIELDS, RECORD_MODELS

logger = get_logger("db.immutability")

PERIOD_IDENTITY_FIELDS = frozenset({"tenant_id", "kind", "start_date", "end_date", "created_at"})


def _changed_fields(target, fields) -> list[str]:
    return sorted(f for f in fields if get_history(target, f).has_changes())


def _check_record_envelope(mapper, connection, target):
    """Reject reassignment of tenant_id / period_id on a persisted record."""
    changed = _changed_fields(target, ENVELOPE_FIELDS)
    if not changed:
        return

    logger.error(
        "record_envelope_violation",
        extra={
            "entity_type": type(target).__name__,
            "entity_id": str(target.id),
            "fields": changed,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=type(target).__name__,
        entity_id=str(target.id),
        reason=f"envelope fields {', '.join(changed)} are write-once",
    )


def _check_period_update(mapper, connection, target):
    """Reject identity changes, reopening, and any edit of a closed period."""
    status_history = get_history(target, "status")
    previous_status = (
        status_history.deleted[0] if status_history.deleted else target.status
    )

    if previous_status == PeriodStatus.CLOSED.value:
        reason = "closed periods are immutable"
    elif _changed_fields(target, PERIOD_IDENTITY_FIELDS):
        reason = "period identity fields cannot change"
    elif target.status not in (PeriodStatus.ACTIVE.value, PeriodStatus.CLOSED.value):
        reason = f"unknown status {target.status!r}"
    else:
        return

    logger.error(
        "period_immutability_violation",
        extra={"entity_id": str(target.id), "reason": reason},
    )
    raise ImmutabilityViolationError(
        entity_type="Period",
        entity_id=str(target.id),
        reason=reason,
    )


_LISTENERS = tuple(
    (model, "before_update", _check_record_envelope) for model in RECORD_MODELS.values()
) + ((Period, "before_update", _check_period_update),)


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, identifier, fn in _LISTENERS:
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    for target, identifier, fn in _LISTENERS:
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
