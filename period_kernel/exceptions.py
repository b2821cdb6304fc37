"""
Typed Exception Hierarchy for the Period Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers decide what to do with a failure by its category, not its wording:

  - ConflictError      -> the caller lost a race; retrying is safe
  - InvalidStateError  -> a precondition is not met; retrying will not help
  - NotFoundError      -> the tenant, period or record does not exist
  - ValidationError    -> the request itself is malformed

Every exception carries:
  1. A CODE class attribute (machine-readable, API-safe)
  2. Structured DATA as instance attributes (never parse the message)

Example:
    try:
        manager.transition_period(tenant_id, spec)
    except ConflictError as e:
        schedule_retry(code=e.code)
    except InvalidStateError as e:
        show_blocking_message(e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PeriodKernelError (base)
    |
    +-- NotFoundError
    |   +-- PeriodNotFoundError
    |   +-- NoActivePeriodError        (also an InvalidStateError)
    |   +-- RecordNotFoundError
    |   +-- TenantNotFoundError
    |   +-- ArchiveNotFoundError
    |
    +-- ConflictError
    |   +-- ActivePeriodConflictError
    |   +-- TransitionInProgressError
    |   +-- PeriodVersionConflictError
    |   +-- ArchiveInProgressError
    |
    +-- InvalidStateError
    |   +-- PeriodAlreadyClosedError
    |   +-- ClosedPeriodWriteError
    |   +-- RecordAlreadyTaggedError
    |   +-- ImmutabilityViolationError
    |
    +-- ValidationError
    |   +-- InvalidPeriodSpecError
    |   +-- ArchiveConfigurationError
    |
    +-- ArchiveError
        +-- ArchiveSinkError
        +-- ArchiveIntegrityError
        +-- ArchiveIncompleteError

===============================================================================
"""

from __future__ import annotations


class PeriodKernelError(Exception):
    """
    Base exception for all period kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PERIOD_KERNEL_ERROR"


# Not found


class NotFoundError(PeriodKernelError):
    """Base exception for unknown tenants, periods, records and archives."""

    code: str = "NOT_FOUND"


class PeriodNotFoundError(NotFoundError):
    """Period does not exist or belongs to another tenant."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, tenant_id: str, period_id: str):
        self.tenant_id = tenant_id
        self.period_id = period_id
        super().__init__(f"Period {period_id} not found for tenant {tenant_id}")


class RecordNotFoundError(NotFoundError):
    """Record does not exist within the given (tenant, period) scope."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, record_kind: str, record_id: str, tenant_id: str, period_id: str):
        self.record_kind = record_kind
        self.record_id = record_id
        self.tenant_id = tenant_id
        self.period_id = period_id
        super().__init__(
            f"{record_kind} record {record_id} not found in period {period_id} "
            f"of tenant {tenant_id}"
        )


class TenantNotFoundError(NotFoundError):
    """Caller could not be resolved to a tenant."""

    code: str = "TENANT_NOT_FOUND"

    def __init__(self, caller: str):
        self.caller = caller
        super().__init__(f"No tenant registered for caller {caller}")


class ArchiveNotFoundError(NotFoundError):
    """No export artifact exists for the tenant and year."""

    code: str = "ARCHIVE_NOT_FOUND"

    def __init__(self, tenant_id: str, year: int):
        self.tenant_id = tenant_id
        self.year = year
        super().__init__(f"No archive artifact for tenant {tenant_id}, year {year}")


# Conflicts


class ConflictError(PeriodKernelError):
    """Base exception for lost races. The caller may retry."""

    code: str = "CONFLICT"


class ActivePeriodConflictError(ConflictError):
    """A second active period would exist for the tenant."""

    code: str = "PERIOD_ACTIVE_CONFLICT"

    def __init__(self, tenant_id: str, existing_period_id: str | None = None):
        self.tenant_id = tenant_id
        self.existing_period_id = existing_period_id
        detail = f" (active: {existing_period_id})" if existing_period_id else ""
        super().__init__(f"Tenant {tenant_id} already has an active period{detail}")


class TransitionInProgressError(ConflictError):
    """Another period transition holds the tenant's exclusion scope."""

    code: str = "TRANSITION_IN_PROGRESS"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"A period transition is already running for tenant {tenant_id}")


class PeriodVersionConflictError(ConflictError):
    """Compare-and-swap on the period row failed."""

    code: str = "PERIOD_VERSION_CONFLICT"

    def __init__(self, period_id: str, expected_version: int):
        self.period_id = period_id
        self.expected_version = expected_version
        super().__init__(
            f"Period {period_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class ArchiveInProgressError(ConflictError):
    """Another archive run holds the (tenant, year) scope."""

    code: str = "ARCHIVE_IN_PROGRESS"

    def __init__(self, tenant_id: str, year: int):
        self.tenant_id = tenant_id
        self.year = year
        super().__init__(f"Archive of {year} already running for tenant {tenant_id}")


# Invalid state


class InvalidStateError(PeriodKernelError):
    """Base exception for unmet preconditions."""

    code: str = "INVALID_STATE"


class NoActivePeriodError(NotFoundError, InvalidStateError):
    """Tenant has no active period to read or write."""

    code: str = "NO_ACTIVE_PERIOD"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} has no active period")


class PeriodAlreadyClosedError(InvalidStateError):
    """Period is already closed."""

    code: str = "PERIOD_ALREADY_CLOSED"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Period {period_id} is already closed")


class ClosedPeriodWriteError(InvalidStateError):
    """Ordinary write attempted against a record of a closed period."""

    code: str = "CLOSED_PERIOD_WRITE"

    def __init__(self, period_id: str, operation: str):
        self.period_id = period_id
        self.operation = operation
        super().__init__(f"Cannot {operation} records of closed period {period_id}")


class RecordAlreadyTaggedError(InvalidStateError):
    """Record already carries a tenant/period envelope."""

    code: str = "RECORD_ALREADY_TAGGED"

    def __init__(self, record_kind: str, tenant_id: str | None, period_id: str | None):
        self.record_kind = record_kind
        self.tenant_id = tenant_id
        self.period_id = period_id
        super().__init__(
            f"{record_kind} record is already tagged "
            f"(tenant {tenant_id}, period {period_id})"
        )


class ImmutabilityViolationError(InvalidStateError):
    """Attempted to change a write-once field or a closed period."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


# Validation


class ValidationError(PeriodKernelError):
    """Base exception for malformed requests."""

    code: str = "VALIDATION_ERROR"


class InvalidPeriodSpecError(ValidationError):
    """Period spec has an unknown kind, bad dates, or a blank name."""

    code: str = "INVALID_PERIOD_SPEC"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid period spec {field}={value!r}: {reason}")


class ArchiveConfigurationError(ValidationError):
    """Archive mode and sink configuration are inconsistent."""

    code: str = "ARCHIVE_CONFIGURATION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid archive configuration: {reason}")


# Archive


class ArchiveError(PeriodKernelError):
    """Base exception for archive failures. Archive runs are retryable."""

    code: str = "ARCHIVE_ERROR"


class ArchiveSinkError(ArchiveError):
    """Export sink failed to write or read an artifact."""

    code: str = "ARCHIVE_SINK_FAILURE"

    def __init__(self, sink: str, tenant_id: str, year: int, reason: str):
        self.sink = sink
        self.tenant_id = tenant_id
        self.year = year
        self.reason = reason
        super().__init__(
            f"Archive sink {sink} failed for tenant {tenant_id}, year {year}: {reason}"
        )


class ArchiveIntegrityError(ArchiveError):
    """Artifact read back from the sink does not match what was exported."""

    code: str = "ARCHIVE_INTEGRITY"

    def __init__(self, tenant_id: str, year: int, expected: str, actual: str):
        self.tenant_id = tenant_id
        self.year = year
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Archive checksum mismatch for tenant {tenant_id}, year {year}: "
            f"expected {expected}, got {actual}"
        )


class ArchiveIncompleteError(ArchiveError):
    """Period transition committed but the year-boundary archive failed."""

    code: str = "ARCHIVE_INCOMPLETE"

    def __init__(self, tenant_id: str, year: int, new_period_id: str, reason: str):
        self.tenant_id = tenant_id
        self.year = year
        self.new_period_id = new_period_id
        self.reason = reason
        super().__init__(
            f"Period {new_period_id} is active but archiving {year} for tenant "
            f"{tenant_id} failed: {reason}"
        )


def describe_for_user(exc: BaseException) -> str:
    """Classify an error for the presentation layer.

    Returns "retry" for lost races, "blocked" for unmet preconditions
    and "failed" for everything else.
    """
    if isinstance(exc, ConflictError):
        return "retry"
    if isinstance(exc, InvalidStateError):
        return "blocked"
    return "failed"
