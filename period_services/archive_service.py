"""
period_services.archive_service -- Year-boundary archival.

Responsibility:
    Removes a tenant's stale year from the live tables: every CLOSED period
    lying fully within the year and every record of every kind tagged with
    those periods.  By default the data is exported to an ArchiveSink and
    verified before anything is deleted.

Architecture position:
    Services -- owns its transactions (session_scope over a session
    factory).  Called by PeriodManager after a transition into January, and
    directly by the admin layer for retries.

Invariants enforced:
    - export_then_delete: the artifact is written, read back and its
      checksum verified before the delete transaction starts.  A failed
      export leaves the live data untouched.
    - delete_only requires archive.allow_delete_without_export.
    - Idempotent: once a year is archived there is nothing left in scope
      and a further run is a no-op that does not touch the sink.
    - The artifact is cumulative: a later run over the same year merges
      the earlier export into its own before writing, so every archived
      record stays recoverable.
    - The active period is never archived (only CLOSED periods are in
      scope), nor is a period that straddles the year boundary.
    - One run per (tenant_id, year) at a time.

Failure modes:
    - ArchiveConfigurationError: delete_only without the opt-in.
    - ArchiveInProgressError: another run holds the (tenant, year) lock.
    - ArchiveSinkError / ArchiveIntegrityError: export failed or did not
      verify; nothing was deleted.
    - Database errors in the delete transaction propagate after rollback;
      a retry re-exports identical content and deletes again.
"""

from __future__ import annotations

import json
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from period_config.schema import ArchiveConfig, ArchiveMode
from period_kernel.db.engine import session_scope
from period_kernel.domain.clock import Clock, SystemClock
from period_kernel.domain.dtos import ArchiveArtifact, ArchiveResult, PeriodStatus
from period_kernel.exceptions import (
    ArchiveConfigurationError,
    ArchiveInProgressError,
    ArchiveIntegrityError,
)
from period_kernel.logging_config import LogContext, get_logger
from period_kernel.models.period import Period
from period_kernel.models.records import RECORD_MODELS, RecordKind
from period_kernel.services.period_store import PeriodStore
from period_kernel.utils.hashing import canonicalize_json, hash_text
from period_kernel.utils.serialization import row_from_dict, row_to_dict
from period_services.archive_sinks import ArchiveSink, StoredArtifact, build_sink
from period_services.locks import TenantLockRegistry


logger = get_logger("services.archive")

ARTIFACT_FORMAT_VERSION = 1


class ArchiveService:
    """
    Exports and purges stale years.

    Contract:
        Receives the session factory, archive configuration, sink, lock
        registry and clock via constructor injection.  Each public method
        runs its own transactions.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: ArchiveConfig | None = None,
        sink: ArchiveSink | None = None,
        locks: TenantLockRegistry | None = None,
        clock: Clock | None = None,
        lock_timeout: float = 30.0,
    ):
        self._session_factory = session_factory
        self._config = config or ArchiveConfig()
        self._clock = clock or SystemClock()
        self._sink = sink or build_sink(self._config, session_factory, self._clock)
        self._locks = locks or TenantLockRegistry()
        self._lock_timeout = lock_timeout

    @property
    def sink(self) -> ArchiveSink:
        return self._sink

    def archive_year(
        self,
        tenant_id: str,
        year: int,
        mode: ArchiveMode | str | None = None,
    ) -> ArchiveResult:
        """
        Archive one calendar year of one tenant.

        Args:
            tenant_id: Tenant whose year is archived.
            year: Calendar year, e.g. 2024.
            mode: Overrides archive.mode for this run.

        Returns:
            ArchiveResult.  ``already_archived`` is True when nothing was
            left in scope.

        Raises:
            ArchiveConfigurationError: delete_only without the opt-in.
            ArchiveInProgressError: Another run for the same year is active.
            ArchiveSinkError: Export could not be written or read back.
            ArchiveIntegrityError: Export did not verify.
        """
        mode = ArchiveMode(mode) if mode is not None else self._config.mode
        if mode == ArchiveMode.DELETE_ONLY and not self._config.allow_delete_without_export:
            raise ArchiveConfigurationError(
                "delete_only requires archive.allow_delete_without_export: true"
            )

        with self._locks.hold(("archive", tenant_id, year), timeout=self._lock_timeout) as held:
            if not held:
                raise ArchiveInProgressError(tenant_id, year)
            with LogContext.bind(tenant_id=tenant_id):
                return self._archive_year(tenant_id, year, mode)

    def _archive_year(self, tenant_id: str, year: int, mode: ArchiveMode) -> ArchiveResult:
        with session_scope(self._session_factory) as session:
            period_ids, document = self._collect(session, tenant_id, year)

        if not period_ids:
            logger.info(
                "archive_noop",
                extra={"tenant_id": tenant_id, "year": year, "mode": mode.value},
            )
            return ArchiveResult(
                tenant_id=tenant_id,
                year=year,
                mode=mode.value,
                already_archived=True,
            )

        records_by_kind = {
            kind: len(rows) for kind, rows in document["records"].items() if rows
        }

        checksum = None
        location = None
        exported = mode == ArchiveMode.EXPORT_THEN_DELETE
        if exported:
            document = self._merge_earlier_export(tenant_id, year, document)
            checksum, location = self._export(tenant_id, year, document)

        with session_scope(self._session_factory) as session:
            self._purge(session, tenant_id, period_ids)

        logger.info(
            "archive_deleted",
            extra={
                "tenant_id": tenant_id,
                "year": year,
                "mode": mode.value,
                "periods": len(period_ids),
                "records_by_kind": records_by_kind,
            },
        )
        return ArchiveResult(
            tenant_id=tenant_id,
            year=year,
            mode=mode.value,
            period_ids=tuple(period_ids),
            records_by_kind=records_by_kind,
            exported=exported,
            checksum=checksum,
            location=location,
        )

    def _collect(
        self, session: Session, tenant_id: str, year: int
    ) -> tuple[list[UUID], dict]:
        periods = PeriodStore(session, self._clock).periods_within_year(
            tenant_id, year, status=PeriodStatus.CLOSED
        )
        period_ids = [p.id for p in periods]
        if not period_ids:
            return [], {}

        period_rows = session.execute(
            select(Period)
            .where(Period.tenant_id == tenant_id, Period.id.in_(period_ids))
            .order_by(Period.start_date, Period.id)
        ).scalars().all()

        records: dict[str, list[dict]] = {}
        for kind, model in RECORD_MODELS.items():
            rows = session.execute(
                select(model)
                .where(model.tenant_id == tenant_id, model.period_id.in_(period_ids))
                .order_by(model.period_id, model.created_at, model.id)
            ).scalars().all()
            records[kind.value] = [row_to_dict(row) for row in rows]

        document = {
            "format_version": ARTIFACT_FORMAT_VERSION,
            "tenant_id": tenant_id,
            "year": year,
            "periods": [row_to_dict(p) for p in period_rows],
            "records": records,
        }
        return period_ids, document

    def _merge_earlier_export(self, tenant_id: str, year: int, document: dict) -> dict:
        """
        Fold an earlier export of the same year into ``document``.

        A year can be archived in several runs (a mid-year run, then the
        January one).  The artifact always holds every run's periods and
        records; rows are keyed by id, so a retried run rewrites the same
        rows instead of duplicating them.

        Raises:
            ArchiveIntegrityError: The earlier export does not verify.
        """
        current = json.loads(canonicalize_json(document))
        if not self._sink.exists(tenant_id, year):
            return current

        earlier = json.loads(self._read_verified(tenant_id, year).payload)
        current["periods"] = _union_rows(
            earlier["periods"], current["periods"], ("start_date", "id")
        )
        kinds = set(earlier["records"]) | set(current["records"])
        current["records"] = {
            kind: _union_rows(
                earlier["records"].get(kind, []),
                current["records"].get(kind, []),
                ("period_id", "created_at", "id"),
            )
            for kind in sorted(kinds)
        }
        logger.info(
            "archive_merged",
            extra={
                "tenant_id": tenant_id,
                "year": year,
                "earlier_periods": len(earlier["periods"]),
                "periods": len(current["periods"]),
            },
        )
        return current

    def _export(self, tenant_id: str, year: int, document: dict) -> tuple[str, str]:
        payload = canonicalize_json(document)
        checksum = hash_text(payload)

        location = self._sink.write(tenant_id, year, payload, checksum)

        stored = self._sink.read(tenant_id, year)
        actual = hash_text(stored.payload)
        if actual != checksum or stored.checksum != checksum:
            logger.error(
                "archive_integrity_failure",
                extra={
                    "tenant_id": tenant_id,
                    "year": year,
                    "expected": checksum,
                    "actual": actual,
                    "stored_checksum": stored.checksum,
                },
            )
            raise ArchiveIntegrityError(tenant_id, year, checksum, actual)

        logger.info(
            "archive_exported",
            extra={
                "tenant_id": tenant_id,
                "year": year,
                "sink": self._sink.name,
                "location": location,
                "checksum": checksum,
                "bytes": len(payload.encode("utf-8")),
            },
        )
        return checksum, location

    @staticmethod
    def _purge(session: Session, tenant_id: str, period_ids: list[UUID]) -> None:
        # Records first: they reference the periods through the composite FK
        for model in RECORD_MODELS.values():
            session.execute(
                delete(model).where(
                    model.tenant_id == tenant_id,
                    model.period_id.in_(period_ids),
                )
            )
        session.execute(
            delete(Period).where(
                Period.tenant_id == tenant_id,
                Period.id.in_(period_ids),
                Period.status == PeriodStatus.CLOSED.value,
            )
        )

    def restore_artifact(self, tenant_id: str, year: int) -> ArchiveArtifact:
        """
        Read an exported year back, verifying its checksum.

        Raises:
            ArchiveNotFoundError: Nothing was exported for the year.
            ArchiveIntegrityError: The stored artifact does not verify.
        """
        stored = self._read_verified(tenant_id, year)
        document = json.loads(stored.payload)
        records = {
            kind: tuple(
                row_from_dict(RECORD_MODELS[RecordKind(kind)], row) for row in rows
            )
            for kind, rows in document["records"].items()
            if rows
        }
        return ArchiveArtifact(
            tenant_id=document["tenant_id"],
            year=document["year"],
            checksum=stored.checksum,
            periods=tuple(row_from_dict(Period, row) for row in document["periods"]),
            records=records,
        )

    def _read_verified(self, tenant_id: str, year: int) -> StoredArtifact:
        stored = self._sink.read(tenant_id, year)
        actual = hash_text(stored.payload)
        if actual != stored.checksum:
            raise ArchiveIntegrityError(tenant_id, year, stored.checksum, actual)
        return stored


def _union_rows(earlier: list[dict], current: list[dict], order: tuple[str, ...]) -> list[dict]:
    """Rows of both lists keyed by id; ``current`` wins on a shared id."""
    by_id = {row["id"]: row for row in earlier}
    by_id.update((row["id"], row) for row in current)
    return sorted(by_id.values(), key=lambda row: tuple(str(row.get(k) or "") for k in order))
