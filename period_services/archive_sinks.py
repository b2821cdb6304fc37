"""
period_services.archive_sinks -- Destinations for exported year archives.

Responsibility:
    Persist and read back the canonical JSON artifact of one
    (tenant_id, year).  Two implementations:

    - FileArchiveSink writes ``<directory>/<tenant>/<year>.json`` plus a
      ``<year>.json.sha256`` checksum file, each replaced atomically.
    - TableArchiveSink stores the artifact in the ``archived_data`` table,
      committed in its own transaction.

Invariants enforced:
    - Writing the same (tenant_id, year) again replaces the artifact; a
      retried export never leaves two copies.  Callers that add to a year
      read the artifact first and write the union.
    - A reader never observes a partially written file.

Failure modes:
    - ArchiveSinkError wraps I/O and database failures.
    - ArchiveNotFoundError from read() when nothing was exported.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from period_config.schema import ArchiveConfig, ArchiveSinkKind
from period_kernel.db.engine import session_scope
from period_kernel.domain.clock import Clock, SystemClock
from period_kernel.exceptions import ArchiveNotFoundError, ArchiveSinkError
from period_kernel.logging_config import get_logger
from period_kernel.models.archive import ArchivedData

logger = get_logger("services.archive_sinks")


@dataclass(frozen=True)
class StoredArtifact:
    payload: str
    checksum: str
    location: str


class ArchiveSink(Protocol):
    """Outbound port for year archives."""

    name: str

    def write(self, tenant_id: str, year: int, payload: str, checksum: str) -> str:
        """Store the artifact and return its location."""
        ...

    def read(self, tenant_id: str, year: int) -> StoredArtifact: ...

    def exists(self, tenant_id: str, year: int) -> bool: ...


class FileArchiveSink:
    """Artifacts as JSON files under one directory."""

    name = "file"

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def path_for(self, tenant_id: str, year: int) -> Path:
        # Tenant ids are opaque; quote them so they are always one path segment
        return self.directory / quote(tenant_id, safe="") / f"{year}.json"

    def write(self, tenant_id: str, year: int, payload: str, checksum: str) -> str:
        path = self.path_for(tenant_id, year)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(path, payload)
            _atomic_write(_checksum_path(path), checksum + "\n")
        except OSError as exc:
            raise ArchiveSinkError(self.name, tenant_id, year, str(exc)) from exc
        return str(path)

    def read(self, tenant_id: str, year: int) -> StoredArtifact:
        path = self.path_for(tenant_id, year)
        if not path.exists():
            raise ArchiveNotFoundError(tenant_id, year)
        try:
            payload = path.read_text(encoding="utf-8")
            checksum = _checksum_path(path).read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ArchiveSinkError(self.name, tenant_id, year, str(exc)) from exc
        return StoredArtifact(payload=payload, checksum=checksum, location=str(path))

    def exists(self, tenant_id: str, year: int) -> bool:
        return self.path_for(tenant_id, year).exists()


def _checksum_path(path: Path) -> Path:
    return path.with_name(path.name + ".sha256")


def _atomic_write(path: Path, text: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class TableArchiveSink:
    """Artifacts as rows of ``archived_data``."""

    name = "table"

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def write(self, tenant_id: str, year: int, payload: str, checksum: str) -> str:
        try:
            with session_scope(self._session_factory) as session:
                row = self._row(session, tenant_id, year)
                if row is None:
                    row = ArchivedData(tenant_id=tenant_id, year=year)
                    session.add(row)
                row.payload = payload
                row.checksum = checksum
                row.archived_at = self._clock.now()
                session.flush()
                location = f"archived_data/{row.id}"
        except SQLAlchemyError as exc:
            raise ArchiveSinkError(self.name, tenant_id, year, str(exc)) from exc
        return location

    def read(self, tenant_id: str, year: int) -> StoredArtifact:
        try:
            with session_scope(self._session_factory) as session:
                row = self._row(session, tenant_id, year)
                if row is None:
                    raise ArchiveNotFoundError(tenant_id, year)
                return StoredArtifact(
                    payload=row.payload,
                    checksum=row.checksum,
                    location=f"archived_data/{row.id}",
                )
        except SQLAlchemyError as exc:
            raise ArchiveSinkError(self.name, tenant_id, year, str(exc)) from exc

    def exists(self, tenant_id: str, year: int) -> bool:
        with session_scope(self._session_factory) as session:
            return self._row(session, tenant_id, year) is not None

    @staticmethod
    def _row(session: Session, tenant_id: str, year: int) -> ArchivedData | None:
        return session.execute(
            select(ArchivedData).where(
                ArchivedData.tenant_id == tenant_id,
                ArchivedData.year == year,
            )
        ).scalar_one_or_none()


def build_sink(
    config: ArchiveConfig,
    session_factory: sessionmaker[Session],
    clock: Clock | None = None,
) -> ArchiveSink:
    """The sink named by ``archive.sink``."""
    if config.sink == ArchiveSinkKind.TABLE:
        return TableArchiveSink(session_factory, clock)
    return FileArchiveSink(config.directory)
