"""
Kernel configuration schema.

Frozen dataclasses parsed from YAML by ``period_config.loader``.  Every
field has a default, so an empty YAML document yields a working
development configuration (SQLite, file archive sink).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ArchiveMode(str, Enum):
    """What archive_year does with a stale year."""

    EXPORT_THEN_DELETE = "export_then_delete"
    DELETE_ONLY = "delete_only"


class ArchiveSinkKind(str, Enum):
    """Where exported artifacts are written."""

    FILE = "file"
    TABLE = "table"


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///period_kernel.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class ArchiveConfig:
    mode: ArchiveMode = ArchiveMode.EXPORT_THEN_DELETE
    sink: ArchiveSinkKind = ArchiveSinkKind.FILE
    directory: Path = Path("archives")
    # delete_only is refused unless this is set explicitly
    allow_delete_without_export: bool = False
    auto_archive_on_new_year: bool = True


@dataclass(frozen=True)
class RolloverConfig:
    # Record kinds whose rollover policy runs at every transition
    record_kinds: tuple[str, ...] = ("purchase",)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class LockingConfig:
    # pg_try_advisory_xact_lock around transitions (PostgreSQL only)
    use_advisory_locks: bool = True
    archive_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class KernelConfig:
    """Effective configuration of one process."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    rollover: RolloverConfig = field(default_factory=RolloverConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    locking: LockingConfig = field(default_factory=LockingConfig)
    source: str = "<defaults>"
    checksum: str = ""
