"""
Configuration Loader (``period_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
``period_config.schema`` dataclasses.  The single public entry point for
runtime config is ``period_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown sections, unknown keys and invalid values raise ``ValueError``
  with a descriptive message; nothing is silently ignored.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective configuration.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

import yaml

from period_config.schema import (
    ArchiveConfig,
    ArchiveMode,
    ArchiveSinkKind,
    DatabaseConfig,
    KernelConfig,
    LockingConfig,
    LoggingConfig,
    RolloverConfig,
)
from period_kernel.models.records import RecordKind

_SECTIONS = ("database", "archive", "rollover", "logging", "locking")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _section(data: dict[str, Any], name: str, cls: type) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"{name}: must be a mapping")
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - allowed)
    if unknown:
        raise ValueError(f"{name}: unknown keys {unknown}")
    return section


def _positive(section: str, key: str, value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{section}.{key}: must be a positive number, got {value!r}")
    return value


def _flag(section: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key}: must be true or false, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    section = _section(data, "database", DatabaseConfig)
    default = DatabaseConfig()
    url = section.get("url", default.url)
    if not isinstance(url, str) or not url:
        raise ValueError("database.url: must be a non-empty string")
    return DatabaseConfig(
        url=url,
        echo=_flag("database", "echo", section.get("echo", default.echo)),
        pool_size=_positive("database", "pool_size", section.get("pool_size", default.pool_size)),
        max_overflow=section.get("max_overflow", default.max_overflow),
        pool_timeout=_positive(
            "database", "pool_timeout", section.get("pool_timeout", default.pool_timeout)
        ),
    )


def parse_archive(data: dict[str, Any]) -> ArchiveConfig:
    section = _section(data, "archive", ArchiveConfig)
    default = ArchiveConfig()

    try:
        mode = ArchiveMode(section.get("mode", default.mode))
    except ValueError:
        raise ValueError(
            f"archive.mode: must be one of {[m.value for m in ArchiveMode]}, "
            f"got {section.get('mode')!r}"
        ) from None
    try:
        sink = ArchiveSinkKind(section.get("sink", default.sink))
    except ValueError:
        raise ValueError(
            f"archive.sink: must be one of {[s.value for s in ArchiveSinkKind]}, "
            f"got {section.get('sink')!r}"
        ) from None

    return ArchiveConfig(
        mode=mode,
        sink=sink,
        directory=Path(section.get("directory", default.directory)),
        allow_delete_without_export=_flag(
            "archive",
            "allow_delete_without_export",
            section.get("allow_delete_without_export", default.allow_delete_without_export),
        ),
        auto_archive_on_new_year=_flag(
            "archive",
            "auto_archive_on_new_year",
            section.get("auto_archive_on_new_year", default.auto_archive_on_new_year),
        ),
    )


def parse_rollover(data: dict[str, Any]) -> RolloverConfig:
    section = _section(data, "rollover", RolloverConfig)
    kinds = section.get("record_kinds", list(RolloverConfig().record_kinds))
    if not isinstance(kinds, list):
        raise ValueError("rollover.record_kinds: must be a list")
    valid = {k.value for k in RecordKind}
    unknown = sorted(set(kinds) - valid)
    if unknown:
        raise ValueError(f"rollover.record_kinds: unknown record kinds {unknown}")
    return RolloverConfig(record_kinds=tuple(kinds))


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = _section(data, "logging", LoggingConfig)
    level = str(section.get("level", LoggingConfig().level)).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level: must be one of {list(_LOG_LEVELS)}, got {level!r}")
    return LoggingConfig(level=level)


def parse_locking(data: dict[str, Any]) -> LockingConfig:
    section = _section(data, "locking", LockingConfig)
    default = LockingConfig()
    return LockingConfig(
        use_advisory_locks=_flag(
            "locking",
            "use_advisory_locks",
            section.get("use_advisory_locks", default.use_advisory_locks),
        ),
        archive_timeout_seconds=float(_positive(
            "locking",
            "archive_timeout_seconds",
            section.get("archive_timeout_seconds", default.archive_timeout_seconds),
        )),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any], source: str = "<dict>") -> KernelConfig:
    """
    Parse a whole configuration document.

    Raises:
        ValueError: Unknown sections or invalid values.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown configuration sections {unknown}")

    parsed = KernelConfig(
        database=parse_database(data),
        archive=parse_archive(data),
        rollover=parse_rollover(data),
        logging=parse_logging(data),
        locking=parse_locking(data),
        source=source,
    )
    effective = {name: asdict(getattr(parsed, name)) for name in _SECTIONS}
    return KernelConfig(
        database=parsed.database,
        archive=parsed.archive,
        rollover=parsed.rollover,
        logging=parsed.logging,
        locking=parsed.locking,
        source=source,
        checksum=compute_checksum(effective),
    )


def load_config(path: Path) -> KernelConfig:
    """Load and parse one YAML configuration file."""
    return parse_config(load_yaml_file(path), source=str(path))
