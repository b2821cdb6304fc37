"""
period_config -- single public entrypoint for kernel configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration sits above ``period_kernel`` and beside
    ``period_services``.  The kernel MUST NEVER import from
    ``period_config``; services receive the parsed dataclasses.

Resolution order:
    1. ``path`` argument
    2. ``$PERIOD_KERNEL_CONFIG``
    3. packaged ``defaults.yaml``
    ``$DATABASE_URL`` then overrides ``database.url``.

Audit relevance:
    Every successful ``get_active_config()`` call emits a ``config_loaded``
    log entry with the source file and the checksum of the effective
    configuration.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from period_config.loader import load_config, load_yaml_file, parse_config
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
from period_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV_VAR = "PERIOD_KERNEL_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> KernelConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Explicit YAML file.  Takes precedence over the environment.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        KernelConfig with its checksum set.

    Raises:
        FileNotFoundError: The resolved file does not exist.
        ValueError: The configuration is invalid.
    """
    env = os.environ if environ is None else environ

    if path is None:
        path = env.get(CONFIG_ENV_VAR) or DEFAULTS_FILE
    source = Path(path)

    data = load_yaml_file(source)

    database_url = env.get(DATABASE_URL_ENV_VAR)
    if database_url:
        data = {**data, "database": {**(data.get("database") or {}), "url": database_url}}

    config = parse_config(data, source=str(source))

    _logger.info(
        "config_loaded",
        extra={
            "source": config.source,
            "checksum": config.checksum,
            "archive_mode": config.archive.mode.value,
            "archive_sink": config.archive.sink.value,
            "rollover_kinds": list(config.rollover.record_kinds),
            "database_url_from_env": bool(database_url),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "load_config",
    "parse_config",
    "ArchiveConfig",
    "ArchiveMode",
    "ArchiveSinkKind",
    "DatabaseConfig",
    "KernelConfig",
    "LockingConfig",
    "LoggingConfig",
    "RolloverConfig",
]
