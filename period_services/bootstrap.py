"""
period_services.bootstrap -- Process start-up from a KernelConfig.

Responsibility:
    Apply a loaded configuration to the process: logging level, the
    database engine, and a PeriodManager wired from the same config.

Architecture position:
    Services -- the one place that reads every configuration section.
    Tests wire their own engines and do not go through here.

Failure modes:
    - RuntimeError from the engine layer if the URL cannot be used.
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from period_config import get_active_config
from period_config.schema import KernelConfig
from period_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from period_kernel.domain.clock import Clock
from period_kernel.logging_config import configure_logging, get_logger
from period_services.period_manager import PeriodManager

logger = get_logger("services.bootstrap")


def apply_database_config(config: KernelConfig) -> sessionmaker[Session]:
    """Initialize the engine from config.database and return its session factory."""
    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
    )
    return get_session_factory()


def start_kernel(
    config: KernelConfig | None = None,
    *,
    clock: Clock | None = None,
    create_schema: bool = False,
) -> PeriodManager:
    """
    Configure logging and the database, then build a PeriodManager.

    Args:
        config: Effective configuration; resolved with get_active_config()
            when omitted.
        clock: Clock for the manager and archive service.
        create_schema: Create missing tables (local SQLite runs).
    """
    config = config or get_active_config()
    configure_logging(level=config.logging.level)
    session_factory = apply_database_config(config)
    if create_schema:
        create_tables()

    manager = PeriodManager.from_config(config, session_factory, clock=clock)
    logger.info(
        "kernel_started",
        extra={
            "config_source": config.source,
            "config_checksum": config.checksum,
            "archive_mode": config.archive.mode.value,
            "rollover_kinds": list(config.rollover.record_kinds),
        },
    )
    return manager
