"""
period_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the period kernel: atomic period
    transitions, carry-forward, year archival and the per-tenant locks
    that serialize them.  This is the layer that owns transactions.

Architecture position:
    Services -- orchestration over kernel.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        period_services/ -> period_kernel/   (allowed)
        period_services/ -> period_config/   (allowed)
        period_kernel/   -> period_services/ (FORBIDDEN)
        period_kernel/   -> period_config/   (FORBIDDEN)
"""

from period_services.archive_service import ArchiveService
from period_services.archive_sinks import (
    ArchiveSink,
    FileArchiveSink,
    StoredArtifact,
    TableArchiveSink,
    build_sink,
)
from period_services.bootstrap import apply_database_config, start_kernel
from period_services.locks import TenantLockRegistry
from period_services.period_manager import PeriodManager
from period_services.rollover_engine import (
    CarryForward,
    PurchaseCarryForwardPolicy,
    RolloverEngine,
    RolloverPolicy,
)

__all__ = [
    "ArchiveService",
    "ArchiveSink",
    "FileArchiveSink",
    "StoredArtifact",
    "TableArchiveSink",
    "build_sink",
    "apply_database_config",
    "start_kernel",
    "TenantLockRegistry",
    "PeriodManager",
    "CarryForward",
    "PurchaseCarryForwardPolicy",
    "RolloverEngine",
    "RolloverPolicy",
]
