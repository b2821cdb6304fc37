"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from period_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from period_kernel.domain.dtos import (
    ArchiveArtifact,
    ArchiveResult,
    PeriodExport,
    PeriodInfo,
    PeriodKind,
    PeriodStatus,
    PeriodSummary,
    RecordCounts,
)
from period_kernel.domain.period_spec import PeriodSpec, add_month, default_name
from period_kernel.domain.tenant import StaticTenantRegistry, TenantRegistry

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ArchiveArtifact",
    "ArchiveResult",
    "PeriodExport",
    "PeriodInfo",
    "PeriodKind",
    "PeriodStatus",
    "PeriodSummary",
    "RecordCounts",
    "PeriodSpec",
    "add_month",
    "default_name",
    "StaticTenantRegistry",
    "TenantRegistry",
]
