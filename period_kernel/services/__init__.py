"""Kernel services.  Flush-only; the caller owns the transaction."""

from period_kernel.services.base import BaseService
from period_kernel.services.period_store import PeriodStore
from period_kernel.services.record_partitioner import RecordPartitioner

__all__ = [
    "BaseService",
    "PeriodStore",
    "RecordPartitioner",
]
