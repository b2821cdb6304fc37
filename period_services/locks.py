"""
period_services.locks -- Per-tenant mutual exclusion.

Responsibility:
    Serializes period transitions of one tenant, and archive runs of one
    (tenant, year), inside a process; and across processes on PostgreSQL
    through transaction-scoped advisory locks.

Architecture position:
    Services -- shared by PeriodManager and ArchiveService.  One
    TenantLockRegistry instance is shared by every manager and archive
    service of a process.

Invariants enforced:
    - Different tenants never contend.
    - Acquisition failure is reported, never waited out indefinitely:
      transitions fail fast, archive runs wait at most a timeout.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.orm import Session

from period_kernel.db.engine import is_postgres
from period_kernel.logging_config import get_logger

logger = get_logger("services.locks")


class TenantLockRegistry:
    """
    Hands out one ``threading.Lock`` per key.

    Keys are tenant ids for transitions and ``("archive", tenant_id, year)``
    tuples for archive runs.  A key is forgotten once no caller is holding
    or waiting on it, so the registry only tracks keys in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, callers holding or waiting]
        self._locks: dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable, timeout: float | None = None) -> Iterator[bool]:
        """
        Try to hold the lock for ``key``.

        Yields True when the lock was acquired, False otherwise.  With
        ``timeout=None`` acquisition does not block at all.
        """
        lock = self._checkout(key)
        try:
            if timeout is None:
                acquired = lock.acquire(blocking=False)
            else:
                acquired = lock.acquire(timeout=timeout)
            try:
                yield acquired
            finally:
                if acquired:
                    lock.release()
        finally:
            self._checkin(key)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]


def advisory_key(*parts: object) -> int:
    """Stable signed 64-bit key for pg advisory locks."""
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def try_advisory_xact_lock(session: Session, *parts: object) -> bool:
    """
    Take a transaction-scoped advisory lock on PostgreSQL.

    Released automatically at commit or rollback.  Always succeeds on
    other backends, where the in-process registry is the only guard.
    """
    if not is_postgres(session):
        return True
    key = advisory_key(*parts)
    acquired = session.execute(
        text("SELECT pg_try_advisory_xact_lock(:key)"), {"key": key}
    ).scalar_one()
    if not acquired:
        logger.warning("advisory_lock_busy", extra={"lock_key": key})
    return bool(acquired)
