"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services inherit
    from BaseService, receiving a SQLAlchemy ``Session`` that they use
    via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's
    transaction and never commit or rollback themselves.  The caller
    (PeriodManager, ArchiveService, or test harness) owns commit/rollback,
    which is what makes a period transition all-or-nothing.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from period_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide derived read models -- those belong
          in ``period_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
